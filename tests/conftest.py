"""
Shared pytest fixtures for cronvault tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Backup configuration values
- Mock fixtures for external services (S3, MongoDB, HTTP downloads)
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
import boto3
from moto import mock_aws

from cronvault import create_app, db as _db
from cronvault.config import BackupSettings


SOURCE_BUCKET = 'source-bucket'
BACKUP_BUCKET = 'backup-bucket'


@pytest.fixture(scope='function')
def backup_config():
    """
    Complete set of configuration values for one backup run.

    Retry delays are zero so failing downloads don't slow the suite down.
    """
    return {
        'MONGODB_URI': 'mongodb://localhost:27017/app',
        'MONGODB_DATABASE': 'app',
        'SOURCE_BUCKET': SOURCE_BUCKET,
        'SOURCE_ACCESS_KEY': 'source_access_key',
        'SOURCE_SECRET_KEY': 'source_secret_key',
        'SOURCE_REGION': 'us-east-1',
        'BACKUP_BUCKET': BACKUP_BUCKET,
        'BACKUP_ACCESS_KEY': 'backup_access_key',
        'BACKUP_SECRET_KEY': 'backup_secret_key',
        'BACKUP_REGION': 'us-east-1',
        'BACKUP_PREFIX': 'backups/',
        'MAX_BACKUPS': 7,
        'LIST_PAGE_SIZE': 100,
        'DOWNLOAD_MAX_ATTEMPTS': 2,
        'DOWNLOAD_RETRY_DELAY': 0,
        'DOWNLOAD_WORKERS': 2,
    }


@pytest.fixture(scope='function')
def settings(backup_config):
    """BackupSettings built from backup_config."""
    return BackupSettings.from_config(backup_config)


@pytest.fixture(scope='function')
def app(backup_config):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')
    app.config.update(backup_config)
    app.config['CRON_SECRET'] = 'test-cron-secret'

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates the source and backup buckets in us-east-1.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=SOURCE_BUCKET)
        s3.create_bucket(Bucket=BACKUP_BUCKET)

        yield s3


@pytest.fixture
def mock_mongo():
    """
    Mock pymongo MongoClient for snapshot testing.

    Add collections with `mongo.collections['name'] = [docs...]`; a value
    that is an exception instance makes find() raise it.
    """
    with patch('cronvault.backup.sources.MongoClient') as mock_client_cls:
        client = MagicMock()
        database = MagicMock()
        collections = {}

        def get_collection(name):
            collection = MagicMock()
            docs = collections[name]
            if isinstance(docs, Exception):
                collection.find.side_effect = docs
            else:
                collection.find.return_value = iter(docs)
            return collection

        mock_client_cls.return_value = client
        client.__getitem__.return_value = database
        client.get_default_database.return_value.name = 'app'
        database.list_collection_names.side_effect = lambda: list(collections)
        database.__getitem__.side_effect = get_collection

        yield SimpleNamespace(
            client_cls=mock_client_cls,
            client=client,
            database=database,
            collections=collections
        )


@pytest.fixture
def object_server():
    """
    Build an httpx client that serves objects from a dict.

    Requests whose path ends with '/<key>' get the key's bytes; keys listed
    in `failing` always answer 500. Every requested URL is recorded in
    `client.requested`.
    """
    clients = []

    def factory(objects, failing=(), content_types=None):
        content_types = content_types or {}
        requested = []

        def handler(request):
            requested.append(str(request.url))
            for key, data in objects.items():
                if request.url.path.endswith('/' + key):
                    if key in failing:
                        return httpx.Response(500, content=b'server error')
                    headers = {'content-type': content_types.get(key, 'application/octet-stream')}
                    return httpx.Response(200, content=data, headers=headers)
            return httpx.Response(404, content=b'not found')

        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        http_client.requested = requested
        clients.append(http_client)
        return http_client

    yield factory

    for http_client in clients:
        http_client.close()
