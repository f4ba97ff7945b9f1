"""
Unit tests for the HTTP trigger and history endpoints (cronvault/routes/backup_routes.py).
"""

from unittest.mock import patch

import pytest

from cronvault.backup.executor import RunResult
from cronvault.models import BackupRun


AUTH = {'Authorization': 'Bearer test-cron-secret'}


def successful_result():
    return RunResult(
        success=True,
        database={'name': 'app', 'collections': 2, 'total_documents': 3},
        files={'total_files': 1, 'total_size': 1024},
        archive={'file_name': 'backup-2024-01-01.zip', 'total_entries': 3, 'total_size': 2048},
        backup={
            'file_id': 'backups/backup-2024-01-01.zip',
            'file_name': 'backup-2024-01-01.zip',
            'url': 'https://backup-bucket.s3.us-east-1.amazonaws.com/backups/backup-2024-01-01.zip'
        },
        duration_ms=120,
        logs=['[2024-01-01 03:00:00 UTC] Starting backup process']
    )


class TestTriggerBackup:

    @pytest.mark.parametrize('method', ['post', 'put', 'patch', 'delete'])
    def test_non_get_is_rejected(self, client, db, method):
        with patch('cronvault.routes.backup_routes.run_backup') as mock_run:
            response = getattr(client, method)('/api/backup/run', headers=AUTH)

        assert response.status_code == 405
        assert response.get_json() == {'error': 'Method not allowed'}
        mock_run.assert_not_called()

    def test_missing_token_is_unauthorized(self, client, db):
        with patch('cronvault.routes.backup_routes.run_backup') as mock_run:
            response = client.get('/api/backup/run')

        assert response.status_code == 401
        assert response.get_json() == {'error': 'Unauthorized'}
        mock_run.assert_not_called()

    def test_wrong_token_is_unauthorized(self, client, db):
        with patch('cronvault.routes.backup_routes.run_backup') as mock_run:
            response = client.get('/api/backup/run', headers={'Authorization': 'Bearer wrong'})

        assert response.status_code == 401
        mock_run.assert_not_called()

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_bearer_token_runs_backup(self, mock_run, client, db):
        mock_run.return_value = successful_result()

        response = client.get('/api/backup/run', headers=AUTH)

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['database']['collections'] == 2
        assert data['backup']['file_name'] == 'backup-2024-01-01.zip'
        assert 'logs' not in data

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_trusted_scheduler_header(self, mock_run, client, db):
        mock_run.return_value = successful_result()

        response = client.get('/api/backup/run', headers={'X-Vercel-Cron': '1'})

        assert response.status_code == 200

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_custom_trusted_header(self, mock_run, app, client, db):
        app.config['TRUSTED_CRON_HEADER'] = 'X-Scheduler'
        mock_run.return_value = successful_result()

        assert client.get('/api/backup/run', headers={'X-Vercel-Cron': '1'}).status_code == 401
        assert client.get('/api/backup/run', headers={'X-Scheduler': '1'}).status_code == 200

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_open_without_secret(self, mock_run, app, client, db):
        app.config['CRON_SECRET'] = None
        mock_run.return_value = successful_result()

        response = client.get('/api/backup/run')

        assert response.status_code == 200

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_failed_run_returns_500(self, mock_run, client, db):
        mock_run.return_value = RunResult(success=False, stage='snapshot', error='Failed to connect to MongoDB')

        response = client.get('/api/backup/run', headers=AUTH)

        assert response.status_code == 500
        data = response.get_json()
        assert data['success'] is False
        assert data['error'] == 'Failed to connect to MongoDB'
        assert data['stage'] == 'snapshot'

    @patch('cronvault.routes.backup_routes.run_backup')
    def test_run_is_recorded(self, mock_run, client, db):
        mock_run.return_value = successful_result()

        client.get('/api/backup/run', headers=AUTH)

        run = BackupRun.query.one()
        assert run.trigger == 'http'
        assert run.status == 'success'
        assert run.storage_url.endswith('backups/backup-2024-01-01.zip')

    def test_missing_config_returns_500(self, app, client, db):
        app.config['MONGODB_URI'] = None

        response = client.get('/api/backup/run', headers=AUTH)

        assert response.status_code == 500
        data = response.get_json()
        assert data['stage'] == 'config'
        assert 'MONGODB_URI' in data['error']


class TestRunHistory:

    def add_runs(self, db):
        db.session.add(BackupRun.from_result(successful_result(), 'http'))
        db.session.add(BackupRun.from_result(RunResult(success=False, stage='publish', error='quota'), 'scheduler'))
        db.session.commit()

    def test_requires_auth(self, client, db):
        assert client.get('/api/backup/history').status_code == 401

    def test_lists_runs(self, client, db):
        self.add_runs(db)

        response = client.get('/api/backup/history', headers=AUTH)

        assert response.status_code == 200
        data = response.get_json()
        assert data['limit'] == 20
        assert len(data['records']) == 2

    def test_status_filter(self, client, db):
        self.add_runs(db)

        data = client.get('/api/backup/history?status=failed', headers=AUTH).get_json()

        assert [r['status'] for r in data['records']] == ['failed']
        assert data['records'][0]['failed_stage'] == 'publish'

    def test_invalid_status_filter(self, client, db):
        response = client.get('/api/backup/history?status=pending', headers=AUTH)

        assert response.status_code == 400

    def test_limit_is_clamped(self, client, db):
        assert client.get('/api/backup/history?limit=500', headers=AUTH).get_json()['limit'] == 100
        assert client.get('/api/backup/history?limit=0', headers=AUTH).get_json()['limit'] == 1


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'next_backup': None}
