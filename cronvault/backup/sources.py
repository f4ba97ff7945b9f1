"""
Source handlers for backup operations.

Supports:
- MongoSource: Snapshot every collection of a MongoDB database
- BlobSource: Collect every object of an S3-compatible bucket

The database is the primary source of truth, so any failure while
snapshotting it is fatal. The blob store is best-effort: a listing failure
yields an empty collection and a failed download skips that one object.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from bson import json_util
from pymongo import MongoClient
from pymongo.errors import ConfigurationError, PyMongoError

from cronvault.utils.retry import RetryExhausted, fetch_with_retry
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)

SYSTEM_COLLECTION_PREFIX = 'system.'
DEFAULT_DATABASE_NAME = 'test'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'


class SnapshotError(Exception):
    """Raised when the database cannot be snapshotted."""
    pass


class CollectListError(Exception):
    """Raised when the object store listing fails."""
    pass


class ObjectDownloadError(Exception):
    """Raised when a single object cannot be downloaded."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to download object {path}: {cause}")


@dataclass
class CollectionPayload:
    """Serialized documents of one collection."""
    name: str
    data: bytes
    document_count: int


@dataclass
class SnapshotResult:
    collections: List[CollectionPayload]
    total_documents: int
    database_name: str


@dataclass
class ObjectPayload:
    """Downloaded bytes of one remote object."""
    path: str
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class CollectResult:
    objects: List[ObjectPayload] = field(default_factory=list)
    total_size: int = 0
    total_count: int = 0


class MongoSource:
    """
    Snapshots a MongoDB database.

    Every non-system collection is read in full and serialized to
    pretty-printed Extended JSON with sorted keys.
    """

    def __init__(
        self,
        uri: str,
        database_name: Optional[str] = None,
        server_selection_timeout_ms: int = 10000
    ):
        """
        Initialize MongoDB source handler.

        Args:
            uri: MongoDB connection URI
            database_name: Database to snapshot (defaults to the URI's database)
            server_selection_timeout_ms: How long to wait for a reachable server
        """
        self.uri = uri
        self.database_name = database_name
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.client = None

    def _connect(self):
        """
        Connect and verify the server is reachable.

        Raises:
            SnapshotError: If connection fails
        """
        try:
            self.client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms
            )
            self.client.admin.command('ping')
        except PyMongoError as e:
            raise SnapshotError(f"Failed to connect to MongoDB: {e}")

    def _resolve_database_name(self) -> str:
        if self.database_name:
            return self.database_name
        try:
            return self.client.get_default_database(default=DEFAULT_DATABASE_NAME).name
        except ConfigurationError:
            return DEFAULT_DATABASE_NAME

    def snapshot(self) -> SnapshotResult:
        """
        Read and serialize every collection.

        Returns:
            SnapshotResult with one payload per collection

        Raises:
            SnapshotError: If connecting, listing, or reading any collection fails
        """
        try:
            self._connect()
            database_name = self._resolve_database_name()
            database = self.client[database_name]

            try:
                names = database.list_collection_names()
            except PyMongoError as e:
                raise SnapshotError(f"Failed to list collections of {database_name}: {e}")

            collections = []
            total_documents = 0

            for name in sorted(names):
                if name.startswith(SYSTEM_COLLECTION_PREFIX):
                    logger.debug(f"Skipping system collection: {name}")
                    continue

                try:
                    documents = list(database[name].find({}))
                except PyMongoError as e:
                    raise SnapshotError(f"Failed to read collection {name}: {e}")

                collections.append(CollectionPayload(
                    name=name,
                    data=serialize_documents(documents),
                    document_count=len(documents)
                ))
                total_documents += len(documents)
                logger.info(f"Collection {name}: {len(documents)} documents")

            return SnapshotResult(
                collections=collections,
                total_documents=total_documents,
                database_name=database_name
            )
        finally:
            self.cleanup()

    def cleanup(self):
        """Close the MongoDB client."""
        if self.client is not None:
            try:
                self.client.close()
            except PyMongoError as e:
                logger.warning(f"Failed to close MongoDB client: {e}")
            self.client = None


def serialize_documents(documents: List[Dict[str, Any]]) -> bytes:
    """
    Serialize documents to pretty-printed Extended JSON.

    Keys are sorted so the same data always produces the same bytes.
    """
    return json_util.dumps(documents, indent=2, sort_keys=True).encode('utf-8')


class BlobSource:
    """
    Collects objects from an S3-compatible bucket.

    Pages are listed one after another (each cursor comes from the previous
    page); the objects of a page are downloaded on a small thread pool.
    """

    def __init__(
        self,
        storage: S3Storage,
        excluded_prefix: str = 'backups/',
        page_size: int = 100,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        max_workers: int = 4,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0
    ):
        """
        Initialize blob source handler.

        Args:
            storage: Storage handler for the source bucket
            excluded_prefix: Keys under this prefix are never collected
            page_size: Number of keys requested per listing page
            max_attempts: Download attempts per object
            retry_delay: Backoff unit between download attempts, in seconds
            max_workers: Concurrent downloads within a page
            http_client: Optional httpx client shared by all downloads
            timeout: Per-request timeout when no client is given
        """
        self.storage = storage
        self.excluded_prefix = excluded_prefix
        self.page_size = page_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_workers = max(1, max_workers)
        self.http_client = http_client
        self.timeout = timeout

    def _is_excluded(self, key: str) -> bool:
        return bool(self.excluded_prefix) and key.startswith(self.excluded_prefix)

    def _download(self, client: httpx.Client, key: str) -> ObjectPayload:
        """
        Download a single object.

        Raises:
            ObjectDownloadError: If the URL cannot be built or retries run out
        """
        try:
            url = self.storage.download_url(key)
            response = fetch_with_retry(
                url,
                max_attempts=self.max_attempts,
                base_delay=self.retry_delay,
                client=client
            )
        except (StorageError, RetryExhausted) as e:
            raise ObjectDownloadError(key, e)

        content_type = response.headers.get('content-type') or DEFAULT_CONTENT_TYPE
        return ObjectPayload(path=key, data=response.content, content_type=content_type)

    def _download_page(self, client: httpx.Client, keys: List[str]) -> List[ObjectPayload]:
        def download_or_skip(key):
            try:
                return self._download(client, key)
            except ObjectDownloadError as e:
                logger.error(f"{e} (skipping)")
                return None

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(download_or_skip, keys))

        return [payload for payload in results if payload is not None]

    def _list_page(self, cursor: Optional[str]) -> Dict[str, Any]:
        try:
            return self.storage.list_page(cursor=cursor, limit=self.page_size)
        except StorageError as e:
            raise CollectListError(f"Failed to list objects: {e}")

    def collect(self) -> CollectResult:
        """
        Download every object outside the backup namespace.

        Returns:
            CollectResult; empty if the listing itself fails
        """
        client = self.http_client or httpx.Client(
            timeout=self.timeout,
            follow_redirects=True
        )
        result = CollectResult()

        try:
            cursor = None
            while True:
                page = self._list_page(cursor)

                keys = []
                for obj in page['objects']:
                    if self._is_excluded(obj['Key']):
                        logger.debug(f"Skipping backup object: {obj['Key']}")
                        continue
                    keys.append(obj['Key'])

                for payload in self._download_page(client, keys):
                    result.objects.append(payload)
                    result.total_size += payload.size

                cursor = page['cursor']
                if not cursor:
                    break

        except CollectListError as e:
            logger.error(f"{e} (continuing with no objects)")
            return CollectResult()

        finally:
            if self.http_client is None:
                client.close()

        result.total_count = len(result.objects)
        return result
