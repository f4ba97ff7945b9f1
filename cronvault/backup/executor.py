"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Snapshot MongoDB collections
2. Collect objects from the source bucket
3. Create the zip archive (with manifest)
4. Upload to the backup bucket and prune old archives
5. Return RunResult (success or the first fatal error)

Stages run strictly in order; the manifest needs the totals of every earlier
stage. Nothing is retried at this level.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from cronvault.config import BackupSettings, ConfigMissing
from .compression import ArchiveArtifact, ArchiveComposer
from .publisher import BackupPublisher
from .sources import BlobSource, MongoSource
from .storage import S3Storage


logger = logging.getLogger(__name__)

STAGE_SNAPSHOT = 'snapshot'
STAGE_COLLECT = 'collect'
STAGE_COMPOSE = 'compose'
STAGE_PUBLISH = 'publish'


@dataclass
class RunResult:
    """Outcome of one backup run."""
    success: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    stage: Optional[str] = None
    database: Optional[Dict[str, Any]] = None
    files: Optional[Dict[str, Any]] = None
    archive: Optional[Dict[str, Any]] = None
    backup: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self, include_logs: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_logs:
            data.pop('logs')
        return data


class BackupExecutor:
    """
    Orchestrates the complete backup workflow.
    """

    def __init__(self, settings: BackupSettings, http_client: Optional[httpx.Client] = None):
        """
        Initialize backup executor.

        Args:
            settings: Pipeline configuration
            http_client: Optional httpx client for object downloads
        """
        self.settings = settings
        self.http_client = http_client
        self.result = None
        self.artifact: Optional[ArchiveArtifact] = None
        self.logs = []
        self._stage = None

    def execute(self) -> RunResult:
        """
        Execute one backup run.

        Returns:
            RunResult; success=False with the error message and failing
            stage if any stage raised
        """
        started = time.monotonic()
        self.logs = []
        self._stage = None
        self.result = RunResult(logs=self.logs)

        self._log("Starting backup process")

        try:
            self._execute_workflow()

            self.result.success = True
            self.result.stage = None
            self._log("Backup completed successfully")

        except Exception as e:
            self.result.success = False
            self.result.stage = self._stage
            self.result.error = str(e) or e.__class__.__name__
            self._log(f"Backup failed during {self._stage}: {self.result.error}", level=logging.ERROR)

        finally:
            self.result.duration_ms = int((time.monotonic() - started) * 1000)
            self._cleanup()

        return self.result

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Snapshot database
        self._stage = STAGE_SNAPSHOT
        self._log("Backing up MongoDB")
        snapshot = self._create_mongo_source().snapshot()
        self.result.database = {
            'name': snapshot.database_name,
            'collections': len(snapshot.collections),
            'total_documents': snapshot.total_documents
        }
        self._log(
            f"MongoDB backup complete: {len(snapshot.collections)} collections, "
            f"{snapshot.total_documents} documents"
        )

        # Step 2: Collect objects
        self._stage = STAGE_COLLECT
        self._log("Backing up object store")
        collected = self._create_blob_source().collect()
        self.result.files = {
            'total_files': collected.total_count,
            'total_size': collected.total_size
        }
        self._log(f"Object backup complete: {collected.total_count} files, {format_bytes(collected.total_size)}")

        # Step 3: Create archive
        self._stage = STAGE_COMPOSE
        self._log("Creating ZIP archive")
        composer = ArchiveComposer(spool_max_size=self.settings.archive_spool_bytes)
        self.artifact = composer.compose(
            snapshot.collections,
            collected.objects,
            database_name=snapshot.database_name
        )
        self.result.archive = {
            'file_name': self.artifact.file_name,
            'total_entries': self.artifact.total_entries,
            'total_size': self.artifact.total_size_bytes
        }
        self._log(f"ZIP created: {self.artifact.file_name}, {format_bytes(self.artifact.total_size_bytes)}")

        # Step 4: Upload and prune
        self._stage = STAGE_PUBLISH
        self._log("Uploading backup")
        published = self._create_publisher().publish(self.artifact)
        self.result.backup = {
            'file_id': published.identifier,
            'file_name': published.file_name,
            'url': published.storage_url
        }
        self.logs.extend(published.logs)
        self._log(f"Backup uploaded: {published.storage_url}")

    def _create_mongo_source(self) -> MongoSource:
        return MongoSource(self.settings.mongodb_uri, database_name=self.settings.mongodb_database)

    def _create_blob_source(self) -> BlobSource:
        storage = S3Storage(
            access_key=self.settings.source_access_key,
            secret_key=self.settings.source_secret_key,
            bucket_name=self.settings.source_bucket,
            region=self.settings.source_region,
            endpoint_url=self.settings.source_endpoint_url,
            public_base_url=self.settings.source_public_base_url
        )
        return BlobSource(
            storage,
            excluded_prefix=self.settings.backup_prefix,
            page_size=self.settings.list_page_size,
            max_attempts=self.settings.download_max_attempts,
            retry_delay=self.settings.download_retry_delay,
            max_workers=self.settings.download_workers,
            http_client=self.http_client,
            timeout=self.settings.download_timeout
        )

    def _create_publisher(self) -> BackupPublisher:
        storage = S3Storage(
            access_key=self.settings.backup_access_key,
            secret_key=self.settings.backup_secret_key,
            bucket_name=self.settings.backup_bucket,
            region=self.settings.backup_region,
            endpoint_url=self.settings.backup_endpoint_url,
            public_base_url=self.settings.backup_public_base_url
        )
        return BackupPublisher(
            storage,
            prefix=self.settings.backup_prefix,
            max_backups=self.settings.max_backups
        )

    def _cleanup(self):
        """Release the archive buffer."""
        if self.artifact is not None:
            self.artifact.close()
            self.artifact = None

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def run_backup(config: Dict[str, Any]) -> RunResult:
    """
    Run one backup from a Flask config mapping.

    A missing required value fails the run before any stage starts.

    Args:
        config: Mapping with upper-case configuration keys

    Returns:
        RunResult
    """
    started = time.monotonic()
    try:
        settings = BackupSettings.from_config(config)
    except (ConfigMissing, ValueError) as e:
        logger.error(f"Backup not started: {e}")
        return RunResult(
            success=False,
            stage='config',
            error=str(e),
            duration_ms=int((time.monotonic() - started) * 1000)
        )

    return BackupExecutor(settings).execute()
