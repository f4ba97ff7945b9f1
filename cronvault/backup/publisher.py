"""
Uploads finished archives and prunes old ones.

The upload is the only fatal step here. Pruning runs after a successful
upload and its failures are logged, never raised: the new backup is already
durable at that point.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from .compression import ARCHIVE_CONTENT_TYPE, ArchiveArtifact
from .retention import DEFAULT_MAX_BACKUPS, RetentionError, RetentionManager
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when the archive cannot be uploaded."""
    pass


@dataclass
class PublishResult:
    identifier: str
    file_name: str
    storage_url: str
    size_bytes: int
    logs: List[str] = field(default_factory=list)


class BackupPublisher:
    """Publishes archives to the backup store."""

    def __init__(self, storage: S3Storage, prefix: str = 'backups/', max_backups: int = DEFAULT_MAX_BACKUPS):
        """
        Args:
            storage: Storage handler for the backup bucket
            prefix: Key prefix for uploaded archives
            max_backups: Number of archives retention keeps
        """
        self.storage = storage
        self.prefix = prefix
        self.max_backups = max_backups

    def publish(self, artifact: ArchiveArtifact) -> PublishResult:
        """
        Upload the archive, then enforce retention.

        Args:
            artifact: Archive to upload

        Returns:
            PublishResult with the archive's storage URL

        Raises:
            PublishError: If the upload fails
        """
        key = f"{self.prefix}{artifact.file_name}"
        artifact.stream.seek(0)

        try:
            storage_url = self.storage.upload(
                key,
                artifact.stream,
                content_type=ARCHIVE_CONTENT_TYPE,
                public=True
            )
        except StorageError as e:
            raise PublishError(f"Failed to upload backup {artifact.file_name}: {e}")

        logger.info(f"Uploaded backup {key} ({artifact.total_size_bytes} bytes)")

        result = PublishResult(
            identifier=key,
            file_name=artifact.file_name,
            storage_url=storage_url,
            size_bytes=artifact.total_size_bytes
        )
        result.logs = self._prune()
        return result

    def _prune(self) -> List[str]:
        manager = RetentionManager(self.storage, prefix=self.prefix, max_backups=self.max_backups)
        try:
            manager.enforce()
        except RetentionError as e:
            logger.error(f"Failed to cleanup old backups: {e}")
            manager.logs.append(f"Failed to cleanup old backups: {e}")
        return manager.logs
