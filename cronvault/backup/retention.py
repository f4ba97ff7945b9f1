"""
Retention policy enforcement for backups.

Keeps the newest N archives in the backup store. Archive names are
date-stamped (backup-YYYY-MM-DD.zip), so sorting by file name sorts by age.
"""

import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from .compression import ARCHIVE_EXTENSION
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 7


class RetentionError(Exception):
    """Raised when old backups cannot be listed."""
    pass


@dataclass
class RetainedBackupEntry:
    """An archive already present in the backup store."""
    identifier: str
    file_name: str
    size_bytes: int
    storage_url: str


class RetentionManager:
    """
    Deletes the oldest archives beyond the configured maximum.
    """

    def __init__(self, storage: S3Storage, prefix: str = 'backups/', max_backups: int = DEFAULT_MAX_BACKUPS):
        """
        Initialize retention manager.

        Args:
            storage: Storage handler for the backup bucket
            prefix: Key prefix archives are stored under
            max_backups: Number of archives to keep
        """
        self.storage = storage
        self.prefix = prefix
        self.max_backups = max(0, max_backups)
        self.logs = []

    def list_backups(self) -> List[RetainedBackupEntry]:
        """
        List archives in the backup store, newest first.

        Raises:
            RetentionError: If listing fails
        """
        try:
            objects = self.storage.list_objects(prefix=self.prefix)
        except StorageError as e:
            raise RetentionError(f"Failed to list backups: {e}")

        entries = [
            RetainedBackupEntry(
                identifier=obj['Key'],
                file_name=posixpath.basename(obj['Key']),
                size_bytes=obj['Size'],
                storage_url=self.storage.object_url(obj['Key'])
            )
            for obj in objects
            if obj['Key'].endswith(ARCHIVE_EXTENSION)
        ]

        entries.sort(key=lambda entry: entry.file_name, reverse=True)
        return entries

    def enforce(self) -> Dict[str, Any]:
        """
        Delete every archive past the newest max_backups.

        A failed delete is logged and the remaining deletes still run.

        Returns:
            Dict with 'kept', 'deleted' and 'errors'

        Raises:
            RetentionError: If the archives cannot be listed
        """
        backups = self.list_backups()
        to_delete = backups[self.max_backups:]

        summary = {
            'kept': len(backups) - len(to_delete),
            'deleted': 0,
            'errors': []
        }

        for entry in to_delete:
            try:
                self.storage.delete(entry.identifier)
                summary['deleted'] += 1
                self._log(f"Deleted old backup: {entry.file_name}")
            except StorageError as e:
                error_msg = f"Failed to delete old backup {entry.file_name}: {e}"
                self._log(error_msg)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention enforcement complete. "
            f"Kept: {summary['kept']}, "
            f"Deleted: {summary['deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
