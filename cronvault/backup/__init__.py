"""
Backup module for cronvault.

This module handles the core backup pipeline:
- Sources (MongoDB snapshot, object store collection)
- Compression (zip archive with manifest)
- Storage (S3-compatible buckets)
- Publishing and retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, RunResult, run_backup
from .sources import MongoSource, BlobSource
from .compression import ArchiveComposer
from .storage import S3Storage
from .publisher import BackupPublisher
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'RunResult',
    'run_backup',
    'MongoSource',
    'BlobSource',
    'ArchiveComposer',
    'S3Storage',
    'BackupPublisher',
    'RetentionManager'
]
