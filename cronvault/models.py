import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from cronvault import db


logger = logging.getLogger(__name__)


class BackupRun(db.Model):
    """Backup run history and logs"""
    __tablename__ = 'backup_runs'

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(20), nullable=False)  # http, scheduler, cli
    status = db.Column(db.String(20), nullable=False)  # success, failed
    failed_stage = db.Column(db.String(20))
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    duration_ms = db.Column(db.Integer)
    collections_count = db.Column(db.Integer)
    documents_count = db.Column(db.Integer)
    files_count = db.Column(db.Integer)
    archive_name = db.Column(db.String(255))
    archive_size_bytes = db.Column(db.BigInteger)
    storage_url = db.Column(db.String(1000))
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    def __repr__(self):
        return f'<BackupRun id={self.id} status={self.status}>'

    @classmethod
    def from_result(cls, result, trigger: str) -> 'BackupRun':
        """
        Build a history record from a RunResult.

        Args:
            result: RunResult returned by the executor
            trigger: What started the run ('http', 'scheduler', 'cli')
        """
        completed_at = datetime.utcnow()
        duration_ms = result.duration_ms or 0

        return cls(
            trigger=trigger,
            status='success' if result.success else 'failed',
            failed_stage=result.stage,
            started_at=completed_at - timedelta(milliseconds=duration_ms),
            completed_at=completed_at,
            duration_ms=duration_ms,
            collections_count=(result.database or {}).get('collections'),
            documents_count=(result.database or {}).get('total_documents'),
            files_count=(result.files or {}).get('total_files'),
            archive_name=(result.archive or {}).get('file_name'),
            archive_size_bytes=(result.archive or {}).get('total_size'),
            storage_url=(result.backup or {}).get('url'),
            error_message=result.error,
            logs='\n'.join(result.logs)
        )

    def to_dict(self):
        return {
            'id': self.id,
            'trigger': self.trigger,
            'status': self.status,
            'failed_stage': self.failed_stage,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_ms': self.duration_ms,
            'collections': self.collections_count,
            'documents': self.documents_count,
            'files': self.files_count,
            'archive_name': self.archive_name,
            'archive_size_mb': round(self.archive_size_bytes / 1024 / 1024, 2) if self.archive_size_bytes else None,
            'storage_url': self.storage_url,
            'error_message': self.error_message
        }


def record_run(result, trigger: str) -> Optional[BackupRun]:
    """
    Persist a run to the history table.

    A failure to write history is logged and does not change the run's
    outcome.

    Returns:
        The stored BackupRun, or None if it could not be written
    """
    run = BackupRun.from_result(result, trigger)
    try:
        db.session.add(run)
        db.session.commit()
        return run
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record backup run: {e}")
        return None
