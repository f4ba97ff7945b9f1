import os
import tempfile
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional


class ConfigMissing(Exception):
    """Raised when a required configuration value is absent."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(
            f"Missing required configuration: {', '.join(missing)}"
        )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


class Config:
    """Base configuration"""

    # Database (run history)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/cronvault.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Trigger authentication
    CRON_SECRET = os.environ.get('CRON_SECRET')
    TRUSTED_CRON_HEADER = os.environ.get('TRUSTED_CRON_HEADER') or 'X-Vercel-Cron'

    # MongoDB source
    MONGODB_URI = os.environ.get('MONGODB_URI')
    MONGODB_DATABASE = os.environ.get('MONGODB_DATABASE')

    # Object store source
    SOURCE_BUCKET = os.environ.get('SOURCE_BUCKET')
    SOURCE_ACCESS_KEY = os.environ.get('SOURCE_ACCESS_KEY')
    SOURCE_SECRET_KEY = os.environ.get('SOURCE_SECRET_KEY')
    SOURCE_REGION = os.environ.get('SOURCE_REGION') or 'us-east-1'
    SOURCE_ENDPOINT_URL = os.environ.get('SOURCE_ENDPOINT_URL')
    SOURCE_PUBLIC_BASE_URL = os.environ.get('SOURCE_PUBLIC_BASE_URL')

    # Durable backup store
    BACKUP_BUCKET = os.environ.get('BACKUP_BUCKET')
    BACKUP_ACCESS_KEY = os.environ.get('BACKUP_ACCESS_KEY')
    BACKUP_SECRET_KEY = os.environ.get('BACKUP_SECRET_KEY')
    BACKUP_REGION = os.environ.get('BACKUP_REGION') or 'us-east-1'
    BACKUP_ENDPOINT_URL = os.environ.get('BACKUP_ENDPOINT_URL')
    BACKUP_PUBLIC_BASE_URL = os.environ.get('BACKUP_PUBLIC_BASE_URL')
    BACKUP_PREFIX = os.environ.get('BACKUP_PREFIX') or 'backups/'

    # Pipeline tuning
    MAX_BACKUPS = _env_int('MAX_BACKUPS', 7)
    LIST_PAGE_SIZE = _env_int('LIST_PAGE_SIZE', 100)
    DOWNLOAD_MAX_ATTEMPTS = _env_int('DOWNLOAD_MAX_ATTEMPTS', 3)
    DOWNLOAD_RETRY_DELAY = _env_float('DOWNLOAD_RETRY_DELAY', 1.0)
    DOWNLOAD_WORKERS = _env_int('DOWNLOAD_WORKERS', 4)
    DOWNLOAD_TIMEOUT = _env_float('DOWNLOAD_TIMEOUT', 30.0)
    ARCHIVE_SPOOL_BYTES = _env_int('ARCHIVE_SPOOL_BYTES', 64 * 1024 * 1024)

    # Scheduler
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON') or '0 3 * * *'
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'false').lower() == 'true'
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "cronvault.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(DevelopmentConfig):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'cronvault-test-logs')
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


REQUIRED_KEYS = (
    'MONGODB_URI',
    'SOURCE_BUCKET',
    'SOURCE_ACCESS_KEY',
    'SOURCE_SECRET_KEY',
    'BACKUP_BUCKET',
    'BACKUP_ACCESS_KEY',
    'BACKUP_SECRET_KEY',
)


@dataclass(frozen=True)
class BackupSettings:
    """Typed view of the configuration values the backup pipeline needs."""

    mongodb_uri: str
    source_bucket: str
    source_access_key: str
    source_secret_key: str
    backup_bucket: str
    backup_access_key: str
    backup_secret_key: str
    mongodb_database: Optional[str] = None
    source_region: str = 'us-east-1'
    source_endpoint_url: Optional[str] = None
    source_public_base_url: Optional[str] = None
    backup_region: str = 'us-east-1'
    backup_endpoint_url: Optional[str] = None
    backup_public_base_url: Optional[str] = None
    backup_prefix: str = 'backups/'
    max_backups: int = 7
    list_page_size: int = 100
    download_max_attempts: int = 3
    download_retry_delay: float = 1.0
    download_workers: int = 4
    download_timeout: float = 30.0
    archive_spool_bytes: int = 64 * 1024 * 1024

    @classmethod
    def from_config(cls, values: Mapping[str, Any]) -> 'BackupSettings':
        """
        Build settings from a Flask config (or any mapping).

        Args:
            values: Mapping with upper-case configuration keys

        Returns:
            BackupSettings instance

        Raises:
            ConfigMissing: If any required value is absent or empty
        """
        missing = [key for key in REQUIRED_KEYS if not values.get(key)]
        if missing:
            raise ConfigMissing(missing)

        def optional(key, default=None):
            value = values.get(key)
            return default if value in (None, '') else value

        return cls(
            mongodb_uri=values['MONGODB_URI'],
            source_bucket=values['SOURCE_BUCKET'],
            source_access_key=values['SOURCE_ACCESS_KEY'],
            source_secret_key=values['SOURCE_SECRET_KEY'],
            backup_bucket=values['BACKUP_BUCKET'],
            backup_access_key=values['BACKUP_ACCESS_KEY'],
            backup_secret_key=values['BACKUP_SECRET_KEY'],
            mongodb_database=optional('MONGODB_DATABASE'),
            source_region=optional('SOURCE_REGION', 'us-east-1'),
            source_endpoint_url=optional('SOURCE_ENDPOINT_URL'),
            source_public_base_url=optional('SOURCE_PUBLIC_BASE_URL'),
            backup_region=optional('BACKUP_REGION', 'us-east-1'),
            backup_endpoint_url=optional('BACKUP_ENDPOINT_URL'),
            backup_public_base_url=optional('BACKUP_PUBLIC_BASE_URL'),
            backup_prefix=optional('BACKUP_PREFIX', 'backups/'),
            max_backups=int(optional('MAX_BACKUPS', 7)),
            list_page_size=int(optional('LIST_PAGE_SIZE', 100)),
            download_max_attempts=int(optional('DOWNLOAD_MAX_ATTEMPTS', 3)),
            download_retry_delay=float(optional('DOWNLOAD_RETRY_DELAY', 1.0)),
            download_workers=int(optional('DOWNLOAD_WORKERS', 4)),
            download_timeout=float(optional('DOWNLOAD_TIMEOUT', 30.0)),
            archive_spool_bytes=int(optional('ARCHIVE_SPOOL_BYTES', 64 * 1024 * 1024)),
        )
