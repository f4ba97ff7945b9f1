"""
Unit tests for configuration (cronvault/config.py).
"""

import pytest

from cronvault.config import REQUIRED_KEYS, BackupSettings, ConfigMissing, config


class TestBackupSettings:

    def test_from_config_complete(self, backup_config):
        settings = BackupSettings.from_config(backup_config)

        assert settings.mongodb_uri == 'mongodb://localhost:27017/app'
        assert settings.source_bucket == 'source-bucket'
        assert settings.backup_bucket == 'backup-bucket'
        assert settings.backup_prefix == 'backups/'
        assert settings.max_backups == 7
        assert settings.download_max_attempts == 2
        assert settings.download_retry_delay == 0.0

    def test_defaults_for_optional_values(self):
        values = {key: 'value' for key in REQUIRED_KEYS}

        settings = BackupSettings.from_config(values)

        assert settings.mongodb_database is None
        assert settings.source_region == 'us-east-1'
        assert settings.backup_endpoint_url is None
        assert settings.backup_prefix == 'backups/'
        assert settings.max_backups == 7
        assert settings.list_page_size == 100
        assert settings.download_max_attempts == 3
        assert settings.download_retry_delay == 1.0

    def test_empty_optional_value_uses_default(self):
        values = {key: 'value' for key in REQUIRED_KEYS}
        values['MAX_BACKUPS'] = ''
        values['BACKUP_PREFIX'] = ''

        settings = BackupSettings.from_config(values)

        assert settings.max_backups == 7
        assert settings.backup_prefix == 'backups/'

    def test_numeric_strings_are_converted(self):
        values = {key: 'value' for key in REQUIRED_KEYS}
        values['MAX_BACKUPS'] = '3'
        values['DOWNLOAD_RETRY_DELAY'] = '0.25'

        settings = BackupSettings.from_config(values)

        assert settings.max_backups == 3
        assert settings.download_retry_delay == 0.25

    @pytest.mark.parametrize('key', REQUIRED_KEYS)
    def test_missing_required_value(self, backup_config, key):
        del backup_config[key]

        with pytest.raises(ConfigMissing) as exc_info:
            BackupSettings.from_config(backup_config)

        assert exc_info.value.missing == [key]
        assert key in str(exc_info.value)

    def test_all_missing_values_are_named(self):
        with pytest.raises(ConfigMissing) as exc_info:
            BackupSettings.from_config({'MONGODB_URI': ''})

        assert exc_info.value.missing == list(REQUIRED_KEYS)
        assert str(exc_info.value).startswith('Missing required configuration: MONGODB_URI')


class TestConfigClasses:

    def test_testing_config(self):
        testing = config['testing']

        assert testing.TESTING is True
        assert testing.SQLALCHEMY_DATABASE_URI == 'sqlite:///:memory:'
        assert testing.SCHEDULER_ENABLED is False

    def test_default_is_production(self):
        assert config['default'] is config['production']
        assert config['production'].DEBUG is False

    def test_schedule_default(self):
        assert config['production'].BACKUP_SCHEDULE_CRON
        assert config['production'].TRUSTED_CRON_HEADER
