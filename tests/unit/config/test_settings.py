"""
Unit tests for settings.
"""

import pytest
from unittest.mock import patch
from pydantic import ValidationError

from imunia_alerts.config.settings import (
    Settings,
    Environment,
    NotificationConfig,
    ScheduleConfig,
    StockScanConfig,
    AppointmentScanConfig,
    DatabaseConfig,
    LoggingConfig,
    load_settings,
)


class TestNotificationConfig:
    """Test notification transport configuration."""

    def test_defaults_without_credentials(self):
        """Missing credentials leave both transports unconfigured."""
        with patch.dict('os.environ', {}, clear=True):
            config = NotificationConfig()

        assert config.whatsapp_enabled is True
        assert config.has_twilio_config is False
        assert config.has_mailgun_config is False
        assert config.whatsapp_configured is False
        assert config.email_configured is False
        assert config.twilio_whatsapp_from == "whatsapp:+14155238886"
        assert config.default_country_code == "221"

    def test_credentials_from_environment(self):
        """Twilio and Mailgun variables are read without prefix."""
        env = {
            'TWILIO_ACCOUNT_SID': 'AC123',
            'TWILIO_AUTH_TOKEN': 'secret',
            'MAILGUN_API_KEY': 'key-123',
            'MAILGUN_DOMAIN': 'mg.imunia.sn',
            'EMAIL_FROM': 'alerts@imunia.sn',
        }
        with patch.dict('os.environ', env, clear=True):
            config = NotificationConfig()

        assert config.twilio_account_sid == 'AC123'
        assert config.whatsapp_configured is True
        assert config.email_configured is True

    def test_disabled_channel_is_not_configured(self):
        """A channel switched off stays unconfigured even with credentials."""
        config = NotificationConfig(
            whatsapp_enabled=False,
            twilio_account_sid='AC123',
            twilio_auth_token='secret'
        )

        assert config.has_twilio_config is True
        assert config.whatsapp_configured is False

    def test_blank_credentials_are_missing(self):
        config = NotificationConfig(twilio_account_sid='  ', twilio_auth_token='secret')
        assert config.has_twilio_config is False

    def test_max_retries_must_be_positive(self):
        with pytest.raises(ValidationError):
            NotificationConfig(max_retries=0)


class TestScheduleConfig:
    """Test cron trigger configuration."""

    def test_defaults(self):
        with patch.dict('os.environ', {}, clear=True):
            config = ScheduleConfig()

        assert config.stock_check_cron == "0 8 * * *"
        assert config.appointment_check_cron == "0 * * * *"
        assert config.timezone == "Africa/Dakar"
        assert config.enabled is True

    def test_cron_from_environment(self):
        """Cron expressions come from STOCK_CHECK_CRON and APPOINTMENT_CHECK_CRON."""
        env = {'STOCK_CHECK_CRON': '30 6 * * 1-5', 'APPOINTMENT_CHECK_CRON': '*/15 * * * *'}
        with patch.dict('os.environ', env, clear=True):
            config = ScheduleConfig()

        assert config.stock_check_cron == '30 6 * * 1-5'
        assert config.appointment_check_cron == '*/15 * * * *'

    def test_invalid_cron_rejected(self):
        with pytest.raises(ValidationError, match="Invalid cron expression"):
            ScheduleConfig(stock_check_cron="every morning")

    def test_invalid_timezone_rejected(self):
        with pytest.raises(ValidationError, match="Invalid timezone"):
            ScheduleConfig(timezone="Mars/Olympus")


class TestScanConfigs:
    """Test scanner configuration."""

    def test_threshold_days_sorted_and_unique(self):
        config = StockScanConfig(thresholds="7, 30,1,7")
        assert config.threshold_days == [1, 7, 30]

    def test_thresholds_must_be_integers(self):
        with pytest.raises(ValidationError):
            StockScanConfig(thresholds="30,two")

    def test_lookahead_must_be_positive(self):
        with pytest.raises(ValidationError):
            StockScanConfig(lookahead_days=0)

    def test_appointment_window_defaults(self):
        with patch.dict('os.environ', {}, clear=True):
            config = AppointmentScanConfig()

        assert config.window_start_hours == 0
        assert config.window_end_hours == 72
        assert config.include_overdue is True

    def test_appointment_window_must_be_ordered(self):
        with pytest.raises(ValidationError):
            AppointmentScanConfig(window_start_hours=48, window_end_hours=24)


class TestSettings:
    """Test root settings."""

    def test_production_rejects_debug(self):
        with pytest.raises(ValidationError, match="Debug mode"):
            Settings(environment="production", debug=True)

    def test_production_rejects_in_memory_database(self):
        with pytest.raises(ValidationError, match="persistent database"):
            Settings(environment="production", database=DatabaseConfig(url="sqlite:///:memory:"))

    def test_environment_is_case_insensitive(self):
        settings = Settings(environment="TESTING")
        assert settings.environment == Environment.TESTING
        assert settings.is_testing is True

    def test_to_dict_masks_secrets(self):
        settings = Settings(
            notifications=NotificationConfig(twilio_account_sid='AC123', twilio_auth_token='secret'),
            database=DatabaseConfig(url="postgresql://user:pw@db/imunia")
        )

        data = settings.to_dict()

        assert data['notifications']['twilio_auth_token'] == '***MASKED***'
        assert data['database']['url'] == '***MASKED***'
        assert data['notifications']['twilio_account_sid'] == 'AC123'

    def test_create_directories(self, tmp_path):
        settings = Settings(
            logging=LoggingConfig(log_file=str(tmp_path / "logs" / "alerts.log")),
            database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'data' / 'alerts.db'}")
        )

        settings.create_directories()

        assert (tmp_path / "logs").is_dir()
        assert (tmp_path / "data").is_dir()

    def test_load_settings_missing_env_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "missing.env"))

    def test_load_settings_from_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / "test.env"
        env_file.write_text(
            "STOCK_SCAN_LOOKAHEAD_DAYS=45\n"
            f"LOG_LOG_FILE={tmp_path / 'logs' / 'alerts.log'}\n"
            f"DATABASE_URL=sqlite:///{tmp_path / 'alerts.db'}\n"
        )
        # Registered so the values loaded from the file are undone afterwards
        for name in ('STOCK_SCAN_LOOKAHEAD_DAYS', 'LOG_LOG_FILE', 'DATABASE_URL'):
            monkeypatch.setenv(name, '')
        monkeypatch.chdir(tmp_path)

        settings = load_settings(str(env_file))

        assert settings.stock_scan.lookahead_days == 45
        assert settings.database.url.endswith("alerts.db")
