"""
Configuration management for the Imunia alerts service.

Handles environment variables, validation and the different deployment
environments. Each concern is a pydantic-settings model with its own
environment prefix; the root ``Settings`` object aggregates them.
"""

import os
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any
from enum import Enum

import pytz
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Deployment environment types."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _validate_cron(value: str) -> str:
    value = value.strip()
    try:
        CronTrigger.from_crontab(value, timezone=pytz.utc)
    except ValueError as e:
        raise ValueError(f"Invalid cron expression '{value}': {e}")
    return value


class NotificationConfig(BaseSettings):
    """Notification transport configuration.

    Missing credentials never fail validation: a transport without
    credentials is simply unavailable and the gateway answers with
    simulated results.
    """

    # WhatsApp (Twilio) settings
    whatsapp_enabled: bool = Field(True, description="Enable WhatsApp notifications")
    twilio_account_sid: Optional[str] = Field(None, description="Twilio account SID", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(None, description="Twilio auth token", alias="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_from: str = Field(
        "whatsapp:+14155238886", description="Twilio WhatsApp sender number", alias="TWILIO_WHATSAPP_FROM"
    )
    default_country_code: str = Field("221", description="Country code used to normalize national numbers")

    # Email (Mailgun) settings
    email_enabled: bool = Field(True, description="Enable email notifications")
    mailgun_api_key: Optional[str] = Field(None, description="Mailgun API key", alias="MAILGUN_API_KEY")
    mailgun_domain: Optional[str] = Field(None, description="Mailgun domain", alias="MAILGUN_DOMAIN")
    email_from: Optional[str] = Field(None, description="From email address", alias="EMAIL_FROM")
    email_from_name: str = Field("Imunia", description="From name", alias="EMAIL_FROM_NAME")

    # Delivery behavior
    max_retries: int = Field(2, description="Maximum attempts per channel")
    retry_delay_seconds: float = Field(5.0, description="Delay between attempts")
    enable_fallback: bool = Field(True, description="Fall back to email when WhatsApp fails")

    # Circuit breaker settings
    whatsapp_failure_threshold: int = Field(3, description="WhatsApp circuit breaker failure threshold")
    whatsapp_timeout_seconds: int = Field(300, description="WhatsApp circuit breaker timeout")
    email_failure_threshold: int = Field(5, description="Email circuit breaker failure threshold")
    email_timeout_seconds: int = Field(180, description="Email circuit breaker timeout")

    @field_validator('max_retries')
    def max_retries_must_be_positive(cls, v):
        if v < 1:
            raise ValueError('max_retries must be at least 1')
        return v

    @field_validator('retry_delay_seconds')
    def retry_delay_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('retry_delay_seconds cannot be negative')
        return v

    @model_validator(mode='after')
    def warn_on_missing_transports(self):
        """Log which transports will run in simulated mode."""
        if self.whatsapp_enabled and not self.has_twilio_config:
            logger.warning("WhatsApp enabled but Twilio credentials are missing - WhatsApp will be simulated")
        if self.email_enabled and not self.has_mailgun_config:
            logger.warning("Email enabled but Mailgun credentials are missing - email will be simulated")
        return self

    @property
    def has_twilio_config(self) -> bool:
        """Check if Twilio credentials are present."""
        return bool(
            self.twilio_account_sid and self.twilio_account_sid.strip() and
            self.twilio_auth_token and self.twilio_auth_token.strip()
        )

    @property
    def has_mailgun_config(self) -> bool:
        """Check if Mailgun credentials and sender are present."""
        return bool(
            self.mailgun_api_key and self.mailgun_api_key.strip() and
            self.mailgun_domain and self.mailgun_domain.strip() and
            self.email_from and self.email_from.strip()
        )

    @property
    def whatsapp_configured(self) -> bool:
        return self.whatsapp_enabled and self.has_twilio_config

    @property
    def email_configured(self) -> bool:
        return self.email_enabled and self.has_mailgun_config

    model_config = {"env_prefix": "NOTIFICATION_", "populate_by_name": True}


class ScheduleConfig(BaseSettings):
    """Cron triggers for the two periodic jobs."""

    enabled: bool = Field(True, description="Enable the periodic scheduler")
    stock_check_cron: str = Field(
        "0 8 * * *", description="Cron expression for the stock expiration scan", alias="STOCK_CHECK_CRON"
    )
    appointment_check_cron: str = Field(
        "0 * * * *", description="Cron expression for the appointment reminder scan", alias="APPOINTMENT_CHECK_CRON"
    )
    timezone: str = Field("Africa/Dakar", description="Timezone used to evaluate cron expressions")
    max_workers: int = Field(2, description="Scheduler thread pool size")
    misfire_grace_time: int = Field(300, description="Seconds a late firing is still executed")

    @field_validator('stock_check_cron', 'appointment_check_cron')
    def validate_cron_expression(cls, v):
        """Validate cron expression format."""
        return _validate_cron(v)

    @field_validator('timezone')
    def validate_timezone(cls, v):
        """Validate timezone."""
        try:
            pytz.timezone(v)
            return v
        except pytz.UnknownTimeZoneError:
            raise ValueError(f'Invalid timezone: {v}')

    model_config = {"env_prefix": "SCHEDULE_", "populate_by_name": True}


class StockScanConfig(BaseSettings):
    """Stock expiration scan configuration."""

    lookahead_days: int = Field(30, description="Alert on lots expiring within this many days")
    thresholds: str = Field("30,14,7,3,1", description="Comma-separated alert thresholds in days")

    @field_validator('lookahead_days')
    def lookahead_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('lookahead_days must be positive')
        return v

    @field_validator('thresholds')
    def validate_thresholds(cls, v):
        try:
            values = [int(part) for part in v.split(',') if part.strip()]
        except ValueError:
            raise ValueError(f'Thresholds must be comma-separated integers: {v}')
        if any(value <= 0 for value in values):
            raise ValueError('Thresholds must be positive')
        return v

    @property
    def threshold_days(self) -> List[int]:
        """Thresholds as a sorted list of distinct day counts."""
        return sorted({int(part) for part in self.thresholds.split(',') if part.strip()})

    model_config = {"env_prefix": "STOCK_SCAN_"}


class AppointmentScanConfig(BaseSettings):
    """Appointment reminder scan configuration."""

    window_start_hours: int = Field(0, description="Reminder window start, hours from now")
    window_end_hours: int = Field(72, description="Reminder window end, hours from now")
    include_overdue: bool = Field(True, description="Also remind newly overdue appointments")
    overdue_lookback_hours: int = Field(24, description="How far back an appointment counts as newly overdue")

    @model_validator(mode='after')
    def validate_window(self):
        if self.window_start_hours < 0:
            raise ValueError('window_start_hours cannot be negative')
        if self.window_end_hours <= self.window_start_hours:
            raise ValueError('window_end_hours must be greater than window_start_hours')
        if self.overdue_lookback_hours < 0:
            raise ValueError('overdue_lookback_hours cannot be negative')
        return self

    model_config = {"env_prefix": "APPOINTMENT_SCAN_"}


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    url: str = Field("sqlite:///data/imunia_alerts.db", description="SQLAlchemy database URL")
    echo: bool = Field(False, description="Echo SQL statements")

    model_config = {"env_prefix": "DATABASE_"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Default log level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    # File logging
    enable_file_logging: bool = Field(True, description="Enable file logging")
    log_file: str = Field("logs/imunia_alerts.log", description="Log file path")
    max_bytes: int = Field(10 * 1024 * 1024, description="Maximum log file size in bytes")
    backup_count: int = Field(5, description="Number of backup log files")

    # Console logging
    enable_console_logging: bool = Field(True, description="Enable console logging")
    console_level: LogLevel = Field(LogLevel.INFO, description="Console log level")

    # Structured logging
    enable_json_logging: bool = Field(False, description="Enable JSON structured logging")
    include_extra_fields: bool = Field(True, description="Include extra fields in logs")

    # External logging (for production)
    syslog_enabled: bool = Field(False, description="Enable syslog")
    syslog_host: Optional[str] = Field(None, description="Syslog host")
    syslog_port: int = Field(514, description="Syslog port")

    def to_logger_config(self) -> Dict[str, Any]:
        """Convert to the dictionary consumed by ``LoggerSetup``."""
        return {
            'level': self.level.value,
            'format': self.format,
            'enable_file_logging': self.enable_file_logging,
            'log_file': self.log_file,
            'max_bytes': self.max_bytes,
            'backup_count': self.backup_count,
            'enable_console_logging': self.enable_console_logging,
            'console_level': self.console_level.value,
            'enable_json_logging': self.enable_json_logging,
            'include_extra_fields': self.include_extra_fields,
            'syslog_enabled': self.syslog_enabled,
            'syslog_host': self.syslog_host or 'localhost',
            'syslog_port': self.syslog_port,
        }

    model_config = {"env_prefix": "LOG_"}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Enable debug mode")
    app_name: str = Field("Imunia Alerts", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")

    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    stock_scan: StockScanConfig = Field(default_factory=StockScanConfig)
    appointment_scan: AppointmentScanConfig = Field(default_factory=AppointmentScanConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment', mode='before')
    def validate_environment(cls, v):
        """Validate and normalize environment."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                raise ValueError(f'Invalid environment: {v}. Must be one of: {list(Environment)}')
        return v

    @model_validator(mode='after')
    def validate_environment_settings(self):
        """Apply environment-specific validation."""
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError('Debug mode cannot be enabled in production')
            if self.database.url.startswith('sqlite:///:memory:'):
                raise ValueError('Production environment requires a persistent database')
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING

    def create_directories(self):
        """Create the log directory and the SQLite data directory if needed."""
        directories = []
        if self.logging.enable_file_logging:
            directories.append(os.path.dirname(self.logging.log_file))
        if self.database.url.startswith('sqlite:///') and ':memory:' not in self.database.url:
            directories.append(os.path.dirname(self.database.url[len('sqlite:///'):]))

        for directory in directories:
            if directory:
                Path(directory).mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary with secrets masked."""
        sensitive_fields = [
            'notifications.twilio_auth_token',
            'notifications.mailgun_api_key',
            'database.url'
        ]

        data = self.model_dump(mode='json')

        for field_path in sensitive_fields:
            section, key = field_path.split('.')
            if data.get(section, {}).get(key):
                data[section][key] = '***MASKED***'

        return data

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load application settings from environment variables and .env file.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ValueError: If configuration is invalid
        FileNotFoundError: If the given env file does not exist
    """
    if env_file:
        if not os.path.exists(env_file):
            raise FileNotFoundError(f"Environment file not found: {env_file}")
        load_dotenv(env_file, override=True)
    else:
        for possible_env_file in [".env", ".env.local", f".env.{os.getenv('ENVIRONMENT', 'development')}"]:
            if os.path.exists(possible_env_file):
                load_dotenv(possible_env_file, override=False)

    try:
        settings = Settings()
    except Exception as e:
        logger.error(f"Error loading settings: {e}")
        raise

    settings.create_directories()
    return settings


def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance
    """
    if not hasattr(get_settings, '_cached_settings'):
        get_settings._cached_settings = load_settings()

    return get_settings._cached_settings


def reload_settings() -> Settings:
    """
    Reload settings (clears cache).

    Returns:
        Fresh Settings instance
    """
    if hasattr(get_settings, '_cached_settings'):
        delattr(get_settings, '_cached_settings')

    return get_settings()
