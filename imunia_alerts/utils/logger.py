"""
Logging setup for the alert service.

Console and rotating-file handlers with either a readable line format or
JSON lines, plus optional syslog and structlog configuration.
"""

import os
import sys
import logging
import logging.handlers
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, Any

import structlog
from pythonjsonlogger import jsonlogger


ROOT_LOGGER_NAME = "imunia_alerts"


class PerformanceLogger:
    """Logger for timing operations."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @contextmanager
    def timer(self, operation: str, **kwargs):
        """Context manager logging the duration of the enclosed block."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self.logger.info(
                f"{operation} took {duration:.3f}s",
                extra={"operation": operation, "duration_seconds": round(duration, 4), **kwargs}
            )


class StructuredFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting one object per line."""

    def __init__(self, include_extra: bool = True):
        super().__init__(
            fmt='%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'name': 'logger', 'asctime': 'timestamp'},
            json_default=str
        )
        self.include_extra = include_extra

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno

        if not self.include_extra:
            for key in list(log_record.keys()):
                if key not in ('timestamp', 'level', 'logger', 'message', 'module', 'function', 'line', 'exc_info'):
                    log_record.pop(key)


class MultiLineFormatter(logging.Formatter):
    """Formatter appending scan context to human-readable lines."""

    CONTEXT_FIELDS = (
        ('job_id', 'Job'),
        ('job', 'Job'),
        ('lot_id', 'Lot'),
        ('appointment_id', 'Appointment'),
        ('bucket', 'Bucket'),
        ('channel', 'Channel'),
        ('duration_seconds', 'Duration'),
    )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        extra_info = []
        seen = set()
        for attribute, label in self.CONTEXT_FIELDS:
            value = getattr(record, attribute, None)
            if value is not None and label not in seen:
                extra_info.append(f"{label}: {value}")
                seen.add(label)

        if extra_info:
            formatted += f" | {' | '.join(extra_info)}"

        return formatted


class LoggerSetup:
    """Main logger setup and configuration."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize logger setup.

        Args:
            config: Configuration dictionary, read from the environment if None
        """
        self.config = config or self._load_config_from_env()
        self.performance_loggers: Dict[str, PerformanceLogger] = {}
        self._setup_complete = False

    def setup_logging(self) -> logging.Logger:
        """
        Install handlers on the application logger.

        Returns:
            Main application logger
        """
        main_logger = logging.getLogger(ROOT_LOGGER_NAME)
        if self._setup_complete:
            return main_logger

        level = getattr(logging, self.config['level'])
        main_logger.setLevel(level)
        main_logger.handlers.clear()

        if self.config.get('enable_file_logging', True):
            self._setup_file_logging(main_logger)

        if self.config.get('enable_console_logging', True):
            self._setup_console_logging(main_logger)

        if self.config.get('syslog_enabled', False):
            self._setup_syslog_logging(main_logger)

        if self.config.get('enable_json_logging', False):
            self._setup_structured_logging()

        self.configure_third_party_loggers()
        self._setup_complete = True

        main_logger.info(
            "Logging system initialized",
            extra={"log_level": self.config['level'], "log_file": self.config.get('log_file')}
        )

        return main_logger

    def get_logger(self, name: str) -> logging.Logger:
        """
        Get a logger for a specific component.

        Args:
            name: Component name

        Returns:
            Logger under the application namespace
        """
        if name.startswith(ROOT_LOGGER_NAME):
            return logging.getLogger(name)
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    def get_performance_logger(self, name: str = 'main') -> PerformanceLogger:
        """Get performance logger for a component."""
        if name not in self.performance_loggers:
            self.performance_loggers[name] = PerformanceLogger(self.get_logger(name))
        return self.performance_loggers[name]

    def _setup_file_logging(self, logger: logging.Logger):
        """Setup rotating file logging."""
        log_file = self.config.get('log_file', 'logs/imunia_alerts.log')

        log_dir = os.path.dirname(log_file)
        if log_dir:
            Path(log_dir).mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.config.get('max_bytes', 10 * 1024 * 1024),
            backupCount=self.config.get('backup_count', 5),
            encoding='utf-8'
        )

        if self.config.get('enable_json_logging', False):
            formatter = StructuredFormatter(include_extra=self.config.get('include_extra_fields', True))
        else:
            formatter = MultiLineFormatter(
                fmt=self.config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        file_handler.setFormatter(formatter)
        file_handler.setLevel(getattr(logging, self.config['level']))
        logger.addHandler(file_handler)

    def _setup_console_logging(self, logger: logging.Logger):
        """Setup console logging."""
        console_handler = logging.StreamHandler(sys.stdout)
        console_level = self.config.get('console_level', self.config['level'])
        console_handler.setLevel(getattr(logging, console_level))

        if self.config.get('enable_json_logging', False):
            formatter = StructuredFormatter(include_extra=False)
        else:
            formatter = MultiLineFormatter(
                fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%H:%M:%S'
            )

        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    def _setup_syslog_logging(self, logger: logging.Logger):
        """Setup syslog logging for production environments."""
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=(self.config.get('syslog_host', 'localhost'), self.config.get('syslog_port', 514)),
                facility=logging.handlers.SysLogHandler.LOG_LOCAL0
            )
        except OSError as e:
            logger.warning(f"Failed to setup syslog logging: {e}")
            return

        syslog_handler.setFormatter(StructuredFormatter(include_extra=True))
        syslog_handler.setLevel(getattr(logging, self.config['level']))
        logger.addHandler(syslog_handler)

    def _setup_structured_logging(self):
        """Route structlog loggers through the standard logging handlers."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _load_config_from_env(self) -> Dict[str, Any]:
        """Load logging configuration from environment variables."""
        return {
            'level': os.getenv('LOG_LEVEL', 'INFO').upper(),
            'format': os.getenv('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            'enable_file_logging': os.getenv('LOG_ENABLE_FILE_LOGGING', 'true').lower() == 'true',
            'log_file': os.getenv('LOG_LOG_FILE', 'logs/imunia_alerts.log'),
            'max_bytes': int(os.getenv('LOG_MAX_BYTES', str(10 * 1024 * 1024))),
            'backup_count': int(os.getenv('LOG_BACKUP_COUNT', '5')),
            'enable_console_logging': os.getenv('LOG_ENABLE_CONSOLE_LOGGING', 'true').lower() == 'true',
            'console_level': os.getenv('LOG_CONSOLE_LEVEL', 'INFO').upper(),
            'enable_json_logging': os.getenv('LOG_ENABLE_JSON_LOGGING', 'false').lower() == 'true',
            'include_extra_fields': os.getenv('LOG_INCLUDE_EXTRA_FIELDS', 'true').lower() == 'true',
            'syslog_enabled': os.getenv('LOG_SYSLOG_ENABLED', 'false').lower() == 'true',
            'syslog_host': os.getenv('LOG_SYSLOG_HOST', 'localhost'),
            'syslog_port': int(os.getenv('LOG_SYSLOG_PORT', '514')),
        }

    def configure_third_party_loggers(self):
        """Reduce verbosity of third-party libraries."""
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)
        logging.getLogger('twilio').setLevel(logging.WARNING)
        logging.getLogger('apscheduler').setLevel(logging.INFO)
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    def set_log_level(self, level: str):
        """Dynamically change log level."""
        log_level = getattr(logging, level.upper())

        main_logger = logging.getLogger(ROOT_LOGGER_NAME)
        main_logger.setLevel(log_level)
        for handler in main_logger.handlers:
            handler.setLevel(log_level)

        self.config['level'] = level.upper()

    def get_log_stats(self) -> Dict[str, Any]:
        """Get logging system statistics."""
        stats = {'handlers': [], 'level': self.config['level']}

        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler_info = {
                'type': type(handler).__name__,
                'level': logging.getLevelName(handler.level)
            }
            if hasattr(handler, 'baseFilename'):
                handler_info['file'] = handler.baseFilename
                if os.path.exists(handler.baseFilename):
                    handler_info['file_size'] = os.path.getsize(handler.baseFilename)
            stats['handlers'].append(handler_info)

        return stats


_logger_setup: Optional[LoggerSetup] = None


def setup_logging(config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Setup application logging.

    Args:
        config: Optional logging configuration

    Returns:
        Main application logger
    """
    global _logger_setup

    if _logger_setup is None:
        _logger_setup = LoggerSetup(config)

    return _logger_setup.setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific component."""
    if _logger_setup is None:
        setup_logging()

    return _logger_setup.get_logger(name)


def get_performance_logger(name: str = 'main') -> PerformanceLogger:
    """Get performance logger."""
    if _logger_setup is None:
        setup_logging()

    return _logger_setup.get_performance_logger(name)


def configure_third_party_loggers():
    """Configure third-party library loggers."""
    if _logger_setup is None:
        setup_logging()

    _logger_setup.configure_third_party_loggers()


def set_log_level(level: str):
    """Set global log level."""
    if _logger_setup is None:
        setup_logging()

    _logger_setup.set_log_level(level)


def get_log_stats() -> Dict[str, Any]:
    """Get logging system statistics."""
    if _logger_setup is None:
        return {}

    return _logger_setup.get_log_stats()


def reset_logging():
    """Remove installed handlers and forget the current setup."""
    global _logger_setup

    main_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(main_logger.handlers):
        main_logger.removeHandler(handler)
        handler.close()
    _logger_setup = None
