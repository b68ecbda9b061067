"""
Utility modules for the Imunia alerts service.
"""

from .logger import (
    setup_logging,
    get_logger,
    get_performance_logger,
    configure_third_party_loggers,
    set_log_level,
    get_log_stats,
    reset_logging,
    PerformanceLogger,
    LoggerSetup
)

from .error_handler import (
    initialize_error_handler,
    get_error_handler,
    reset_error_handler,
    report_error,
    handle_errors,
    GlobalErrorHandler,
    ErrorSeverity,
    HealthStatus,
    ErrorReport
)

from .scheduler import (
    JobScheduler,
    JobConfig,
    JobStatus,
    JobExecution,
    create_notification_scheduler
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_performance_logger',
    'configure_third_party_loggers',
    'set_log_level',
    'get_log_stats',
    'reset_logging',
    'PerformanceLogger',
    'LoggerSetup',
    'initialize_error_handler',
    'get_error_handler',
    'reset_error_handler',
    'report_error',
    'handle_errors',
    'GlobalErrorHandler',
    'ErrorSeverity',
    'HealthStatus',
    'ErrorReport',
    'JobScheduler',
    'JobConfig',
    'JobStatus',
    'JobExecution',
    'create_notification_scheduler'
]
