"""
Global error reporting for the alert service.

Collects error reports from the scan jobs and the scheduler so that the
daemon can expose a recent-error summary and a coarse health status.
"""

import sys
import threading
import traceback
import functools
from typing import Dict, Any, Optional, Callable, List
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
import logging


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HealthStatus(str, Enum):
    """System health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ErrorReport:
    """Error report structure."""
    timestamp: datetime
    error_type: str
    error_message: str
    severity: ErrorSeverity
    component: str
    stack_trace: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'timestamp': self.timestamp.isoformat(),
            'error_type': self.error_type,
            'error_message': self.error_message,
            'severity': self.severity.value,
            'component': self.component,
            'stack_trace': self.stack_trace,
            'context': self.context
        }


class GlobalErrorHandler:
    """Thread-safe store of error reports with per-severity and per-component counts."""

    def __init__(self, logger: Optional[logging.Logger] = None, install_excepthook: bool = False):
        """
        Initialize global error handler.

        Args:
            logger: Logger instance
            install_excepthook: Report uncaught exceptions through ``sys.excepthook``
        """
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = datetime.now()

        self.error_reports: List[ErrorReport] = []
        self.error_counts = {
            'total': 0,
            'by_severity': {severity.value: 0 for severity in ErrorSeverity},
            'by_component': {}
        }

        self._lock = threading.Lock()

        if install_excepthook:
            self._install_global_handler()

        self.logger.debug("Global error handler initialized")

    def report_error(self,
                     error: Exception,
                     component: str,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                     context: Optional[Dict[str, Any]] = None) -> ErrorReport:
        """
        Report an error to the global handler.

        Args:
            error: The exception that occurred
            component: Component where error occurred
            severity: Error severity level
            context: Additional context information

        Returns:
            ErrorReport instance
        """
        stack_trace = None
        if error.__traceback__ is not None:
            stack_trace = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        error_report = ErrorReport(
            timestamp=datetime.now(),
            error_type=type(error).__name__,
            error_message=str(error),
            severity=severity,
            component=component,
            stack_trace=stack_trace,
            context=context or {}
        )

        with self._lock:
            self.error_reports.append(error_report)
            self.error_counts['total'] += 1
            self.error_counts['by_severity'][severity.value] += 1
            by_component = self.error_counts['by_component']
            by_component[component] = by_component.get(component, 0) + 1

        self.logger.log(
            self._get_log_level_for_severity(severity),
            f"Error in {component}: {error_report.error_message}",
            extra={
                'component': component,
                'error_type': error_report.error_type,
                'severity': severity.value,
                'context': context
            }
        )

        return error_report

    def get_error_summary(self, hours: int = 24) -> Dict[str, Any]:
        """
        Get error summary for the specified time period.

        Args:
            hours: Number of hours to look back

        Returns:
            Error summary dictionary
        """
        cutoff_time = datetime.now() - timedelta(hours=hours)

        with self._lock:
            recent_errors = [error for error in self.error_reports if error.timestamp > cutoff_time]

        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_component: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for error in recent_errors:
            by_severity[error.severity.value] += 1
            by_component[error.component] = by_component.get(error.component, 0) + 1
            by_type[error.error_type] = by_type.get(error.error_type, 0) + 1

        return {
            'total_errors': len(recent_errors),
            'by_severity': by_severity,
            'by_component': by_component,
            'by_type': by_type,
            'recent_errors': [error.to_dict() for error in recent_errors[-10:]]
        }

    def get_health_status(self, hours: int = 1) -> HealthStatus:
        """Coarse health status from the errors of the last ``hours``."""
        summary = self.get_error_summary(hours)
        severe = summary['by_severity'][ErrorSeverity.HIGH.value] + summary['by_severity'][ErrorSeverity.CRITICAL.value]

        if summary['by_severity'][ErrorSeverity.CRITICAL.value] > 0 or severe > 5:
            return HealthStatus.UNHEALTHY
        if severe > 0 or summary['total_errors'] > 10:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def cleanup_old_data(self, days: int = 7):
        """
        Clean up old error reports.

        Args:
            days: Number of days to keep data
        """
        cutoff_time = datetime.now() - timedelta(days=days)

        with self._lock:
            original_count = len(self.error_reports)
            self.error_reports = [error for error in self.error_reports if error.timestamp > cutoff_time]
            removed = original_count - len(self.error_reports)

        if removed > 0:
            self.logger.info(f"Cleaned up {removed} old error reports")

    def _install_global_handler(self):
        """Install global exception handler."""
        def handle_exception(exc_type, exc_value, exc_traceback):
            if issubclass(exc_type, KeyboardInterrupt):
                sys.__excepthook__(exc_type, exc_value, exc_traceback)
                return

            self.report_error(exc_value, component="global", severity=ErrorSeverity.CRITICAL,
                              context={'exc_type': exc_type.__name__})
            sys.__excepthook__(exc_type, exc_value, exc_traceback)

        sys.excepthook = handle_exception

    def _get_log_level_for_severity(self, severity: ErrorSeverity) -> int:
        """Get logging level for error severity."""
        mapping = {
            ErrorSeverity.LOW: logging.WARNING,
            ErrorSeverity.MEDIUM: logging.ERROR,
            ErrorSeverity.HIGH: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL
        }
        return mapping.get(severity, logging.ERROR)


_global_error_handler: Optional[GlobalErrorHandler] = None


def initialize_error_handler(logger: Optional[logging.Logger] = None,
                             install_excepthook: bool = False) -> GlobalErrorHandler:
    """
    Initialize the global error handler.

    Args:
        logger: Logger instance to use
        install_excepthook: Report uncaught exceptions as well

    Returns:
        GlobalErrorHandler instance
    """
    global _global_error_handler

    if _global_error_handler is None:
        _global_error_handler = GlobalErrorHandler(logger, install_excepthook=install_excepthook)

    return _global_error_handler


def get_error_handler() -> GlobalErrorHandler:
    """Get the global error handler instance, creating it if needed."""
    if _global_error_handler is None:
        return initialize_error_handler()

    return _global_error_handler


def reset_error_handler():
    """Forget the global error handler."""
    global _global_error_handler
    _global_error_handler = None


def report_error(error: Exception,
                 component: str,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 context: Optional[Dict[str, Any]] = None) -> ErrorReport:
    """Report an error to the global handler."""
    return get_error_handler().report_error(error, component, severity, context)


def handle_errors(component: str,
                  severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                  reraise: bool = True):
    """
    Decorator for automatic error reporting.

    Args:
        component: Component name
        severity: Error severity level
        reraise: Whether to reraise the exception
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                report_error(e, component, severity, {'function': func.__name__})

                if reraise:
                    raise

                return None

        return wrapper
    return decorator
