"""
Unit tests for the global error handler.
"""

import pytest
from datetime import datetime, timedelta

from imunia_alerts.utils.error_handler import (
    GlobalErrorHandler,
    ErrorSeverity,
    HealthStatus,
    get_error_handler,
    initialize_error_handler,
    report_error,
    handle_errors,
)


@pytest.fixture
def handler():
    return GlobalErrorHandler()


class TestGlobalErrorHandler:
    """Test error recording and health."""

    def test_report_error_counts(self, handler):
        try:
            raise ValueError("bad threshold")
        except ValueError as e:
            report = handler.report_error(e, component="config", severity=ErrorSeverity.LOW, context={'key': 'x'})

        assert report.error_type == "ValueError"
        assert report.stack_trace is not None
        assert handler.error_counts['total'] == 1
        assert handler.error_counts['by_severity']['low'] == 1
        assert handler.error_counts['by_component'] == {'config': 1}
        assert report.to_dict()['context'] == {'key': 'x'}

    def test_error_summary(self, handler):
        handler.report_error(RuntimeError("a"), component="job.stock_expiration")
        handler.report_error(KeyError("b"), component="job.stock_expiration")
        handler.report_error(RuntimeError("c"), component="gateway")

        summary = handler.get_error_summary(hours=1)

        assert summary['total_errors'] == 3
        assert summary['by_component'] == {'job.stock_expiration': 2, 'gateway': 1}
        assert summary['by_type'] == {'RuntimeError': 2, 'KeyError': 1}
        assert len(summary['recent_errors']) == 3

    def test_healthy_without_errors(self, handler):
        assert handler.get_health_status() == HealthStatus.HEALTHY

    def test_degraded_on_high_severity(self, handler):
        handler.report_error(RuntimeError("x"), component="job", severity=ErrorSeverity.HIGH)
        assert handler.get_health_status() == HealthStatus.DEGRADED

    def test_unhealthy_on_critical(self, handler):
        handler.report_error(RuntimeError("x"), component="global", severity=ErrorSeverity.CRITICAL)
        assert handler.get_health_status() == HealthStatus.UNHEALTHY

    def test_degraded_on_many_medium_errors(self, handler):
        for _ in range(11):
            handler.report_error(RuntimeError("x"), component="job")
        assert handler.get_health_status() == HealthStatus.DEGRADED

    def test_cleanup_old_data(self, handler):
        handler.report_error(RuntimeError("old"), component="job")
        handler.error_reports[0].timestamp = datetime.now() - timedelta(days=10)
        handler.report_error(RuntimeError("new"), component="job")

        handler.cleanup_old_data(days=7)

        assert [report.error_message for report in handler.error_reports] == ["new"]


class TestModuleFunctions:
    """Test the process-wide handler helpers."""

    def test_get_error_handler_is_singleton(self):
        assert get_error_handler() is get_error_handler()
        assert initialize_error_handler() is get_error_handler()

    def test_report_error_uses_global_handler(self):
        report_error(RuntimeError("x"), component="scheduler", severity=ErrorSeverity.HIGH)
        assert get_error_handler().error_counts['by_component'] == {'scheduler': 1}

    def test_handle_errors_reraises(self):
        @handle_errors("repository")
        def failing():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            failing()

        assert get_error_handler().error_counts['total'] == 1

    def test_handle_errors_swallow(self):
        @handle_errors("health", reraise=False)
        def failing():
            raise ConnectionError("down")

        assert failing() is None
        assert get_error_handler().error_counts['by_component'] == {'health': 1}
