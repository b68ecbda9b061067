"""
Main application entry point for the Imunia alerts service.

Runs the scheduler as a daemon, or one scan on demand:

    python -m imunia_alerts.main --mode daemon
    python -m imunia_alerts.main --mode stock --dry-run
    python -m imunia_alerts.main --mode appointments
    python -m imunia_alerts.main --mode test
"""

import os
import sys
import json
import signal
import threading
import argparse
from datetime import datetime
from typing import Optional, Dict, Any, List

from imunia_alerts.config import Settings, load_settings
from imunia_alerts.app_factory import ApplicationContainer, create_app
from imunia_alerts.models.scan_models import ScanSummary
from imunia_alerts.utils.logger import get_performance_logger
from imunia_alerts.utils.error_handler import ErrorSeverity


class AlertsApplication:
    """Main alerts application."""

    def __init__(self, settings: Optional[Settings] = None,
                 container: Optional[ApplicationContainer] = None,
                 dry_run: bool = False):
        """
        Initialize the application.

        Args:
            settings: Application settings (loaded from the environment if None)
            container: Prebuilt component container
            dry_run: Simulate every notification
        """
        self.container = container or create_app(settings, dry_run=dry_run)
        self.settings = self.container.settings

        self.logger = self.container.logger
        self.error_handler = self.container.error_handler

        self.running = False
        self.shutdown_event = threading.Event()
        self.startup_time = datetime.now()
        self.last_results: Dict[str, ScanSummary] = {}

        self.logger.info(
            f"{self.settings.app_name} application initialized",
            extra={
                "version": self.settings.app_version,
                "environment": self.settings.environment.value,
                "dry_run": self.container.dry_run
            }
        )

    def run_stock_check(self) -> Optional[ScanSummary]:
        """
        Run the stock expiration scan once.

        Returns:
            ScanSummary, or None if the scan could not run
        """
        return self._run_scan("stock_expiration", lambda: self.container.stock_scanner.run())

    def run_appointment_check(self) -> Optional[ScanSummary]:
        """
        Run the appointment reminder scan once.

        Returns:
            ScanSummary, or None if the scan could not run
        """
        return self._run_scan("appointment_reminder", lambda: self.container.appointment_scanner.run())

    def _run_scan(self, name: str, scan) -> Optional[ScanSummary]:
        try:
            with get_performance_logger(name).timer(name):
                summary = scan()
        except Exception as e:
            self.error_handler.report_error(e, f"job.{name}", severity=ErrorSeverity.HIGH,
                                            context={"operation": "manual_run"})
            return None

        self.last_results[name] = summary
        return summary

    def start(self) -> bool:
        """
        Start the scheduler.

        Returns:
            True if started successfully
        """
        if self.running:
            self.logger.warning("Application is already running")
            return True

        try:
            scheduler = self.container.scheduler
            if scheduler is None:
                self.logger.error("Scheduling is disabled (SCHEDULE_ENABLED=false), nothing to run")
                return False

            scheduler.start()
            self.running = True
            self.logger.info(f"{self.settings.app_name} started")
            return True

        except Exception as e:
            self.error_handler.report_error(e, "application", severity=ErrorSeverity.CRITICAL,
                                            context={"operation": "start"})
            return False

    def stop(self):
        """Stop the application gracefully."""
        self.shutdown_event.set()

        if not self.running:
            return

        self.logger.info(f"Stopping {self.settings.app_name}...")
        self.container.shutdown()
        self.running = False

    def run_daemon(self) -> int:
        """
        Run until a termination signal arrives.

        Returns:
            Process exit code
        """
        if not self.start():
            return 1

        self._setup_signal_handlers()
        self.logger.info("Running in daemon mode...")

        try:
            while not self.shutdown_event.wait(timeout=1):
                pass
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.stop()

        return 0

    def health_check(self) -> Dict[str, Any]:
        """Component health plus recent errors."""
        health = self.container.health_check()
        health['errors_last_24h'] = self.error_handler.get_error_summary(hours=24)['total_errors']
        health['uptime_seconds'] = (datetime.now() - self.startup_time).total_seconds()
        return health

    def get_status(self) -> Dict[str, Any]:
        """
        Get application status.

        Returns:
            Status information dictionary
        """
        status = self.container.get_component_status()
        status.update({
            'running': self.running,
            'startup_time': self.startup_time.isoformat(),
            'last_results': {name: summary.to_dict() for name, summary in self.last_results.items()}
        })
        return status

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Imunia vaccination alerts")
    parser.add_argument("--mode", choices=["daemon", "stock", "appointments", "test"], default="daemon",
                        help="Run mode: daemon (scheduled), stock or appointments (single scan), test (validation)")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level override")
    parser.add_argument("--dry-run", action="store_true",
                        help="Do not send anything; notifications are simulated")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.log_level:
        os.environ['LOG_LEVEL'] = args.log_level
        os.environ['LOG_CONSOLE_LEVEL'] = args.log_level

    try:
        settings = load_settings(args.env_file)
        app = AlertsApplication(settings, dry_run=args.dry_run)

        if args.mode == "test":
            health = app.health_check()
            print(json.dumps(health, indent=2, default=str))
            return 0 if health['healthy'] else 1

        if args.mode in ("stock", "appointments"):
            if args.mode == "stock":
                summary = app.run_stock_check()
            else:
                summary = app.run_appointment_check()

            app.container.shutdown()
            if summary is None:
                print(f"{args.mode} scan failed, see logs for details", file=sys.stderr)
                return 1

            print(json.dumps(summary.to_dict(), indent=2, default=str))
            return 0

        return app.run_daemon()

    except KeyboardInterrupt:
        return 0

    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
