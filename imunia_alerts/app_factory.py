"""
Application factory for the Imunia alerts service.

Wires settings, logging, storage, the notification gateway, both scanners
and the scheduler together behind lazily created properties.
"""

import logging
from typing import Optional, Dict, Any

from imunia_alerts.config import Settings, get_settings
from imunia_alerts.jobs import StockExpirationScanner, AppointmentReminderScanner
from imunia_alerts.notifications.gateway import NotificationGateway
from imunia_alerts.storage.repository import AlertRepository
from imunia_alerts.storage.sql import SqlAlertRepository
from imunia_alerts.utils.logger import setup_logging
from imunia_alerts.utils.error_handler import initialize_error_handler, GlobalErrorHandler
from imunia_alerts.utils.scheduler import JobScheduler, create_notification_scheduler


class ApplicationContainer:
    """
    Dependency container for the alert service components.

    Every component is created on first access. A repository or gateway
    passed to the constructor replaces the one built from settings.
    """

    CRITICAL_COMPONENTS = ('repository',)

    def __init__(self, settings: Optional[Settings] = None,
                 repository: Optional[AlertRepository] = None,
                 gateway: Optional[NotificationGateway] = None,
                 dry_run: bool = False):
        """
        Initialize application container.

        Args:
            settings: Application settings (uses default if None)
            repository: Data layer override
            gateway: Notification gateway override
            dry_run: Build a gateway without transports so nothing is sent
        """
        self.settings = settings or get_settings()
        self.dry_run = dry_run

        self._logger: Optional[logging.Logger] = None
        self._error_handler: Optional[GlobalErrorHandler] = None
        self._repository: Optional[AlertRepository] = repository
        self._gateway: Optional[NotificationGateway] = gateway
        self._stock_scanner: Optional[StockExpirationScanner] = None
        self._appointment_scanner: Optional[AppointmentReminderScanner] = None
        self._scheduler: Optional[JobScheduler] = None

    @property
    def logger(self) -> logging.Logger:
        """Get or create logger."""
        if self._logger is None:
            self._logger = setup_logging(self.settings.logging.to_logger_config())
        return self._logger

    @property
    def error_handler(self) -> GlobalErrorHandler:
        """Get or create error handler."""
        if self._error_handler is None:
            self._error_handler = initialize_error_handler(self.logger)
        return self._error_handler

    @property
    def repository(self) -> AlertRepository:
        """Get or create the SQL repository."""
        if self._repository is None:
            self._repository = self._create_repository()
        return self._repository

    @property
    def gateway(self) -> NotificationGateway:
        """Get or create the notification gateway."""
        if self._gateway is None:
            self._gateway = self._create_gateway()
        return self._gateway

    @property
    def stock_scanner(self) -> StockExpirationScanner:
        if self._stock_scanner is None:
            config = self.settings.stock_scan
            self._stock_scanner = StockExpirationScanner(
                self.repository,
                self.gateway,
                lookahead_days=config.lookahead_days,
                thresholds=config.threshold_days,
                timezone_name=self.settings.schedule.timezone
            )
        return self._stock_scanner

    @property
    def appointment_scanner(self) -> AppointmentReminderScanner:
        if self._appointment_scanner is None:
            config = self.settings.appointment_scan
            self._appointment_scanner = AppointmentReminderScanner(
                self.repository,
                self.gateway,
                window_start_hours=config.window_start_hours,
                window_end_hours=config.window_end_hours,
                overdue_lookback_hours=config.overdue_lookback_hours,
                include_overdue=config.include_overdue,
                timezone_name=self.settings.schedule.timezone
            )
        return self._appointment_scanner

    @property
    def scheduler(self) -> Optional[JobScheduler]:
        """Get or create scheduler; None when scheduling is disabled."""
        if self._scheduler is None and self.settings.schedule.enabled:
            self._scheduler = self._create_scheduler()
        return self._scheduler

    def get_component_status(self) -> Dict[str, Any]:
        """
        Get status of the components created so far.

        Returns:
            Component status dictionary
        """
        status = {
            'app_name': self.settings.app_name,
            'version': self.settings.app_version,
            'environment': self.settings.environment.value,
            'dry_run': self.dry_run,
            'components': {}
        }

        if self._gateway is not None:
            status['components']['gateway'] = self._gateway.get_status()
        if self._scheduler is not None:
            status['components']['scheduler'] = self._scheduler.get_scheduler_stats()
        if self._error_handler is not None:
            status['components']['errors'] = self._error_handler.get_error_summary(hours=24)

        return status

    def health_check(self) -> Dict[str, Any]:
        """
        Check the repository and scheduler.

        Returns:
            Health check results; ``overall_status`` is healthy, degraded or unhealthy
        """
        health = {
            'healthy': True,
            'components': {},
            'overall_status': 'healthy'
        }

        checks = {'repository': self.repository}
        if self._scheduler is not None:
            checks['scheduler'] = self._scheduler

        unhealthy_components = []
        for name, component in checks.items():
            try:
                if name == 'scheduler':
                    component_healthy = component.health_check()['healthy']
                elif hasattr(component, 'is_healthy'):
                    component_healthy = component.is_healthy()
                else:
                    component_healthy = True
            except Exception as e:
                self.logger.error(f"Health check of {name} failed: {e}")
                health['components'][name] = {'healthy': False, 'status': 'error', 'error': str(e)}
                unhealthy_components.append(name)
                continue

            health['components'][name] = {
                'healthy': component_healthy,
                'status': 'healthy' if component_healthy else 'unhealthy'
            }
            if not component_healthy:
                unhealthy_components.append(name)

        health['components']['gateway'] = {
            'healthy': True,
            'status': 'simulated' if self.gateway.is_simulated else 'configured',
            'channels': self.gateway.available_channels
        }

        if unhealthy_components:
            health['unhealthy_components'] = unhealthy_components
            if any(name in self.CRITICAL_COMPONENTS for name in unhealthy_components):
                health['healthy'] = False
                health['overall_status'] = 'unhealthy'
            else:
                health['overall_status'] = 'degraded'

        return health

    def shutdown(self):
        """Shutdown components gracefully."""
        self.logger.info("Shutting down application components...")

        if self._scheduler:
            try:
                self._scheduler.stop(wait=True)
            except Exception as e:
                self.logger.error(f"Error shutting down scheduler: {e}")

        engine = getattr(self._repository, 'engine', None)
        if engine is not None:
            engine.dispose()

        if self._error_handler:
            self._error_handler.cleanup_old_data()

        self.logger.info("Application shutdown complete")

    def _create_repository(self) -> AlertRepository:
        """Create the SQL repository and make sure its tables exist."""
        self.logger.info("Connecting to database...")
        repository = SqlAlertRepository.from_url(self.settings.database.url, echo=self.settings.database.echo)
        repository.create_schema()
        return repository

    def _create_gateway(self) -> NotificationGateway:
        """Create the notification gateway, without transports in dry-run mode."""
        if self.dry_run:
            self.logger.info("Dry run: notifications will be simulated")
            return NotificationGateway(self.settings.notifications)
        return NotificationGateway.from_config(self.settings.notifications)

    def _create_scheduler(self) -> JobScheduler:
        """
        Create the job scheduler with both scan jobs.

        Raises:
            ValueError: If a cron expression cannot be parsed
        """
        schedule = self.settings.schedule

        scheduler = create_notification_scheduler(
            stock_job=lambda: self.stock_scanner.run(),
            appointment_job=lambda: self.appointment_scanner.run(),
            stock_cron=schedule.stock_check_cron,
            appointment_cron=schedule.appointment_check_cron,
            timezone=schedule.timezone,
            max_workers=schedule.max_workers,
            misfire_grace_time=schedule.misfire_grace_time,
            logger=self.logger
        )

        self.logger.info(
            f"Scheduler created: stock scan '{schedule.stock_check_cron}', "
            f"appointment scan '{schedule.appointment_check_cron}' ({schedule.timezone})"
        )
        return scheduler


def create_app(settings: Optional[Settings] = None, dry_run: bool = False) -> ApplicationContainer:
    """
    Convenience function to create the application container.

    Args:
        settings: Application settings (loaded from the environment if None)
        dry_run: Simulate every notification

    Returns:
        ApplicationContainer
    """
    return ApplicationContainer(settings, dry_run=dry_run)
