"""
Appointment reminder scanner.

Reminds parents of pending vaccination appointments falling inside the
reminder window, and of appointments that became overdue recently. A
successful reminder moves the appointment from ``pending`` to ``notified``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from imunia_alerts.models.domain import Appointment
from imunia_alerts.models.scan_models import NotificationKey, NotificationKind, ScanSummary, TimeWindow
from imunia_alerts.notifications.formatters import AppointmentReminderFormatter
from imunia_alerts.notifications.gateway import NotificationGateway
from imunia_alerts.storage.exceptions import DataFetchError
from imunia_alerts.storage.repository import AlertRepository


logger = logging.getLogger(__name__)

UPCOMING_BUCKET = "upcoming"
OVERDUE_BUCKET = "overdue"

JOB_NAME = "appointment_reminder"


class AppointmentReminderScanner:
    """Scans due appointments and reminds the parents."""

    def __init__(self, repository: AlertRepository, gateway: NotificationGateway,
                 window_start_hours: int = 0, window_end_hours: int = 72,
                 overdue_lookback_hours: int = 24, include_overdue: bool = True,
                 timezone_name: str = "Africa/Dakar",
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the scanner.

        Args:
            repository: Data layer
            gateway: Notification gateway
            window_start_hours: Reminder window start, hours from now
            window_end_hours: Reminder window end, hours from now
            overdue_lookback_hours: Appointments this recent are reminded as overdue
            include_overdue: Whether to remind overdue appointments at all
            timezone_name: Timezone used to display dates in messages
            clock: Returns the current aware datetime
        """
        if window_end_hours <= window_start_hours:
            raise ValueError("window_end_hours must be greater than window_start_hours")

        self.repository = repository
        self.gateway = gateway
        self.window_start_hours = window_start_hours
        self.window_end_hours = window_end_hours
        self.overdue_lookback_hours = overdue_lookback_hours
        self.include_overdue = include_overdue
        self.timezone_name = timezone_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self) -> ScanSummary:
        """
        Run one scan.

        Returns:
            ScanSummary with checked/notified counts and per-appointment errors

        Raises:
            DataFetchError: If appointments cannot be loaded
        """
        now = self.clock()
        summary = ScanSummary(job=JOB_NAME, started_at=now)

        logger.info(
            f"Starting appointment reminder scan "
            f"(window {self.window_start_hours}-{self.window_end_hours}h)"
        )

        candidates = self._load_candidates(now)
        summary.checked = len(candidates)

        for appointment, bucket in candidates:
            try:
                self._process_appointment(appointment, bucket, summary)
            except Exception as e:
                logger.exception(f"Unexpected error while processing appointment {appointment.id}")
                summary.add_error("appointment", appointment.id, f"Unexpected error: {e}")

        summary.finish()
        logger.info(
            f"Appointment reminder scan completed: {summary.checked} checked, "
            f"{summary.notified} notified, {len(summary.errors)} errors",
            extra={'job': JOB_NAME, 'summary': summary.to_dict()}
        )
        return summary

    def _load_candidates(self, now: datetime) -> List[Tuple[Appointment, str]]:
        windows = [(
            TimeWindow(
                start=now + timedelta(hours=self.window_start_hours),
                end=now + timedelta(hours=self.window_end_hours)
            ),
            UPCOMING_BUCKET
        )]
        if self.include_overdue and self.overdue_lookback_hours > 0:
            windows.append((
                TimeWindow(start=now - timedelta(hours=self.overdue_lookback_hours), end=now),
                OVERDUE_BUCKET
            ))

        candidates: Dict[str, Tuple[Appointment, str]] = {}
        for window, bucket in windows:
            try:
                appointments = self.repository.list_due_appointments(window)
            except DataFetchError:
                raise
            except Exception as e:
                raise DataFetchError(f"Failed to load due appointments: {e}", source="appointments") from e

            for appointment in appointments:
                if bucket == OVERDUE_BUCKET and appointment.scheduled_at is not None and appointment.scheduled_at >= now:
                    continue
                candidates.setdefault(appointment.id, (appointment, bucket))

        return list(candidates.values())

    def _process_appointment(self, appointment: Appointment, bucket: str, summary: ScanSummary) -> None:
        if not appointment.is_pending:
            logger.debug(f"Appointment {appointment.id} is {appointment.status.value}, skipping")
            summary.skipped += 1
            return

        if appointment.scheduled_at is None:
            logger.debug(f"Appointment {appointment.id} has no valid date, skipping")
            return

        recipient = self.repository.resolve_recipient(appointment)
        if recipient is None:
            logger.warning(f"No parent contact for appointment {appointment.id}")
            summary.add_error("appointment", appointment.id, "No parent contact")
            return

        key = NotificationKey(appointment.id, NotificationKind.APPOINTMENT_REMINDER, bucket)
        if self.repository.has_notification(key):
            logger.debug(f"Appointment {appointment.id} already reminded ({bucket})")
            summary.skipped += 1
            return

        message = AppointmentReminderFormatter.format_reminder(
            appointment,
            parent_name=recipient.name or None,
            overdue=bucket == OVERDUE_BUCKET,
            timezone=self.timezone_name
        )

        try:
            result = self.gateway.send(recipient, message)
        except Exception as e:
            logger.error(f"Gateway raised while reminding appointment {appointment.id}: {e}")
            summary.add_error("appointment", appointment.id, f"Gateway error: {e}", recipient.display_address)
            return

        if result.success:
            self.repository.mark_appointment_notified(appointment.id)
            self.repository.mark_notified(
                key,
                recipient=result.recipient,
                channel=result.channel.value if result.channel else None,
                message_id=result.message_id
            )
            summary.notified += 1
            logger.info(
                f"Appointment {appointment.id} reminded ({bucket})",
                extra={'appointment_id': appointment.id, 'bucket': bucket}
            )
        elif result.simulated:
            summary.simulated += 1
        else:
            summary.add_error(
                "appointment", appointment.id, result.error or "Delivery failed", recipient.display_address
            )
