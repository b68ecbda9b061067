"""
Stock expiration scanner.

Alerts the staff managing a vaccine lot when the lot crosses an alert
threshold (for example 30, 14, 7, 3 and 1 days before expiration) and once
more after it has expired. Each (lot, threshold, recipient) triple is notified
at most once thanks to the notification records kept by the repository, so a
recipient whose delivery failed is retried on the next run.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from imunia_alerts.models.domain import Recipient, StockLot
from imunia_alerts.models.scan_models import NotificationKey, NotificationKind, ScanSummary, TimeWindow
from imunia_alerts.notifications.formatters import StockAlertFormatter
from imunia_alerts.notifications.gateway import NotificationGateway
from imunia_alerts.storage.exceptions import DataFetchError
from imunia_alerts.storage.repository import AlertRepository


logger = logging.getLogger(__name__)

EXPIRED_BUCKET = "expired"

JOB_NAME = "stock_expiration"


def expiration_bucket(days_left: float, thresholds: List[int]) -> Optional[str]:
    """
    Window bucket for a lot ``days_left`` days from expiration.

    Args:
        days_left: Fractional days until expiration
        thresholds: Ascending alert thresholds in days

    Returns:
        ``"expired"``, ``"<t>d"`` for the smallest threshold ``t >= days_left``,
        or None when the lot is beyond every threshold
    """
    if days_left <= 0:
        return EXPIRED_BUCKET
    for threshold in thresholds:
        if days_left <= threshold:
            return f"{threshold}d"
    return None


def recipient_bucket(bucket: str, recipient: Recipient) -> str:
    """Marker bucket for one recipient of a lot alert, e.g. ``"7d:+221770000001"``."""
    return f"{bucket}:{recipient.display_address}"


class StockExpirationScanner:
    """Scans lots close to or past expiration and notifies their managers."""

    def __init__(self, repository: AlertRepository, gateway: NotificationGateway,
                 lookahead_days: int = 30, thresholds: Iterable[int] = (30, 14, 7, 3, 1),
                 timezone_name: str = "Africa/Dakar",
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the scanner.

        Args:
            repository: Data layer
            gateway: Notification gateway
            lookahead_days: Only lots expiring within this many days are alerted
            thresholds: Alert thresholds in days; the lookahead is always one
            timezone_name: Timezone used to display dates in messages
            clock: Returns the current aware datetime
        """
        if lookahead_days <= 0:
            raise ValueError("lookahead_days must be positive")

        self.repository = repository
        self.gateway = gateway
        self.lookahead_days = lookahead_days
        self.thresholds = sorted({t for t in thresholds if 0 < t <= lookahead_days} | {lookahead_days})
        self.timezone_name = timezone_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self) -> ScanSummary:
        """
        Run one scan.

        Returns:
            ScanSummary with checked/notified counts and per-lot errors

        Raises:
            DataFetchError: If lots cannot be loaded
        """
        now = self.clock()
        summary = ScanSummary(job=JOB_NAME, started_at=now)
        window = TimeWindow(end=now + timedelta(days=self.lookahead_days))

        logger.info(f"Starting stock expiration scan (lookahead {self.lookahead_days} days)")

        try:
            lots = self.repository.list_expiring_lots(window)
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(f"Failed to load expiring lots: {e}", source="stock_lots") from e

        summary.checked = len(lots)

        for lot in lots:
            try:
                self._process_lot(lot, now, summary)
            except Exception as e:
                logger.exception(f"Unexpected error while processing lot {lot.id}")
                summary.add_error("lot", lot.id, f"Unexpected error: {e}")

        summary.finish()
        logger.info(
            f"Stock expiration scan completed: {summary.checked} checked, "
            f"{summary.notified} notified, {len(summary.errors)} errors",
            extra={'job': JOB_NAME, 'summary': summary.to_dict()}
        )
        return summary

    def _process_lot(self, lot: StockLot, now: datetime, summary: ScanSummary) -> None:
        days_left = lot.days_until_expiration(now)
        if days_left is None:
            logger.debug(f"Lot {lot.id} has no valid expiration date, skipping")
            return

        bucket = expiration_bucket(days_left, self.thresholds)
        if bucket is None:
            logger.debug(f"Lot {lot.id} expires in {days_left:.1f} days, outside the alert window")
            return

        recipients = self.repository.resolve_recipients(lot)
        if not recipients:
            logger.warning(f"No recipient found for lot {lot.id} ({lot.owner_type.value} {lot.owner_id})")
            summary.add_error("lot", lot.id, "No recipient for lot owner")
            return

        delivered = 0
        pending = 0
        simulated = False

        for recipient in recipients:
            key = NotificationKey(lot.id, NotificationKind.STOCK_EXPIRATION, recipient_bucket(bucket, recipient))
            if self.repository.has_notification(key):
                continue
            pending += 1

            message = StockAlertFormatter.format_expiration_alert(
                lot, days_left, recipient_name=recipient.name, timezone=self.timezone_name
            )
            try:
                result = self.gateway.send(recipient, message)
            except Exception as e:
                logger.error(f"Gateway raised while notifying {recipient.display_address} about lot {lot.id}: {e}")
                summary.add_error("lot", lot.id, f"Gateway error: {e}", recipient.display_address)
                continue

            if result.success:
                self.repository.mark_notified(
                    key,
                    recipient=result.recipient,
                    channel=result.channel.value if result.channel else None,
                    message_id=result.message_id
                )
                delivered += 1
            elif result.simulated:
                simulated = True
            else:
                summary.add_error("lot", lot.id, result.error or "Delivery failed", recipient.display_address)

        if pending == 0:
            logger.debug(f"Lot {lot.id} already notified for bucket {bucket}")
            summary.skipped += 1
        elif delivered:
            summary.notified += 1
            logger.info(f"Lot {lot.id} notified ({bucket}, {delivered} recipients)",
                        extra={'lot_id': lot.id, 'bucket': bucket})
        elif simulated:
            summary.simulated += 1
