"""
Abstract data layer consumed by the scanners.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union

from imunia_alerts.models.domain import StockLot, Appointment, Recipient
from imunia_alerts.models.scan_models import NotificationKey, NotificationRecord, TimeWindow


class AlertRepository(ABC):
    """
    Read interface over lots, appointments and contacts, plus the
    idempotency-key table the scanners consult before every send.

    Implementations raise ``DataFetchError`` when a listing fails.
    """

    @abstractmethod
    def list_expiring_lots(self, window: TimeWindow) -> List[StockLot]:
        """
        Lots with stock left whose expiration falls inside ``window``.

        Args:
            window: Expiration window; an open start includes expired lots

        Returns:
            Matching lots
        """
        pass

    @abstractmethod
    def list_due_appointments(self, window: TimeWindow) -> List[Appointment]:
        """
        Pending appointments scheduled inside ``window``.

        Args:
            window: Scheduled-time window

        Returns:
            Matching appointments ordered by scheduled time
        """
        pass

    @abstractmethod
    def resolve_recipients(self, entity: Union[StockLot, Appointment]) -> List[Recipient]:
        """
        Contacts to notify about an entity.

        Lots resolve to the staff managing the lot's owner scope;
        appointments resolve to the child's parent.

        Returns:
            Recipients with at least one contact; empty when none
        """
        pass

    def resolve_recipient(self, entity: Union[StockLot, Appointment]) -> Optional[Recipient]:
        """First resolved recipient, or None."""
        recipients = self.resolve_recipients(entity)
        return recipients[0] if recipients else None

    @abstractmethod
    def has_notification(self, key: NotificationKey) -> bool:
        """Check whether a dedup marker exists for ``key``."""
        pass

    @abstractmethod
    def mark_notified(self, key: NotificationKey, recipient: Optional[str] = None,
                      channel: Optional[str] = None, message_id: Optional[str] = None) -> NotificationRecord:
        """
        Persist the dedup marker for ``key``. Writing an existing key
        returns the stored record unchanged.
        """
        pass

    @abstractmethod
    def mark_appointment_notified(self, appointment_id: str) -> Appointment:
        """
        Move an appointment from pending to notified.

        Raises:
            EntityNotFoundError: If the appointment does not exist
            InvalidTransitionError: If the appointment is not pending
        """
        pass
