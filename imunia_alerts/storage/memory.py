"""
In-memory repository for tests and dry runs.
"""

import copy
import threading
from typing import Dict, List, Optional, Tuple, Union, Iterable

from imunia_alerts.models.domain import (
    StockLot, Appointment, Recipient, OwnerScope, AppointmentStatus
)
from imunia_alerts.models.scan_models import NotificationKey, NotificationRecord, TimeWindow
from imunia_alerts.storage.exceptions import EntityNotFoundError
from imunia_alerts.storage.repository import AlertRepository


class InMemoryRepository(AlertRepository):
    """Dictionary-backed ``AlertRepository``."""

    def __init__(self, lots: Iterable[StockLot] = (), appointments: Iterable[Appointment] = ()):
        self._lock = threading.Lock()
        self.lots: Dict[str, StockLot] = {lot.id: lot for lot in lots}
        self.appointments: Dict[str, Appointment] = {appt.id: appt for appt in appointments}
        self.staff: Dict[Tuple[OwnerScope, Optional[str]], List[Recipient]] = {}
        self.records: Dict[NotificationKey, NotificationRecord] = {}

    def add_lot(self, lot: StockLot) -> StockLot:
        with self._lock:
            self.lots[lot.id] = lot
        return lot

    def add_appointment(self, appointment: Appointment) -> Appointment:
        with self._lock:
            self.appointments[appointment.id] = appointment
        return appointment

    def add_staff_contact(self, scope: OwnerScope, owner_id: Optional[str], recipient: Recipient) -> None:
        """Register a staff member responsible for lots held at ``scope``/``owner_id``."""
        key = (scope, None if scope == OwnerScope.NATIONAL else owner_id)
        with self._lock:
            self.staff.setdefault(key, []).append(recipient)

    def list_expiring_lots(self, window: TimeWindow) -> List[StockLot]:
        with self._lock:
            lots = list(self.lots.values())

        result = []
        for lot in lots:
            expiration = lot.expiration_at
            if lot.quantity > 0 and expiration is not None and window.contains(expiration):
                result.append(lot)
        return sorted(result, key=lambda lot: lot.expiration_at)

    def list_due_appointments(self, window: TimeWindow) -> List[Appointment]:
        with self._lock:
            appointments = list(self.appointments.values())

        result = [
            appt for appt in appointments
            if appt.is_pending and appt.scheduled_at is not None and window.contains(appt.scheduled_at)
        ]
        # Copies, so status changes go through mark_appointment_notified
        return [copy.copy(appt) for appt in sorted(result, key=lambda appt: appt.scheduled_at)]

    def resolve_recipients(self, entity: Union[StockLot, Appointment]) -> List[Recipient]:
        if isinstance(entity, StockLot):
            owner_id = None if entity.owner_type == OwnerScope.NATIONAL else entity.owner_id
            with self._lock:
                contacts = list(self.staff.get((entity.owner_type, owner_id), []))
            return [contact for contact in contacts if contact.has_contact]

        parent = Recipient(
            name=entity.parent_name or "",
            phone=entity.parent_phone,
            email=entity.parent_email,
            role="parent"
        )
        return [parent] if parent.has_contact else []

    def has_notification(self, key: NotificationKey) -> bool:
        with self._lock:
            return key in self.records

    def mark_notified(self, key: NotificationKey, recipient: Optional[str] = None,
                      channel: Optional[str] = None, message_id: Optional[str] = None) -> NotificationRecord:
        with self._lock:
            if key not in self.records:
                self.records[key] = NotificationRecord(
                    key=key, recipient=recipient, channel=channel, message_id=message_id
                )
            return self.records[key]

    def mark_appointment_notified(self, appointment_id: str) -> Appointment:
        with self._lock:
            appointment = self.appointments.get(appointment_id)
            if appointment is None:
                raise EntityNotFoundError("appointment", appointment_id)
            appointment.transition_to(AppointmentStatus.NOTIFIED)
            return appointment
