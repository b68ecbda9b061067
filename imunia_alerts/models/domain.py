"""
Domain models for vaccine stock lots, appointments and notification recipients.

These records are read from the data layer by the scanners. Lots are read-only
here; appointments are only ever moved from ``pending`` to ``notified`` by the
reminder scanner, other transitions belong to staff workflows.
"""

from typing import Optional, Union
from dataclasses import dataclass
from datetime import datetime, date, timezone
from enum import Enum


class OwnerScope(Enum):
    """Administrative level holding a stock lot."""
    NATIONAL = "NATIONAL"
    REGIONAL = "REGIONAL"
    DISTRICT = "DISTRICT"
    HEALTHCENTER = "HEALTHCENTER"


class AppointmentStatus(Enum):
    """Appointment lifecycle states."""
    PENDING = "pending"
    NOTIFIED = "notified"
    COMPLETED = "completed"
    MISSED = "missed"

    def can_transition_to(self, target: 'AppointmentStatus') -> bool:
        """Check whether moving to ``target`` is a forward transition."""
        return target in _ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.NOTIFIED, AppointmentStatus.COMPLETED, AppointmentStatus.MISSED
    },
    AppointmentStatus.NOTIFIED: {AppointmentStatus.COMPLETED, AppointmentStatus.MISSED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.MISSED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when an appointment status would move backwards."""

    def __init__(self, appointment_id: str, current: AppointmentStatus, target: AppointmentStatus):
        super().__init__(
            f"Appointment {appointment_id} cannot move from {current.value} to {target.value}"
        )
        self.appointment_id = appointment_id
        self.current = current
        self.target = target


def to_utc(value: Union[datetime, date, str, None]) -> Optional[datetime]:
    """
    Coerce a stored date value into an aware UTC datetime.

    Naive datetimes are assumed to be UTC, plain dates map to midnight UTC
    and ISO strings are parsed. Anything else yields None.

    Args:
        value: Raw value from the data layer

    Returns:
        Aware datetime or None when the value is missing or unparsable
    """
    if value is None:
        return None

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    return None


@dataclass
class StockLot:
    """A quantity of one vaccine held at an administrative scope."""
    id: str
    vaccine_id: str
    vaccine_name: str
    owner_type: OwnerScope
    owner_id: Optional[str]
    quantity: int
    expiration: Union[datetime, date, str, None] = None
    owner_name: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.owner_type, str):
            self.owner_type = OwnerScope(self.owner_type.upper())
        if self.quantity is None or self.quantity < 0:
            raise ValueError(f"Lot {self.id} has invalid quantity: {self.quantity}")

    @property
    def expiration_at(self) -> Optional[datetime]:
        """Expiration as an aware UTC datetime, or None if missing/invalid."""
        return to_utc(self.expiration)

    def days_until_expiration(self, now: datetime) -> Optional[float]:
        """
        Fractional days between ``now`` and the expiration date.

        Args:
            now: Aware reference time

        Returns:
            Days left (negative once expired) or None without a valid date
        """
        expiration = self.expiration_at
        if expiration is None:
            return None
        return (expiration - now).total_seconds() / 86400


@dataclass
class Appointment:
    """A scheduled vaccination for a child."""
    id: str
    child_id: str
    child_name: str
    vaccine_id: str
    vaccine_name: str
    scheduled_for: Union[datetime, str]
    status: AppointmentStatus = AppointmentStatus.PENDING
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    health_center_name: Optional[str] = None
    dose: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = AppointmentStatus(self.status.lower())

    @property
    def scheduled_at(self) -> Optional[datetime]:
        """Scheduled time as an aware UTC datetime."""
        return to_utc(self.scheduled_for)

    @property
    def is_pending(self) -> bool:
        return self.status == AppointmentStatus.PENDING

    def transition_to(self, target: AppointmentStatus) -> None:
        """
        Move the appointment forward.

        Raises:
            InvalidTransitionError: If the move is not a forward transition
        """
        if not self.status.can_transition_to(target):
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target


@dataclass
class Recipient:
    """Resolved contact for a notification."""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def has_contact(self) -> bool:
        return bool((self.phone and self.phone.strip()) or (self.email and self.email.strip()))

    @property
    def display_address(self) -> str:
        """Best identifier for logs."""
        return self.phone or self.email or self.name
