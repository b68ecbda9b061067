"""
Models shared by the scanners: idempotency keys, time windows and run summaries.
"""

from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class NotificationKind(Enum):
    """Kinds of notification the service sends."""
    STOCK_EXPIRATION = "stock_expiration"
    APPOINTMENT_REMINDER = "appointment_reminder"


@dataclass(frozen=True)
class NotificationKey:
    """Idempotency key: one notification per entity, kind and window bucket."""
    entity_id: str
    kind: NotificationKind
    window_bucket: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.entity_id}:{self.window_bucket}"


@dataclass
class NotificationRecord:
    """Dedup marker persisted after a successful send."""
    key: NotificationKey
    recipient: Optional[str] = None
    channel: Optional[str] = None
    message_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def entity_id(self) -> str:
        return self.key.entity_id

    @property
    def kind(self) -> NotificationKind:
        return self.key.kind

    @property
    def window_bucket(self) -> str:
        return self.key.window_bucket


@dataclass(frozen=True)
class TimeWindow:
    """Closed interval; ``start`` of None means unbounded in the past."""
    end: datetime
    start: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        return moment <= self.end


@dataclass
class EntityError:
    """Per-entity failure collected during a scan."""
    entity_type: str
    entity_id: str
    reason: str
    recipient: Optional[str] = None

    @property
    def lot_id(self) -> Optional[str]:
        return self.entity_id if self.entity_type == "lot" else None

    @property
    def appointment_id(self) -> Optional[str]:
        return self.entity_id if self.entity_type == "appointment" else None

    def to_dict(self) -> Dict[str, Any]:
        data = {f"{self.entity_type}_id": self.entity_id, 'reason': self.reason}
        if self.recipient:
            data['recipient'] = self.recipient
        return data


@dataclass
class ScanSummary:
    """Result of one scanner run."""
    job: str
    checked: int = 0
    notified: int = 0
    errors: List[EntityError] = field(default_factory=list)
    skipped: int = 0
    simulated: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def add_error(self, entity_type: str, entity_id: str, reason: str,
                  recipient: Optional[str] = None) -> EntityError:
        error = EntityError(entity_type, entity_id, reason, recipient)
        self.errors.append(error)
        return error

    def finish(self) -> 'ScanSummary':
        self.finished_at = datetime.now(timezone.utc)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and CLI output."""
        return {
            'job': self.job,
            'checked': self.checked,
            'notified': self.notified,
            'errors': [error.to_dict() for error in self.errors],
            'skipped': self.skipped,
            'simulated': self.simulated,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': self.duration_seconds,
        }
