"""
Data models for stock lots, appointments and scan results.
"""

from .domain import (
    OwnerScope,
    AppointmentStatus,
    InvalidTransitionError,
    StockLot,
    Appointment,
    Recipient,
    to_utc
)

from .scan_models import (
    NotificationKind,
    NotificationKey,
    NotificationRecord,
    TimeWindow,
    EntityError,
    ScanSummary
)

__all__ = [
    'OwnerScope',
    'AppointmentStatus',
    'InvalidTransitionError',
    'StockLot',
    'Appointment',
    'Recipient',
    'to_utc',
    'NotificationKind',
    'NotificationKey',
    'NotificationRecord',
    'TimeWindow',
    'EntityError',
    'ScanSummary'
]
