"""
Periodic scan jobs.
"""

from .stock_expiration import StockExpirationScanner, expiration_bucket
from .appointment_reminder import AppointmentReminderScanner

__all__ = [
    'StockExpirationScanner',
    'AppointmentReminderScanner',
    'expiration_bucket'
]
