"""
Notification gateway delivering alerts over WhatsApp and email.
"""

from .gateway import NotificationGateway
from .models import (
    NotificationChannel,
    NotificationStatus,
    NotificationResult,
    NotificationTemplate,
    SendResult
)
from .formatters import StockAlertFormatter, AppointmentReminderFormatter
from .exceptions import (
    NotificationError,
    ConfigurationError,
    ChannelError,
    CircuitOpenError,
    InvalidRecipientError,
    TemplateError
)

__all__ = [
    'NotificationGateway',
    'NotificationChannel',
    'NotificationStatus',
    'NotificationResult',
    'NotificationTemplate',
    'SendResult',
    'StockAlertFormatter',
    'AppointmentReminderFormatter',
    'NotificationError',
    'ConfigurationError',
    'ChannelError',
    'CircuitOpenError',
    'InvalidRecipientError',
    'TemplateError'
]
