"""
Data models for the notification gateway.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime

from imunia_alerts.notifications.exceptions import TemplateError


class NotificationChannel(Enum):
    """Supported notification channels."""
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class NotificationStatus(Enum):
    """Status of a single provider delivery attempt."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"


@dataclass
class NotificationResult:
    """Result of one provider call on one channel."""
    channel: NotificationChannel
    status: NotificationStatus
    recipient: str
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    attempt_count: int = 1
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        """Check if notification was successfully sent."""
        return self.status in [NotificationStatus.SENT, NotificationStatus.DELIVERED]

    @property
    def is_failure(self) -> bool:
        """Check if notification permanently failed."""
        return self.status == NotificationStatus.FAILED

    @property
    def should_retry(self) -> bool:
        """Check if notification should be retried."""
        return self.status == NotificationStatus.RETRYING


@dataclass
class NotificationTemplate:
    """Message content. WhatsApp uses the text body, email uses all parts."""
    subject: Optional[str] = None
    text_content: str = ""
    html_content: Optional[str] = None

    def format(self, **kwargs) -> 'NotificationTemplate':
        """
        Format template with provided variables.

        Raises:
            TemplateError: If a placeholder has no value
        """
        try:
            formatted_subject = self.subject.format(**kwargs) if self.subject else None
            formatted_text = self.text_content.format(**kwargs)
            formatted_html = self.html_content.format(**kwargs) if self.html_content else None
        except (KeyError, IndexError) as e:
            raise TemplateError(f"Missing template variable: {e}") from e

        return NotificationTemplate(
            subject=formatted_subject,
            text_content=formatted_text,
            html_content=formatted_html
        )


@dataclass
class SendResult:
    """
    Outcome of ``NotificationGateway.send``.

    ``simulated`` is set when no configured transport could serve the
    recipient; nothing was delivered and callers treat it as neither a
    success nor an error.
    """
    success: bool
    error: Optional[str] = None
    simulated: bool = False
    channel: Optional[NotificationChannel] = None
    recipient: Optional[str] = None
    message_id: Optional[str] = None
    attempts: List[NotificationResult] = field(default_factory=list)

    @classmethod
    def simulated_result(cls, reason: str, recipient: Optional[str] = None) -> 'SendResult':
        return cls(success=False, error=reason, simulated=True, recipient=recipient)

    @classmethod
    def failure(cls, error: str, recipient: Optional[str] = None,
                attempts: Optional[List[NotificationResult]] = None) -> 'SendResult':
        return cls(success=False, error=error, recipient=recipient, attempts=attempts or [])

    def to_dict(self) -> Dict[str, Any]:
        data = {'success': self.success}
        if self.error:
            data['error'] = self.error
        if self.simulated:
            data['simulated'] = True
        if self.channel:
            data['channel'] = self.channel.value
        if self.message_id:
            data['message_id'] = self.message_id
        return data
