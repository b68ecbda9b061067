"""
WhatsApp notification sender using the Twilio WhatsApp API.
"""

import os
import re
import logging
from typing import Optional, Dict, Any
from datetime import datetime
import time

from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from imunia_alerts.notifications.exceptions import ConfigurationError, InvalidRecipientError
from imunia_alerts.notifications.models import (
    NotificationResult, NotificationChannel, NotificationStatus, NotificationTemplate
)


logger = logging.getLogger(__name__)

WHATSAPP_PREFIX = 'whatsapp:'

# Rate limit and queue overflow; unsubscribed or unreachable recipients are permanent
RETRYABLE_TWILIO_CODES = [20429, 30001]


def normalize_whatsapp_number(phone_number: str, default_country_code: str = "221") -> str:
    """
    Normalize a phone number to Twilio's ``whatsapp:+<digits>`` form.

    National numbers are completed with ``default_country_code``: a leading
    ``0`` is replaced by the country code and a bare 9-digit number gets it
    prepended. Numbers already carrying the country code only get ``+``, and a
    leading ``00`` international prefix becomes ``+``.

    Args:
        phone_number: Raw number as stored in the data layer
        default_country_code: Country calling code without ``+``

    Returns:
        Number prefixed with ``whatsapp:``

    Raises:
        InvalidRecipientError: If the number is empty
    """
    raw = (phone_number or '').strip()
    if raw.startswith(WHATSAPP_PREFIX):
        return raw
    if not raw:
        raise InvalidRecipientError("Phone number is empty", phone_number)

    clean = re.sub(r'[^\d+]', '', raw)
    if not clean.strip('+'):
        raise InvalidRecipientError(f"Phone number has no digits: {phone_number}", phone_number)

    if clean.startswith('+'):
        formatted = clean
    elif clean.startswith('00'):
        formatted = '+' + clean[2:]
    elif clean.startswith(default_country_code):
        formatted = '+' + clean
    elif clean.startswith('0'):
        formatted = f"+{default_country_code}{clean[1:]}"
    elif len(clean) == 9:
        formatted = f"+{default_country_code}{clean}"
    else:
        formatted = '+' + clean

    return f"{WHATSAPP_PREFIX}{formatted}"


class WhatsAppSender:
    """
    WhatsApp message sender using the Twilio API.

    Provider errors are returned as ``NotificationResult`` objects; nothing
    is raised from ``send_message``.
    """

    def __init__(self, account_sid: Optional[str] = None, auth_token: Optional[str] = None,
                 from_number: Optional[str] = None, default_country_code: str = "221",
                 messages_per_second: float = 1.0):
        """
        Initialize WhatsApp sender.

        Args:
            account_sid: Twilio account SID (defaults to env var)
            auth_token: Twilio auth token (defaults to env var)
            from_number: WhatsApp-enabled sender (defaults to env var)
            default_country_code: Country code for national numbers
            messages_per_second: Send rate limit

        Raises:
            ConfigurationError: If credentials are missing or the sender is malformed
        """
        self.account_sid = account_sid or os.getenv('TWILIO_ACCOUNT_SID')
        self.auth_token = auth_token or os.getenv('TWILIO_AUTH_TOKEN')
        self.from_number = from_number or os.getenv('TWILIO_WHATSAPP_FROM', 'whatsapp:+14155238886')
        self.default_country_code = default_country_code

        if not self.account_sid or not self.auth_token:
            raise ConfigurationError("Twilio credentials not found. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN")

        self._validate_from_number()

        self.client = Client(self.account_sid, self.auth_token)

        self.messages_per_second = messages_per_second
        self.last_send_time = 0

        logger.info(f"WhatsApp sender initialized with from_number: {self.from_number}")

    def format_phone_number(self, phone_number: str) -> str:
        """Normalize a number using this sender's country code."""
        return normalize_whatsapp_number(phone_number, self.default_country_code)

    def send_message(self, to_number: str, template: NotificationTemplate) -> NotificationResult:
        """
        Send a WhatsApp message to a single recipient.

        Args:
            to_number: Recipient phone number, raw or normalized
            template: Message content; only the text body is sent

        Returns:
            NotificationResult with delivery status
        """
        try:
            to_number = self.format_phone_number(to_number)
        except InvalidRecipientError as e:
            return NotificationResult(
                channel=NotificationChannel.WHATSAPP,
                status=NotificationStatus.FAILED,
                recipient=str(to_number),
                error_message=str(e)
            )

        self._apply_rate_limit()

        try:
            logger.info(f"Sending WhatsApp message to {to_number}")

            message = self.client.messages.create(
                body=template.text_content,
                from_=self.from_number,
                to=to_number
            )

            logger.info(f"WhatsApp message sent successfully: {message.sid}")

            return NotificationResult(
                channel=NotificationChannel.WHATSAPP,
                status=NotificationStatus.SENT,
                recipient=to_number,
                message_id=message.sid,
                sent_at=datetime.now()
            )

        except TwilioRestException as e:
            error_msg = f"Twilio error: {e.msg} (Code: {e.code})"

            if e.code == 63007:
                error_msg += ". The 'from' number is not WhatsApp-enabled; check TWILIO_WHATSAPP_FROM"
            elif e.code == 63016:
                error_msg += ". The recipient has not opted in or is outside the messaging window"

            logger.error(f"Failed to send WhatsApp message to {to_number}: {error_msg}")

            status = NotificationStatus.RETRYING if e.code in RETRYABLE_TWILIO_CODES else NotificationStatus.FAILED

            return NotificationResult(
                channel=NotificationChannel.WHATSAPP,
                status=status,
                recipient=to_number,
                error_message=error_msg
            )

        except Exception as e:
            error_msg = f"Unexpected error: {str(e)}"
            logger.error(f"Failed to send WhatsApp message to {to_number}: {error_msg}")

            return NotificationResult(
                channel=NotificationChannel.WHATSAPP,
                status=NotificationStatus.FAILED,
                recipient=to_number,
                error_message=error_msg
            )

    def get_account_info(self) -> Optional[Dict[str, Any]]:
        """
        Get Twilio account information for connectivity checks.

        Returns:
            Dictionary with account details or None if error
        """
        try:
            account = self.client.api.accounts(self.account_sid).fetch()

            return {
                'account_sid': account.sid,
                'friendly_name': account.friendly_name,
                'status': account.status,
                'type': account.type
            }

        except Exception as e:
            logger.error(f"Error fetching Twilio account info: {str(e)}")
            return None

    def _apply_rate_limit(self):
        """Apply rate limiting between message sends."""
        current_time = time.time()
        time_since_last = current_time - self.last_send_time
        min_interval = 1.0 / self.messages_per_second

        if time_since_last < min_interval:
            time.sleep(min_interval - time_since_last)

        self.last_send_time = time.time()

    def _validate_from_number(self):
        """
        Validate the WhatsApp from number configuration.

        Raises:
            ConfigurationError: If the from number is not properly formatted
        """
        if not self.from_number.startswith(WHATSAPP_PREFIX):
            raise ConfigurationError(
                f"TWILIO_WHATSAPP_FROM must start with 'whatsapp:' prefix. "
                f"Current value: '{self.from_number}'"
            )

        phone_part = self.from_number[len(WHATSAPP_PREFIX):]
        if not phone_part.startswith('+') or len(phone_part) < 10:
            raise ConfigurationError(
                f"Invalid WhatsApp number format: '{self.from_number}'. "
                f"Use format: 'whatsapp:+1234567890'"
            )
