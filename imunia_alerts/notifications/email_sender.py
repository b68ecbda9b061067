"""
Email notification sender using the Mailgun HTTP API.
"""

import os
import re
import logging
from typing import Optional, Dict, Any
from datetime import datetime
import time

import requests

from imunia_alerts.notifications.exceptions import ConfigurationError
from imunia_alerts.notifications.models import (
    NotificationResult, NotificationChannel, NotificationStatus, NotificationTemplate
)


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = [429, 500, 502, 503, 504]

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address."""
    return (email or '').strip().lower()


class EmailSender:
    """
    Email sender using the Mailgun API.

    Sends plain text with an optional HTML alternative. Provider errors are
    returned as ``NotificationResult`` objects.
    """

    def __init__(self, api_key: Optional[str] = None, domain: Optional[str] = None,
                 from_email: Optional[str] = None, from_name: str = "Imunia",
                 messages_per_second: float = 5.0, timeout: int = 30):
        """
        Initialize email sender.

        Args:
            api_key: Mailgun API key (defaults to env var)
            domain: Mailgun sending domain (defaults to env var)
            from_email: Sender address (defaults to env var)
            from_name: Sender display name
            messages_per_second: Send rate limit
            timeout: HTTP timeout in seconds

        Raises:
            ConfigurationError: If the API key, domain or sender is missing
        """
        self.api_key = api_key or os.getenv('MAILGUN_API_KEY')
        self.domain = domain or os.getenv('MAILGUN_DOMAIN')
        self.from_email = from_email or os.getenv('EMAIL_FROM')
        self.from_name = from_name
        self.timeout = timeout

        if not self.api_key:
            raise ConfigurationError("Mailgun API key not found. Set MAILGUN_API_KEY")
        if not self.domain:
            raise ConfigurationError("Mailgun domain not found. Set MAILGUN_DOMAIN")
        if not self.from_email:
            raise ConfigurationError("Sender address not found. Set EMAIL_FROM")

        self.base_url = f"https://api.mailgun.net/v3/{self.domain}/messages"
        self.auth = ('api', self.api_key)

        self.messages_per_second = messages_per_second
        self.last_send_time = 0

        logger.info("Email sender initialized with Mailgun")

    def validate_email(self, email: str) -> bool:
        """Check basic email address format."""
        return bool(EMAIL_PATTERN.match(normalize_email(email)))

    def send_email(self, to_email: str, template: NotificationTemplate) -> NotificationResult:
        """
        Send an email to a single recipient.

        Args:
            to_email: Recipient email address
            template: Subject, text and optional HTML content

        Returns:
            NotificationResult with delivery status
        """
        to_email = normalize_email(to_email)
        if not self.validate_email(to_email):
            return NotificationResult(
                channel=NotificationChannel.EMAIL,
                status=NotificationStatus.FAILED,
                recipient=to_email,
                error_message=f"Invalid email address: '{to_email}'"
            )

        self._apply_rate_limit()

        try:
            logger.info(f"Sending email to {to_email}")

            data = {
                'from': f"{self.from_name} <{self.from_email}>",
                'to': to_email,
                'subject': template.subject or "Imunia",
                'text': template.text_content
            }

            if template.html_content:
                data['html'] = template.html_content

            response = requests.post(
                self.base_url,
                auth=self.auth,
                data=data,
                timeout=self.timeout
            )

            if response.status_code == 200:
                logger.info(f"Email sent successfully to {to_email}")

                message_id = None
                try:
                    message_id = response.json().get('id')
                except ValueError:
                    logger.debug("Mailgun response body is not JSON")

                return NotificationResult(
                    channel=NotificationChannel.EMAIL,
                    status=NotificationStatus.SENT,
                    recipient=to_email,
                    message_id=message_id,
                    sent_at=datetime.now()
                )

            error_msg = f"Mailgun HTTP error: {response.status_code}"
            try:
                error_data = response.json()
                if 'message' in error_data:
                    error_msg += f" - {error_data['message']}"
            except ValueError:
                error_msg += f" - {response.text}"

            logger.error(f"Failed to send email to {to_email}: {error_msg}")

            status = (NotificationStatus.RETRYING
                      if response.status_code in RETRYABLE_STATUS_CODES
                      else NotificationStatus.FAILED)

            return NotificationResult(
                channel=NotificationChannel.EMAIL,
                status=status,
                recipient=to_email,
                error_message=error_msg
            )

        except requests.exceptions.RequestException as e:
            error_msg = f"Mailgun request error: {str(e)}"
            logger.error(f"Failed to send email to {to_email}: {error_msg}")

            # Network errors are retryable
            return NotificationResult(
                channel=NotificationChannel.EMAIL,
                status=NotificationStatus.RETRYING,
                recipient=to_email,
                error_message=error_msg
            )

    def send_message(self, to_email: str, template: NotificationTemplate) -> NotificationResult:
        """Alias used by the gateway so both senders share one call shape."""
        return self.send_email(to_email, template)

    def get_account_info(self) -> Optional[Dict[str, Any]]:
        """
        Check the Mailgun domain for connectivity checks.

        Returns:
            Dictionary with domain details or None if error
        """
        try:
            response = requests.get(
                f"https://api.mailgun.net/v3/domains/{self.domain}",
                auth=self.auth,
                timeout=10
            )

            if response.status_code != 200:
                logger.warning(f"Mailgun domain check returned {response.status_code}")
                return None

            domain_data = response.json().get('domain', {})
            return {
                'domain': self.domain,
                'domain_verified': domain_data.get('state') == 'active',
                'from_email': self.from_email,
                'service': 'Mailgun'
            }

        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching Mailgun account info: {str(e)}")
            return None

    def _apply_rate_limit(self):
        """Apply rate limiting between message sends."""
        current_time = time.time()
        time_since_last = current_time - self.last_send_time
        min_interval = 1.0 / self.messages_per_second

        if time_since_last < min_interval:
            time.sleep(min_interval - time_since_last)

        self.last_send_time = time.time()
