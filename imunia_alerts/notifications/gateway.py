"""
Notification gateway: a single ``send`` capability over WhatsApp and email.
"""

import logging
from typing import List, Optional, Dict, Any, Callable, Tuple
from datetime import datetime
import time

from imunia_alerts.config.settings import NotificationConfig
from imunia_alerts.models.domain import Recipient
from imunia_alerts.notifications.models import (
    NotificationResult, NotificationChannel, NotificationStatus, NotificationTemplate, SendResult
)
from imunia_alerts.notifications.whatsapp_sender import WhatsAppSender, normalize_whatsapp_number
from imunia_alerts.notifications.email_sender import EmailSender, normalize_email
from imunia_alerts.notifications.circuit_breaker import CircuitBreaker
from imunia_alerts.notifications.exceptions import ConfigurationError, InvalidRecipientError, CircuitOpenError


logger = logging.getLogger(__name__)


class NotificationGateway:
    """
    Sends one message to one recipient over the best available channel.

    WhatsApp is preferred when the recipient has a phone number; email is
    used otherwise, or as a fallback when WhatsApp fails. ``send`` never
    raises. When no configured transport can reach the recipient the result
    is ``simulated`` and nothing is delivered.
    """

    HISTORY_LIMIT = 1000

    def __init__(self, config: Optional[NotificationConfig] = None,
                 whatsapp_sender: Optional[WhatsAppSender] = None,
                 email_sender: Optional[EmailSender] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the gateway.

        Args:
            config: Delivery settings (retries, fallback, circuit breakers)
            whatsapp_sender: Configured WhatsApp sender, or None if unavailable
            email_sender: Configured email sender, or None if unavailable
            sleep: Wait function used between retries
        """
        self.config = config or NotificationConfig()
        self.whatsapp_sender = whatsapp_sender
        self.email_sender = email_sender
        self._sleep = sleep

        self.whatsapp_circuit = CircuitBreaker(
            name="whatsapp",
            failure_threshold=self.config.whatsapp_failure_threshold,
            timeout_seconds=self.config.whatsapp_timeout_seconds
        )

        self.email_circuit = CircuitBreaker(
            name="email",
            failure_threshold=self.config.email_failure_threshold,
            timeout_seconds=self.config.email_timeout_seconds
        )

        self.delivery_history: List[NotificationResult] = []

        if self.is_simulated:
            logger.warning("No notification transport configured - sends will be simulated")
        else:
            logger.info(f"Notification gateway initialized with channels: {', '.join(self.available_channels)}")

    @classmethod
    def from_config(cls, config: NotificationConfig) -> 'NotificationGateway':
        """
        Build senders from configuration; a sender that fails to initialize
        leaves its channel unavailable.

        Args:
            config: Notification settings

        Returns:
            Configured NotificationGateway
        """
        whatsapp_sender = None
        email_sender = None

        if config.whatsapp_configured:
            try:
                whatsapp_sender = WhatsAppSender(
                    account_sid=config.twilio_account_sid,
                    auth_token=config.twilio_auth_token,
                    from_number=config.twilio_whatsapp_from,
                    default_country_code=config.default_country_code
                )
            except ConfigurationError as e:
                logger.warning(f"Failed to initialize WhatsApp sender: {e}")

        if config.email_configured:
            try:
                email_sender = EmailSender(
                    api_key=config.mailgun_api_key,
                    domain=config.mailgun_domain,
                    from_email=config.email_from,
                    from_name=config.email_from_name
                )
            except ConfigurationError as e:
                logger.warning(f"Failed to initialize email sender: {e}")

        return cls(config, whatsapp_sender=whatsapp_sender, email_sender=email_sender)

    @property
    def is_simulated(self) -> bool:
        """True when no transport is configured at all."""
        return self.whatsapp_sender is None and self.email_sender is None

    @property
    def available_channels(self) -> List[str]:
        channels = []
        if self.whatsapp_sender is not None:
            channels.append(NotificationChannel.WHATSAPP.value)
        if self.email_sender is not None:
            channels.append(NotificationChannel.EMAIL.value)
        return channels

    def send(self, recipient: Recipient, message: NotificationTemplate) -> SendResult:
        """
        Send ``message`` to ``recipient``.

        Args:
            recipient: Resolved contact
            message: Content to deliver

        Returns:
            SendResult; never raises
        """
        try:
            return self._send(recipient, message)
        except Exception as e:
            logger.exception(f"Unexpected error sending notification to {getattr(recipient, 'name', recipient)}")
            return SendResult.failure(f"Unexpected gateway error: {e}")

    def _send(self, recipient: Recipient, message: NotificationTemplate) -> SendResult:
        if recipient is None or not recipient.has_contact:
            name = recipient.name if recipient else None
            logger.warning(f"Recipient {name} has no phone number or email")
            return SendResult.failure("Recipient has no contact", recipient=name)

        routes = self._plan_routes(recipient)
        if not routes:
            logger.info(
                f"No configured transport for {recipient.display_address} - notification simulated",
                extra={'recipient': recipient.display_address, 'subject': message.subject}
            )
            return SendResult.simulated_result("No notification transport configured", recipient.display_address)

        if not self.config.enable_fallback:
            routes = routes[:1]

        attempts: List[NotificationResult] = []
        for channel, address in routes:
            result = self._deliver(channel, address, message)
            attempts.append(result)
            self.delivery_history.append(result)
            if len(self.delivery_history) > self.HISTORY_LIMIT:
                self.delivery_history = self.delivery_history[-self.HISTORY_LIMIT:]

            if result.is_success:
                return SendResult(
                    success=True,
                    channel=channel,
                    recipient=result.recipient,
                    message_id=result.message_id,
                    attempts=attempts
                )

            logger.warning(f"{channel.value} delivery to {result.recipient} failed: {result.error_message}")

        error = "; ".join(f"{r.channel.value}: {r.error_message}" for r in attempts)
        return SendResult.failure(error, recipient=recipient.display_address, attempts=attempts)

    def _plan_routes(self, recipient: Recipient) -> List[Tuple[NotificationChannel, str]]:
        """Channels, in preference order, that can reach this recipient."""
        routes = []
        if recipient.phone and recipient.phone.strip() and self.whatsapp_sender is not None:
            routes.append((NotificationChannel.WHATSAPP, recipient.phone))
        if recipient.email and recipient.email.strip() and self.email_sender is not None:
            routes.append((NotificationChannel.EMAIL, recipient.email))
        return routes

    def _deliver(self, channel: NotificationChannel, address: str,
                 message: NotificationTemplate) -> NotificationResult:
        """Normalize the address, then send with retries."""
        try:
            if channel == NotificationChannel.WHATSAPP:
                address = normalize_whatsapp_number(address, self.config.default_country_code)
            else:
                address = normalize_email(address)
        except InvalidRecipientError as e:
            return NotificationResult(
                channel=channel,
                status=NotificationStatus.FAILED,
                recipient=str(address),
                error_message=str(e),
                attempt_count=0
            )

        return self._send_single_with_retry(channel, address, message)

    def _send_single_with_retry(self, channel: NotificationChannel, recipient: str,
                                template: NotificationTemplate) -> NotificationResult:
        """
        Send through one channel, retrying transient provider errors.

        Args:
            channel: Notification channel
            recipient: Normalized address
            template: Message content

        Returns:
            Final notification result
        """
        if channel == NotificationChannel.WHATSAPP:
            sender, circuit = self.whatsapp_sender, self.whatsapp_circuit
        else:
            sender, circuit = self.email_sender, self.email_circuit

        last_result = None

        for attempt in range(1, self.config.max_retries + 1):
            try:
                result = circuit.call(sender.send_message, recipient, template)
            except CircuitOpenError as e:
                return NotificationResult(
                    channel=channel,
                    status=NotificationStatus.FAILED,
                    recipient=recipient,
                    error_message=str(e),
                    attempt_count=attempt
                )
            except Exception as e:
                logger.error(f"Error sending {channel.value} to {recipient}: {str(e)}")
                result = NotificationResult(
                    channel=channel,
                    status=NotificationStatus.RETRYING,
                    recipient=recipient,
                    error_message=str(e)
                )
            else:
                if result.is_success:
                    circuit.record_success()
                else:
                    circuit.record_failure()

            result.attempt_count = attempt

            # Success or permanent failure
            if result.is_success or result.is_failure:
                return result

            last_result = result
            if attempt < self.config.max_retries:
                logger.info(f"Retrying {channel.value} to {recipient} (attempt {attempt + 1})")
                self._sleep(self.config.retry_delay_seconds)

        last_result.status = NotificationStatus.FAILED
        return last_result

    def get_delivery_status(self) -> Dict[str, Any]:
        """
        Get delivery statistics since start.

        Returns:
            Dictionary with delivery statistics
        """
        total = len(self.delivery_history)
        successful = sum(1 for r in self.delivery_history if r.is_success)
        failed = sum(1 for r in self.delivery_history if r.is_failure)

        by_channel = {}
        for channel in NotificationChannel:
            channel_results = [r for r in self.delivery_history if r.channel == channel]
            if channel_results:
                by_channel[channel.value] = {
                    "total": len(channel_results),
                    "successful": sum(1 for r in channel_results if r.is_success),
                    "failed": sum(1 for r in channel_results if r.is_failure)
                }

        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate": successful / total if total > 0 else 0,
            "by_channel": by_channel,
            "last_updated": datetime.now().isoformat()
        }

    def test_connectivity(self) -> Dict[str, bool]:
        """
        Test connectivity to each configured provider.

        Returns:
            Dictionary with connectivity status for each channel
        """
        results = {}

        for channel, sender in ((NotificationChannel.WHATSAPP, self.whatsapp_sender),
                                (NotificationChannel.EMAIL, self.email_sender)):
            if sender is None:
                results[channel.value] = False
                continue
            try:
                results[channel.value] = sender.get_account_info() is not None
            except Exception as e:
                logger.error(f"{channel.value} connectivity test failed: {e}")
                results[channel.value] = False

        return results

    def is_healthy(self) -> bool:
        """
        Check if at least one channel is reachable.

        Returns:
            True if any configured provider answers
        """
        return any(self.test_connectivity().values())

    def get_status(self) -> Dict[str, Any]:
        """Channel configuration and circuit breaker state."""
        return {
            "simulated": self.is_simulated,
            "channels": self.available_channels,
            "circuits": {
                "whatsapp": self.whatsapp_circuit.get_status(),
                "email": self.email_circuit.get_status()
            },
            "deliveries": self.get_delivery_status()
        }
