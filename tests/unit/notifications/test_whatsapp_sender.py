"""
Unit tests for WhatsApp sender.
"""

import pytest
from unittest.mock import Mock, patch
from twilio.base.exceptions import TwilioRestException

from imunia_alerts.notifications.whatsapp_sender import WhatsAppSender, normalize_whatsapp_number
from imunia_alerts.notifications.models import NotificationTemplate, NotificationChannel, NotificationStatus
from imunia_alerts.notifications.exceptions import ConfigurationError, InvalidRecipientError


@pytest.fixture
def mock_twilio_client():
    """Mock Twilio client."""
    mock_client = Mock()
    mock_message = Mock()
    mock_message.sid = "SM_test_message"
    mock_message.status = "queued"
    mock_client.messages.create.return_value = mock_message
    return mock_client


@pytest.fixture
def whatsapp_sender():
    """Create WhatsApp sender with mock credentials."""
    with patch('imunia_alerts.notifications.whatsapp_sender.Client'):
        return WhatsAppSender(
            account_sid='test_sid',
            auth_token='test_token',
            from_number='whatsapp:+14155238886',
            messages_per_second=1000
        )


@pytest.fixture
def sample_template():
    """Sample WhatsApp message template."""
    return NotificationTemplate(text_content="Bonjour Fatou,\nRappel : vaccination de Moussa")


def twilio_error(code: int, status: int, msg: str) -> TwilioRestException:
    error = TwilioRestException(status=status, uri="/Messages", msg=msg)
    error.code = code
    return error


class TestNormalizeWhatsAppNumber:
    """Test phone number normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("+221 77 123 45 67", "whatsapp:+221771234567"),
        ("221771234567", "whatsapp:+221771234567"),
        ("00221771234567", "whatsapp:+221771234567"),
        ("771234567", "whatsapp:+221771234567"),
        ("0771234567", "whatsapp:+221771234567"),
        ("77-123-45-67", "whatsapp:+221771234567"),
        ("whatsapp:+33612345678", "whatsapp:+33612345678"),
        ("33612345678", "whatsapp:+33612345678"),
    ])
    def test_formats(self, raw, expected):
        assert normalize_whatsapp_number(raw) == expected

    def test_other_country_code(self):
        assert normalize_whatsapp_number("0612345678", default_country_code="33") == "whatsapp:+33612345678"

    @pytest.mark.parametrize("raw", ["", "   ", None, "abc"])
    def test_invalid_numbers(self, raw):
        with pytest.raises(InvalidRecipientError):
            normalize_whatsapp_number(raw)


class TestWhatsAppSender:
    """Test WhatsApp sender functionality."""

    def test_initialization_success(self):
        """Test successful initialization."""
        with patch('imunia_alerts.notifications.whatsapp_sender.Client') as mock_client:
            sender = WhatsAppSender(account_sid='test_sid', auth_token='test_token')

        assert sender.account_sid == 'test_sid'
        mock_client.assert_called_once_with('test_sid', 'test_token')

    def test_initialization_from_environment(self):
        with patch.dict('os.environ', {'TWILIO_ACCOUNT_SID': 'env_sid', 'TWILIO_AUTH_TOKEN': 'env_token'}):
            with patch('imunia_alerts.notifications.whatsapp_sender.Client'):
                sender = WhatsAppSender()

        assert sender.account_sid == 'env_sid'
        assert sender.auth_token == 'env_token'

    def test_initialization_missing_credentials(self):
        """Test initialization fails with missing credentials."""
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ConfigurationError, match="Twilio credentials not found"):
                WhatsAppSender()

    def test_initialization_rejects_from_without_prefix(self):
        with patch('imunia_alerts.notifications.whatsapp_sender.Client'):
            with pytest.raises(ConfigurationError, match="must start with 'whatsapp:'"):
                WhatsAppSender(account_sid='sid', auth_token='token', from_number='+14155238886')

    def test_send_message_success(self, whatsapp_sender, sample_template, mock_twilio_client):
        """Test successful message sending."""
        whatsapp_sender.client = mock_twilio_client

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.channel == NotificationChannel.WHATSAPP
        assert result.status == NotificationStatus.SENT
        assert result.recipient == "whatsapp:+221771234567"
        assert result.message_id == "SM_test_message"
        assert result.sent_at is not None

        mock_twilio_client.messages.create.assert_called_once_with(
            body=sample_template.text_content,
            from_="whatsapp:+14155238886",
            to="whatsapp:+221771234567"
        )

    def test_send_message_normalizes_national_number(self, whatsapp_sender, sample_template, mock_twilio_client):
        whatsapp_sender.client = mock_twilio_client

        result = whatsapp_sender.send_message("77 123 45 67", sample_template)

        assert result.recipient == "whatsapp:+221771234567"

    def test_send_message_invalid_number(self, whatsapp_sender, sample_template, mock_twilio_client):
        whatsapp_sender.client = mock_twilio_client

        result = whatsapp_sender.send_message("", sample_template)

        assert result.status == NotificationStatus.FAILED
        mock_twilio_client.messages.create.assert_not_called()

    def test_send_message_twilio_error_retryable(self, whatsapp_sender, sample_template):
        """Test handling of retryable Twilio errors."""
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.messages.create.side_effect = twilio_error(20429, 429, "Rate limit exceeded")

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.status == NotificationStatus.RETRYING
        assert "Rate limit exceeded" in result.error_message

    def test_send_message_twilio_error_permanent(self, whatsapp_sender, sample_template):
        """Test handling of permanent Twilio errors."""
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.messages.create.side_effect = twilio_error(21211, 400, "Invalid 'To' Phone Number")

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.status == NotificationStatus.FAILED
        assert "21211" in result.error_message

    @pytest.mark.parametrize("code", [21610, 21611])
    def test_unreachable_recipient_is_not_retried(self, whatsapp_sender, sample_template, code):
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.messages.create.side_effect = twilio_error(code, 400, "Recipient unreachable")

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.status == NotificationStatus.FAILED

    def test_send_message_not_opted_in_guidance(self, whatsapp_sender, sample_template):
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.messages.create.side_effect = twilio_error(63016, 400, "Outside window")

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.status == NotificationStatus.FAILED
        assert "opted in" in result.error_message

    def test_send_message_unexpected_error(self, whatsapp_sender, sample_template):
        """Test handling of unexpected errors."""
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.messages.create.side_effect = Exception("Network error")

        result = whatsapp_sender.send_message("whatsapp:+221771234567", sample_template)

        assert result.status == NotificationStatus.FAILED
        assert "Network error" in result.error_message

    def test_get_account_info_error(self, whatsapp_sender):
        whatsapp_sender.client = Mock()
        whatsapp_sender.client.api.accounts.return_value.fetch.side_effect = Exception("unauthorized")

        assert whatsapp_sender.get_account_info() is None
