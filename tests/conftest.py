"""
Shared fixtures for the alert service tests.
"""

import pytest
from unittest.mock import Mock
from datetime import datetime, timedelta, timezone

from imunia_alerts.config.settings import NotificationConfig
from imunia_alerts.models.domain import StockLot, Appointment, Recipient, OwnerScope
from imunia_alerts.notifications.gateway import NotificationGateway
from imunia_alerts.notifications.models import (
    NotificationResult, NotificationChannel, NotificationStatus, SendResult
)
from imunia_alerts.storage.memory import InMemoryRepository
from imunia_alerts.utils.error_handler import reset_error_handler


NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed reference time for scans."""
    return NOW


@pytest.fixture
def clock():
    """Clock returning the fixed reference time."""
    return lambda: NOW


@pytest.fixture(autouse=True)
def isolated_error_handler():
    """Give every test a fresh global error handler."""
    reset_error_handler()
    yield
    reset_error_handler()


@pytest.fixture
def notification_config():
    """Notification settings without credentials and with fast retries."""
    return NotificationConfig(
        whatsapp_enabled=True,
        email_enabled=True,
        max_retries=2,
        retry_delay_seconds=0,
        enable_fallback=True
    )


@pytest.fixture
def district_lot():
    """Lot held by a district, expiring in 10 days."""
    return StockLot(
        id="lot-1",
        vaccine_id="vac-bcg",
        vaccine_name="BCG",
        owner_type=OwnerScope.DISTRICT,
        owner_id="district-7",
        owner_name="District de Pikine",
        quantity=120,
        expiration=NOW + timedelta(days=10)
    )


@pytest.fixture
def district_agent():
    """Staff contact for the district."""
    return Recipient(name="Awa Diop", phone="+221770000001", email="awa.diop@example.sn", role="district_agent")


@pytest.fixture
def tomorrow_appointment():
    """Pending appointment 30 hours from now."""
    return Appointment(
        id="appt-1",
        child_id="child-1",
        child_name="Moussa",
        vaccine_id="vac-penta",
        vaccine_name="Pentavalent",
        scheduled_for=NOW + timedelta(hours=30),
        parent_name="Fatou Ndiaye",
        parent_phone="771234567",
        parent_email="fatou@example.sn",
        health_center_name="Centre de santé de Yeumbeul",
        dose=2
    )


@pytest.fixture
def repository():
    """Empty in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def success_gateway():
    """Gateway double that always delivers over WhatsApp."""
    gateway = Mock(spec=NotificationGateway)
    gateway.send.side_effect = lambda recipient, message: SendResult(
        success=True,
        channel=NotificationChannel.WHATSAPP,
        recipient=f"whatsapp:{recipient.phone}",
        message_id="SM123",
        attempts=[NotificationResult(
            channel=NotificationChannel.WHATSAPP,
            status=NotificationStatus.SENT,
            recipient=f"whatsapp:{recipient.phone}",
            message_id="SM123"
        )]
    )
    return gateway


@pytest.fixture
def simulated_gateway(notification_config):
    """Real gateway with no transport configured."""
    return NotificationGateway(notification_config, sleep=lambda seconds: None)
