"""
Unit tests for the stock expiration scanner.
"""

import pytest
from unittest.mock import Mock
from datetime import timedelta

from imunia_alerts.jobs.stock_expiration import StockExpirationScanner, expiration_bucket
from imunia_alerts.models.domain import StockLot, Recipient, OwnerScope
from imunia_alerts.models.scan_models import NotificationKey, NotificationKind
from imunia_alerts.notifications.gateway import NotificationGateway
from imunia_alerts.notifications.models import SendResult
from imunia_alerts.storage.exceptions import DataFetchError


@pytest.fixture
def failing_gateway():
    gateway = Mock(spec=NotificationGateway)
    gateway.send.return_value = SendResult.failure("whatsapp: Twilio error", recipient="+221770000001")
    return gateway


def make_scanner(repository, gateway, clock, **kwargs):
    return StockExpirationScanner(repository, gateway, clock=clock, **kwargs)


class TestExpirationBucket:
    """Test threshold bucketing."""

    @pytest.mark.parametrize("days_left,expected", [
        (-1.0, "expired"),
        (0.0, "expired"),
        (0.5, "1d"),
        (1.0, "1d"),
        (2.9, "3d"),
        (10.0, "14d"),
        (30.0, "30d"),
        (30.1, None),
    ])
    def test_buckets(self, days_left, expected):
        assert expiration_bucket(days_left, [1, 3, 7, 14, 30]) == expected


class TestStockExpirationScanner:
    """Test scan runs."""

    def test_thresholds_include_lookahead(self, repository, success_gateway, clock):
        scanner = make_scanner(repository, success_gateway, clock, lookahead_days=10, thresholds=(30, 7, 1))
        assert scanner.thresholds == [1, 7, 10]

    def test_invalid_lookahead(self, repository, success_gateway, clock):
        with pytest.raises(ValueError):
            make_scanner(repository, success_gateway, clock, lookahead_days=0)

    def test_notifies_district_manager(self, repository, success_gateway, clock, district_lot, district_agent):
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, success_gateway, clock).run()

        assert summary.checked == 1
        assert summary.notified == 1
        assert summary.errors == []
        recipient, message = success_gateway.send.call_args.args
        assert recipient == district_agent
        assert message.subject == "Alerte péremption : BCG (dans 10 jours)"
        key = NotificationKey("lot-1", NotificationKind.STOCK_EXPIRATION, "14d:+221770000001")
        assert repository.has_notification(key)
        assert repository.records[key].message_id == "SM123"

    def test_second_run_is_deduplicated(self, repository, success_gateway, clock, district_lot, district_agent):
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)
        scanner = make_scanner(repository, success_gateway, clock)

        scanner.run()
        summary = scanner.run()

        assert summary.checked == 1
        assert summary.notified == 0
        assert summary.skipped == 1
        assert success_gateway.send.call_count == 1

    def test_next_threshold_notifies_again(self, repository, success_gateway, district_lot, district_agent, now):
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        make_scanner(repository, success_gateway, lambda: now).run()
        summary = make_scanner(repository, success_gateway, lambda: now + timedelta(days=4)).run()

        assert summary.notified == 1
        assert NotificationKey("lot-1", NotificationKind.STOCK_EXPIRATION, "7d:+221770000001") in repository.records

    def test_unconfigured_transport_is_not_an_error(self, repository, simulated_gateway, clock,
                                                    district_lot, district_agent):
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, simulated_gateway, clock).run()

        assert summary.checked == 1
        assert summary.notified == 0
        assert summary.errors == []
        assert summary.simulated == 1
        assert repository.records == {}

    def test_lot_without_recipient(self, repository, success_gateway, clock, district_lot, district_agent, now):
        orphan = StockLot("lot-2", "vac-polio", "VPO", OwnerScope.HEALTHCENTER, "hc-404", 40,
                          expiration=now + timedelta(days=2))
        repository.add_lot(district_lot)
        repository.add_lot(orphan)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, success_gateway, clock).run()

        assert summary.checked == 2
        assert summary.notified == 1
        assert summary.to_dict()['errors'] == [{'lot_id': 'lot-2', 'reason': 'No recipient for lot owner'}]

    def test_failed_send_leaves_no_marker(self, repository, failing_gateway, success_gateway, clock,
                                          district_lot, district_agent):
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        failed = make_scanner(repository, failing_gateway, clock).run()

        assert failed.notified == 0
        assert failed.errors[0].lot_id == "lot-1"
        assert failed.errors[0].recipient == "+221770000001"
        assert repository.records == {}

        retried = make_scanner(repository, success_gateway, clock).run()

        assert retried.notified == 1

    def test_gateway_exception_is_recorded(self, repository, clock, district_lot, district_agent):
        gateway = Mock(spec=NotificationGateway)
        gateway.send.side_effect = RuntimeError("socket closed")
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, gateway, clock).run()

        assert summary.notified == 0
        assert summary.errors[0].reason == "Gateway error: socket closed"

    def test_failed_recipient_is_retried_alone(self, repository, clock, district_lot, district_agent):
        backup = Recipient("Moustapha Fall", email="m.fall@example.sn", role="district_agent")
        repository.add_lot(district_lot)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", backup)
        gateway = Mock(spec=NotificationGateway)
        gateway.send.side_effect = [
            SendResult.failure("whatsapp: blocked", recipient=district_agent.phone),
            SendResult(success=True, recipient="m.fall@example.sn", message_id="mg-1"),
        ]

        first = make_scanner(repository, gateway, clock).run()

        assert first.notified == 1
        assert first.errors[0].recipient == "+221770000001"
        assert list(repository.records) == [
            NotificationKey("lot-1", NotificationKind.STOCK_EXPIRATION, "14d:m.fall@example.sn")
        ]

        gateway.send.reset_mock(side_effect=True)
        gateway.send.return_value = SendResult(success=True, recipient="whatsapp:+221770000001", message_id="SM9")

        second = make_scanner(repository, gateway, clock).run()

        assert second.notified == 1
        assert second.errors == []
        gateway.send.assert_called_once()
        assert gateway.send.call_args.args[0] == district_agent
        assert len(repository.records) == 2

        third = make_scanner(repository, gateway, clock).run()

        assert third.skipped == 1
        assert gateway.send.call_count == 1

    def test_lots_beyond_lookahead_are_ignored(self, repository, success_gateway, clock, district_agent, now):
        repository.add_lot(StockLot("lot-far", "v", "BCG", OwnerScope.DISTRICT, "district-7", 10,
                                    expiration=now + timedelta(days=31)))
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, success_gateway, clock).run()

        assert summary.checked == 0
        success_gateway.send.assert_not_called()

    def test_expired_lot_is_alerted(self, repository, success_gateway, clock, district_agent, now):
        repository.add_lot(StockLot("lot-old", "v", "ROR", OwnerScope.DISTRICT, "district-7", 10,
                                    expiration=now - timedelta(days=3)))
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)

        summary = make_scanner(repository, success_gateway, clock).run()

        assert summary.notified == 1
        assert NotificationKey("lot-old", NotificationKind.STOCK_EXPIRATION, "expired:+221770000001") in repository.records
        assert success_gateway.send.call_args.args[1].subject == "Lot expiré : ROR"

    def test_data_fetch_error_propagates(self, success_gateway, clock):
        repository = Mock()
        repository.list_expiring_lots.side_effect = DataFetchError("database unavailable", source="stock_lots")

        with pytest.raises(DataFetchError):
            make_scanner(repository, success_gateway, clock).run()

    def test_unexpected_listing_error_is_wrapped(self, success_gateway, clock):
        repository = Mock()
        repository.list_expiring_lots.side_effect = ConnectionError("refused")

        with pytest.raises(DataFetchError, match="refused"):
            make_scanner(repository, success_gateway, clock).run()
