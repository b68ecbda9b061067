"""
Unit tests for the in-memory repository.
"""

import pytest
from datetime import timedelta

from imunia_alerts.models.domain import (
    StockLot, Appointment, Recipient, OwnerScope, AppointmentStatus, InvalidTransitionError
)
from imunia_alerts.models.scan_models import NotificationKey, NotificationKind, TimeWindow
from imunia_alerts.storage.exceptions import EntityNotFoundError


class TestInMemoryLots:
    """Test lot listing and staff resolution."""

    def test_list_expiring_lots_filters_window_and_quantity(self, repository, now):
        repository.add_lot(StockLot("late", "v", "BCG", OwnerScope.DISTRICT, "d", 10,
                                    expiration=now + timedelta(days=40)))
        repository.add_lot(StockLot("soon", "v", "BCG", OwnerScope.DISTRICT, "d", 10,
                                    expiration=now + timedelta(days=5)))
        repository.add_lot(StockLot("empty", "v", "BCG", OwnerScope.DISTRICT, "d", 0,
                                    expiration=now + timedelta(days=5)))
        repository.add_lot(StockLot("expired", "v", "BCG", OwnerScope.DISTRICT, "d", 10,
                                    expiration=now - timedelta(days=2)))
        repository.add_lot(StockLot("undated", "v", "BCG", OwnerScope.DISTRICT, "d", 10))

        lots = repository.list_expiring_lots(TimeWindow(end=now + timedelta(days=30)))

        assert [lot.id for lot in lots] == ["expired", "soon"]

    def test_list_expiring_lots_with_start(self, repository, now):
        repository.add_lot(StockLot("expired", "v", "BCG", OwnerScope.DISTRICT, "d", 10,
                                    expiration=now - timedelta(days=2)))

        lots = repository.list_expiring_lots(TimeWindow(start=now, end=now + timedelta(days=30)))

        assert lots == []

    def test_resolve_staff_by_scope(self, repository, district_lot, district_agent):
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", district_agent)
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-8", Recipient("Autre", phone="+221770000002"))

        assert repository.resolve_recipients(district_lot) == [district_agent]
        assert repository.resolve_recipient(district_lot) == district_agent

    def test_national_lot_ignores_owner_id(self, repository, now):
        lot = StockLot("lot-n", "v", "BCG", OwnerScope.NATIONAL, "anything", 10, expiration=now)
        manager = Recipient("Directeur PEV", email="pev@sante.gouv.sn")
        repository.add_staff_contact(OwnerScope.NATIONAL, None, manager)

        assert repository.resolve_recipients(lot) == [manager]

    def test_contacts_without_address_are_skipped(self, repository, district_lot):
        repository.add_staff_contact(OwnerScope.DISTRICT, "district-7", Recipient("Sans contact"))

        assert repository.resolve_recipients(district_lot) == []
        assert repository.resolve_recipient(district_lot) is None


class TestInMemoryAppointments:
    """Test appointment listing and status changes."""

    def test_list_due_appointments(self, repository, tomorrow_appointment, now):
        done = Appointment("appt-done", "c2", "Awa", "v", "BCG", now + timedelta(hours=30),
                           status=AppointmentStatus.COMPLETED)
        far = Appointment("appt-far", "c3", "Ali", "v", "BCG", now + timedelta(days=10))
        repository.add_appointment(tomorrow_appointment)
        repository.add_appointment(done)
        repository.add_appointment(far)

        due = repository.list_due_appointments(TimeWindow(start=now, end=now + timedelta(hours=72)))

        assert [appt.id for appt in due] == ["appt-1"]

    def test_listed_appointments_are_copies(self, repository, tomorrow_appointment, now):
        repository.add_appointment(tomorrow_appointment)

        listed = repository.list_due_appointments(TimeWindow(end=now + timedelta(hours=72)))[0]
        listed.status = AppointmentStatus.MISSED

        assert repository.appointments["appt-1"].status == AppointmentStatus.PENDING

    def test_parent_is_recipient(self, repository, tomorrow_appointment):
        recipient = repository.resolve_recipient(tomorrow_appointment)

        assert recipient.name == "Fatou Ndiaye"
        assert recipient.phone == "771234567"
        assert recipient.role == "parent"

    def test_parent_without_contact(self, repository, now):
        appointment = Appointment("a", "c", "Awa", "v", "BCG", now, parent_name="Parent")
        assert repository.resolve_recipients(appointment) == []

    def test_mark_appointment_notified(self, repository, tomorrow_appointment):
        repository.add_appointment(tomorrow_appointment)

        updated = repository.mark_appointment_notified("appt-1")

        assert updated.status == AppointmentStatus.NOTIFIED
        with pytest.raises(InvalidTransitionError):
            repository.mark_appointment_notified("appt-1")

    def test_mark_unknown_appointment(self, repository):
        with pytest.raises(EntityNotFoundError):
            repository.mark_appointment_notified("missing")


class TestInMemoryNotificationRecords:
    """Test idempotency markers."""

    def test_mark_and_check(self, repository):
        key = NotificationKey("lot-1", NotificationKind.STOCK_EXPIRATION, "14d")

        assert not repository.has_notification(key)
        record = repository.mark_notified(key, recipient="whatsapp:+221770000001", channel="whatsapp")

        assert repository.has_notification(key)
        assert record.entity_id == "lot-1"
        assert record.window_bucket == "14d"

    def test_mark_is_idempotent(self, repository):
        key = NotificationKey("lot-1", NotificationKind.STOCK_EXPIRATION, "14d")

        first = repository.mark_notified(key, message_id="SM1")
        second = repository.mark_notified(key, message_id="SM2")

        assert second is first
        assert second.message_id == "SM1"
        assert len(repository.records) == 1
