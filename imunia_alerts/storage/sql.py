"""
SQLAlchemy repository over the vaccination database.

Datetimes are stored as naive UTC so comparisons behave the same on SQLite
and PostgreSQL.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import (
    create_engine, select, text, update, Column, String, Integer, DateTime, Boolean, Index, UniqueConstraint
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from imunia_alerts.models.domain import (
    StockLot, Appointment, Recipient, OwnerScope, AppointmentStatus, to_utc
)
from imunia_alerts.models.scan_models import (
    NotificationKey, NotificationKind, NotificationRecord, TimeWindow
)
from imunia_alerts.storage.exceptions import DataFetchError, EntityNotFoundError
from imunia_alerts.storage.repository import AlertRepository
from imunia_alerts.utils.error_handler import ErrorSeverity, handle_errors


logger = logging.getLogger(__name__)

Base = declarative_base()


def _utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StockLotRow(Base):
    __tablename__ = "stock_lots"

    id = Column(String, primary_key=True)
    vaccine_id = Column(String, nullable=False, index=True)
    vaccine_name = Column(String, nullable=False)
    owner_type = Column(String, nullable=False)
    owner_id = Column(String, nullable=True)
    owner_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    expiration = Column(DateTime, nullable=True, index=True)

    __table_args__ = (
        Index("ix_stock_lots_owner", "owner_type", "owner_id"),
    )


class AppointmentRow(Base):
    __tablename__ = "appointments"

    id = Column(String, primary_key=True)
    child_id = Column(String, nullable=False, index=True)
    child_name = Column(String, nullable=False)
    parent_name = Column(String, nullable=True)
    parent_phone = Column(String, nullable=True)
    parent_email = Column(String, nullable=True)
    vaccine_id = Column(String, nullable=False)
    vaccine_name = Column(String, nullable=False)
    dose = Column(Integer, nullable=True)
    health_center_name = Column(String, nullable=True)
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class StaffContactRow(Base):
    __tablename__ = "staff_contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope = Column(String, nullable=False)
    owner_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    role = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_staff_contacts_scope_owner", "scope", "owner_id"),
    )


class NotificationRecordRow(Base):
    __tablename__ = "notification_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    window_bucket = Column(String, nullable=False)
    recipient = Column(String, nullable=True)
    channel = Column(String, nullable=True)
    message_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("entity_id", "kind", "window_bucket", name="uq_notification_key"),
    )


def _to_lot(row: StockLotRow) -> StockLot:
    return StockLot(
        id=row.id,
        vaccine_id=row.vaccine_id,
        vaccine_name=row.vaccine_name,
        owner_type=OwnerScope(row.owner_type),
        owner_id=row.owner_id,
        owner_name=row.owner_name,
        quantity=row.quantity,
        expiration=to_utc(row.expiration)
    )


def _to_appointment(row: AppointmentRow) -> Appointment:
    return Appointment(
        id=row.id,
        child_id=row.child_id,
        child_name=row.child_name,
        parent_name=row.parent_name,
        parent_phone=row.parent_phone,
        parent_email=row.parent_email,
        vaccine_id=row.vaccine_id,
        vaccine_name=row.vaccine_name,
        dose=row.dose,
        health_center_name=row.health_center_name,
        scheduled_for=to_utc(row.scheduled_for),
        status=AppointmentStatus(row.status)
    )


def _convert_rows(rows, converter, entity_type: str) -> list:
    """Convert rows one by one, logging and skipping malformed ones."""
    converted = []
    for row in rows:
        try:
            converted.append(converter(row))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed {entity_type} {row.id}: {e}",
                           extra={'entity_type': entity_type, 'entity_id': row.id})
    return converted


def _to_record(row: NotificationRecordRow) -> NotificationRecord:
    return NotificationRecord(
        key=NotificationKey(row.entity_id, NotificationKind(row.kind), row.window_bucket),
        recipient=row.recipient,
        channel=row.channel,
        message_id=row.message_id,
        created_at=to_utc(row.created_at)
    )


class SqlAlertRepository(AlertRepository):
    """``AlertRepository`` backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> 'SqlAlertRepository':
        """
        Create a repository from a database URL.

        Args:
            url: SQLAlchemy database URL
            echo: Echo SQL statements

        Returns:
            SqlAlertRepository instance
        """
        return cls(create_engine(url, echo=echo))

    @handle_errors("storage.schema", severity=ErrorSeverity.CRITICAL)
    def create_schema(self) -> None:
        """Create missing tables."""
        Base.metadata.create_all(self.engine)
        logger.info("Database schema ready")

    def add_lot(self, lot: StockLot) -> StockLot:
        with self.session_factory() as db:
            db.merge(StockLotRow(
                id=lot.id,
                vaccine_id=lot.vaccine_id,
                vaccine_name=lot.vaccine_name,
                owner_type=lot.owner_type.value,
                owner_id=lot.owner_id,
                owner_name=lot.owner_name,
                quantity=lot.quantity,
                expiration=_utc_naive(lot.expiration_at)
            ))
            db.commit()
        return lot

    def add_appointment(self, appointment: Appointment) -> Appointment:
        with self.session_factory() as db:
            db.merge(AppointmentRow(
                id=appointment.id,
                child_id=appointment.child_id,
                child_name=appointment.child_name,
                parent_name=appointment.parent_name,
                parent_phone=appointment.parent_phone,
                parent_email=appointment.parent_email,
                vaccine_id=appointment.vaccine_id,
                vaccine_name=appointment.vaccine_name,
                dose=appointment.dose,
                health_center_name=appointment.health_center_name,
                scheduled_for=_utc_naive(appointment.scheduled_at),
                status=appointment.status.value
            ))
            db.commit()
        return appointment

    def add_staff_contact(self, scope: OwnerScope, owner_id: Optional[str], recipient: Recipient) -> None:
        with self.session_factory() as db:
            db.add(StaffContactRow(
                scope=scope.value,
                owner_id=None if scope == OwnerScope.NATIONAL else owner_id,
                name=recipient.name,
                phone=recipient.phone,
                email=recipient.email,
                role=recipient.role
            ))
            db.commit()

    def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        with self.session_factory() as db:
            row = db.get(AppointmentRow, appointment_id)
            return _to_appointment(row) if row else None

    def list_expiring_lots(self, window: TimeWindow) -> List[StockLot]:
        stmt = (
            select(StockLotRow)
            .where(StockLotRow.quantity > 0)
            .where(StockLotRow.expiration.is_not(None))
            .where(StockLotRow.expiration <= _utc_naive(window.end))
            .order_by(StockLotRow.expiration.asc())
        )
        if window.start is not None:
            stmt = stmt.where(StockLotRow.expiration >= _utc_naive(window.start))

        try:
            with self.session_factory() as db:
                return _convert_rows(db.execute(stmt).scalars(), _to_lot, "stock lot")
        except SQLAlchemyError as e:
            raise DataFetchError(f"Failed to list expiring lots: {e}", source="stock_lots") from e

    def list_due_appointments(self, window: TimeWindow) -> List[Appointment]:
        stmt = (
            select(AppointmentRow)
            .where(AppointmentRow.status == AppointmentStatus.PENDING.value)
            .where(AppointmentRow.scheduled_for <= _utc_naive(window.end))
            .order_by(AppointmentRow.scheduled_for.asc())
        )
        if window.start is not None:
            stmt = stmt.where(AppointmentRow.scheduled_for >= _utc_naive(window.start))

        try:
            with self.session_factory() as db:
                return _convert_rows(db.execute(stmt).scalars(), _to_appointment, "appointment")
        except SQLAlchemyError as e:
            raise DataFetchError(f"Failed to list due appointments: {e}", source="appointments") from e

    def resolve_recipients(self, entity: Union[StockLot, Appointment]) -> List[Recipient]:
        if isinstance(entity, Appointment):
            parent = Recipient(
                name=entity.parent_name or "",
                phone=entity.parent_phone,
                email=entity.parent_email,
                role="parent"
            )
            return [parent] if parent.has_contact else []

        stmt = (
            select(StaffContactRow)
            .where(StaffContactRow.scope == entity.owner_type.value)
            .where(StaffContactRow.active.is_(True))
            .order_by(StaffContactRow.id.asc())
        )
        if entity.owner_type != OwnerScope.NATIONAL:
            stmt = stmt.where(StaffContactRow.owner_id == entity.owner_id)

        with self.session_factory() as db:
            rows = list(db.execute(stmt).scalars())

        recipients = [
            Recipient(name=row.name, phone=row.phone, email=row.email, role=row.role)
            for row in rows
        ]
        return [recipient for recipient in recipients if recipient.has_contact]

    def has_notification(self, key: NotificationKey) -> bool:
        stmt = (
            select(NotificationRecordRow.id)
            .where(NotificationRecordRow.entity_id == key.entity_id)
            .where(NotificationRecordRow.kind == key.kind.value)
            .where(NotificationRecordRow.window_bucket == key.window_bucket)
            .limit(1)
        )
        with self.session_factory() as db:
            return db.execute(stmt).first() is not None

    def get_notification(self, key: NotificationKey) -> Optional[NotificationRecord]:
        stmt = (
            select(NotificationRecordRow)
            .where(NotificationRecordRow.entity_id == key.entity_id)
            .where(NotificationRecordRow.kind == key.kind.value)
            .where(NotificationRecordRow.window_bucket == key.window_bucket)
        )
        with self.session_factory() as db:
            row = db.execute(stmt).scalars().first()
            return _to_record(row) if row else None

    def mark_notified(self, key: NotificationKey, recipient: Optional[str] = None,
                      channel: Optional[str] = None, message_id: Optional[str] = None) -> NotificationRecord:
        row = NotificationRecordRow(
            entity_id=key.entity_id,
            kind=key.kind.value,
            window_bucket=key.window_bucket,
            recipient=recipient,
            channel=channel,
            message_id=message_id
        )
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.debug(f"Notification marker {key} already exists")
                return self.get_notification(key)
            return _to_record(row)

    def mark_appointment_notified(self, appointment_id: str) -> Appointment:
        with self.session_factory() as db:
            row = db.get(AppointmentRow, appointment_id)
            if row is None:
                raise EntityNotFoundError("appointment", appointment_id)

            appointment = _to_appointment(row)
            appointment.transition_to(AppointmentStatus.NOTIFIED)

            db.execute(
                update(AppointmentRow)
                .where(AppointmentRow.id == appointment_id)
                .where(AppointmentRow.status == AppointmentStatus.PENDING.value)
                .values(status=AppointmentStatus.NOTIFIED.value, updated_at=_utcnow())
            )
            db.commit()
            return appointment

    def is_healthy(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
