"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the store shared by both
pipelines and provides conversion methods between ORM and domain models.
Timestamps are stored as fixed-width ISO 8601 UTC strings so that string
comparison matches chronological order on every backend.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    inspect,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from regnotify.domain.models import (
    InsuranceAlert,
    NotificationLogEntry,
    NotificationQueueItem,
    Plate,
    PlateAlert,
    PlateAssignment,
    Registration,
    RentalBooking,
    RentalInsurance,
    Vehicle,
)

logger = logging.getLogger(__name__)

Base = declarative_base()

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class RegistrationModel(Base):
    """ORM model for registrations table."""

    __tablename__ = "registrations"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(64), nullable=True)
    access_token = Column(String(128), nullable=False)

    vehicle_year = Column(Integer, nullable=True)
    vehicle_make = Column(String(64), nullable=True)
    vehicle_model = Column(String(64), nullable=True)
    vin = Column(String(17), nullable=True)

    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    customer_email = Column(String(255), nullable=True)
    notification_pref = Column(String(10), nullable=False, default="both")

    current_stage = Column(String(32), nullable=False)
    rejection_notes = Column(Text, nullable=True)

    created_at = Column(String(50), nullable=True)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (Index("idx_registrations_order", "order_id"),)

    def to_domain(self) -> Registration:
        return Registration(
            id=self.id,
            order_id=self.order_id,
            access_token=self.access_token,
            vehicle_year=self.vehicle_year,
            vehicle_make=self.vehicle_make,
            vehicle_model=self.vehicle_model,
            vin=self.vin,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_email=self.customer_email,
            notification_pref=self.notification_pref or "both",
            current_stage=self.current_stage,
            rejection_notes=self.rejection_notes,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, registration: Registration) -> "RegistrationModel":
        return cls(
            id=registration.id,
            order_id=registration.order_id,
            access_token=registration.access_token,
            vehicle_year=registration.vehicle_year,
            vehicle_make=registration.vehicle_make,
            vehicle_model=registration.vehicle_model,
            vin=registration.vin,
            customer_name=registration.customer_name,
            customer_phone=registration.customer_phone,
            customer_email=registration.customer_email,
            notification_pref=registration.notification_pref.value,
            current_stage=registration.current_stage.value,
            rejection_notes=registration.rejection_notes,
            created_at=_format_datetime(registration.created_at),
            updated_at=_format_datetime(registration.updated_at),
        )


class NotificationQueueModel(Base):
    """ORM model for notification_queue table.

    ``registration_id`` deliberately has no foreign key: a dangling reference
    is a per-item data problem the processor reports, not a write failure.
    """

    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True)
    registration_id = Column(String(36), nullable=True)
    old_stage = Column(String(32), nullable=True)
    new_stage = Column(String(32), nullable=False)
    send_after = Column(String(50), nullable=False)
    notify_customer = Column(Boolean, nullable=False, default=True)
    sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(String(50), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_queue_ready", "sent", "notify_customer", "send_after"),
        Index("idx_queue_registration", "registration_id"),
    )

    def to_domain(self) -> NotificationQueueItem:
        return NotificationQueueItem(
            id=self.id,
            registration_id=self.registration_id,
            old_stage=self.old_stage,
            new_stage=self.new_stage,
            send_after=_parse_datetime(self.send_after),
            notify_customer=bool(self.notify_customer),
            sent=bool(self.sent),
            sent_at=_parse_datetime(self.sent_at),
            error=self.error,
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, item: NotificationQueueItem) -> "NotificationQueueModel":
        return cls(
            id=item.id,
            registration_id=item.registration_id,
            old_stage=item.old_stage.value if item.old_stage else None,
            new_stage=item.new_stage.value,
            send_after=_format_datetime(item.send_after),
            notify_customer=item.notify_customer,
            sent=item.sent,
            sent_at=_format_datetime(item.sent_at),
            error=item.error,
            created_at=_format_datetime(item.created_at),
        )


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True)
    year = Column(Integer, nullable=True)
    make = Column(String(64), nullable=True)
    model = Column(String(64), nullable=True)

    def to_domain(self) -> Vehicle:
        return Vehicle(id=self.id, year=self.year, make=self.make, model=self.model)

    @classmethod
    def from_domain(cls, vehicle: Vehicle) -> "VehicleModel":
        return cls(id=vehicle.id, year=vehicle.year, make=vehicle.make, model=vehicle.model)


class PlateModel(Base):
    __tablename__ = "plates"

    id = Column(String(36), primary_key=True)
    plate_number = Column(String(16), nullable=False, unique=True)
    plate_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="available")
    expiration_date = Column(Date, nullable=True)

    __table_args__ = (Index("idx_plates_type_status", "plate_type", "status"),)

    def to_domain(self) -> Plate:
        return Plate(
            id=self.id,
            plate_number=self.plate_number,
            plate_type=self.plate_type,
            status=self.status,
            expiration_date=self.expiration_date,
        )

    @classmethod
    def from_domain(cls, plate: Plate) -> "PlateModel":
        return cls(
            id=plate.id,
            plate_number=plate.plate_number,
            plate_type=plate.plate_type.value,
            status=plate.status.value,
            expiration_date=plate.expiration_date,
        )


class RentalBookingModel(Base):
    __tablename__ = "rental_bookings"

    id = Column(String(36), primary_key=True)
    booking_code = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    __table_args__ = (Index("idx_bookings_status", "status"),)

    def to_domain(self) -> RentalBooking:
        return RentalBooking(
            id=self.id,
            booking_code=self.booking_code,
            status=self.status,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
        )

    @classmethod
    def from_domain(cls, booking: RentalBooking) -> "RentalBookingModel":
        return cls(
            id=booking.id,
            booking_code=booking.booking_code,
            status=booking.status.value,
            customer_name=booking.customer_name,
            customer_phone=booking.customer_phone,
        )


class RentalInsuranceModel(Base):
    __tablename__ = "rental_insurance"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), ForeignKey("rental_bookings.id"), nullable=False)
    insurance_company = Column(String(255), nullable=True)
    policy_number = Column(String(64), nullable=True)
    expiration_date = Column(Date, nullable=True)
    verification_status = Column(String(16), nullable=False, default="pending")

    __table_args__ = (Index("idx_insurance_booking", "booking_id"),)

    def to_domain(self) -> RentalInsurance:
        return RentalInsurance(
            id=self.id,
            booking_id=self.booking_id,
            insurance_company=self.insurance_company,
            policy_number=self.policy_number,
            expiration_date=self.expiration_date,
            verification_status=self.verification_status or "pending",
        )

    @classmethod
    def from_domain(cls, insurance: RentalInsurance) -> "RentalInsuranceModel":
        return cls(
            id=insurance.id,
            booking_id=insurance.booking_id,
            insurance_company=insurance.insurance_company,
            policy_number=insurance.policy_number,
            expiration_date=insurance.expiration_date,
            verification_status=insurance.verification_status.value,
        )


class PlateAssignmentModel(Base):
    """ORM model for plate_assignments table.

    An assignment is active while ``returned_at`` is null.
    """

    __tablename__ = "plate_assignments"

    id = Column(String(36), primary_key=True)
    plate_id = Column(String(36), ForeignKey("plates.id"), nullable=False)
    assignment_type = Column(String(16), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    vehicle_id = Column(String(36), nullable=True)
    booking_id = Column(String(36), nullable=True)
    registration_id = Column(String(36), nullable=True)
    expected_return_date = Column(Date, nullable=True)
    assigned_at = Column(String(50), nullable=True)
    returned_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_assignments_active", "plate_id", "returned_at"),
        Index("idx_assignments_type", "assignment_type"),
    )

    def to_domain(self) -> PlateAssignment:
        return PlateAssignment(
            id=self.id,
            plate_id=self.plate_id,
            assignment_type=self.assignment_type,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            vehicle_id=self.vehicle_id,
            booking_id=self.booking_id,
            registration_id=self.registration_id,
            expected_return_date=self.expected_return_date,
            assigned_at=_parse_datetime(self.assigned_at),
            returned_at=_parse_datetime(self.returned_at),
        )

    @classmethod
    def from_domain(cls, assignment: PlateAssignment) -> "PlateAssignmentModel":
        return cls(
            id=assignment.id,
            plate_id=assignment.plate_id,
            assignment_type=assignment.assignment_type.value,
            customer_name=assignment.customer_name,
            customer_phone=assignment.customer_phone,
            vehicle_id=assignment.vehicle_id,
            booking_id=assignment.booking_id,
            registration_id=assignment.registration_id,
            expected_return_date=assignment.expected_return_date,
            assigned_at=_format_datetime(assignment.assigned_at),
            returned_at=_format_datetime(assignment.returned_at),
        )


class PlateAlertModel(Base):
    """ORM model for plate_alerts table.

    The partial unique index allows any number of resolved rows per
    (plate_id, alert_type) but at most one open row.
    """

    __tablename__ = "plate_alerts"

    id = Column(String(36), primary_key=True)
    plate_id = Column(String(36), ForeignKey("plates.id"), nullable=False)
    alert_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    first_detected_at = Column(String(50), nullable=False)
    last_notified_at = Column(String(50), nullable=True)
    resolved_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index(
            "uq_plate_alerts_open",
            "plate_id",
            "alert_type",
            unique=True,
            sqlite_where=text("resolved_at IS NULL"),
            postgresql_where=text("resolved_at IS NULL"),
        ),
        Index("idx_plate_alerts_resolved", "resolved_at"),
    )

    def to_domain(self) -> PlateAlert:
        return PlateAlert(
            id=self.id,
            plate_id=self.plate_id,
            alert_type=self.alert_type,
            severity=self.severity,
            first_detected_at=_parse_datetime(self.first_detected_at),
            last_notified_at=_parse_datetime(self.last_notified_at),
            resolved_at=_parse_datetime(self.resolved_at),
        )


class InsuranceAlertModel(Base):
    """ORM model for insurance_alerts table.

    Same open-row rule as plate_alerts, keyed on (booking_id, alert_type).
    """

    __tablename__ = "insurance_alerts"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), ForeignKey("rental_bookings.id"), nullable=False)
    alert_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    first_detected_at = Column(String(50), nullable=False)
    last_notified_at = Column(String(50), nullable=True)
    resolved_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index(
            "uq_insurance_alerts_open",
            "booking_id",
            "alert_type",
            unique=True,
            sqlite_where=text("resolved_at IS NULL"),
            postgresql_where=text("resolved_at IS NULL"),
        ),
        Index("idx_insurance_alerts_resolved", "resolved_at"),
    )

    def to_domain(self) -> InsuranceAlert:
        return InsuranceAlert(
            id=self.id,
            booking_id=self.booking_id,
            alert_type=self.alert_type,
            severity=self.severity,
            first_detected_at=_parse_datetime(self.first_detected_at),
            last_notified_at=_parse_datetime(self.last_notified_at),
            resolved_at=_parse_datetime(self.resolved_at),
        )


class NotificationLogModel(Base):
    """ORM model for registration_notifications table (write-once audit log)."""

    __tablename__ = "registration_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    registration_id = Column(String(36), nullable=True)
    notification_type = Column(String(20), nullable=False)
    old_stage = Column(String(32), nullable=True)
    new_stage = Column(String(32), nullable=True)
    subject = Column(Text, nullable=True)
    template_used = Column(String(64), nullable=False)
    provider_message_id = Column(String(128), nullable=True)
    delivered = Column(Boolean, nullable=False, default=False)
    delivery_error = Column(Text, nullable=True)
    sent_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_notifications_registration", "registration_id"),
        Index("idx_notifications_sent_at", "sent_at"),
    )

    def to_domain(self) -> NotificationLogEntry:
        return NotificationLogEntry(
            id=self.id,
            registration_id=self.registration_id,
            channel=self.notification_type,
            old_stage=self.old_stage,
            new_stage=self.new_stage,
            subject=self.subject,
            template_used=self.template_used,
            provider_message_id=self.provider_message_id,
            delivered=bool(self.delivered),
            delivery_error=self.delivery_error,
            sent_at=_parse_datetime(self.sent_at),
        )

    @classmethod
    def from_domain(cls, entry: NotificationLogEntry) -> "NotificationLogModel":
        return cls(
            registration_id=entry.registration_id,
            notification_type=entry.channel.value,
            old_stage=entry.old_stage,
            new_stage=entry.new_stage,
            subject=entry.subject,
            template_used=entry.template_used,
            provider_message_id=entry.provider_message_id,
            delivered=entry.delivered,
            delivery_error=entry.delivery_error,
            sent_at=_format_datetime(entry.sent_at),
        )


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO 8601 UTC string for database storage.

    Naive datetimes are treated as UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime(TIMESTAMP_FORMAT)


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string back to an aware UTC datetime."""
    if not dt_str:
        return None

    dt_str = dt_str.rstrip("Z")
    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(sorted(tables))}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
