"""Core domain models for registrations, plates and notifications.

This module defines the data structures shared by every pipeline:
- Registration: a vehicle sale moving through DMV registration stages
- NotificationQueueItem: a debounced stage change awaiting customer delivery
- Plate, PlateAssignment, RentalBooking, Vehicle: plate custody records
- RentalInsurance: proof of coverage attached to a rental booking
- PlateAlert, InsuranceAlert: open or resolved findings about a plate or booking
- NotificationLogEntry: write-once audit record of a delivery attempt
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class RegistrationStage(str, Enum):
    """Registration stages. The six forward stages are ordered; rejected is a side branch."""

    SALE_COMPLETE = "sale_complete"
    DOCUMENTS_COLLECTED = "documents_collected"
    SUBMITTED_TO_DMV = "submitted_to_dmv"
    DMV_PROCESSING = "dmv_processing"
    STICKER_READY = "sticker_ready"
    STICKER_DELIVERED = "sticker_delivered"
    REJECTED = "rejected"


class NotificationPreference(str, Enum):
    """Customer's preferred delivery channels."""

    SMS = "sms"
    EMAIL = "email"
    BOTH = "both"
    NONE = "none"

    @property
    def includes_sms(self) -> bool:
        return self in (NotificationPreference.SMS, NotificationPreference.BOTH)

    @property
    def includes_email(self) -> bool:
        return self in (NotificationPreference.EMAIL, NotificationPreference.BOTH)


class PlateType(str, Enum):
    DEALER = "dealer"
    BUYER_TAG = "buyer_tag"
    PERMANENT = "permanent"


class PlateStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    EXPIRED = "expired"
    LOST = "lost"


class AssignmentType(str, Enum):
    RENTAL = "rental"
    SALE = "sale"
    INVENTORY = "inventory"


class BookingStatus(str, Enum):
    RESERVED = "reserved"
    ACTIVE = "active"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class AlertType(str, Enum):
    OVERDUE_RENTAL = "overdue_rental"
    EXPIRING_BUYER_TAG = "expiring_buyer_tag"
    UNACCOUNTED = "unaccounted"


class InsuranceAlertType(str, Enum):
    MISSING_INSURANCE = "missing_insurance"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"


class InsuranceVerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    URGENT = "urgent"


class NotificationChannel(str, Enum):
    """Channel recorded in the notification log."""

    SMS = "sms"
    EMAIL = "email"
    EMAIL_FALLBACK = "email_fallback"
    NONE = "none"


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class Registration(BaseModel):
    """A vehicle sale requiring title/registration processing.

    The access token is a capability secret: anyone holding the tracking or
    unsubscribe link can act on this registration, so it is never logged.
    """

    id: str = Field(..., min_length=1)
    order_id: Optional[str] = Field(None, description="Human-readable order number")
    access_token: str = Field(..., min_length=1)

    vehicle_year: Optional[int] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vin: Optional[str] = None

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notification_pref: NotificationPreference = NotificationPreference.BOTH

    current_stage: RegistrationStage = RegistrationStage.SALE_COMPLETE
    rejection_notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("customer_phone", "customer_email", "customer_name", "rejection_notes")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat whitespace-only contact fields as missing."""
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def tracking_reference(self) -> str:
        """Order id when present, otherwise the internal id."""
        return self.order_id or self.id


class NotificationQueueItem(BaseModel):
    """A pending stage-change notification.

    Once ``sent`` is true the item is never modified again.
    """

    id: str
    registration_id: Optional[str] = None
    old_stage: Optional[RegistrationStage] = None
    new_stage: RegistrationStage
    send_after: datetime
    notify_customer: bool = True
    sent: bool = False
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("send_after", "sent_at", "created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class Vehicle(BaseModel):
    id: str
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None

    @property
    def display_name(self) -> str:
        """YEAR MAKE MODEL with missing parts dropped."""
        parts = [str(self.year) if self.year else None, self.make, self.model]
        return " ".join(p for p in parts if p)


class Plate(BaseModel):
    id: str
    plate_number: str = Field(..., min_length=1)
    plate_type: PlateType
    status: PlateStatus = PlateStatus.AVAILABLE
    expiration_date: Optional[date] = None


class RentalBooking(BaseModel):
    id: str
    booking_code: Optional[str] = None
    status: BookingStatus = BookingStatus.RESERVED
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.booking_code or self.id


class RentalInsurance(BaseModel):
    """Customer-supplied insurance for a booking, checked by staff."""

    id: str
    booking_id: str
    insurance_company: Optional[str] = None
    policy_number: Optional[str] = None
    expiration_date: Optional[date] = None
    verification_status: InsuranceVerificationStatus = InsuranceVerificationStatus.PENDING


class PlateAssignment(BaseModel):
    """A loan of a plate to a customer, a vehicle or internal use."""

    id: str
    plate_id: str
    assignment_type: AssignmentType
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_id: Optional[str] = None
    booking_id: Optional[str] = None
    registration_id: Optional[str] = None
    expected_return_date: Optional[date] = None
    assigned_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None

    @field_validator("assigned_at", "returned_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_active(self) -> bool:
        return self.returned_at is None


class PlateAlert(BaseModel):
    """A persisted alert. Open while ``resolved_at`` is null."""

    id: str
    plate_id: str
    alert_type: AlertType
    severity: AlertSeverity
    first_detected_at: datetime
    last_notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @field_validator("first_detected_at", "last_notified_at", "resolved_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.plate_id, AlertType(self.alert_type).value)

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


class InsuranceAlert(BaseModel):
    """A persisted insurance finding for a booking. Open while ``resolved_at`` is null."""

    id: str
    booking_id: str
    alert_type: InsuranceAlertType
    severity: AlertSeverity
    first_detected_at: datetime
    last_notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @field_validator("first_detected_at", "last_notified_at", "resolved_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.booking_id, InsuranceAlertType(self.alert_type).value)

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


class NotificationLogEntry(BaseModel):
    """Audit record of one delivery attempt (or one deliberate skip)."""

    id: Optional[int] = None
    registration_id: Optional[str] = Field(
        None, description="Null for admin plate-alert batches"
    )
    channel: NotificationChannel
    old_stage: Optional[str] = None
    new_stage: Optional[str] = None
    subject: Optional[str] = None
    template_used: str
    provider_message_id: Optional[str] = None
    delivered: bool = False
    delivery_error: Optional[str] = None
    sent_at: datetime

    @field_validator("sent_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)
