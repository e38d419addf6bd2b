"""Domain models and the registration stage catalog."""

from .models import (
    AlertSeverity,
    AlertType,
    AssignmentType,
    BookingStatus,
    InsuranceAlert,
    InsuranceAlertType,
    InsuranceVerificationStatus,
    NotificationChannel,
    NotificationLogEntry,
    NotificationPreference,
    NotificationQueueItem,
    Plate,
    PlateAlert,
    PlateAssignment,
    PlateStatus,
    PlateType,
    Registration,
    RegistrationStage,
    RentalBooking,
    RentalInsurance,
    Vehicle,
)
from .stages import (
    STAGES,
    VALID_TRANSITIONS,
    InvalidStageTransition,
    StageInfo,
    can_transition,
    forward_stages,
    stage_info,
    validate_transition,
)

__all__ = [
    "AlertSeverity",
    "AlertType",
    "AssignmentType",
    "BookingStatus",
    "InsuranceAlert",
    "InsuranceAlertType",
    "InsuranceVerificationStatus",
    "NotificationChannel",
    "NotificationLogEntry",
    "NotificationPreference",
    "NotificationQueueItem",
    "Plate",
    "PlateAlert",
    "PlateAssignment",
    "PlateStatus",
    "PlateType",
    "Registration",
    "RegistrationStage",
    "RentalBooking",
    "RentalInsurance",
    "Vehicle",
    "STAGES",
    "VALID_TRANSITIONS",
    "InvalidStageTransition",
    "StageInfo",
    "can_transition",
    "forward_stages",
    "stage_info",
    "validate_transition",
]
