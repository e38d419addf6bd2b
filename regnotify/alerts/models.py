"""Detection results and run counters for the plate and insurance alert pipeline."""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

from regnotify.domain.models import AlertSeverity, AlertType, InsuranceAlertType


@dataclass(frozen=True)
class DetectedAlert:
    """One finding produced by a detection rule in the current run.

    Carries the display context used by the admin summary; only
    (plate_id, alert_type, severity) is persisted.
    """

    plate_id: str
    plate_number: str
    alert_type: AlertType
    severity: AlertSeverity
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_info: Optional[str] = None
    days_overdue: Optional[int] = None
    days_until_expiry: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.plate_id, self.alert_type.value)

    @property
    def is_urgent(self) -> bool:
        return self.severity == AlertSeverity.URGENT


@dataclass(frozen=True)
class DetectedInsuranceAlert:
    """An insurance problem on an active or reserved rental booking."""

    booking_id: str
    booking_code: Optional[str]
    alert_type: InsuranceAlertType
    severity: AlertSeverity
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    expiration_date: Optional[date] = None
    days_until_expiry: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.booking_id, self.alert_type.value)

    @property
    def is_urgent(self) -> bool:
        return self.severity == AlertSeverity.URGENT

    @property
    def reference(self) -> str:
        return self.booking_code or self.booking_id


@dataclass
class AlertRunResult:
    """Counters returned by one alert pipeline run."""

    detected: int = 0
    notified: int = 0
    resolved: int = 0
    insurance_detected: int = 0
    insurance_notified: int = 0
    insurance_resolved: int = 0
    skipped_run: bool = False

    def as_response(self) -> dict:
        return {
            "detected": self.detected,
            "notified": self.notified,
            "resolved": self.resolved,
            "insurance_detected": self.insurance_detected,
            "insurance_notified": self.insurance_notified,
            "insurance_resolved": self.insurance_resolved,
        }
