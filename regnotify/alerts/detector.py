"""Stateless detection of plate and rental insurance conditions.

Each run rebuilds the full set of currently-true conditions from the
store. Rules run independently: a failing rule is logged and contributes
nothing, while the other rules still report.
"""

from datetime import date
from typing import Callable, Dict, List, Optional

from regnotify.config.models import AlertsConfig
from regnotify.domain.models import (
    AlertSeverity,
    AlertType,
    AssignmentType,
    BookingStatus,
    InsuranceAlertType,
    InsuranceVerificationStatus,
    PlateAssignment,
    PlateStatus,
)
from regnotify.logging import get_logger
from regnotify.persistence.database import get_session
from regnotify.persistence.repositories import PlateRepository
from regnotify.utils.timestamps import days_overdue, days_until, local_today, resolve_timezone, utc_now

from .models import DetectedAlert, DetectedInsuranceAlert

logger = get_logger(__name__, component="alerts")

CLOSED_BOOKING_STATUSES = (BookingStatus.RETURNED, BookingStatus.CANCELLED)
OPEN_BOOKING_STATUSES = (BookingStatus.ACTIVE, BookingStatus.RESERVED)


class AlertDetector:
    """Evaluates the three plate rules and the insurance rule against the store."""

    def __init__(self, alerts_config: AlertsConfig, clock: Optional[Callable] = None):
        self.config = alerts_config
        self.tz = resolve_timezone(alerts_config.timezone)
        self._clock = clock or utc_now

    def detect(self) -> List[DetectedAlert]:
        """Run every rule and return the combined findings."""
        today = local_today(self.tz, self._clock())
        rules = (
            (AlertType.OVERDUE_RENTAL, self.detect_overdue_rentals),
            (AlertType.EXPIRING_BUYER_TAG, self.detect_expiring_buyer_tags),
            (AlertType.UNACCOUNTED, self.detect_unaccounted_plates),
        )

        detected: List[DetectedAlert] = []
        for alert_type, rule in rules:
            try:
                with get_session() as session:
                    found = rule(PlateRepository(session), today)
            except Exception as e:
                logger.error(
                    f"Detection rule failed: {e}",
                    exc_info=True,
                    extra={
                        "event": "alerts.rule.failed",
                        "rule": alert_type.value,
                        "error_type": type(e).__name__,
                    },
                )
                continue

            logger.debug(
                f"Rule {alert_type.value} found {len(found)} condition(s)",
                extra={"event": "alerts.rule.completed", "rule": alert_type.value, "count": len(found)},
            )
            detected.extend(found)

        return detected

    def detect_overdue_rentals(self, repo: PlateRepository, today: date) -> List[DetectedAlert]:
        assignments = [
            a
            for a in repo.list_active_assignments(AssignmentType.RENTAL)
            if a.expected_return_date is not None and a.expected_return_date < today
        ]
        plates = repo.get_many(a.plate_id for a in assignments)
        vehicles = _vehicle_names(repo, assignments)

        found = []
        for assignment in assignments:
            plate = plates.get(assignment.plate_id)
            if plate is None:
                continue
            overdue = days_overdue(assignment.expected_return_date, today)
            severity = (
                AlertSeverity.URGENT
                if overdue >= self.config.overdue_urgent_days
                else AlertSeverity.WARNING
            )
            found.append(
                DetectedAlert(
                    plate_id=plate.id,
                    plate_number=plate.plate_number,
                    alert_type=AlertType.OVERDUE_RENTAL,
                    severity=severity,
                    customer_name=assignment.customer_name,
                    customer_phone=assignment.customer_phone,
                    vehicle_info=vehicles.get(assignment.vehicle_id),
                    days_overdue=overdue,
                )
            )
        return found

    def detect_expiring_buyer_tags(self, repo: PlateRepository, today: date) -> List[DetectedAlert]:
        """Buyer tags expiring within the window, including already-lapsed dates."""
        tags = [
            (tag, days_until(tag.expiration_date, today))
            for tag in repo.list_dated_buyer_tags()
        ]
        tags = [(tag, remaining) for tag, remaining in tags if remaining <= self.config.expiring_window_days]
        if not tags:
            return []

        active = _latest_by_plate(repo.list_active_assignments())
        vehicles = _vehicle_names(repo, active.values())

        found = []
        for tag, remaining in tags:
            assignment = active.get(tag.id)
            severity = (
                AlertSeverity.URGENT
                if remaining <= self.config.expiring_urgent_days
                else AlertSeverity.WARNING
            )
            found.append(
                DetectedAlert(
                    plate_id=tag.id,
                    plate_number=tag.plate_number,
                    alert_type=AlertType.EXPIRING_BUYER_TAG,
                    severity=severity,
                    customer_name=assignment.customer_name if assignment else None,
                    customer_phone=assignment.customer_phone if assignment else None,
                    vehicle_info=vehicles.get(assignment.vehicle_id) if assignment else None,
                    days_until_expiry=remaining,
                )
            )
        return found

    def detect_unaccounted_plates(self, repo: PlateRepository, today: date) -> List[DetectedAlert]:
        plates = repo.list_by_status(PlateStatus.ASSIGNED)
        if not plates:
            return []

        all_active = repo.list_active_assignments()
        active = _latest_by_plate(all_active)
        for plate_id, count in _count_by_plate(all_active).items():
            if count > 1:
                logger.warning(
                    "Plate has more than one active assignment",
                    extra={"event": "alerts.plate.multiple_assignments", "plate_id": plate_id, "count": count},
                )

        bookings = repo.get_bookings(a.booking_id for a in active.values() if a.booking_id)
        vehicles = _vehicle_names(repo, active.values())

        found = []
        for plate in plates:
            assignment = active.get(plate.id)

            if assignment is None:
                found.append(
                    DetectedAlert(
                        plate_id=plate.id,
                        plate_number=plate.plate_number,
                        alert_type=AlertType.UNACCOUNTED,
                        severity=AlertSeverity.URGENT,
                    )
                )
                continue

            booking = bookings.get(assignment.booking_id) if assignment.booking_id else None
            if booking is not None and booking.status in CLOSED_BOOKING_STATUSES:
                found.append(
                    DetectedAlert(
                        plate_id=plate.id,
                        plate_number=plate.plate_number,
                        alert_type=AlertType.UNACCOUNTED,
                        severity=AlertSeverity.URGENT,
                        customer_name=assignment.customer_name,
                        customer_phone=assignment.customer_phone,
                        vehicle_info=vehicles.get(assignment.vehicle_id),
                    )
                )
                continue

            if (
                not assignment.booking_id
                and not assignment.registration_id
                and assignment.assignment_type != AssignmentType.INVENTORY
            ):
                found.append(
                    DetectedAlert(
                        plate_id=plate.id,
                        plate_number=plate.plate_number,
                        alert_type=AlertType.UNACCOUNTED,
                        severity=AlertSeverity.WARNING,
                        customer_name=assignment.customer_name,
                        customer_phone=assignment.customer_phone,
                    )
                )
        return found

    def detect_insurance(self) -> List[DetectedInsuranceAlert]:
        """Run the insurance rule on its own; a failure yields no findings."""
        try:
            with get_session() as session:
                found = self.detect_insurance_issues(
                    PlateRepository(session), local_today(self.tz, self._clock())
                )
        except Exception as e:
            logger.error(
                f"Insurance detection failed: {e}",
                exc_info=True,
                extra={"event": "alerts.rule.failed", "rule": "insurance", "error_type": type(e).__name__},
            )
            return []

        logger.debug(
            f"Rule insurance found {len(found)} condition(s)",
            extra={"event": "alerts.rule.completed", "rule": "insurance", "count": len(found)},
        )
        return found

    def detect_insurance_issues(self, repo: PlateRepository, today: date) -> List[DetectedInsuranceAlert]:
        """Missing, expired or soon-expiring cover on active and reserved bookings.

        Insurance already rejected by staff (verification failed) is not
        alerted on, and a record without an expiration date raises nothing.
        """
        bookings = repo.list_bookings_by_status(OPEN_BOOKING_STATUSES)
        cover = repo.get_insurance_for_bookings(b.id for b in bookings)

        found = []
        for booking in bookings:
            insurance = cover.get(booking.id)
            common = dict(
                booking_id=booking.id,
                booking_code=booking.booking_code,
                customer_name=booking.customer_name,
                customer_phone=booking.customer_phone,
            )

            if insurance is None:
                found.append(
                    DetectedInsuranceAlert(
                        alert_type=InsuranceAlertType.MISSING_INSURANCE,
                        severity=AlertSeverity.WARNING,
                        **common,
                    )
                )
                continue

            if insurance.verification_status == InsuranceVerificationStatus.FAILED:
                continue
            if insurance.expiration_date is None:
                continue

            remaining = days_until(insurance.expiration_date, today)
            if remaining < 0:
                alert_type, severity = InsuranceAlertType.EXPIRED, AlertSeverity.URGENT
            elif remaining <= self.config.insurance_expiring_days:
                alert_type = InsuranceAlertType.EXPIRING_SOON
                severity = (
                    AlertSeverity.URGENT
                    if remaining <= self.config.insurance_urgent_days
                    else AlertSeverity.WARNING
                )
            else:
                continue

            found.append(
                DetectedInsuranceAlert(
                    alert_type=alert_type,
                    severity=severity,
                    expiration_date=insurance.expiration_date,
                    days_until_expiry=remaining,
                    **common,
                )
            )
        return found


def _latest_by_plate(assignments) -> Dict[str, PlateAssignment]:
    """Most recent active assignment per plate (input is newest first)."""
    latest: Dict[str, PlateAssignment] = {}
    for assignment in assignments:
        latest.setdefault(assignment.plate_id, assignment)
    return latest


def _count_by_plate(assignments) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for assignment in assignments:
        counts[assignment.plate_id] = counts.get(assignment.plate_id, 0) + 1
    return counts


def _vehicle_names(repo: PlateRepository, assignments) -> Dict[str, str]:
    vehicles = repo.get_vehicles(a.vehicle_id for a in assignments if a.vehicle_id)
    return {vehicle_id: v.display_name for vehicle_id, v in vehicles.items() if v.display_name}
