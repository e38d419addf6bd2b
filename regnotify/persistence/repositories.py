"""Data access layer (repositories) for persistence operations.

Repositories take a session, return domain models and translate
SQLAlchemy failures into the PersistenceError hierarchy. They never commit:
transaction boundaries belong to get_session().
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from regnotify.domain.models import (
    AlertSeverity,
    AlertType,
    AssignmentType,
    BookingStatus,
    InsuranceAlertType,
    NotificationLogEntry,
    NotificationPreference,
    NotificationQueueItem,
    Plate,
    PlateAssignment,
    PlateStatus,
    PlateType,
    Registration,
    RegistrationStage,
    RentalBooking,
    RentalInsurance,
    Vehicle,
)

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    InsuranceAlertModel,
    NotificationLogModel,
    NotificationQueueModel,
    PlateAlertModel,
    PlateAssignmentModel,
    PlateModel,
    RegistrationModel,
    RentalBookingModel,
    RentalInsuranceModel,
    VehicleModel,
    _format_datetime,
)

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def _add(self, model, label: str):
        try:
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to add {label} due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding {label}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add {label}: {e}") from e


class RegistrationRepository(_Repository):
    """Repository for registration records."""

    def get(self, registration_id: str) -> Optional[Registration]:
        try:
            model = self.session.get(RegistrationModel, registration_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving registration {registration_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve registration: {e}") from e

    def get_by_token(self, registration_id: str, access_token: str) -> Optional[Registration]:
        """Return the registration only when the token matches.

        A wrong token and an unknown id are indistinguishable to the caller.
        """
        try:
            stmt = select(RegistrationModel).where(
                RegistrationModel.id == registration_id,
                RegistrationModel.access_token == access_token,
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error verifying registration token: {e}", exc_info=True)
            raise PersistenceError(f"Failed to verify registration: {e}") from e

    def add(self, registration: Registration) -> Registration:
        return self._add(RegistrationModel.from_domain(registration), "registration")

    def update_stage(
        self,
        registration_id: str,
        new_stage: RegistrationStage,
        rejection_notes: Optional[str],
        updated_at: datetime,
    ) -> None:
        """Set current_stage; rejection notes are replaced (None clears them).

        Raises:
            RecordNotFoundError: If the registration doesn't exist
        """
        self._update(
            registration_id,
            current_stage=RegistrationStage(new_stage).value,
            rejection_notes=rejection_notes,
            updated_at=_format_datetime(updated_at),
        )

    def set_notification_pref(
        self, registration_id: str, preference: NotificationPreference, updated_at: datetime
    ) -> None:
        self._update(
            registration_id,
            notification_pref=NotificationPreference(preference).value,
            updated_at=_format_datetime(updated_at),
        )

    def _update(self, registration_id: str, **values) -> None:
        try:
            stmt = (
                update(RegistrationModel)
                .where(RegistrationModel.id == registration_id)
                .values(**values)
            )
            result = self.session.execute(stmt)
            self.session.flush()

            if result.rowcount == 0:
                raise RecordNotFoundError(f"Registration {registration_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating registration {registration_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update registration: {e}") from e


class NotificationQueueRepository(_Repository):
    """Repository for the debounced notification queue.

    Consumers must claim() an item before acting on it. Only the run that
    won the claim may annotate it afterwards.
    """

    def get(self, item_id: str) -> Optional[NotificationQueueItem]:
        try:
            model = self.session.get(NotificationQueueModel, item_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve queue item: {e}") from e

    def add(self, item: NotificationQueueItem) -> NotificationQueueItem:
        return self._add(NotificationQueueModel.from_domain(item), "queue item")

    def get_ready(self, now: datetime, limit: Optional[int] = None) -> List[NotificationQueueItem]:
        """Unsent, customer-facing items whose debounce horizon has passed.

        Ordered by send_after, oldest first.
        """
        try:
            stmt = (
                select(NotificationQueueModel)
                .where(
                    NotificationQueueModel.sent.is_(False),
                    NotificationQueueModel.notify_customer.is_(True),
                    NotificationQueueModel.send_after <= _format_datetime(now),
                )
                .order_by(NotificationQueueModel.send_after.asc(), NotificationQueueModel.id.asc())
            )
            if limit:
                stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error reading notification queue: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read notification queue: {e}") from e

    def claim(self, item_id: str, now: datetime) -> bool:
        """Atomically flip sent false -> true.

        Returns:
            True if this caller now owns the item, False if another run
            already claimed it
        """
        try:
            stmt = (
                update(NotificationQueueModel)
                .where(
                    NotificationQueueModel.id == item_id,
                    NotificationQueueModel.sent.is_(False),
                )
                .values(sent=True, sent_at=_format_datetime(now))
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error claiming queue item {item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim queue item: {e}") from e

    def annotate(self, item_id: str, note: str) -> None:
        """Attach the outcome note to a claimed item."""
        try:
            stmt = (
                update(NotificationQueueModel)
                .where(
                    NotificationQueueModel.id == item_id,
                    NotificationQueueModel.sent.is_(True),
                    NotificationQueueModel.error.is_(None),
                )
                .values(error=note)
                .execution_options(synchronize_session=False)
            )
            self.session.execute(stmt)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error annotating queue item {item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to annotate queue item: {e}") from e

    def find_pending(self, registration_id: str, now: datetime) -> Optional[NotificationQueueItem]:
        """Latest unsent item for a registration whose horizon is still ahead."""
        try:
            stmt = (
                select(NotificationQueueModel)
                .where(
                    NotificationQueueModel.registration_id == registration_id,
                    NotificationQueueModel.sent.is_(False),
                    NotificationQueueModel.send_after > _format_datetime(now),
                )
                .order_by(NotificationQueueModel.send_after.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up pending queue item: {e}") from e

    def merge_pending(
        self,
        item_id: str,
        new_stage: RegistrationStage,
        send_after: datetime,
        notify_customer: bool,
    ) -> bool:
        """Fold a newer stage change into a still-pending item.

        old_stage is left untouched. Returns False if the item was sent in
        the meantime.
        """
        try:
            stmt = (
                update(NotificationQueueModel)
                .where(
                    NotificationQueueModel.id == item_id,
                    NotificationQueueModel.sent.is_(False),
                )
                .values(
                    new_stage=RegistrationStage(new_stage).value,
                    send_after=_format_datetime(send_after),
                    notify_customer=notify_customer,
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error merging queue item {item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to merge queue item: {e}") from e

    def list_for_registration(self, registration_id: str) -> List[NotificationQueueItem]:
        try:
            stmt = (
                select(NotificationQueueModel)
                .where(NotificationQueueModel.registration_id == registration_id)
                .order_by(NotificationQueueModel.created_at.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list queue items: {e}") from e


class PlateRepository(_Repository):
    """Plates, their assignments, bookings, insurance and vehicles (read side of alerts)."""

    def add(self, plate: Plate) -> Plate:
        return self._add(PlateModel.from_domain(plate), "plate")

    def add_assignment(self, assignment: PlateAssignment) -> PlateAssignment:
        return self._add(PlateAssignmentModel.from_domain(assignment), "plate assignment")

    def add_booking(self, booking: RentalBooking) -> RentalBooking:
        return self._add(RentalBookingModel.from_domain(booking), "rental booking")

    def add_insurance(self, insurance: RentalInsurance) -> RentalInsurance:
        return self._add(RentalInsuranceModel.from_domain(insurance), "rental insurance")

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        return self._add(VehicleModel.from_domain(vehicle), "vehicle")

    def get_many(self, plate_ids: Iterable[str]) -> Dict[str, Plate]:
        ids = list(set(plate_ids))
        if not ids:
            return {}
        try:
            stmt = select(PlateModel).where(PlateModel.id.in_(ids))
            return {m.id: m.to_domain() for m in self.session.execute(stmt).scalars().all()}
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve plates: {e}") from e

    def list_by_status(self, status: PlateStatus) -> List[Plate]:
        try:
            stmt = (
                select(PlateModel)
                .where(PlateModel.status == PlateStatus(status).value)
                .order_by(PlateModel.plate_number.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing plates: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list plates: {e}") from e

    def list_dated_buyer_tags(self) -> List[Plate]:
        """Buyer tags with an expiration date that are not yet marked expired."""
        try:
            stmt = (
                select(PlateModel)
                .where(
                    PlateModel.plate_type == PlateType.BUYER_TAG.value,
                    PlateModel.status != PlateStatus.EXPIRED.value,
                    PlateModel.expiration_date.is_not(None),
                )
                .order_by(PlateModel.expiration_date.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing buyer tags: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list buyer tags: {e}") from e

    def list_active_assignments(
        self, assignment_type: Optional[AssignmentType] = None
    ) -> List[PlateAssignment]:
        try:
            stmt = select(PlateAssignmentModel).where(PlateAssignmentModel.returned_at.is_(None))
            if assignment_type is not None:
                stmt = stmt.where(
                    PlateAssignmentModel.assignment_type == AssignmentType(assignment_type).value
                )
            stmt = stmt.order_by(PlateAssignmentModel.assigned_at.desc())
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing active assignments: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list active assignments: {e}") from e

    def get_bookings(self, booking_ids: Iterable[str]) -> Dict[str, RentalBooking]:
        ids = list(set(booking_ids))
        if not ids:
            return {}
        try:
            stmt = select(RentalBookingModel).where(RentalBookingModel.id.in_(ids))
            return {m.id: m.to_domain() for m in self.session.execute(stmt).scalars().all()}
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve bookings: {e}") from e

    def list_bookings_by_status(self, statuses: Iterable[BookingStatus]) -> List[RentalBooking]:
        values = [BookingStatus(s).value for s in statuses]
        try:
            stmt = (
                select(RentalBookingModel)
                .where(RentalBookingModel.status.in_(values))
                .order_by(RentalBookingModel.booking_code.asc(), RentalBookingModel.id.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing bookings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list bookings: {e}") from e

    def get_insurance_for_bookings(self, booking_ids: Iterable[str]) -> Dict[str, RentalInsurance]:
        """First insurance record per booking (by id); bookings without one are absent."""
        ids = list(set(booking_ids))
        if not ids:
            return {}
        try:
            stmt = (
                select(RentalInsuranceModel)
                .where(RentalInsuranceModel.booking_id.in_(ids))
                .order_by(RentalInsuranceModel.id.asc())
            )
            found: Dict[str, RentalInsurance] = {}
            for m in self.session.execute(stmt).scalars().all():
                found.setdefault(m.booking_id, m.to_domain())
            return found
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve insurance: {e}") from e

    def get_vehicles(self, vehicle_ids: Iterable[str]) -> Dict[str, Vehicle]:
        ids = list(set(vehicle_ids))
        if not ids:
            return {}
        try:
            stmt = select(VehicleModel).where(VehicleModel.id.in_(ids))
            return {m.id: m.to_domain() for m in self.session.execute(stmt).scalars().all()}
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve vehicles: {e}") from e


class _OpenAlertRepository(_Repository):
    """Shared lifecycle queries for alert tables keyed on (subject, alert_type).

    At most one open alert exists per key; open_if_absent is the only way
    alerts are created. Subclasses name the table, the subject column and
    the alert type enum.
    """

    model = None
    subject_column = ""
    alert_types = None
    label = "alert"

    def open_if_absent(self, subject_id: str, alert_type, severity: AlertSeverity, detected_at: datetime) -> bool:
        """Insert an open alert unless one already exists for the key.

        Returns:
            True if a new alert was opened, False if one was already open
        """
        values = {
            "id": str(uuid4()),
            self.subject_column: subject_id,
            "alert_type": self.alert_types(alert_type).value,
            "severity": AlertSeverity(severity).value,
            "first_detected_at": _format_datetime(detected_at),
        }
        table = self.model.__table__
        dialect = self.session.get_bind().dialect.name

        try:
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                stmt = (
                    insert(table)
                    .values(**values)
                    .on_conflict_do_nothing(
                        index_elements=[self.subject_column, "alert_type"],
                        index_where=table.c.resolved_at.is_(None),
                    )
                )
                result = self.session.execute(stmt)
                return result.rowcount == 1

            existing = self.session.execute(
                select(table.c.id).where(
                    table.c[self.subject_column] == subject_id,
                    table.c.alert_type == values["alert_type"],
                    table.c.resolved_at.is_(None),
                )
            ).first()
            if existing is not None:
                return False
            self.session.execute(table.insert().values(**values))
            return True

        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to open {self.label} for {subject_id}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error opening {self.label} for {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to open {self.label}: {e}") from e

    def list_open(self) -> List:
        try:
            stmt = (
                select(self.model)
                .where(self.model.resolved_at.is_(None))
                .order_by(self.model.first_detected_at.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing open {self.label}s: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list open {self.label}s: {e}") from e

    def list_all(self) -> List:
        try:
            stmt = select(self.model).order_by(self.model.first_detected_at.asc())
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list {self.label}s: {e}") from e

    def resolve(self, alert_ids: Iterable[str], resolved_at: datetime) -> int:
        return self._stamp(alert_ids, "resolved_at", resolved_at, open_only=True)

    def mark_notified(self, alert_ids: Iterable[str], notified_at: datetime) -> int:
        return self._stamp(alert_ids, "last_notified_at", notified_at, open_only=True)

    def list_due_for_notification(self, cutoff: datetime) -> List:
        """Open alerts never notified, or last notified before ``cutoff``."""
        cutoff_str = _format_datetime(cutoff)
        try:
            stmt = (
                select(self.model)
                .where(
                    self.model.resolved_at.is_(None),
                    (self.model.last_notified_at.is_(None))
                    | (self.model.last_notified_at < cutoff_str),
                )
                .order_by(self.model.first_detected_at.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing {self.label}s due for notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list {self.label}s due for notification: {e}") from e

    def _stamp(self, alert_ids: Iterable[str], column: str, when: datetime, open_only: bool) -> int:
        ids = list(alert_ids)
        if not ids:
            return 0
        try:
            stmt = update(self.model).where(self.model.id.in_(ids))
            if open_only:
                stmt = stmt.where(self.model.resolved_at.is_(None))
            stmt = stmt.values({column: _format_datetime(when)}).execution_options(
                synchronize_session=False
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error updating {column} on {self.label}s: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update {self.label}s: {e}") from e


class PlateAlertRepository(_OpenAlertRepository):
    """Repository for plate alerts, one open row per (plate_id, alert_type)."""

    model = PlateAlertModel
    subject_column = "plate_id"
    alert_types = AlertType
    label = "plate alert"


class InsuranceAlertRepository(_OpenAlertRepository):
    """Repository for insurance alerts, one open row per (booking_id, alert_type)."""

    model = InsuranceAlertModel
    subject_column = "booking_id"
    alert_types = InsuranceAlertType
    label = "insurance alert"


class NotificationLogRepository(_Repository):
    """Append-only audit log of delivery attempts."""

    def record(self, entry: NotificationLogEntry) -> NotificationLogEntry:
        return self._add(NotificationLogModel.from_domain(entry), "notification log entry")

    def list_for_registration(self, registration_id: Optional[str]) -> List[NotificationLogEntry]:
        """Entries for one registration, or admin entries when ``registration_id`` is None."""
        try:
            column = NotificationLogModel.registration_id
            condition = column.is_(None) if registration_id is None else column == registration_id
            stmt = select(NotificationLogModel).where(condition).order_by(NotificationLogModel.id.asc())
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list notification log: {e}") from e

    def count(self) -> int:
        try:
            return len(self.session.execute(select(NotificationLogModel.id)).all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count notification log: {e}") from e
