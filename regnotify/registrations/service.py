"""Registration stage writer and unsubscribe handling.

Stage changes are debounced: each change enqueues (or extends) a single
pending notification, so an admin clicking through several stages in quick
succession produces one customer message about the final stage.
"""

from datetime import timedelta
from typing import Callable, Optional, Union
from uuid import uuid4

from regnotify.config.models import QueueConfig
from regnotify.domain.models import (
    NotificationPreference,
    NotificationQueueItem,
    Registration,
    RegistrationStage,
)
from regnotify.domain.stages import validate_transition
from regnotify.logging import get_logger
from regnotify.persistence.database import get_session
from regnotify.persistence.exceptions import RecordNotFoundError
from regnotify.persistence.repositories import NotificationQueueRepository, RegistrationRepository
from regnotify.utils.timestamps import utc_now

logger = get_logger(__name__, component="registrations")


class RegistrationStageService:
    """Moves registrations through DMV stages and queues customer updates."""

    def __init__(self, queue_config: Optional[QueueConfig] = None, clock: Optional[Callable] = None):
        self.queue_config = queue_config or QueueConfig()
        self._clock = clock or utc_now

    def change_stage(
        self,
        registration_id: str,
        new_stage: Union[RegistrationStage, str],
        rejection_notes: Optional[str] = None,
        notify_customer: bool = True,
    ) -> NotificationQueueItem:
        """Apply a stage transition and enqueue the notification.

        Args:
            registration_id: Registration to move
            new_stage: Target stage
            rejection_notes: DMV notes, stored only when rejecting
            notify_customer: False records the change without messaging the customer

        Returns:
            The new or merged queue item

        Raises:
            RecordNotFoundError: If the registration doesn't exist
            InvalidStageTransition: If the move is not allowed from the current stage
        """
        new_stage = RegistrationStage(new_stage)
        now = self._clock()
        send_after = now + timedelta(seconds=self.queue_config.debounce_seconds)

        with get_session() as session:
            registrations = RegistrationRepository(session)
            queue = NotificationQueueRepository(session)

            registration = registrations.get(registration_id)
            if registration is None:
                raise RecordNotFoundError(f"Registration {registration_id} not found")

            old_stage = registration.current_stage
            validate_transition(old_stage, new_stage)

            registrations.update_stage(
                registration_id,
                new_stage,
                _next_rejection_notes(registration, new_stage, rejection_notes),
                updated_at=now,
            )

            pending = queue.find_pending(registration_id, now)
            if pending is not None and queue.merge_pending(
                pending.id,
                new_stage,
                send_after,
                notify_customer=pending.notify_customer or notify_customer,
            ):
                logger.info(
                    "Stage change merged into pending notification",
                    extra={
                        "event": "registration.stage.merged",
                        "registration_id": registration_id,
                        "queue_item_id": pending.id,
                        "old_stage": pending.old_stage.value if pending.old_stage else None,
                        "new_stage": new_stage.value,
                    },
                )
                return queue.get(pending.id)

            item = queue.add(
                NotificationQueueItem(
                    id=str(uuid4()),
                    registration_id=registration_id,
                    old_stage=old_stage,
                    new_stage=new_stage,
                    send_after=send_after,
                    notify_customer=notify_customer,
                    created_at=now,
                )
            )

        logger.info(
            "Stage changed",
            extra={
                "event": "registration.stage.changed",
                "registration_id": registration_id,
                "queue_item_id": item.id,
                "old_stage": old_stage.value,
                "new_stage": new_stage.value,
                "notify_customer": notify_customer,
            },
        )
        return item

    def unsubscribe(self, registration_id: str, access_token: str) -> Optional[Registration]:
        """Opt a customer out of stage notifications.

        Returns:
            The registration as it was before the change, or None if the
            id and token do not match
        """
        if not registration_id or not access_token:
            return None

        with get_session() as session:
            registrations = RegistrationRepository(session)
            registration = registrations.get_by_token(registration_id, access_token)
            if registration is None:
                logger.warning(
                    "Unsubscribe with invalid link",
                    extra={"event": "registration.unsubscribe.invalid", "registration_id": registration_id},
                )
                return None

            registrations.set_notification_pref(
                registration_id, NotificationPreference.NONE, updated_at=self._clock()
            )

        logger.info(
            "Customer unsubscribed from notifications",
            extra={"event": "registration.unsubscribe.succeeded", "registration_id": registration_id},
        )
        return registration


def _next_rejection_notes(
    registration: Registration, new_stage: RegistrationStage, notes: Optional[str]
) -> Optional[str]:
    """Notes are set on rejection and cleared on resubmission; otherwise kept."""
    if new_stage == RegistrationStage.REJECTED and notes:
        return notes
    if new_stage == RegistrationStage.SUBMITTED_TO_DMV:
        return None
    return registration.rejection_notes
