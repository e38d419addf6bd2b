"""Customer notification queue processor.

Drains ready queue items: claims each one, picks channels from the
customer's preference, sends SMS with email fallback, writes one audit
entry per attempt and leaves an outcome note on the item.
"""

import threading
from typing import Callable, Optional
from uuid import uuid4

from regnotify.channels.base import DeliveryResult, EmailSender, SmsSender
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import QueueConfig
from regnotify.domain.models import (
    NotificationChannel,
    NotificationLogEntry,
    NotificationPreference,
    NotificationQueueItem,
    Registration,
    RegistrationStage,
)
from regnotify.logging import get_logger
from regnotify.logging.context import log_context
from regnotify.persistence.database import get_session
from regnotify.persistence.repositories import (
    NotificationLogRepository,
    NotificationQueueRepository,
    RegistrationRepository,
)
from regnotify.utils.timestamps import utc_now

from .models import CustomerMessage, MessageKind, QueueItemNote, QueueRunResult
from .payloads import build_customer_context, build_tracking_url, build_unsubscribe_url
from .templates import TemplateRenderer

logger = get_logger(__name__, component="queue")

SKIPPED_SUBJECT = "Skipped - preference none"


class NotificationQueueProcessor:
    """Consumes the notification queue once per invocation.

    Each item is handled in isolation: a failure on one item is recorded on
    that item and the batch continues. Only a failure to read the queue
    aborts the run.
    """

    def __init__(
        self,
        queue_config: QueueConfig,
        env_config: EnvironmentConfig,
        renderer: TemplateRenderer,
        sms_sender: SmsSender,
        email_sender: EmailSender,
        clock: Optional[Callable] = None,
    ):
        self.queue_config = queue_config
        self.env_config = env_config
        self.renderer = renderer
        self.sms_sender = sms_sender
        self.email_sender = email_sender
        self._clock = clock or utc_now
        self._lock = threading.Lock()

    def run_once(self) -> QueueRunResult:
        """Process every ready item.

        Raises:
            PersistenceError: If the queue cannot be read at all
        """
        run_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(run_id=run_id):
                logger.warning(
                    "Queue run skipped: previous run still in progress",
                    extra={"event": "queue.run.skipped", "reason": "lock_held"},
                )
            return QueueRunResult(skipped_run=True)

        try:
            with log_context(run_id=run_id):
                result = QueueRunResult()
                now = self._clock()

                with get_session() as session:
                    items = NotificationQueueRepository(session).get_ready(
                        now, limit=self.queue_config.batch_limit
                    )

                logger.info(
                    f"Processing {len(items)} queued notification(s)",
                    extra={"event": "queue.run.started", "ready_count": len(items)},
                )

                for item in items:
                    self._process_item(item, result)

                logger.info(
                    "Queue run completed",
                    extra={
                        "event": "queue.run.completed",
                        "processed": result.processed,
                        "errors": result.errors,
                    },
                )
                return result
        finally:
            self._lock.release()

    def _process_item(self, item: NotificationQueueItem, result: QueueRunResult) -> None:
        with log_context(queue_item_id=item.id, registration_id=item.registration_id):
            try:
                with get_session() as session:
                    claimed = NotificationQueueRepository(session).claim(item.id, self._clock())
            except Exception as e:
                result.errors += 1
                logger.error(
                    f"Could not claim queue item: {e}",
                    exc_info=True,
                    extra={"event": "queue.item.claim_failed", "error_type": type(e).__name__},
                )
                return

            if not claimed:
                logger.info(
                    "Queue item already claimed by another run",
                    extra={"event": "queue.item.claim_lost"},
                )
                return

            result.processed += 1
            result.item_ids.append(item.id)

            try:
                failed = self._deliver(item)
            except Exception as e:
                result.errors += 1
                logger.error(
                    f"Error processing queue item: {e}",
                    exc_info=True,
                    extra={"event": "queue.item.failed", "error_type": type(e).__name__},
                )
                self._annotate_after_failure(item.id, f"processing_error: {e}")
                return

            if failed:
                result.errors += 1

    def _deliver(self, item: NotificationQueueItem) -> bool:
        """Send the notification for one claimed item.

        Each audit entry is committed as soon as its send returns, so a later
        failure on the same item never erases the record of an earlier send.

        Returns:
            True if every attempted channel failed
        """
        registration = None
        if item.registration_id:
            with get_session() as session:
                registration = RegistrationRepository(session).get(item.registration_id)

        if registration is None:
            logger.warning(
                "Queue item has no linked registration",
                extra={"event": "queue.item.no_registration"},
            )
            self._annotate(item.id, QueueItemNote.NO_LINKED_REGISTRATION)
            return False

        preference = registration.notification_pref
        if preference == NotificationPreference.NONE:
            self._record(
                self._entry(
                    registration,
                    item,
                    NotificationChannel.NONE,
                    SKIPPED_SUBJECT,
                    "none",
                    DeliveryResult(success=False, error=QueueItemNote.SKIPPED_PREFERENCE_NONE.value),
                )
            )
            self._annotate(item.id, QueueItemNote.SKIPPED_PREFERENCE_NONE)
            logger.info(
                "Customer opted out of notifications",
                extra={"event": "queue.item.skipped", "reason": "preference_none"},
            )
            return False

        message = self._render(registration, item.new_stage)

        sms_attempted = sms_ok = False
        email_attempted = email_ok = False

        if preference.includes_sms and registration.customer_phone:
            sms_attempted = True
            sms_result = self.sms_sender.send(registration.customer_phone, message.sms_body)
            sms_ok = sms_result.success
            self._record(
                self._entry(
                    registration,
                    item,
                    NotificationChannel.SMS,
                    message.subject,
                    message.kind.sms_template,
                    sms_result,
                )
            )

        sms_failed = sms_attempted and not sms_ok
        if (preference.includes_email or sms_failed) and registration.customer_email:
            email_attempted = True
            channel = (
                NotificationChannel.EMAIL_FALLBACK
                if sms_failed and not preference.includes_email
                else NotificationChannel.EMAIL
            )
            email_result = self.email_sender.send(
                registration.customer_email, message.subject, message.html
            )
            email_ok = email_result.success
            self._record(
                self._entry(
                    registration,
                    item,
                    channel,
                    message.subject,
                    message.kind.email_template,
                    email_result,
                )
            )

        if not (sms_attempted or email_attempted):
            self._annotate(item.id, QueueItemNote.NO_CONTACT_INFO)
            logger.warning(
                "No usable contact details for customer",
                extra={"event": "queue.item.no_contact"},
            )
            return False

        if not (sms_ok or email_ok):
            self._annotate(item.id, QueueItemNote.ALL_CHANNELS_FAILED)
            logger.error(
                "All channels failed for queue item",
                extra={
                    "event": "queue.item.all_channels_failed",
                    "sms_attempted": sms_attempted,
                    "email_attempted": email_attempted,
                },
            )
            return True

        logger.info(
            "Queue item sent",
            extra={
                "event": "queue.item.sent",
                "new_stage": item.new_stage.value,
                "sms_delivered": sms_ok,
                "email_delivered": email_ok,
            },
        )
        return False

    def _record(self, entry: NotificationLogEntry) -> None:
        with get_session() as session:
            NotificationLogRepository(session).record(entry)

    def _annotate(self, item_id: str, note: QueueItemNote) -> None:
        with get_session() as session:
            NotificationQueueRepository(session).annotate(item_id, note.value)

    def _render(self, registration: Registration, new_stage: RegistrationStage) -> CustomerMessage:
        kind = MessageKind.REJECTION if new_stage == RegistrationStage.REJECTED else MessageKind.STAGE_UPDATE
        context = build_customer_context(
            registration,
            new_stage,
            self.renderer.messaging,
            tracking_url=build_tracking_url(self.env_config.public_site_url, registration),
            unsubscribe_url=build_unsubscribe_url(self.env_config.functions_base_url, registration),
        )
        return self.renderer.customer_message(kind, context)

    def _entry(
        self,
        registration: Registration,
        item: NotificationQueueItem,
        channel: NotificationChannel,
        subject: str,
        template_used: str,
        outcome: DeliveryResult,
    ) -> NotificationLogEntry:
        return NotificationLogEntry(
            registration_id=registration.id,
            channel=channel,
            old_stage=item.old_stage.value if item.old_stage else None,
            new_stage=item.new_stage.value,
            subject=subject,
            template_used=template_used,
            provider_message_id=outcome.provider_message_id,
            delivered=outcome.success,
            delivery_error=outcome.error,
            sent_at=self._clock(),
        )

    def _annotate_after_failure(self, item_id: str, note: str) -> None:
        try:
            with get_session() as session:
                NotificationQueueRepository(session).annotate(item_id, note)
        except Exception as e:
            logger.error(
                f"Could not record failure note on queue item: {e}",
                extra={"event": "queue.item.annotate_failed", "error_type": type(e).__name__},
            )
