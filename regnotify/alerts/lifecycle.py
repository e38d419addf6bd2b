"""Plate and insurance alert lifecycle: open, resolve, and notify the admin in one batch.

Detection results are reconciled against persisted alerts on every run,
plate alerts and insurance alerts each in their own table: new conditions
open an alert (insert-ignore on the open key) and vanished conditions
resolve theirs. Alerts of both kinds outside the cooldown are summarised
in a single SMS and a single email.
"""

import threading
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from regnotify.channels.base import DeliveryResult, EmailSender, SmsSender
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import AlertsConfig
from regnotify.domain.models import NotificationChannel, NotificationLogEntry
from regnotify.logging import get_logger
from regnotify.logging.context import log_context
from regnotify.notifications.payloads import build_dashboard_url, build_plate_alert_context
from regnotify.notifications.templates import TemplateRenderer
from regnotify.persistence.database import get_session
from regnotify.persistence.repositories import (
    InsuranceAlertRepository,
    NotificationLogRepository,
    PlateAlertRepository,
)
from regnotify.utils.timestamps import utc_now

from .detector import AlertDetector
from .models import AlertRunResult, DetectedAlert, DetectedInsuranceAlert

logger = get_logger(__name__, component="alerts")

SMS_TEMPLATE = "plate_alert_sms"
EMAIL_TEMPLATE = "plate_alert_email"


class AlertLifecycleManager:
    """Runs detection and reconciles its snapshot with stored alerts."""

    def __init__(
        self,
        alerts_config: AlertsConfig,
        env_config: EnvironmentConfig,
        renderer: TemplateRenderer,
        sms_sender: SmsSender,
        email_sender: EmailSender,
        detector: Optional[AlertDetector] = None,
        clock: Optional[Callable] = None,
    ):
        self.config = alerts_config
        self.env_config = env_config
        self.renderer = renderer
        self.sms_sender = sms_sender
        self.email_sender = email_sender
        self._clock = clock or utc_now
        self.detector = detector or AlertDetector(alerts_config, clock=self._clock)
        self._lock = threading.Lock()

    def run_once(self) -> AlertRunResult:
        """Detect, open, resolve and notify.

        Raises:
            PersistenceError: If stored alerts cannot be read or updated
        """
        run_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(run_id=run_id):
                logger.warning(
                    "Alert run skipped: previous run still in progress",
                    extra={"event": "alerts.run.skipped", "reason": "lock_held"},
                )
            return AlertRunResult(skipped_run=True)

        try:
            with log_context(run_id=run_id):
                return self._run()
        finally:
            self._lock.release()

    def _run(self) -> AlertRunResult:
        result = AlertRunResult()
        plates: Dict[Tuple[str, str], DetectedAlert] = {a.key: a for a in self.detector.detect()}
        insurance: Dict[Tuple[str, str], DetectedInsuranceAlert] = {
            a.key: a for a in self.detector.detect_insurance()
        }
        result.detected = len(plates)
        result.insurance_detected = len(insurance)

        logger.info(
            f"Detected {len(plates)} plate and {len(insurance)} insurance condition(s)",
            extra={
                "event": "alerts.run.started",
                "detected": len(plates),
                "insurance_detected": len(insurance),
            },
        )

        now = self._clock()
        cutoff = now - timedelta(seconds=self.config.notification_cooldown_seconds)
        with get_session() as session:
            result.resolved, plate_due = self._reconcile(PlateAlertRepository(session), plates, now, cutoff)
        with get_session() as session:
            result.insurance_resolved, insurance_due = self._reconcile(
                InsuranceAlertRepository(session), insurance, now, cutoff
            )

        if not (plate_due or insurance_due):
            logger.info("No alerts due for notification", extra={"event": "alerts.run.completed"})
            return result

        plate_batch = [plates[a.key] for a in plate_due]
        insurance_batch = [insurance[a.key] for a in insurance_due]
        attempted = self._notify(plate_batch, insurance_batch)

        if attempted:
            notified_at = self._clock()
            with get_session() as session:
                PlateAlertRepository(session).mark_notified([a.id for a in plate_due], notified_at)
                InsuranceAlertRepository(session).mark_notified([a.id for a in insurance_due], notified_at)
            result.notified = len(plate_due)
            result.insurance_notified = len(insurance_due)

        logger.info(
            "Alert run completed",
            extra={"event": "alerts.run.completed", **result.as_response()},
        )
        return result

    def _reconcile(self, repo, detected: Dict[Tuple[str, str], object], now, cutoff):
        """Open new keys, resolve vanished ones and pick those past the cooldown.

        Returns:
            (resolved count, open alerts due for notification whose condition
            was detected this run)
        """
        opened = 0
        for (subject_id, _), alert in detected.items():
            if repo.open_if_absent(subject_id, alert.alert_type, alert.severity, now):
                opened += 1

        stale = [a.id for a in repo.list_open() if a.key not in detected]
        resolved = repo.resolve(stale, now)
        due = [a for a in repo.list_due_for_notification(cutoff) if a.key in detected]

        logger.info(
            "Alerts reconciled",
            extra={
                "event": "alerts.reconciled",
                "alert_table": repo.model.__tablename__,
                "opened": opened,
                "resolved": resolved,
                "due": len(due),
            },
        )
        return resolved, due

    def _notify(self, plate_batch: List[DetectedAlert], insurance_batch: List[DetectedInsuranceAlert]) -> bool:
        """Send one SMS and one email summarising both batches.

        Returns:
            True if at least one channel was attempted, whatever the outcome
        """
        context = build_plate_alert_context(
            plate_batch,
            self.renderer.messaging,
            build_dashboard_url(self.env_config.public_site_url, self.renderer.messaging),
            insurance_alerts=insurance_batch,
        )
        subject = self.renderer.plate_alert_subject(len(plate_batch), len(insurance_batch))
        alert_count = len(plate_batch) + len(insurance_batch)
        attempts: List[Tuple[NotificationChannel, str, DeliveryResult]] = []

        if self.env_config.admin_phone:
            sms_result = self.sms_sender.send(self.env_config.admin_phone, self.renderer.plate_alert_sms(context))
            attempts.append((NotificationChannel.SMS, SMS_TEMPLATE, sms_result))
        else:
            logger.warning(
                "ADMIN_PHONE not set, skipping plate alert SMS",
                extra={"event": "alerts.notify.sms_skipped"},
            )

        if self.env_config.admin_email:
            email_result = self.email_sender.send(
                self.env_config.admin_email, subject, self.renderer.plate_alert_email(context)
            )
            attempts.append((NotificationChannel.EMAIL, EMAIL_TEMPLATE, email_result))
        else:
            logger.warning(
                "ADMIN_EMAIL not set, skipping plate alert email",
                extra={"event": "alerts.notify.email_skipped"},
            )

        if attempts:
            self._audit(attempts, subject)

        for channel, _, outcome in attempts:
            log = logger.info if outcome.success else logger.warning
            log(
                f"Plate alert {channel.value} {'sent' if outcome.success else 'failed'}",
                extra={
                    "event": f"alerts.notify.{channel.value}",
                    "delivered": outcome.success,
                    "alert_count": alert_count,
                    "error": outcome.error,
                },
            )

        return bool(attempts)

    def _audit(self, attempts: List[Tuple[NotificationChannel, str, DeliveryResult]], subject: str) -> None:
        sent_at = self._clock()
        try:
            with get_session() as session:
                audit = NotificationLogRepository(session)
                for channel, template, outcome in attempts:
                    audit.record(
                        NotificationLogEntry(
                            registration_id=None,
                            channel=channel,
                            subject=subject,
                            template_used=template,
                            provider_message_id=outcome.provider_message_id,
                            delivered=outcome.success,
                            delivery_error=outcome.error,
                            sent_at=sent_at,
                        )
                    )
        except Exception as e:
            logger.error(
                f"Failed to write plate alert audit entries: {e}",
                extra={"event": "alerts.audit.failed", "error_type": type(e).__name__},
            )
