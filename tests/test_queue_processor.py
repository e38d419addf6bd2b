"""Tests for the customer notification queue processor.

Covers channel selection by preference, SMS-to-email fallback, outcome notes,
the audit trail and per-item error isolation.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import QueueConfig
from regnotify.domain.models import NotificationChannel, NotificationPreference, RegistrationStage
from regnotify.notifications import NotificationQueueProcessor
from regnotify.notifications.templates import TemplateRenderer
from regnotify.persistence import (
    NotificationLogRepository,
    NotificationQueueRepository,
    PersistenceError,
    close_database,
    get_session,
    init_database,
)
from tests.helpers import FakeEmailSender, FakeSmsSender
from tests.helpers.seed import T0, seed_queue_item, seed_registration


class ExplodingSmsSender(FakeSmsSender):
    def send(self, to, body):
        raise RuntimeError("socket closed")


class ExplodingEmailSender(FakeEmailSender):
    def send(self, to, subject, html):
        raise RuntimeError("connection reset")


@pytest.fixture(autouse=True)
def temp_database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def env_config():
    return EnvironmentConfig(
        public_site_url="https://dealer.example.com",
        functions_base_url="https://api.dealer.example.com",
    )


def build_processor(env_config, sms=None, email=None, batch_limit=100):
    return NotificationQueueProcessor(
        queue_config=QueueConfig(batch_limit=batch_limit),
        env_config=env_config,
        renderer=TemplateRenderer(),
        sms_sender=sms or FakeSmsSender(),
        email_sender=email or FakeEmailSender(),
        clock=lambda: T0,
    )


def ready_item(registration_id, new_stage=RegistrationStage.STICKER_READY, **kwargs):
    return seed_queue_item(
        registration_id,
        new_stage,
        old_stage=RegistrationStage.DMV_PROCESSING,
        send_after=T0 - timedelta(minutes=1),
        **kwargs,
    )


def stored(item_id):
    with get_session() as session:
        return NotificationQueueRepository(session).get(item_id)


def audit(registration_id):
    with get_session() as session:
        return NotificationLogRepository(session).list_for_registration(registration_id)


class TestDelivery:
    def test_sticker_ready_sends_sms_and_email(self, env_config):
        seed_registration(id="reg-1", current_stage=RegistrationStage.STICKER_READY)
        item = ready_item("reg-1")
        sms, email = FakeSmsSender(), FakeEmailSender()

        result = build_processor(env_config, sms, email).run_once()

        assert result.as_response() == {"processed": 1, "errors": 0}
        assert sms.sent == [
            (
                "(832) 555-0101",
                "Hi Maria Lopez, your 2021 Toyota Camry registration is now at Sticker Ready. "
                "View details: https://dealer.example.com/track/TJ-1001-tok123\n"
                "Reply STOP to unsubscribe",
            )
        ]
        to, subject, html = email.sent[0]
        assert to == "maria@example.com"
        assert subject == "Registration Update - Sticker Ready"
        assert "Sticker Ready" in html
        assert "https://api.dealer.example.com/functions/unsubscribe?reg=reg-1" in html

        done = stored(item.id)
        assert done.sent is True
        assert done.sent_at == T0
        assert done.error is None

        entries = audit("reg-1")
        assert [(e.channel, e.template_used, e.delivered) for e in entries] == [
            (NotificationChannel.SMS, "stage_update_sms", True),
            (NotificationChannel.EMAIL, "stage_update_email", True),
        ]
        assert entries[0].old_stage == "dmv_processing"
        assert entries[0].new_stage == "sticker_ready"
        assert entries[0].provider_message_id == "SM0001"

    def test_sms_preference_success_sends_no_email(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.SMS)
        ready_item("reg-1")
        sms, email = FakeSmsSender(), FakeEmailSender()

        build_processor(env_config, sms, email).run_once()

        assert len(sms.sent) == 1
        assert email.sent == []

    def test_email_preference_skips_sms(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.EMAIL)
        ready_item("reg-1")
        sms, email = FakeSmsSender(), FakeEmailSender()

        build_processor(env_config, sms, email).run_once()

        assert sms.sent == []
        assert [e.channel for e in audit("reg-1")] == [NotificationChannel.EMAIL]

    def test_failed_sms_falls_back_to_email(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.SMS)
        item = ready_item("reg-1")
        sms = FakeSmsSender(fail_with="Twilio error 21614: not a mobile number")
        email = FakeEmailSender()

        result = build_processor(env_config, sms, email).run_once()

        assert result.errors == 0
        assert len(email.sent) == 1
        entries = audit("reg-1")
        assert [(e.channel, e.delivered) for e in entries] == [
            (NotificationChannel.SMS, False),
            (NotificationChannel.EMAIL_FALLBACK, True),
        ]
        assert entries[0].delivery_error == "Twilio error 21614: not a mobile number"
        assert stored(item.id).error is None

    def test_failed_sms_with_both_preference_labels_plain_email(self, env_config):
        seed_registration(id="reg-1")
        ready_item("reg-1")

        build_processor(env_config, FakeSmsSender(fail_with="down")).run_once()

        assert [e.channel for e in audit("reg-1")] == [NotificationChannel.SMS, NotificationChannel.EMAIL]

    def test_sms_without_phone_goes_to_email_only_when_preferred(self, env_config):
        seed_registration(id="reg-1", customer_phone=None, notification_pref=NotificationPreference.SMS)
        item = ready_item("reg-1")
        email = FakeEmailSender()

        result = build_processor(env_config, email=email).run_once()

        assert email.sent == []
        assert result.errors == 0
        assert stored(item.id).error == "no_contact_info"

    def test_rejection_uses_rejection_templates(self, env_config):
        seed_registration(
            id="reg-1",
            current_stage=RegistrationStage.REJECTED,
            rejection_notes="Odometer statement missing",
        )
        ready_item("reg-1", new_stage=RegistrationStage.REJECTED)
        sms, email = FakeSmsSender(), FakeEmailSender()

        build_processor(env_config, sms, email).run_once()

        assert "returned by DMV for corrections" in sms.sent[0][1]
        assert "Questions? Call (832) 400-9760" in sms.sent[0][1]
        _, subject, html = email.sent[0]
        assert subject == "Attention Required - Registration Returned"
        assert "Odometer statement missing" in html
        assert [e.template_used for e in audit("reg-1")] == ["rejection_sms", "rejection_email"]

    def test_missing_name_and_vehicle_use_defaults(self, env_config):
        seed_registration(
            id="reg-1",
            customer_name="  ",
            vehicle_year=None,
            vehicle_make=None,
            vehicle_model=None,
            notification_pref=NotificationPreference.SMS,
        )
        ready_item("reg-1")
        sms = FakeSmsSender()

        build_processor(env_config, sms).run_once()

        assert sms.sent[0][1].startswith("Hi Valued Customer, your vehicle registration is now at")


class TestOutcomeNotes:
    def test_all_channels_failed(self, env_config):
        seed_registration(id="reg-1")
        item = ready_item("reg-1")

        result = build_processor(
            env_config, FakeSmsSender(fail_with="down"), FakeEmailSender(fail_with="HTTP 500")
        ).run_once()

        assert result.as_response() == {"processed": 1, "errors": 1}
        assert stored(item.id).error == "all_channels_failed"
        assert len(audit("reg-1")) == 2

    def test_failed_sms_without_email_counts_as_error(self, env_config):
        seed_registration(id="reg-1", customer_email=None, notification_pref=NotificationPreference.SMS)
        item = ready_item("reg-1")

        result = build_processor(env_config, FakeSmsSender(fail_with="down")).run_once()

        assert result.errors == 1
        assert stored(item.id).error == "all_channels_failed"

    def test_preference_none_is_skipped_and_audited(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.NONE)
        item = ready_item("reg-1")
        sms, email = FakeSmsSender(), FakeEmailSender()

        result = build_processor(env_config, sms, email).run_once()

        assert result.as_response() == {"processed": 1, "errors": 0}
        assert sms.sent == [] and email.sent == []
        assert stored(item.id).error == "skipped_preference_none"

        entries = audit("reg-1")
        assert len(entries) == 1
        assert entries[0].channel == NotificationChannel.NONE
        assert entries[0].subject == "Skipped - preference none"
        assert entries[0].template_used == "none"
        assert entries[0].delivery_error == "skipped_preference_none"

    def test_missing_registration(self, env_config):
        item = ready_item("reg-gone")

        result = build_processor(env_config).run_once()

        assert result.as_response() == {"processed": 1, "errors": 0}
        done = stored(item.id)
        assert done.sent is True
        assert done.error == "no_linked_registration"

    def test_no_contact_info(self, env_config):
        seed_registration(id="reg-1", customer_phone=None, customer_email=None)
        item = ready_item("reg-1")

        result = build_processor(env_config).run_once()

        assert result.errors == 0
        assert stored(item.id).error == "no_contact_info"
        assert audit("reg-1") == []


class TestQueueRun:
    def test_unexpected_error_is_isolated_to_item(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.SMS)
        seed_registration(id="reg-2", notification_pref=NotificationPreference.EMAIL)
        broken = seed_queue_item(
            "reg-1", RegistrationStage.STICKER_READY, send_after=T0 - timedelta(minutes=5)
        )
        fine = ready_item("reg-2")
        email = FakeEmailSender()

        result = build_processor(env_config, ExplodingSmsSender(), email).run_once()

        assert result.as_response() == {"processed": 2, "errors": 1}
        assert stored(broken.id).error == "processing_error: socket closed"
        assert stored(broken.id).sent is True
        assert stored(fine.id).error is None
        assert len(email.sent) == 1

    def test_only_ready_customer_items_are_processed(self, env_config):
        seed_registration(id="reg-1")
        future = seed_queue_item("reg-1", RegistrationStage.STICKER_READY, send_after=T0 + timedelta(minutes=1))
        silent = seed_queue_item("reg-1", RegistrationStage.STICKER_READY, send_after=T0, notify_customer=False)

        result = build_processor(env_config).run_once()

        assert result.processed == 0
        assert stored(future.id).sent is False
        assert stored(silent.id).sent is False

    def test_batch_limit(self, env_config):
        seed_registration(id="reg-1")
        for minutes in (3, 2, 1):
            seed_queue_item("reg-1", RegistrationStage.STICKER_READY, send_after=T0 - timedelta(minutes=minutes))

        result = build_processor(env_config, batch_limit=2).run_once()

        assert result.processed == 2

    def test_second_run_does_not_resend(self, env_config):
        seed_registration(id="reg-1")
        ready_item("reg-1")
        sms = FakeSmsSender()
        processor = build_processor(env_config, sms)

        processor.run_once()
        result = processor.run_once()

        assert result.processed == 0
        assert len(sms.sent) == 1

    def test_lost_claim_is_not_counted(self, env_config):
        seed_registration(id="reg-1")
        ready_item("reg-1")
        sms = FakeSmsSender()

        with patch.object(NotificationQueueRepository, "claim", return_value=False):
            result = build_processor(env_config, sms).run_once()

        assert result.as_response() == {"processed": 0, "errors": 0}
        assert sms.sent == []

    def test_overlapping_run_is_skipped(self, env_config):
        processor = build_processor(env_config)
        processor._lock.acquire()
        try:
            result = processor.run_once()
        finally:
            processor._lock.release()

        assert result.skipped_run is True
        assert result.processed == 0

    def test_claim_failure_does_not_abort_batch(self, env_config):
        seed_registration(id="reg-1", notification_pref=NotificationPreference.SMS)
        seed_registration(id="reg-2", notification_pref=NotificationPreference.SMS, customer_phone="(832) 555-0202")
        locked = seed_queue_item(
            "reg-1", RegistrationStage.STICKER_READY, send_after=T0 - timedelta(minutes=5)
        )
        fine = ready_item("reg-2")
        sms = FakeSmsSender()
        original_claim = NotificationQueueRepository.claim

        def claim(repo, item_id, now):
            if item_id == locked.id:
                raise PersistenceError("database is locked")
            return original_claim(repo, item_id, now)

        with patch.object(NotificationQueueRepository, "claim", autospec=True, side_effect=claim):
            result = build_processor(env_config, sms).run_once()

        assert result.as_response() == {"processed": 1, "errors": 1}
        assert result.item_ids == [fine.id]
        assert sms.sent[0][0] == "(832) 555-0202"
        assert stored(locked.id).sent is False
        assert stored(fine.id).sent is True

    def test_earlier_audit_entry_survives_later_send_error(self, env_config):
        seed_registration(id="reg-1")
        item = ready_item("reg-1")
        sms = FakeSmsSender()

        result = build_processor(env_config, sms, ExplodingEmailSender()).run_once()

        assert result.as_response() == {"processed": 1, "errors": 1}
        assert len(sms.sent) == 1
        entries = audit("reg-1")
        assert [(e.channel, e.delivered) for e in entries] == [(NotificationChannel.SMS, True)]
        assert entries[0].provider_message_id == "SM0001"
        assert stored(item.id).error == "processing_error: connection reset"
