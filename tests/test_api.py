"""Tests for the HTTP trigger endpoints."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from regnotify.alerts import AlertLifecycleManager
from regnotify.api import AppServices, create_app
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import AlertsConfig, QueueConfig
from regnotify.domain.models import NotificationPreference, RegistrationStage
from regnotify.notifications import NotificationQueueProcessor, TemplateRenderer
from regnotify.persistence import RegistrationRepository, close_database, get_session, init_database
from regnotify.registrations import RegistrationStageService
from tests.helpers import FakeEmailSender, FakeSmsSender
from tests.helpers.seed import T0, seed_booking, seed_plate, seed_queue_item, seed_registration


@pytest.fixture(autouse=True)
def temp_database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def services():
    env_config = EnvironmentConfig(
        admin_phone="+18325550000",
        admin_email="admin@example.com",
        public_site_url="https://dealer.example.com",
    )
    renderer = TemplateRenderer()
    sms, email = FakeSmsSender(), FakeEmailSender()
    clock = lambda: T0  # noqa: E731
    return AppServices(
        env_config=env_config,
        renderer=renderer,
        queue_processor=NotificationQueueProcessor(
            QueueConfig(), env_config, renderer, sms, email, clock=clock
        ),
        alert_manager=AlertLifecycleManager(
            AlertsConfig(), env_config, renderer, sms, email, clock=clock
        ),
        stage_service=RegistrationStageService(QueueConfig(), clock=clock),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_process_notification_queue(client):
    seed_registration(id="reg-1")
    seed_queue_item("reg-1", RegistrationStage.STICKER_READY, send_after=T0 - timedelta(minutes=1))
    seed_queue_item("reg-missing", RegistrationStage.STICKER_READY, send_after=T0 - timedelta(minutes=1))

    response = client.post("/functions/process-notification-queue")

    assert response.status_code == 200
    assert response.json() == {"processed": 2, "errors": 0}


def test_check_plate_alerts(client):
    seed_plate("DLR100")
    seed_booking(booking_code="BK-1")

    first = client.post("/functions/check-plate-alerts")
    second = client.post("/functions/check-plate-alerts")

    assert first.json() == {
        "detected": 1,
        "notified": 1,
        "resolved": 0,
        "insurance_detected": 1,
        "insurance_notified": 1,
        "insurance_resolved": 0,
    }
    assert second.json() == {
        "detected": 1,
        "notified": 0,
        "resolved": 0,
        "insurance_detected": 1,
        "insurance_notified": 0,
        "insurance_resolved": 0,
    }


def test_store_failure_returns_500(client):
    close_database()

    response = client.post("/functions/process-notification-queue")

    assert response.status_code == 500
    assert "Database not initialized" in response.json()["error"]


class TestUnsubscribe:
    def test_success(self, client):
        seed_registration(id="reg-1", access_token="secret", order_id="TJ-7")

        response = client.get("/functions/unsubscribe", params={"reg": "reg-1", "token": "secret"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "You have been unsubscribed from Triple J Auto Investment" in response.text
        assert "https://dealer.example.com/track/TJ-7-secret" in response.text
        with get_session() as session:
            registration = RegistrationRepository(session).get("reg-1")
        assert registration.notification_pref == NotificationPreference.NONE

    @pytest.mark.parametrize("params", [{}, {"reg": "reg-1"}, {"token": "secret"}])
    def test_missing_parameters(self, client, params):
        response = client.get("/functions/unsubscribe", params=params)

        assert response.status_code == 400
        assert "missing required parameters" in response.text

    def test_bad_token(self, client):
        seed_registration(id="reg-1", access_token="secret")

        response = client.get("/functions/unsubscribe", params={"reg": "reg-1", "token": "nope"})

        assert response.status_code == 400
        assert "no longer valid" in response.text
        with get_session() as session:
            registration = RegistrationRepository(session).get("reg-1")
        assert registration.notification_pref == NotificationPreference.BOTH

    def test_unexpected_error(self, client, services):
        with patch.object(services.stage_service, "unsubscribe", side_effect=RuntimeError("db gone")):
            response = client.get("/functions/unsubscribe", params={"reg": "reg-1", "token": "x"})

        assert response.status_code == 500
        assert "Something went wrong." in response.text
        assert "(832) 400-9760" in response.text
