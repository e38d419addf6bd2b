"""Tests for the Twilio SMS and Resend email senders."""

from unittest.mock import MagicMock, Mock

import pytest
import requests
from twilio.base.exceptions import TwilioRestException

from regnotify.channels import (
    ChannelConfigurationError,
    ResendEmailSender,
    TwilioSmsSender,
    build_senders,
)
from regnotify.channels.email import RESEND_API_URL
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.models import MessagingConfig


def twilio_sender(client=None, **overrides):
    settings = {
        "account_sid": "ACxxxxxxxx",
        "auth_token": "token",
        "from_number": "+18325550000",
    }
    settings.update(overrides)
    client = client or MagicMock()
    factory = Mock(return_value=client)
    return TwilioSmsSender(client_factory=factory, timeout=10, **settings), factory, client


class TestTwilioSmsSender:
    def test_successful_send_normalises_recipient(self):
        sender, factory, client = twilio_sender()
        client.messages.create.return_value = Mock(sid="SM123")

        result = sender.send("(832) 555-0101", "hello")

        assert result.success is True
        assert result.provider_message_id == "SM123"
        client.messages.create.assert_called_once_with(
            to="+18325550101", from_="+18325550000", body="hello"
        )
        factory.assert_called_once_with("ACxxxxxxxx", "token")

    def test_client_is_built_once_with_timeout(self):
        sender, factory, client = twilio_sender()
        client.messages.create.return_value = Mock(sid="SM1")

        sender.send("8325550101", "one")
        sender.send("8325550101", "two")

        assert factory.call_count == 1
        assert client.http_client.timeout == 10

    def test_missing_credentials_fail_without_calling_provider(self):
        sender, factory, _ = twilio_sender(auth_token=None, from_number="")

        result = sender.send("8325550101", "hello")

        assert result.success is False
        assert result.error == "Missing env vars: TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER"
        assert sender.configured is False
        factory.assert_not_called()

    def test_invalid_number_is_rejected_locally(self):
        sender, factory, _ = twilio_sender()

        result = sender.send("555-01", "hello")

        assert result.success is False
        assert result.error.startswith("Invalid phone number")
        factory.assert_not_called()

    def test_twilio_error_is_reported(self):
        sender, _, client = twilio_sender()
        client.messages.create.side_effect = TwilioRestException(
            status=400, uri="/Messages", msg="The 'To' number is not a valid phone number.", code=21211
        )

        result = sender.send("8325550101", "hello")

        assert result.success is False
        assert result.error == "Twilio error 21211: The 'To' number is not a valid phone number."

    def test_transport_error_is_reported(self):
        sender, _, client = twilio_sender()
        client.messages.create.side_effect = ConnectionError("connection reset")

        result = sender.send("8325550101", "hello")

        assert result.success is False
        assert result.error == "connection reset"


def response(status_code, body):
    resp = Mock(status_code=status_code)
    resp.json.return_value = body
    return resp


class TestResendEmailSender:
    def test_successful_send(self):
        session = Mock()
        session.post.return_value = response(200, {"id": "email-abc"})
        sender = ResendEmailSender("re_key", "Dealer <n@example.com>", timeout=12, session=session)

        result = sender.send("maria@example.com", "Subject", "<p>Hi</p>")

        assert result.success is True
        assert result.provider_message_id == "email-abc"
        session.post.assert_called_once_with(
            RESEND_API_URL,
            headers={"Authorization": "Bearer re_key", "Content-Type": "application/json"},
            json={
                "from": "Dealer <n@example.com>",
                "to": ["maria@example.com"],
                "subject": "Subject",
                "html": "<p>Hi</p>",
            },
            timeout=12,
        )

    def test_missing_api_key(self):
        session = Mock()
        sender = ResendEmailSender(None, "n@example.com", session=session)

        result = sender.send("maria@example.com", "Subject", "<p>Hi</p>")

        assert result.success is False
        assert result.error == "Missing env var: RESEND_API_KEY"
        session.post.assert_not_called()

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"message": "Invalid `to` field"}, "Invalid `to` field"),
            ({"error": {"message": "Domain not verified"}}, "Domain not verified"),
            ({"error": "rate_limited"}, "rate_limited"),
            ({}, "HTTP 502"),
        ],
    )
    def test_error_bodies(self, body, expected):
        session = Mock()
        session.post.return_value = response(502 if not body else 422, body)
        sender = ResendEmailSender("re_key", "n@example.com", session=session)

        result = sender.send("maria@example.com", "Subject", "<p>Hi</p>")

        assert result.success is False
        assert result.error == expected

    def test_non_json_error_body(self):
        session = Mock()
        resp = Mock(status_code=500)
        resp.json.side_effect = ValueError("not json")
        session.post.return_value = resp
        sender = ResendEmailSender("re_key", "n@example.com", session=session)

        assert sender.send("a@example.com", "s", "h").error == "HTTP 500"

    def test_timeout(self):
        session = Mock()
        session.post.side_effect = requests.exceptions.Timeout()
        sender = ResendEmailSender("re_key", "n@example.com", timeout=5, session=session)

        result = sender.send("a@example.com", "s", "h")

        assert result.success is False
        assert result.error == "Resend request timed out after 5s"

    def test_connection_error(self):
        session = Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        sender = ResendEmailSender("re_key", "n@example.com", session=session)

        assert sender.send("a@example.com", "s", "h").error.startswith("Resend request failed")

    def test_invalid_construction(self):
        with pytest.raises(ChannelConfigurationError):
            ResendEmailSender("re_key", "  ")
        with pytest.raises(ChannelConfigurationError):
            ResendEmailSender("re_key", "n@example.com", timeout=0)


class TestBuildSenders:
    def test_unconfigured_channels_are_still_built(self, caplog):
        sms, email = build_senders(EnvironmentConfig(), MessagingConfig())

        assert sms.configured is False
        assert email.configured is False
        assert "SMS disabled" in caplog.text
        assert "Email disabled" in caplog.text

    def test_configured_channels(self):
        env = EnvironmentConfig(
            twilio_account_sid="AC1",
            twilio_auth_token="tok",
            twilio_phone_number="+18325550000",
            resend_api_key="re_key",
        )

        sms, email = build_senders(env, MessagingConfig(http_timeout=30))

        assert sms.configured and email.configured
        assert sms.timeout == 30
        assert email.timeout == 30
