"""Unit tests for notification template rendering.

Tests the TemplateRenderer for:
- Customer stage-update and rejection messages
- The admin plate alert summary (SMS and email)
- The unsubscribe landing page
- HTML auto-escaping and strict undefined variable detection
"""

import pytest

from regnotify.alerts.models import DetectedAlert, DetectedInsuranceAlert
from regnotify.config.models import MessagingConfig
from regnotify.domain.models import AlertSeverity, AlertType, InsuranceAlertType, RegistrationStage
from regnotify.notifications.models import MessageKind, NotificationTemplateError
from regnotify.notifications.payloads import build_customer_context, build_plate_alert_context
from regnotify.notifications.templates import TemplateRenderer
from tests.helpers.seed import make_registration


@pytest.fixture
def renderer():
    return TemplateRenderer()


def customer_context(stage=RegistrationStage.DMV_PROCESSING, **overrides):
    registration = make_registration(current_stage=stage, **overrides)
    return build_customer_context(
        registration,
        stage,
        MessagingConfig(),
        tracking_url="https://dealer.example.com/track/TJ-1001-tok123",
        unsubscribe_url="https://dealer.example.com/functions/unsubscribe?reg=r&token=t",
    )


class TestCustomerMessages:
    def test_stage_update_message(self, renderer):
        message = renderer.customer_message(MessageKind.STAGE_UPDATE, customer_context())

        assert message.subject == "Registration Update - DMV Processing"
        assert message.sms_body == (
            "Hi Maria Lopez, your 2021 Toyota Camry registration is now at DMV Processing. "
            "View details: https://dealer.example.com/track/TJ-1001-tok123\n"
            "Reply STOP to unsubscribe"
        )
        assert "Hi Maria Lopez," in message.html
        assert "Awaiting DMV review." in message.html
        assert "View Full Status" in message.html

    def test_progress_bar_marks_completed_current_future(self, renderer):
        html = renderer.customer_message(MessageKind.STAGE_UPDATE, customer_context()).html

        assert html.count('class="progress-completed"') == 3
        assert html.count('class="progress-current"') == 1
        assert html.count('class="progress-future"') == 2

    def test_email_footer_has_unsubscribe_link(self, renderer):
        html = renderer.customer_message(MessageKind.STAGE_UPDATE, customer_context()).html

        assert "functions/unsubscribe?reg=r&amp;token=t" in html
        assert "Texas Dealer License: P171632" in html

    def test_rejection_message(self, renderer):
        context = customer_context(RegistrationStage.REJECTED, rejection_notes="Lien release needed")

        message = renderer.customer_message(MessageKind.REJECTION, context)

        assert message.subject == "Attention Required - Registration Returned"
        assert message.sms_body.startswith(
            "Hi Maria Lopez, your 2021 Toyota Camry registration was returned by DMV for corrections."
        )
        assert message.sms_body.endswith("Reply STOP to unsubscribe")
        assert "DMV Notes" in message.html
        assert "Lien release needed" in message.html
        assert "What happens next?" in message.html

    def test_rejection_without_notes_omits_section(self, renderer):
        context = customer_context(RegistrationStage.REJECTED)

        html = renderer.customer_message(MessageKind.REJECTION, context).html

        assert "DMV Notes" not in html

    def test_html_is_escaped_but_sms_is_not(self, renderer):
        context = customer_context(customer_name="Tom <b>& Co</b>")

        message = renderer.customer_message(MessageKind.STAGE_UPDATE, context)

        assert "Tom &lt;b&gt;&amp; Co&lt;/b&gt;" in message.html
        assert message.sms_body.startswith("Hi Tom <b>& Co</b>,")


def alert(plate_number, alert_type, severity, **fields):
    return DetectedAlert(
        plate_id=f"id-{plate_number}",
        plate_number=plate_number,
        alert_type=alert_type,
        severity=severity,
        **fields,
    )


class TestPlateAlertSummary:
    @pytest.fixture
    def context(self):
        alerts = [
            alert("DLR100", AlertType.OVERDUE_RENTAL, AlertSeverity.URGENT, days_overdue=4,
                  customer_name="Sam Ortiz", customer_phone="8325550199", vehicle_info="2019 Ford F-150"),
            alert("DLR101", AlertType.OVERDUE_RENTAL, AlertSeverity.WARNING, days_overdue=1),
            alert("BT7", AlertType.EXPIRING_BUYER_TAG, AlertSeverity.URGENT, days_until_expiry=-1),
        ]
        return build_plate_alert_context(alerts, MessagingConfig(), "https://dealer.example.com/#/admin/plates")

    def test_sms_summary(self, renderer, context):
        assert renderer.plate_alert_sms(context) == (
            "Triple J Plate Alert: 2 overdue rentals, 1 expiring tag. Check dashboard."
        )

    def test_email_groups_by_type(self, renderer, context):
        html = renderer.plate_alert_email(context)

        assert "3 Active Alerts (2 urgent)" in html
        assert "Overdue Rentals (2)" in html
        assert "Expiring Buyer&#39;s Tags (1)" in html
        assert "Unaccounted Plates" not in html
        assert "Insurance Issues" not in html
        assert html.count('class="badge-urgent"') == 2
        assert html.count('class="badge-warning"') == 1
        assert "4 days overdue" in html
        assert "EXPIRED" in html
        assert "Sam Ortiz" in html
        assert "2019 Ford F-150" in html
        assert "View Plates Dashboard" in html

    def test_alert_email_has_no_unsubscribe_footer(self, renderer, context):
        html = renderer.plate_alert_email(context)

        assert "automated plate tracking alert" in html
        assert "Unsubscribe" not in html

    @pytest.mark.parametrize(
        "plates, insurance, subject",
        [
            (1, 0, "Triple J: 1 Plate Alert"),
            (4, 0, "Triple J: 4 Plate Alerts"),
            (2, 1, "Triple J: 2 Plate Alerts, 1 Insurance Alert"),
            (0, 3, "Triple J: 3 Insurance Alerts"),
        ],
    )
    def test_subject(self, renderer, plates, insurance, subject):
        assert renderer.plate_alert_subject(plates, insurance) == subject

    def test_email_renders_insurance_section(self, renderer):
        context = build_plate_alert_context(
            [],
            MessagingConfig(),
            "https://dealer.example.com/#/admin/plates",
            insurance_alerts=[
                DetectedInsuranceAlert(
                    booking_id="b1",
                    booking_code="BK-21",
                    alert_type=InsuranceAlertType.EXPIRING_SOON,
                    severity=AlertSeverity.WARNING,
                    customer_name="Ana Ruiz",
                    days_until_expiry=5,
                )
            ],
        )

        html = renderer.plate_alert_email(context)

        assert "1 Active Alert" in html
        assert "Insurance Issues (1)" in html
        assert "Booking BK-21" in html
        assert "Insurance Expiring" in html
        assert "5 days remaining" in html
        assert html.count('class="badge-warning"') == 1
        assert renderer.plate_alert_sms(context) == "Triple J Plate Alert: 1 insurance issue. Check dashboard."


class TestUnsubscribePage:
    def test_success_page(self, renderer):
        html = renderer.unsubscribe_page(
            "Unsubscribed",
            "Unsubscribed",
            ["You have been unsubscribed."],
            ok=True,
            tracking_url="https://dealer.example.com/track/x",
        )

        assert "<title>Unsubscribed - Triple J Auto Investment</title>" in html
        assert "Return to tracking page" in html
        assert "#C9A84C" in html

    def test_error_page_has_no_tracking_link(self, renderer):
        html = renderer.unsubscribe_page("Invalid Link", "Invalid or expired link.", ["a", "b"])

        assert "Return to tracking page" not in html
        assert "a<br>b" in html


class TestRendererErrors:
    def test_missing_variable_raises(self, renderer):
        with pytest.raises(NotificationTemplateError, match="stage_update_sms"):
            renderer.render("stage_update_sms", {"customer_name": "x"})

    def test_unknown_template_raises(self, renderer):
        with pytest.raises(NotificationTemplateError, match="Unknown template"):
            renderer.render("nope", {})

    def test_missing_template_directory_fails_at_startup(self):
        with pytest.raises((NotificationTemplateError, ValueError)):
            TemplateRenderer(template_dir="no_such_dir")
