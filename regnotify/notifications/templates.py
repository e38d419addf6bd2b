"""Template rendering for customer and admin messages using Jinja2.

A TemplateRenderer is built once at startup and shared by the queue
processor, the alert pipeline and the unsubscribe endpoint. HTML templates
are autoescaped; plain-text SMS templates are not.
"""

import logging
from typing import Dict, Iterable, List, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from regnotify.config.models import MessagingConfig

from .models import CustomerMessage, MessageKind, NotificationTemplateError
from .payloads import branding_context

logger = logging.getLogger(__name__)

TEMPLATE_FILES = {
    "stage_update_sms": "stage_update_sms.txt.j2",
    "stage_update_email": "stage_update_email.html.j2",
    "rejection_sms": "rejection_sms.txt.j2",
    "rejection_email": "rejection_email.html.j2",
    "plate_alert_sms": "plate_alert_sms.txt.j2",
    "plate_alert_email": "plate_alert_email.html.j2",
    "unsubscribe_page": "unsubscribe_page.html.j2",
}

SUBJECTS = {
    MessageKind.STAGE_UPDATE: "Registration Update - {stage_label}",
    MessageKind.REJECTION: "Attention Required - Registration Returned",
}


class TemplateRenderer:
    """Renders every outbound message from the package's template directory.

    All templates are loaded in the constructor, so a missing or broken
    file fails at startup instead of on the first notification.
    """

    def __init__(self, messaging: Optional[MessagingConfig] = None, template_dir: str = "email_templates"):
        self.messaging = messaging or MessagingConfig()
        self.env = Environment(
            loader=PackageLoader("regnotify.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html", "html.j2"), default=False),
            undefined=StrictUndefined,
        )

        try:
            self._templates = {
                name: self.env.get_template(filename) for name, filename in TEMPLATE_FILES.items()
            }
        except TemplateError as e:
            raise NotificationTemplateError(f"Failed to load templates: {e}") from e

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, name: str, context: Dict) -> str:
        """Render one named template.

        Raises:
            NotificationTemplateError: On unknown names or undefined variables
        """
        template = self._templates.get(name)
        if template is None:
            raise NotificationTemplateError(f"Unknown template: {name}")

        try:
            return template.render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {name}: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

    def customer_message(self, kind: MessageKind, context: Dict) -> CustomerMessage:
        """Render the SMS body, email subject and email HTML for a stage change."""
        kind = MessageKind(kind)
        return CustomerMessage(
            kind=kind,
            sms_body=self.render(kind.sms_template, context).strip(),
            subject=SUBJECTS[kind].format(**context),
            html=self.render(kind.email_template, context),
        )

    def plate_alert_sms(self, context: Dict) -> str:
        return self.render("plate_alert_sms", context).strip()

    def plate_alert_email(self, context: Dict) -> str:
        return self.render("plate_alert_email", context)

    def plate_alert_subject(self, plate_count: int, insurance_count: int = 0) -> str:
        """``"Triple J: 2 Plate Alerts, 1 Insurance Alert"``, empty kinds omitted."""
        parts = []
        if plate_count or not insurance_count:
            parts.append(f"{plate_count} Plate Alert{'' if plate_count == 1 else 's'}")
        if insurance_count:
            parts.append(f"{insurance_count} Insurance Alert{'' if insurance_count == 1 else 's'}")
        return f"{self.messaging.sms_brand}: {', '.join(parts)}"

    def unsubscribe_page(
        self,
        title: str,
        headline: str,
        lines: Iterable[str],
        ok: bool = False,
        tracking_url: Optional[str] = None,
    ) -> str:
        lines: List[str] = list(lines)
        return self.render(
            "unsubscribe_page",
            {
                **branding_context(self.messaging),
                "title": title,
                "headline": headline,
                "lines": lines,
                "ok": ok,
                "tracking_url": tracking_url,
            },
        )
