"""Template context builders and link construction.

Every builder returns a plain dict that the Jinja2 templates consume. The
branding block (brand, dealer license, address, phone) is merged into
each context because the shared layout renders it.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from regnotify.config.models import MessagingConfig
from regnotify.domain.models import (
    AlertSeverity,
    AlertType,
    InsuranceAlertType,
    Registration,
    RegistrationStage,
)
from regnotify.domain.stages import forward_stages, stage_info

if TYPE_CHECKING:
    from regnotify.alerts.models import DetectedAlert, DetectedInsuranceAlert

DEFAULT_CUSTOMER_NAME = "Valued Customer"

ALERT_SECTIONS = (
    (AlertType.OVERDUE_RENTAL, "Overdue Rentals", "&#9888;"),
    (AlertType.EXPIRING_BUYER_TAG, "Expiring Buyer's Tags", "&#9200;"),
    (AlertType.UNACCOUNTED, "Unaccounted Plates", "&#10067;"),
)

ALERT_TYPE_LABELS = {
    AlertType.OVERDUE_RENTAL: "Overdue Rental",
    AlertType.EXPIRING_BUYER_TAG: "Expiring Buyer's Tag",
    AlertType.UNACCOUNTED: "Unaccounted Plate",
}

INSURANCE_SECTION = ("Insurance Issues", "&#128737;")

INSURANCE_TYPE_LABELS = {
    InsuranceAlertType.MISSING_INSURANCE: "Missing Insurance",
    InsuranceAlertType.EXPIRED: "Insurance Expired",
    InsuranceAlertType.EXPIRING_SOON: "Insurance Expiring",
}


def build_tracking_url(public_site_url: str, registration: Registration) -> str:
    """Customer tracking page: ``{site}/track/{order_id or id}-{token}``."""
    return f"{public_site_url.rstrip('/')}/track/{registration.tracking_reference}-{registration.access_token}"


def build_unsubscribe_url(functions_base_url: str, registration: Registration) -> str:
    query = urlencode({"reg": registration.id, "token": registration.access_token})
    return f"{functions_base_url.rstrip('/')}/functions/unsubscribe?{query}"


def build_dashboard_url(public_site_url: str, messaging: MessagingConfig) -> str:
    path = messaging.dashboard_path
    if not path.startswith("/"):
        path = "/" + path
    return public_site_url.rstrip("/") + path


def branding_context(messaging: MessagingConfig) -> Dict:
    return {
        "brand_name": messaging.brand_name,
        "sms_brand": messaging.sms_brand,
        "support_phone": messaging.support_phone,
        "dealer_license": messaging.dealer_license,
        "dealer_address": messaging.dealer_address,
    }


def vehicle_description(registration: Registration) -> str:
    parts = [
        str(registration.vehicle_year) if registration.vehicle_year else None,
        registration.vehicle_make,
        registration.vehicle_model,
    ]
    return " ".join(p for p in parts if p) or "vehicle"


def progress_steps(stage: RegistrationStage) -> List[Dict]:
    """Six progress cells, each completed, current or future.

    A rejected registration (ordinal 0) shows every cell as future.
    """
    current = stage_info(stage).ordinal
    steps = []
    for info in forward_stages():
        if info.ordinal < current:
            state = "completed"
        elif info.ordinal == current:
            state = "current"
        else:
            state = "future"
        steps.append({"key": info.key.value, "label": info.label, "state": state})
    return steps


def build_customer_context(
    registration: Registration,
    new_stage: RegistrationStage,
    messaging: MessagingConfig,
    tracking_url: str,
    unsubscribe_url: str,
) -> Dict:
    """Context shared by the stage-update and rejection templates."""
    info = stage_info(new_stage)
    return {
        **branding_context(messaging),
        "customer_name": registration.customer_name or DEFAULT_CUSTOMER_NAME,
        "vehicle": vehicle_description(registration),
        "stage_key": info.key.value,
        "stage_label": info.label,
        "stage_description": info.description,
        "stage_order": info.ordinal,
        "progress": progress_steps(info.key),
        "rejection_notes": registration.rejection_notes,
        "tracking_url": tracking_url,
        "unsubscribe_url": unsubscribe_url,
    }


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def alert_detail(alert: "DetectedAlert") -> Optional[str]:
    """Per-row detail line of the admin summary."""
    if alert.alert_type == AlertType.OVERDUE_RENTAL and alert.days_overdue is not None:
        return f"{_plural(alert.days_overdue, 'day')} overdue"
    if alert.alert_type == AlertType.EXPIRING_BUYER_TAG and alert.days_until_expiry is not None:
        if alert.days_until_expiry <= 0:
            return "EXPIRED"
        return f"{_plural(alert.days_until_expiry, 'day')} remaining"
    if alert.alert_type == AlertType.UNACCOUNTED:
        return "No active booking or registration linked"
    return None


def insurance_detail(alert: "DetectedInsuranceAlert") -> str:
    if alert.alert_type == InsuranceAlertType.MISSING_INSURANCE:
        return "No insurance on file"
    if alert.alert_type == InsuranceAlertType.EXPIRED:
        return "EXPIRED"
    if alert.days_until_expiry == 0:
        return "Expires today"
    return f"{_plural(alert.days_until_expiry, 'day')} remaining"


def sms_summary_parts(
    alerts: Iterable["DetectedAlert"], insurance_alerts: Iterable["DetectedInsuranceAlert"] = ()
) -> List[str]:
    """``["2 overdue rentals", "1 expiring tag", "1 unaccounted", "1 insurance issue"]``.

    Empty groups are omitted.
    """
    alerts = list(alerts)
    counts = {alert_type: 0 for alert_type, _, _ in ALERT_SECTIONS}
    for alert in alerts:
        counts[alert.alert_type] += 1

    parts = []
    if counts[AlertType.OVERDUE_RENTAL]:
        parts.append(_plural(counts[AlertType.OVERDUE_RENTAL], "overdue rental"))
    if counts[AlertType.EXPIRING_BUYER_TAG]:
        parts.append(_plural(counts[AlertType.EXPIRING_BUYER_TAG], "expiring tag"))
    if counts[AlertType.UNACCOUNTED]:
        parts.append(f"{counts[AlertType.UNACCOUNTED]} unaccounted")
    insurance_count = len(list(insurance_alerts))
    if insurance_count:
        parts.append(_plural(insurance_count, "insurance issue"))
    return parts


def build_plate_alert_context(
    alerts: Iterable["DetectedAlert"],
    messaging: MessagingConfig,
    dashboard_url: str,
    insurance_alerts: Iterable["DetectedInsuranceAlert"] = (),
) -> Dict:
    """Group alerts by type for the admin summary email and SMS.

    Insurance findings follow the plate sections in a section of their own.
    """
    alerts = list(alerts)
    insurance_alerts = list(insurance_alerts)
    sections = []
    for alert_type, title, icon in ALERT_SECTIONS:
        rows = [
            {
                "reference": a.plate_number,
                "severity": a.severity.value,
                "type_label": ALERT_TYPE_LABELS[a.alert_type],
                "detail": alert_detail(a),
                "customer_name": a.customer_name,
                "customer_phone": a.customer_phone,
                "vehicle_info": a.vehicle_info,
            }
            for a in alerts
            if a.alert_type == alert_type
        ]
        sections.append({"type": alert_type.value, "title": title, "icon": icon, "alerts": rows})

    title, icon = INSURANCE_SECTION
    sections.append(
        {
            "type": "insurance",
            "title": title,
            "icon": icon,
            "alerts": [
                {
                    "reference": f"Booking {a.reference}",
                    "severity": a.severity.value,
                    "type_label": INSURANCE_TYPE_LABELS[a.alert_type],
                    "detail": insurance_detail(a),
                    "customer_name": a.customer_name,
                    "customer_phone": a.customer_phone,
                    "vehicle_info": None,
                }
                for a in insurance_alerts
            ],
        }
    )

    everything = alerts + insurance_alerts
    return {
        **branding_context(messaging),
        "total": len(everything),
        "urgent_count": sum(1 for a in everything if a.severity == AlertSeverity.URGENT),
        "sections": sections,
        "parts": sms_summary_parts(alerts, insurance_alerts),
        "dashboard_url": dashboard_url,
    }
