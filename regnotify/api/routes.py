"""HTTP endpoints that trigger the pipelines and serve unsubscribe links."""

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse

from regnotify.logging import get_logger
from regnotify.notifications.payloads import build_tracking_url

logger = get_logger(__name__, component="api")

router = APIRouter(prefix="/functions", tags=["functions"])
health_router = APIRouter(tags=["health"])


@health_router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/process-notification-queue")
def process_notification_queue(request: Request) -> dict:
    result = request.app.state.services.queue_processor.run_once()
    return result.as_response()


@router.post("/check-plate-alerts")
def check_plate_alerts(request: Request) -> dict:
    result = request.app.state.services.alert_manager.run_once()
    return result.as_response()


@router.get("/unsubscribe", response_class=HTMLResponse)
def unsubscribe(
    request: Request,
    reg: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
) -> HTMLResponse:
    services = request.app.state.services
    renderer = services.renderer
    support_phone = renderer.messaging.support_phone

    if not reg or not token:
        return HTMLResponse(
            renderer.unsubscribe_page(
                "Invalid Link",
                "Invalid or expired link.",
                [
                    "The unsubscribe link is missing required parameters.",
                    f"If you need help, call {support_phone}.",
                ],
            ),
            status_code=400,
        )

    try:
        registration = services.stage_service.unsubscribe(reg, token)
    except Exception as e:
        logger.error(
            f"Unsubscribe failed: {e}",
            exc_info=True,
            extra={"event": "api.unsubscribe.failed", "registration_id": reg},
        )
        return HTMLResponse(
            renderer.unsubscribe_page(
                "Error",
                "Something went wrong.",
                [f"Please try again or call {support_phone}."],
            ),
            status_code=500,
        )

    if registration is None:
        return HTMLResponse(
            renderer.unsubscribe_page(
                "Invalid Link",
                "Invalid or expired link.",
                [
                    "This unsubscribe link is no longer valid.",
                    f"If you need help, call {support_phone}.",
                ],
            ),
            status_code=400,
        )

    return HTMLResponse(
        renderer.unsubscribe_page(
            "Unsubscribed",
            "Unsubscribed",
            [
                f"You have been unsubscribed from {renderer.messaging.brand_name} registration notifications.",
                "You will no longer receive SMS or email updates for this registration.",
                "You'll still receive verification codes when logging in.",
            ],
            ok=True,
            tracking_url=build_tracking_url(services.env_config.public_site_url, registration),
        )
    )
