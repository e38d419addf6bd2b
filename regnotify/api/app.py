"""FastAPI application factory."""

from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from regnotify.alerts.lifecycle import AlertLifecycleManager
from regnotify.config.environment import EnvironmentConfig
from regnotify.logging import get_logger
from regnotify.notifications.queue_processor import NotificationQueueProcessor
from regnotify.notifications.templates import TemplateRenderer
from regnotify.persistence.exceptions import PersistenceError
from regnotify.registrations.service import RegistrationStageService

from .routes import health_router, router

logger = get_logger(__name__, component="api")


@dataclass
class AppServices:
    """Long-lived collaborators shared by every request."""

    env_config: EnvironmentConfig
    renderer: TemplateRenderer
    queue_processor: NotificationQueueProcessor
    alert_manager: AlertLifecycleManager
    stage_service: RegistrationStageService


def create_app(services: AppServices) -> FastAPI:
    app = FastAPI(title="Registration Notifier", version="0.1.0")
    app.state.services = services
    app.include_router(health_router)
    app.include_router(router)

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(
            f"Store unavailable: {exc}",
            extra={
                "event": "api.request.failed",
                "path": request.url.path,
                "error_type": type(exc).__name__,
            },
        )
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app
