"""Main entry point for the registration notifier service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from regnotify.alerts.lifecycle import AlertLifecycleManager
from regnotify.api import AppServices, create_app
from regnotify.channels.factory import build_senders
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.exceptions import ConfigurationError
from regnotify.config.loader import DEFAULT_LOCATIONS, load_config, validate_config_file
from regnotify.config.models import AppConfig
from regnotify.logging import get_logger
from regnotify.logging.config import configure_logging
from regnotify.notifications.queue_processor import NotificationQueueProcessor
from regnotify.notifications.templates import TemplateRenderer
from regnotify.persistence.database import close_database, init_database
from regnotify.registrations.service import RegistrationStageService
from regnotify.scheduler import ALERT_JOB_ID, QUEUE_JOB_ID, ScheduledJob, SchedulerService

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_services(app_config: AppConfig, env_config: EnvironmentConfig) -> AppServices:
    """Wire the shared renderer, senders and pipelines."""
    renderer = TemplateRenderer(app_config.messaging)
    sms_sender, email_sender = build_senders(env_config, app_config.messaging)

    return AppServices(
        env_config=env_config,
        renderer=renderer,
        queue_processor=NotificationQueueProcessor(
            queue_config=app_config.queue,
            env_config=env_config,
            renderer=renderer,
            sms_sender=sms_sender,
            email_sender=email_sender,
        ),
        alert_manager=AlertLifecycleManager(
            alerts_config=app_config.alerts,
            env_config=env_config,
            renderer=renderer,
            sms_sender=sms_sender,
            email_sender=email_sender,
        ),
        stage_service=RegistrationStageService(app_config.queue),
    )


def build_scheduler(
    app_config: AppConfig,
    services: AppServices,
    shutdown_event: Optional[threading.Event] = None,
) -> SchedulerService:
    schedule = app_config.schedule
    return SchedulerService(
        jobs=[
            ScheduledJob(
                QUEUE_JOB_ID,
                "Notification Queue",
                services.queue_processor.run_once,
                schedule.queue_interval_seconds,
            ),
            ScheduledJob(
                ALERT_JOB_ID,
                "Plate Alert Check",
                services.alert_manager.run_once,
                schedule.alert_interval_seconds,
            ),
        ],
        run_on_startup=schedule.run_on_startup,
        shutdown_event=shutdown_event,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Registration notifier - customer stage updates and plate custody alerts"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--run",
        choices=["queue", "alerts"],
        help="Run one pipeline once and exit",
    )
    mode.add_argument(
        "--serve",
        action="store_true",
        help="Serve the HTTP API and run the scheduler in the background",
    )
    mode.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address for --serve")
    parser.add_argument("--port", type=int, default=8000, help="Port for --serve")
    return parser.parse_args(argv)


def run_single(services: AppServices, which: str) -> int:
    """Execute one queue or alert run. Returns the process exit code."""
    if which == "queue":
        result = services.queue_processor.run_once()
        logger.info(
            f"Queue run finished: {result.processed} processed, {result.errors} error(s)",
            extra={
                "event": "service.manual_run.completed",
                "pipeline": which,
                "processed": result.processed,
                "errors": result.errors,
            },
        )
        return 1 if result.errors else 0

    result = services.alert_manager.run_once()
    logger.info(
        f"Alert run finished: {result.detected} detected, "
        f"{result.notified} notified, {result.resolved} resolved; insurance: "
        f"{result.insurance_detected} detected, {result.insurance_notified} notified, "
        f"{result.insurance_resolved} resolved",
        extra={
            "event": "service.manual_run.completed",
            "pipeline": which,
            **result.as_response(),
        },
    )
    return 0


def serve(app_config: AppConfig, services: AppServices, host: str, port: int) -> int:
    import uvicorn

    scheduler_service = build_scheduler(app_config, services)
    scheduler_service.start()
    try:
        uvicorn.run(create_app(services), host=host, port=port, log_config=None)
    finally:
        scheduler_service.shutdown(wait=False)
    return 0


def run_daemon(app_config: AppConfig, services: AppServices) -> int:
    shutdown_event = threading.Event()
    scheduler_service = build_scheduler(app_config, services, shutdown_event)

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        scheduler_service.shutdown(wait=False)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the registration notifier.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = parse_args(argv)

    if args.check_config:
        config_path = args.config or next(
            (p for p in DEFAULT_LOCATIONS if p.exists()), DEFAULT_LOCATIONS[0]
        )
        return 0 if validate_config_file(config_path) else 1

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        mode = f"run-{args.run}" if args.run else ("serve" if args.serve else "daemon")
        logger.info(
            "Registration notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "mode": mode,
            },
        )

        init_database(env_config.database_url)
        services = build_services(app_config, env_config)

        try:
            if args.run:
                return run_single(services, args.run)
            if args.serve:
                return serve(app_config, services, args.host, args.port)
            return run_daemon(app_config, services)
        finally:
            close_database()
            logger.info(
                "Registration notifier stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            exc_info=True,
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
