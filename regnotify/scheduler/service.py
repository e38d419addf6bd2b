"""Scheduler service for periodic queue and alert runs."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from regnotify.logging import get_logger

logger = get_logger(__name__, component="scheduler")

QUEUE_JOB_ID = "notification-queue"
ALERT_JOB_ID = "plate-alerts"


class ScheduledJob:
    """One periodic job: a callable and its interval."""

    def __init__(self, job_id: str, name: str, func: Callable[[], object], interval_seconds: int):
        self.job_id = job_id
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds


class SchedulerService:
    """
    Wraps APScheduler to trigger the queue processor and alert check.

    Uses BackgroundScheduler so the main thread stays free for signal
    handling (daemon mode) or for serving HTTP (serve mode).
    """

    def __init__(
        self,
        jobs: List[ScheduledJob],
        run_on_startup: bool = True,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.jobs: Dict[str, ScheduledJob] = {job.job_id: job for job in jobs}
        self.run_on_startup = run_on_startup
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register every job and start the scheduler thread."""
        now = datetime.now(timezone.utc)
        for job in self.jobs.values():
            kwargs = {"next_run_time": now} if self.run_on_startup else {}
            self.scheduler.add_job(
                func=self._wrap(job),
                trigger=IntervalTrigger(seconds=job.interval_seconds, timezone=timezone.utc),
                id=job.job_id,
                name=job.name,
                replace_existing=True,
                misfire_grace_time=job.interval_seconds,
                **kwargs,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with {len(self.jobs)} job(s)",
            extra={
                "event": "scheduler.started",
                "jobs": ",".join(self.jobs),
                "run_on_startup": self.run_on_startup,
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self, job_id: str) -> None:
        """Run one job synchronously in the current thread.

        Raises:
            KeyError: If no job with that id is registered
        """
        job = self.jobs[job_id]
        logger.info(
            f"Triggering immediate run of {job.name}",
            extra={"event": "scheduler.trigger_now", "job_id": job_id},
        )
        self._wrap(job)()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str) -> Optional[datetime]:
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None

    @staticmethod
    def _wrap(job: ScheduledJob) -> Callable[[], None]:
        # A failing run must not unschedule the job
        def runner() -> None:
            try:
                job.func()
            except Exception as e:
                logger.error(
                    f"Scheduled job {job.name} failed: {e}",
                    exc_info=True,
                    extra={
                        "event": "scheduler.job.failed",
                        "job_id": job.job_id,
                        "error_type": type(e).__name__,
                    },
                )

        return runner
