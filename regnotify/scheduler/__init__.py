"""Scheduling module for periodic queue and alert runs."""

from .service import ALERT_JOB_ID, QUEUE_JOB_ID, ScheduledJob, SchedulerService

__all__ = [
    "SchedulerService",
    "ScheduledJob",
    "QUEUE_JOB_ID",
    "ALERT_JOB_ID",
]
