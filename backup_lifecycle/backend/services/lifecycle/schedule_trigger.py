"""Scheduling port for backup runs.

The manager only needs "fire handler H on cadence C": `SchedulerTrigger` is
that port. `APSchedulerTrigger` implements it with APScheduler's background
scheduler and a crontab trigger, in UTC.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
import logging
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

JOB_ID = "backup_lifecycle_run"

# Common schedules and their human-readable descriptions.
CRON_DESCRIPTIONS = {
    "0 0 * * 0": "Sundays at 12:00 AM",
    "0 0 * * 1": "Mondays at 12:00 AM",
    "0 0 * * 2": "Tuesdays at 12:00 AM",
    "0 0 * * 3": "Wednesdays at 12:00 AM",
    "0 0 * * 4": "Thursdays at 12:00 AM",
    "0 0 * * 5": "Fridays at 12:00 AM",
    "0 0 * * 6": "Saturdays at 12:00 AM",
    "0 0 * * *": "Daily at 12:00 AM",
}
CUSTOM_SCHEDULE_DESCRIPTION = "Custom schedule"


def build_cron_trigger(expr: str) -> CronTrigger:
    """Parse a 5-field crontab expression into a UTC trigger.

    Args:
        expr: Crontab expression (minute hour day month day_of_week).

    Returns:
        CronTrigger: Parsed trigger.

    Raises:
        ValueError: If the expression is malformed.
    """

    raw = " ".join(str(expr or "").split())
    if len(raw.split(" ")) != 5:
        raise ValueError(f"Invalid cron expression (expected 5 fields): {expr!r}")
    return CronTrigger.from_crontab(raw, timezone="UTC")


def describe_cron(expr: str) -> str:
    """Return a human-readable description of a schedule."""

    normalized = " ".join(str(expr or "").split())
    return CRON_DESCRIPTIONS.get(normalized, CUSTOM_SCHEDULE_DESCRIPTION)


class SchedulerTrigger(ABC):
    """Fires a handler on a cron cadence."""

    @abstractmethod
    def register(self, cron_expr: str, handler: Callable[[], None]) -> None:
        """Start firing `handler` on `cron_expr`, replacing any previous registration."""

    @abstractmethod
    def unregister(self) -> None:
        """Stop firing. Idempotent."""

    @abstractmethod
    def next_fire_time(self) -> Optional[datetime]:
        """Return the next scheduled fire time, if registered."""

    def shutdown(self) -> None:
        """Release scheduler resources."""


class APSchedulerTrigger(SchedulerTrigger):
    """`SchedulerTrigger` backed by an APScheduler `BackgroundScheduler`."""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        """Initialize the trigger.

        Args:
            scheduler: Scheduler to use. A UTC background scheduler is created
                when omitted.
        """

        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._lock = threading.Lock()

    def register(self, cron_expr: str, handler: Callable[[], None]) -> None:
        trigger = build_cron_trigger(cron_expr)
        with self._lock:
            self._scheduler.add_job(
                handler,
                trigger=trigger,
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            if not self._scheduler.running:
                self._scheduler.start()

        job = self._scheduler.get_job(JOB_ID)
        logger.info(
            "Backup job scheduled (cron=%r, next_run=%s)",
            cron_expr,
            job.next_run_time.isoformat() if job and job.next_run_time else None,
        )

    def unregister(self) -> None:
        with self._lock:
            if self._scheduler.get_job(JOB_ID) is not None:
                self._scheduler.remove_job(JOB_ID)
                logger.info("Backup job unscheduled")

    def next_fire_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
