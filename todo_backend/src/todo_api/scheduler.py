from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .cleanup import sweep_completed_todos
from .recurrence import generate_recurring_instances
from .repositories import Repository
from .settings import Settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class BackgroundWorker:
    """
    One periodic job with an explicit start/stop lifecycle.

    The job runs on its own BackgroundScheduler thread. It is registered with
    max_instances=1 and coalesce=True: a run that overruns its period is never
    overlapped by the next tick, and missed ticks collapse into one run.
    run_once() invokes the job synchronously without a scheduler.
    """

    def __init__(self, name: str, job: Callable[[], Any], trigger: BaseTrigger) -> None:
        self.name = name
        self._job = job
        self._trigger = trigger
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def run_once(self) -> Any:
        logger.debug("Running %s", self.name)
        return self._job()

    def _run_scheduled(self) -> None:
        try:
            self.run_once()
        except Exception:
            # Keep the schedule alive; the next tick retries.
            logger.exception("Worker %s failed", self.name)

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_scheduled,
            trigger=self._trigger,
            id=self.name,
            name=self.name,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Started worker %s (%s)", self.name, self._trigger)

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Stopped worker %s", self.name)


# PUBLIC_INTERFACE
def build_workers(repo: Repository, settings: Settings) -> List[BackgroundWorker]:
    """
    Create (but do not start) the recurrence generator and cleanup sweeper workers.

    - recurrence: every RECURRENCE_INTERVAL_MINUTES minutes
    - cleanup: daily at CLEANUP_HOUR_UTC:00 UTC
    """
    return [
        BackgroundWorker(
            "recurrence-generator",
            lambda: generate_recurring_instances(repo),
            IntervalTrigger(minutes=settings.recurrence_interval_minutes, timezone="UTC"),
        ),
        BackgroundWorker(
            "cleanup-sweeper",
            lambda: sweep_completed_todos(repo),
            CronTrigger(hour=settings.cleanup_hour_utc, minute=0, timezone="UTC"),
        ),
    ]
