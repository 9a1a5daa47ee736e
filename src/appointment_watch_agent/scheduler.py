"""APScheduler wiring for the reconciliation and digest timers."""

from __future__ import annotations

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import Settings
from .notifier import Notifier
from .reconciler import Reconciler

LOGGER = structlog.get_logger(__name__)

RECONCILE_JOB_ID = "reconcile"
DIGEST_JOB_ID = "digest"


class WatchScheduler:
    """Runs the reconciler and the digest on fixed intervals.

    Both jobs allow a single running instance and coalesce missed runs, so a
    firing that lands while the previous one is still busy is skipped and a
    stalled loop catches up with one run rather than a burst.
    """

    def __init__(self, reconciler: Reconciler, notifier: Notifier, settings: Settings) -> None:
        self._reconciler = reconciler
        self._notifier = notifier
        self._settings = settings
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def build(self) -> AsyncIOScheduler:
        """Create the scheduler with both jobs registered but not started."""
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._reconciler.tick,
            IntervalTrigger(seconds=self._settings.check_interval_seconds),
            id=RECONCILE_JOB_ID,
            name="Availability reconciliation",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        scheduler.add_job(
            self._notifier.send_digest,
            IntervalTrigger(seconds=self._settings.digest_interval_seconds),
            id=DIGEST_JOB_ID,
            name="Periodic status digest",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        return scheduler

    def start(self) -> None:
        """Start both timers on the running event loop."""
        if self.running:
            LOGGER.warning("scheduler.already_running")
            return
        self._scheduler = self.build()
        self._scheduler.start()
        LOGGER.info(
            "scheduler.started",
            check_interval_seconds=self._settings.check_interval_seconds,
            digest_interval_seconds=self._settings.digest_interval_seconds,
        )

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            LOGGER.info("scheduler.stopped")
        self._scheduler = None
