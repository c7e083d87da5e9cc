"""Interval heartbeats for working-memory maintenance.

Each cache registers its expiration sweep as a named heartbeat and removes it
on shutdown. A registry shares one scheduler between all of its caches.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

HEARTBEAT_PREFIX = "heartbeat:"

AsyncCallback = Callable[[], Coroutine[Any, Any, Any]]


def _logged(callback: AsyncCallback, schedule_id: str) -> AsyncCallback:
    async def _tick() -> None:
        try:
            await callback()
        except Exception:
            logger.exception("Heartbeat %s failed", schedule_id)

    return _tick


class XerusScheduler:
    """Named interval jobs on an ``AsyncIOScheduler`` bound to the running loop."""

    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler()
        self._schedule_ids: set[str] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def job_ids(self) -> list[str]:
        return sorted(self._schedule_ids)

    def add_heartbeat(
        self,
        name: str,
        interval_seconds: float,
        callback: AsyncCallback,
    ) -> str:
        """Run ``callback`` every ``interval_seconds`` and return the schedule id.

        A tick is skipped while the previous one is still running. Raises
        ``ValueError`` for a non-positive interval or a name already in use.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        schedule_id = f"{HEARTBEAT_PREFIX}{name}"
        if schedule_id in self._schedule_ids:
            raise ValueError(f"heartbeat {name!r} is already registered")

        self._scheduler.add_job(
            _logged(callback, schedule_id),
            IntervalTrigger(seconds=interval_seconds),
            id=schedule_id,
            max_instances=1,
            coalesce=True,
        )
        self._schedule_ids.add(schedule_id)
        logger.info("Heartbeat %s every %ss", schedule_id, interval_seconds)
        return schedule_id

    def remove_schedule(self, schedule_id: str) -> None:
        """Drop a heartbeat; ``KeyError`` if it was never registered here."""
        if schedule_id not in self._schedule_ids:
            raise KeyError(f"unknown schedule: {schedule_id}")

        self._schedule_ids.discard(schedule_id)
        try:
            self._scheduler.remove_job(schedule_id)
        except JobLookupError:
            logger.debug("Job %s was no longer in the job store", schedule_id)
        logger.info("Heartbeat %s removed", schedule_id)

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("Scheduler started (%d heartbeats)", len(self._schedule_ids))

    def stop(self) -> None:
        """Drop every heartbeat and stop. Idempotent."""
        self._scheduler.remove_all_jobs()
        self._schedule_ids.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


__all__ = ["HEARTBEAT_PREFIX", "XerusScheduler"]
