"""Cron-driven background job runner.

A ``CronJob`` sleeps until the next croniter occurrence of its expression,
runs its coroutine, and repeats.  A failing run is logged and the schedule
continues; runs never overlap because the loop awaits each one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from croniter import croniter

from jobai_calendar.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[Any]]


def next_run(cron: str, *, now: datetime | None = None) -> datetime:
    """Compute the next run time for a cron expression from now (UTC)."""
    anchor = now or datetime.now(UTC)
    return croniter(cron, anchor).get_next(datetime).replace(tzinfo=UTC)


class CronJob:
    """Run *job* on the schedule described by *cron* until stopped."""

    def __init__(self, name: str, cron: str, job: JobFn) -> None:
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression for job {name!r}: {cron!r}")
        self.name = name
        self.cron = cron
        self._job = job
        self._task: asyncio.Task | None = None
        self.last_run_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """Execute the job immediately, logging (not raising) failures."""
        tracer = get_tracer()
        with tracer.start_as_current_span(f"scheduler.{self.name}"):
            started = datetime.now(UTC)
            try:
                await self._job()
            except Exception:
                logger.exception("Scheduled job %s failed", self.name)
            else:
                logger.info(
                    "Scheduled job %s completed in %.0fms",
                    self.name,
                    (datetime.now(UTC) - started).total_seconds() * 1000,
                )
            finally:
                self.last_run_at = started

    async def _loop(self) -> None:
        while True:
            now = datetime.now(UTC)
            due = next_run(self.cron, now=now)
            delay = max(0.0, (due - now).total_seconds())
            logger.debug("Scheduled job %s next run at %s", self.name, due.isoformat())
            await asyncio.sleep(delay)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"cron-{self.name}")
        logger.info("Scheduled job %s started (cron=%r)", self.name, self.cron)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduled job %s stopped", self.name)
