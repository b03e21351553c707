"""Tests for the cron-driven job runner."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

import jobai_calendar.core.scheduler as scheduler_mod
from jobai_calendar.core.scheduler import CronJob, next_run

pytestmark = pytest.mark.unit


class TestNextRun:
    def test_hourly(self):
        now = datetime(2025, 1, 6, 9, 15, tzinfo=UTC)
        assert next_run("0 * * * *", now=now) == datetime(2025, 1, 6, 10, 0, tzinfo=UTC)

    def test_result_is_utc(self):
        assert next_run("*/5 * * * *").tzinfo is UTC


class TestCronJob:
    def test_invalid_cron_rejected(self):
        async def job():
            return None

        with pytest.raises(ValueError, match="Invalid cron"):
            CronJob("bad", "every hour", job)

    async def test_run_once_records_last_run(self):
        calls: list[int] = []

        async def job():
            calls.append(1)

        cron_job = CronJob("sync", "0 * * * *", job)
        assert cron_job.last_run_at is None
        await cron_job.run_once()
        assert calls == [1]
        assert cron_job.last_run_at is not None

    async def test_run_once_swallows_job_failure(self, caplog):
        async def job():
            raise RuntimeError("db down")

        cron_job = CronJob("sync", "0 * * * *", job)
        await cron_job.run_once()

        assert cron_job.last_run_at is not None
        assert "Scheduled job sync failed" in caplog.text

    async def test_loop_runs_when_due(self, monkeypatch):
        ran = asyncio.Event()

        async def job():
            ran.set()

        # Due immediately instead of at the next cron boundary.
        monkeypatch.setattr(scheduler_mod, "next_run", lambda cron, *, now=None: now)

        cron_job = CronJob("sync", "0 * * * *", job)
        cron_job.start()
        assert cron_job.running
        await asyncio.wait_for(ran.wait(), timeout=1)
        await cron_job.stop()

        assert not cron_job.running

    async def test_stop_without_start(self):
        async def job():
            return None

        await CronJob("sync", "0 * * * *", job).stop()
