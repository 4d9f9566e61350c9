"""Tests for the periodic verification scheduler."""

import asyncio

import pytest

from mailtrust.common.config import SchedulerSettings, Settings
from mailtrust.common.exceptions import ConflictError
from mailtrust.health.engine import BatchReport
from mailtrust.health.scheduler import HealthCheckScheduler

from conftest import FIXED_NOW


class CountingEngine:

    def __init__(self, failures: int = 0) -> None:
        self.calls = 0
        self.failures = failures

    def verify_all(self) -> BatchReport:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("database is locked")
        return BatchReport(started_at=FIXED_NOW, finished_at=FIXED_NOW, verified=["example.com"])


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_run_once_records_report():
    scheduler = HealthCheckScheduler(CountingEngine(), interval_seconds=60)

    report = await scheduler.run_once()

    assert report.verified == ["example.com"]
    assert scheduler.last_report is report
    assert scheduler.runs == 1


@pytest.mark.asyncio
async def test_start_and_stop():
    engine = CountingEngine()
    scheduler = HealthCheckScheduler(engine, interval_seconds=0.01)

    task = asyncio.create_task(scheduler.start())
    await _wait_for(lambda: engine.calls >= 2)
    assert scheduler.is_running

    with pytest.raises(ConflictError):
        await scheduler.start()

    await scheduler.stop()
    await asyncio.wait_for(task, timeout=2)
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_failed_run_does_not_stop_the_loop():
    engine = CountingEngine(failures=1)
    scheduler = HealthCheckScheduler(engine, interval_seconds=0.01)

    task = asyncio.create_task(scheduler.start())
    await _wait_for(lambda: scheduler.runs >= 1)

    assert engine.calls >= 2
    await scheduler.stop()
    await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_cancel_stops_cleanly():
    scheduler = HealthCheckScheduler(CountingEngine(), interval_seconds=60)

    task = asyncio.create_task(scheduler.start())
    await _wait_for(lambda: scheduler.runs >= 1)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_stop_when_not_running_is_noop():
    scheduler = HealthCheckScheduler(CountingEngine())
    await scheduler.stop()
    assert not scheduler.is_running


def test_from_settings_uses_interval():
    settings = Settings(scheduler=SchedulerSettings(interval_seconds=600))

    scheduler = HealthCheckScheduler.from_settings(CountingEngine(), settings)

    assert scheduler.interval_seconds == 600


def test_from_settings_disabled():
    settings = Settings(scheduler=SchedulerSettings(enabled=False))
    assert HealthCheckScheduler.from_settings(CountingEngine(), settings) is None
