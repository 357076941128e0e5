"""
test_scheduler.py - Unit tests for the scheduled tick job

Tests:
- The job body returns, raises or skips depending on the tick outcome
- Scheduler setup, job replacement and shutdown
- GameEconomy schedules ticks at the configured interval
- The process entry point configures logging and stops cleanly
"""

import threading
from datetime import timedelta

import pytest

from tickmarket import GameEconomy
from tickmarket.history import TickError, TickRecord
from tickmarket.locks import TickAlreadyRunning
from tickmarket.scheduler import (
    TICK_JOB_ID, TickFailed, add_tick_job, create_scheduler, run_tick_job,
    shutdown_scheduler, start_scheduler,
)
from tickmarket.main import initialize_application, main

from tests.helpers import T0, make_settings


class StubEngine:
    """Stands in for TickEngine: returns a canned record or raises."""

    def __init__(self, record=None, error=None):
        self.record = record
        self.error = error
        self.calls = 0

    def execute_tick(self, timestamp=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.record


class TestRunTickJob:

    def test_returns_record(self):
        record = TickRecord(1, T0)
        assert run_tick_job(StubEngine(record)) is record

    def test_failed_tick_raises(self):
        record = TickRecord(3, T0, errors=(TickError("prices", "boom", "RuntimeError", "ACME"),))
        with pytest.raises(TickFailed) as excinfo:
            run_tick_job(StubEngine(record))
        assert excinfo.value.record is record
        assert "Tick 3" in str(excinfo.value)

    def test_overlapping_tick_is_skipped(self):
        engine = StubEngine(error=TickAlreadyRunning("tick is already running"))
        assert run_tick_job(engine) is None
        assert engine.calls == 1


class TestScheduler:

    def test_created_stopped(self):
        scheduler = create_scheduler()
        assert not scheduler.running

    def test_tick_job_interval(self):
        scheduler = create_scheduler()
        job = add_tick_job(scheduler, StubEngine(), 5)
        assert job.id == TICK_JOB_ID
        assert job.trigger.interval == timedelta(minutes=5)

    def test_start_replace_and_shutdown(self):
        scheduler = create_scheduler()
        engine = StubEngine(TickRecord(1, T0))
        add_tick_job(scheduler, engine, 5)
        start_scheduler(scheduler)
        try:
            assert scheduler.running
            start_scheduler(scheduler)
            add_tick_job(scheduler, engine, 10)
            jobs = scheduler.get_jobs()
            assert [j.id for j in jobs] == [TICK_JOB_ID]
            assert jobs[0].trigger.interval == timedelta(minutes=10)
            assert jobs[0].max_instances == 1
            assert jobs[0].coalesce
        finally:
            shutdown_scheduler(scheduler, wait=False)
        assert not scheduler.running
        assert engine.calls == 0


class TestEconomyScheduling:

    @pytest.fixture
    def slow_economy(self, clock):
        return GameEconomy(make_settings(tick_interval_minutes=15), initial_time=T0, clock=clock)

    def test_start_uses_configured_interval(self, slow_economy):
        scheduler = slow_economy.start_scheduler()
        try:
            assert scheduler.running
            jobs = scheduler.get_jobs()
            assert [j.id for j in jobs] == [TICK_JOB_ID]
            assert jobs[0].trigger.interval == timedelta(minutes=15)
            assert slow_economy.start_scheduler() is scheduler
            assert len(scheduler.get_jobs()) == 1
        finally:
            slow_economy.stop_scheduler(wait=False)
        assert not scheduler.running
        assert slow_economy.scheduler is None

    def test_job_ticks_the_economy(self, slow_economy, clock):
        scheduler = slow_economy.start_scheduler()
        try:
            job = scheduler.get_job(TICK_JOB_ID)
            clock.advance(minutes=15)
            record = job.func(*job.args)
        finally:
            slow_economy.stop_scheduler(wait=False)
        assert record.tick_number == 1
        assert record.timestamp == T0 + timedelta(minutes=15)
        assert slow_economy.get_last_tick().unwrap() is record

    def test_stop_before_start(self, slow_economy):
        slow_economy.stop_scheduler()
        assert slow_economy.scheduler is None


class TestEntryPoint:

    def test_initialize_application_configures_logging(self, monkeypatch):
        calls = []
        monkeypatch.setattr("tickmarket.main.setup_logging", lambda **kwargs: calls.append(kwargs))
        settings = make_settings(log_level="DEBUG", log_format="plain")
        economy = initialize_application(settings)
        assert calls == [{"level": "DEBUG", "format_type": "plain"}]
        assert economy.settings is settings

    def test_main_runs_until_stopped(self, monkeypatch):
        monkeypatch.setattr("tickmarket.main.setup_logging", lambda **kwargs: None)
        monkeypatch.setattr("tickmarket.main.get_settings", lambda: make_settings(tick_interval_minutes=30))
        started = []
        original = GameEconomy.start_scheduler

        def recording_start(self):
            scheduler = original(self)
            started.append(scheduler)
            return scheduler

        monkeypatch.setattr(GameEconomy, "start_scheduler", recording_start)
        stop = threading.Event()
        stop.set()
        main(stop)

        assert len(started) == 1
        assert not started[0].running
