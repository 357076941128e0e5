"""Scheduler driving the periodic tick."""

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from .config.logging import get_logger
from .history import TickRecord
from .locks import TickAlreadyRunning
from .tick_engine import TickEngine


logger = get_logger(__name__)

TICK_JOB_ID = "economy_tick"


class TickFailed(RuntimeError):
    """A scheduled tick completed with step errors."""

    def __init__(self, record: TickRecord):
        self.record = record
        super().__init__(
            f"Tick {record.tick_number} finished with {len(record.errors)} error(s)"
        )


def create_scheduler(max_workers: int = 1) -> BackgroundScheduler:
    """
    Create and configure a BackgroundScheduler for the tick job.

    Returns:
        Configured BackgroundScheduler instance (not started)
    """
    executors = {"default": ThreadPoolExecutor(max_workers=max_workers)}

    job_defaults = {
        "coalesce": True,  # Collapse missed ticks into one run
        "max_instances": 1,  # Never two ticks at once
        "misfire_grace_time": 30,
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    return scheduler


def job_executed_listener(event):
    """Log successful job executions."""
    logger.info("job_executed", job_id=event.job_id, scheduled_run_time=str(event.scheduled_run_time))


def job_error_listener(event):
    """Log job execution errors."""
    logger.error(
        "job_failed",
        job_id=event.job_id,
        error=str(event.exception),
        traceback=event.traceback,
    )


def run_tick_job(engine: TickEngine) -> TickRecord:
    """
    Body of the scheduled job.

    A tick that overlaps a running one is skipped. A tick with step errors is
    still recorded, then reported to the scheduler as a failure.

    Raises:
        TickFailed: If the tick recorded errors
    """
    try:
        record = engine.execute_tick()
    except TickAlreadyRunning:
        logger.warning("tick_skipped", reason="previous tick still running")
        return None
    if record.failed:
        raise TickFailed(record)
    return record


def add_tick_job(scheduler: BackgroundScheduler, engine: TickEngine, interval_minutes: int):
    """
    Add (or replace) the tick job.

    Args:
        interval_minutes: Minutes between ticks
    """
    job = scheduler.add_job(
        func=run_tick_job,
        args=[engine],
        trigger="interval",
        minutes=interval_minutes,
        id=TICK_JOB_ID,
        name="Economy Tick",
        replace_existing=True,
    )
    logger.info("tick_job_added", interval_minutes=interval_minutes)
    return job


def start_scheduler(scheduler: BackgroundScheduler) -> None:
    if not scheduler.running:
        scheduler.start()
        logger.info("scheduler_started")


def shutdown_scheduler(scheduler: BackgroundScheduler, wait: bool = True) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("scheduler_stopped")
