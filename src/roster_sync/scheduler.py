"""roster_sync.scheduler

Run the sync job immediately, then every ``interval_hours``, on an
APScheduler BlockingScheduler.

The job is registered with max_instances=1 and coalesce=True: a run that
overruns the interval makes the scheduler skip the missed fire time rather
than start a second, overlapping run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import pytz
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger(__name__)

DAILY_HOURS = 24.0
SYNC_JOB_ID = "roster_sync"


def guarded(job: Callable[[], object]) -> Callable[[], None]:
    """Wrap a job so an escaping exception is logged and the schedule goes on."""

    def run() -> None:
        try:
            job()
        except Exception as exc:
            log.exception("Scheduled sync run crashed: %s", exc)

    return run


def build_scheduler(
    job: Callable[[], object],
    interval_hours: float = DAILY_HOURS,
    tz_name: str = "UTC",
    scheduler: BaseScheduler | None = None,
) -> BaseScheduler:
    """Register the sync job; the first run fires as soon as the scheduler starts."""
    if interval_hours <= 0:
        raise ValueError("interval_hours must be > 0")
    tz = pytz.timezone(tz_name)
    scheduler = scheduler or BlockingScheduler(timezone=tz)
    scheduler.add_job(
        guarded(job),
        IntervalTrigger(hours=interval_hours, timezone=tz),
        id=SYNC_JOB_ID,
        name="roster sync",
        next_run_time=datetime.now(tz),
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def run_scheduled(
    job: Callable[[], object],
    interval_hours: float = DAILY_HOURS,
    tz_name: str = "UTC",
    scheduler: BaseScheduler | None = None,
) -> None:
    """Block running the schedule until interrupted."""
    scheduler = build_scheduler(job, interval_hours, tz_name, scheduler)
    log.info("Scheduler started: every %.2f hours (%s)", interval_hours, tz_name)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("Scheduler stop requested; shutting down")
        scheduler.shutdown(wait=False)
