"""
Job Scheduler
=============

In-process APScheduler wiring for the maintenance jobs:
- ``daily_quota_reset`` at 00:00 UTC
- ``check_trial_expirations`` every 6 hours
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from nutrilytics.db.session import session_scope
from nutrilytics.services.scheduled_jobs import (
    run_daily_quota_reset,
    run_trial_expiration_check,
)

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


async def daily_quota_reset_job() -> None:
    """Scheduler entry point for the daily quota reset."""
    try:
        async with session_scope() as db:
            summary = await run_daily_quota_reset(db)
        logger.info("daily_quota_reset finished: %s", summary)
    except Exception:
        # Keep the scheduler alive; the next run retries
        logger.exception("daily_quota_reset failed")


async def trial_expiration_job() -> None:
    """Scheduler entry point for the trial expiration check."""
    try:
        async with session_scope() as db:
            summary = await run_trial_expiration_check(db)
        logger.info("check_trial_expirations finished: %s", summary)
    except Exception:
        logger.exception("check_trial_expirations failed")


def register_jobs(target: AsyncIOScheduler) -> None:
    """Add the maintenance jobs to *target*."""
    target.add_job(
        daily_quota_reset_job,
        trigger=CronTrigger(hour=0, minute=0, timezone="UTC"),
        id="daily_quota_reset",
        name="Reset free-tier usage quotas",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    target.add_job(
        trial_expiration_job,
        trigger=CronTrigger(hour="*/6", minute=0, timezone="UTC"),
        id="check_trial_expirations",
        name="Check trial expirations and grace periods",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


def start_scheduler() -> None:
    """Register the jobs and start the scheduler."""
    if scheduler.running:
        return
    register_jobs(scheduler)
    scheduler.start()
    logger.info("Scheduler started with jobs: %s", [job.id for job in scheduler.get_jobs()])


def shutdown_scheduler() -> None:
    """Stop the scheduler without waiting for running jobs."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
