"""PulseSync — Scheduler Jobs.

APScheduler interval jobs: the calendar-day rollover check and a periodic
"sync if needed" pass.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pulsesync.config import settings
from pulsesync.core.logging import get_logger
from pulsesync.services import get_services

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def rollover_check_job():
    """Recompute today and fire rollover listeners on a date change."""
    try:
        get_services().rollover.check()
    except Exception as e:
        logger.error(f"Rollover check failed: {e}")


async def sync_if_needed_job():
    """Run a full sync when the orchestrator says one is due."""
    services = get_services()
    try:
        check = services.orchestrator.check_sync_needed()
        if not check.needed:
            logger.info(f"Scheduled sync skipped: {check.reason}")
            return
        logger.info(f"Scheduled sync starting: {check.reason}")
        result = await services.orchestrator.perform_full_sync()
        logger.info(
            f"Scheduled sync finished: {result.outcome.value}, "
            f"{result.stats.uploaded} uploaded, {result.stats.conflicts} conflicts"
        )
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    # Catch up after suspension before the first interval elapses
    get_services().rollover.resume()

    scheduler.add_job(
        rollover_check_job,
        "interval",
        seconds=settings.rollover_check_seconds,
        id="rollover_check",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        sync_if_needed_job,
        "interval",
        minutes=settings.sync_interval_minutes,
        id="sync_if_needed",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=300,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Rollover check every {settings.rollover_check_seconds}s, "
        f"sync check every {settings.sync_interval_minutes}m"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
