"""
APScheduler integration for FastAPI.

Runs maintenance jobs in-process.

Jobs:
- Email retention: prunes old ledger rows and stale action tokens daily
  (03:00 UTC by default, ledger.prune_hour_utc in config.yml)
"""

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from sendledger.config import get_config, get_settings
from sendledger.core.database import AsyncSessionLocal
from sendledger.core.logging import get_logger

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def email_retention_job() -> None:
    """Daily retention job - prunes the send ledger and expired/used action tokens."""
    from sendledger.services.ledger_maintenance import run_retention

    logger.info("scheduled_email_retention_started")
    async with AsyncSessionLocal() as db:
        try:
            stats = await run_retention(db)
            logger.bind(**stats).info("scheduled_email_retention_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_email_retention_failed")
            raise  # Re-raise so APScheduler records the failure


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler with in-memory schedules."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Schedules are rebuilt on every start, nothing to persist
    data_store = MemoryDataStore()
    scheduler = AsyncScheduler(data_store=data_store)

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        email_retention_job,
        CronTrigger(hour=get_config().ledger.prune_hour_utc, minute=0, timezone="UTC"),
        id="email_retention",
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=["email_retention"]).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None
