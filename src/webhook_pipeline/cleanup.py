import asyncio
import logging
from datetime import UTC, datetime, timedelta

from webhook_pipeline.config import Settings
from webhook_pipeline.jobs import SQLiteJobQueue
from webhook_pipeline.scheduler import RetryScheduler

logger = logging.getLogger(__name__)


async def cleanup_task(queue: SQLiteJobQueue, settings: Settings) -> None:
    while True:
        cutoff = datetime.now(UTC) - timedelta(days=settings.retention_days)
        deleted = await queue.delete_expired(cutoff)
        if deleted:
            logger.info("Cleanup purged %d completed jobs older than %d days", deleted, settings.retention_days)
        await asyncio.sleep(settings.cleanup_interval_hours * 3600)


async def reap_stale_jobs(scheduler: RetryScheduler, settings: Settings) -> None:
    """Release jobs left running by a worker that never recorded the attempt."""
    while True:
        stale_before = datetime.now(UTC) - timedelta(seconds=settings.stale_running_after)
        try:
            requeued, exhausted = await scheduler.recover(error="stale", stale_before=stale_before)
        except Exception:
            logger.exception("Stale job reaper failed")
        else:
            if requeued or exhausted:
                logger.warning("Reaped stale running jobs requeued=%d exhausted=%d", requeued, exhausted)
        await asyncio.sleep(settings.reap_interval)
