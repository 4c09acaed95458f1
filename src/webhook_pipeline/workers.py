import asyncio
import logging
import time

from webhook_pipeline.dispatcher import HandlerDispatcher
from webhook_pipeline.jobs import SQLiteJobQueue
from webhook_pipeline.metrics import JOB_OUTCOMES_TOTAL, PROCESSING_DURATION, QUEUE_JOBS
from webhook_pipeline.scheduler import RetryScheduler

logger = logging.getLogger(__name__)


async def process_next(queue: SQLiteJobQueue, dispatcher: HandlerDispatcher, scheduler: RetryScheduler) -> bool:
    """Run one attempt of the next due job. Returns False if none was due."""
    job = await queue.dequeue_ready()
    if job is None:
        return False
    start = time.monotonic()
    try:
        outcome = await dispatcher.dispatch(job)
    finally:
        PROCESSING_DURATION.observe(time.monotonic() - start)
    try:
        state = await scheduler.record(job, outcome)
    except Exception as e:
        logger.exception("Could not record outcome of job %s, releasing it", job.job_id)
        # the attempt happened, so release counts it like a lost attempt
        await scheduler.recover(error=f"outcome not recorded: {e}", job_id=job.job_id)
        return True
    JOB_OUTCOMES_TOTAL.labels(state=state.value).inc()
    return True


async def worker(
    queue: SQLiteJobQueue,
    dispatcher: HandlerDispatcher,
    scheduler: RetryScheduler,
    poll_interval: float,
) -> None:
    while True:
        try:
            processed = await process_next(queue, dispatcher, scheduler)
        except Exception:
            logger.exception("Worker iteration failed")
            processed = False
        if not processed:
            await asyncio.sleep(poll_interval)


async def refresh_queue_gauge(queue: SQLiteJobQueue) -> dict[str, int]:
    counts = await queue.counts()
    for state, count in counts.items():
        QUEUE_JOBS.labels(state=state).set(count)
    return counts
