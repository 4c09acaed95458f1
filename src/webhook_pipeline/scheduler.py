import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from webhook_pipeline.alerts import Alert, AlertSink
from webhook_pipeline.dispatcher import Outcome
from webhook_pipeline.jobs import Job, JobState, SQLiteJobQueue

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return min(initial_delay * (2 ** (attempt - 1)), max_delay)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RetryScheduler:
    def __init__(
        self,
        queue: SQLiteJobQueue,
        alert_sink: AlertSink,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 3600.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._queue = queue
        self._alert_sink = alert_sink
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._clock = clock

    async def record(self, job: Job, outcome: Outcome) -> JobState:
        if outcome.succeeded:
            await self._queue.mark_succeeded(job.job_id, outcome.result)
            logger.info("Job %s succeeded event=%s attempt=%d", job.job_id, job.event_id, job.attempt_count)
            return JobState.SUCCEEDED

        error = outcome.error or "unknown error"
        if outcome.retryable and job.attempt_count < self.max_attempts:
            delay = backoff_delay(job.attempt_count, self.initial_delay, self.max_delay)
            await self._queue.mark_failed(job.job_id, error, self._clock() + timedelta(seconds=delay))
            logger.warning(
                "Job %s failed attempt=%d/%d, retrying in %.1fs error=%s",
                job.job_id,
                job.attempt_count,
                self.max_attempts,
                delay,
                error,
            )
            return JobState.PENDING

        await self._queue.mark_exhausted(job.job_id, error)
        logger.error("Job %s exhausted after %d attempts error=%s", job.job_id, job.attempt_count, error)
        await self._alert(job, error)
        return JobState.EXHAUSTED

    async def recover(
        self,
        error: str = "interrupted",
        job_id: str | None = None,
        stale_before: datetime | None = None,
    ) -> tuple[int, int]:
        """Settle running jobs whose outcome was lost and alert on the exhausted ones."""
        requeued, exhausted = await self._queue.recover_running(
            self.max_attempts, error, job_id=job_id, stale_before=stale_before
        )
        for job in exhausted:
            logger.error("Job %s exhausted after %d attempts error=%s", job.job_id, job.attempt_count, error)
            await self._alert(job, error)
        return requeued, len(exhausted)

    async def _alert(self, job: Job, error: str) -> None:
        alert = Alert(
            job_id=job.job_id,
            event_id=job.event_id,
            topic=job.topic,
            source_domain=job.source_domain,
            error=error,
            attempts=job.attempt_count,
        )
        try:
            await self._alert_sink.send(alert)
        except Exception:
            logger.exception("Failed to deliver alert for job %s", job.job_id)
