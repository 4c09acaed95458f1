from datetime import UTC, datetime, timedelta

import pytest
from conftest import RecordingAlertSink, make_event

from webhook_pipeline.dispatcher import Outcome
from webhook_pipeline.jobs import JobState, SQLiteJobQueue
from webhook_pipeline.scheduler import RetryScheduler, backoff_delay

# ahead of the enqueue time so retries are scheduled relative to it
NOW = datetime.now(UTC) + timedelta(minutes=10)
FAILURE = Outcome(succeeded=False, error="sync failed")


def _scheduler(queue: SQLiteJobQueue, sink: RecordingAlertSink, **kwargs) -> RetryScheduler:
    return RetryScheduler(queue, sink, clock=lambda: NOW, **kwargs)


@pytest.mark.parametrize(("attempt", "delay"), [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (5, 16.0)])
def test_backoff_doubles_per_attempt(attempt: int, delay: float) -> None:
    assert backoff_delay(attempt, 1.0, 3600.0) == delay


def test_backoff_is_capped() -> None:
    assert backoff_delay(20, 1.0, 60.0) == 60.0


async def test_success_marks_succeeded(queue: SQLiteJobQueue, alert_sink: RecordingAlertSink) -> None:
    job_id = await queue.enqueue(make_event())
    job = await queue.dequeue_ready()
    state = await _scheduler(queue, alert_sink).record(job, Outcome(succeeded=True, result={"ok": True}))
    assert state == JobState.SUCCEEDED
    stored = await queue.get(job_id)
    assert stored.state == JobState.SUCCEEDED
    assert stored.result == {"ok": True}
    assert alert_sink.alerts == []


async def test_failures_back_off_then_exhaust(queue: SQLiteJobQueue, alert_sink: RecordingAlertSink) -> None:
    scheduler = _scheduler(queue, alert_sink)
    job_id = await queue.enqueue(make_event())
    far_future = NOW + timedelta(days=1)
    deltas = []
    for attempt in range(1, 6):
        job = await queue.dequeue_ready(far_future)
        assert job.attempt_count == attempt
        state = await scheduler.record(job, FAILURE)
        stored = await queue.get(job_id)
        if attempt < 5:
            assert state == JobState.PENDING
            assert stored.last_error == "sync failed"
            deltas.append((datetime.fromisoformat(stored.next_eligible_at) - NOW).total_seconds())
    assert deltas == [1.0, 2.0, 4.0, 8.0]
    assert state == JobState.EXHAUSTED
    assert stored.state == JobState.EXHAUSTED
    assert stored.attempt_count == 5
    assert await queue.dequeue_ready(far_future) is None

    assert len(alert_sink.alerts) == 1
    alert = alert_sink.alerts[0]
    assert alert.attempts == 5
    assert alert.job_id == job_id
    assert alert.event_id == "42"
    assert alert.source_domain == "demo.myshopify.com"
    assert alert.error == "sync failed"


async def test_non_retryable_failure_exhausts_immediately(
    queue: SQLiteJobQueue, alert_sink: RecordingAlertSink
) -> None:
    job_id = await queue.enqueue(make_event())
    job = await queue.dequeue_ready()
    outcome = Outcome(succeeded=False, error="rejected", retryable=False)
    assert await _scheduler(queue, alert_sink).record(job, outcome) == JobState.EXHAUSTED
    assert (await queue.get(job_id)).attempt_count == 1
    assert alert_sink.alerts[0].attempts == 1


async def test_alert_failure_does_not_undo_exhaustion(queue: SQLiteJobQueue) -> None:
    class BrokenSink:
        async def send(self, alert) -> None:
            raise RuntimeError("slack down")

    job_id = await queue.enqueue(make_event())
    job = await queue.dequeue_ready()
    scheduler = RetryScheduler(queue, BrokenSink(), max_attempts=1)
    assert await scheduler.record(job, FAILURE) == JobState.EXHAUSTED
    assert (await queue.get(job_id)).state == JobState.EXHAUSTED


async def test_recover_alerts_on_jobs_interrupted_on_their_last_attempt(
    queue: SQLiteJobQueue, alert_sink: RecordingAlertSink
) -> None:
    job_id = await queue.enqueue(make_event())
    await queue.dequeue_ready()
    requeued, exhausted = await RetryScheduler(queue, alert_sink, max_attempts=1).recover()
    assert (requeued, exhausted) == (0, 1)
    assert (await queue.get(job_id)).state == JobState.EXHAUSTED
    assert len(alert_sink.alerts) == 1
    alert = alert_sink.alerts[0]
    assert alert.job_id == job_id
    assert alert.error == "interrupted"
    assert alert.attempts == 1


async def test_recover_requeues_without_alert(queue: SQLiteJobQueue, alert_sink: RecordingAlertSink) -> None:
    job_id = await queue.enqueue(make_event())
    await queue.dequeue_ready()
    assert await RetryScheduler(queue, alert_sink, max_attempts=5).recover() == (1, 0)
    assert (await queue.get(job_id)).state == JobState.PENDING
    assert alert_sink.alerts == []
