import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from functools import cached_property
from typing import Any

import aiosqlite

from webhook_pipeline.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    QueueUnavailableError,
    ValidationError,
)


def _iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def _now() -> str:
    return _iso(datetime.now(UTC))


def parse_payload(raw_payload: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object")
    return payload


class JobState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    # never stored: a pending job with last_error set is reported as failed
    FAILED = "failed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    topic: str
    source_domain: str
    received_at: str
    raw_payload: bytes

    @cached_property
    def parsed_payload(self) -> dict[str, Any]:
        return parse_payload(self.raw_payload)


@dataclass
class Job:
    job_id: str
    event_id: str
    topic: str
    source_domain: str
    received_at: str
    raw_payload: bytes
    state: JobState
    attempt_count: int
    next_eligible_at: str
    last_error: str | None
    result: dict[str, Any] | None
    created_at: str
    updated_at: str
    completed_at: str | None

    @cached_property
    def event(self) -> WebhookEvent:
        return WebhookEvent(
            id=self.event_id,
            topic=self.topic,
            source_domain=self.source_domain,
            received_at=self.received_at,
            raw_payload=self.raw_payload,
        )


_COLUMNS = (
    "job_id,event_id,topic,source_domain,received_at,raw_payload,state,attempt_count,"
    "next_eligible_at,last_error,result,created_at,updated_at,completed_at"
)


def _row_to_job(row: aiosqlite.Row) -> Job:
    values = list(row)
    values[5] = bytes(values[5])
    values[6] = JobState(values[6])
    values[10] = json.loads(values[10]) if values[10] is not None else None
    return Job(*values)


class SQLiteJobQueue:
    """Durable job table.

    Every state change is a single UPDATE guarded by the expected current
    state, so concurrent callers cannot both win the same transition.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def enqueue(self, event: WebhookEvent) -> str:
        job_id = uuid.uuid4().hex
        now = _now()
        try:
            await self._conn.execute(
                f"INSERT INTO jobs({_COLUMNS}) VALUES(?,?,?,?,?,?,'pending',0,?,NULL,NULL,?,?,NULL)",
                (
                    job_id,
                    event.id,
                    event.topic,
                    event.source_domain,
                    event.received_at,
                    event.raw_payload,
                    now,
                    now,
                    now,
                ),
            )
            await self._conn.commit()
        except (aiosqlite.Error, ValueError) as e:
            raise QueueUnavailableError(str(e)) from e
        return job_id

    async def get(self, job_id: str) -> Job:
        async with self._conn.execute(f"SELECT {_COLUMNS} FROM jobs WHERE job_id=?", (job_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    async def dequeue_ready(self, now: datetime | None = None) -> Job | None:
        """Claim the next due pending job, moving it to running."""
        at = _iso(now) if now else _now()
        rows = await self._conn.execute_fetchall(
            "UPDATE jobs SET state='running', attempt_count=attempt_count+1, updated_at=?"
            " WHERE job_id=(SELECT job_id FROM jobs WHERE state='pending' AND next_eligible_at<=?"
            " ORDER BY next_eligible_at, created_at LIMIT 1)"
            " AND state='pending'"
            f" RETURNING {_COLUMNS}",
            (_now(), at),
        )
        await self._conn.commit()
        return _row_to_job(rows[0]) if rows else None

    async def mark_running(self, job_id: str) -> Job:
        rows = await self._conn.execute_fetchall(
            "UPDATE jobs SET state='running', attempt_count=attempt_count+1, updated_at=?"
            f" WHERE job_id=? AND state='pending' RETURNING {_COLUMNS}",
            (_now(), job_id),
        )
        await self._conn.commit()
        if not rows:
            await self.get(job_id)
            raise InvalidTransitionError(job_id, JobState.RUNNING)
        return _row_to_job(rows[0])

    async def mark_succeeded(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        now = _now()
        await self._transition(
            job_id,
            JobState.SUCCEEDED,
            "state='succeeded', result=?, updated_at=?, completed_at=?",
            (json.dumps(result) if result is not None else None, now, now),
        )

    async def mark_failed(self, job_id: str, error: str, next_eligible_at: datetime) -> None:
        # max() keeps next_eligible_at from moving backwards across retries
        await self._transition(
            job_id,
            JobState.PENDING,
            "state='pending', last_error=?, next_eligible_at=max(next_eligible_at, ?), updated_at=?",
            (error, _iso(next_eligible_at), _now()),
        )

    async def mark_exhausted(self, job_id: str, error: str) -> None:
        now = _now()
        await self._transition(
            job_id,
            JobState.EXHAUSTED,
            "state='exhausted', last_error=?, updated_at=?, completed_at=?",
            (error, now, now),
        )

    async def _transition(self, job_id: str, target: JobState, assignments: str, params: tuple) -> None:
        cursor = await self._conn.execute(
            f"UPDATE jobs SET {assignments} WHERE job_id=? AND state='running'",
            (*params, job_id),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            await self.get(job_id)
            raise InvalidTransitionError(job_id, target)

    async def counts(self) -> dict[str, int]:
        counts = {state.value: 0 for state in JobState}
        async with self._conn.execute(
            "SELECT state, last_error IS NOT NULL, COUNT(*) FROM jobs GROUP BY state, last_error IS NOT NULL"
        ) as cursor:
            rows = await cursor.fetchall()
        for state, has_error, count in rows:
            if state == JobState.PENDING and has_error:
                counts[JobState.FAILED] += count
            else:
                counts[state] += count
        return counts

    async def recover_running(
        self,
        max_attempts: int,
        error: str = "interrupted",
        job_id: str | None = None,
        stale_before: datetime | None = None,
    ) -> tuple[int, list[Job]]:
        """Settle running jobs whose attempt will never be recorded.

        Covers every running job (startup after a crash), one ``job_id``, or
        jobs not updated since ``stale_before``. The lost attempt still counts:
        jobs with attempts left go back to pending, the rest are exhausted.
        Returns the number requeued and the exhausted jobs.
        """
        where = "state='running'"
        scope: tuple = ()
        if job_id is not None:
            where += " AND job_id=?"
            scope += (job_id,)
        if stale_before is not None:
            where += " AND updated_at<?"
            scope += (_iso(stale_before),)
        now = _now()
        requeued = await self._conn.execute(
            f"UPDATE jobs SET state='pending', last_error=?, updated_at=? WHERE {where} AND attempt_count<?",
            (error, now, *scope, max_attempts),
        )
        rows = await self._conn.execute_fetchall(
            "UPDATE jobs SET state='exhausted', last_error=?, updated_at=?, completed_at=?"
            f" WHERE {where} AND attempt_count>=? RETURNING {_COLUMNS}",
            (error, now, now, *scope, max_attempts),
        )
        await self._conn.commit()
        return requeued.rowcount, [_row_to_job(row) for row in rows]

    async def delete_expired(self, before: datetime) -> int:
        cursor = await self._conn.execute(
            "DELETE FROM jobs WHERE state IN ('succeeded','exhausted') AND completed_at < ?",
            (_iso(before),),
        )
        await self._conn.commit()
        return cursor.rowcount
