from typing import Any

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool
    job_id: str | None
    event_id: str | None


class JobStatusResponse(BaseModel):
    job_id: str
    event_id: str
    topic: str
    source_domain: str
    state: str
    attempt_count: int
    last_error: str | None
    result: dict[str, Any] | None
    next_eligible_at: str
    created_at: str
    completed_at: str | None


class QueueCounts(BaseModel):
    pending: int
    running: int
    succeeded: int
    failed: int
    exhausted: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    queue: QueueCounts
