import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from webhook_pipeline.config import Settings
from webhook_pipeline.dependencies import get_app_settings, get_queue
from webhook_pipeline.errors import (
    AuthenticationError,
    JobNotFoundError,
    QueueUnavailableError,
    ValidationError,
)
from webhook_pipeline.jobs import SQLiteJobQueue, WebhookEvent, parse_payload
from webhook_pipeline.metrics import REQUESTS_TOTAL
from webhook_pipeline.models import HealthResponse, JobStatusResponse, QueueCounts, WebhookAck
from webhook_pipeline.signature import verify
from webhook_pipeline.workers import refresh_queue_gauge

logger = logging.getLogger(__name__)
router = APIRouter()

SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"
TOPIC_HEADER = "X-Shopify-Topic"
SHOP_HEADER = "X-Shopify-Shop-Domain"
WEBHOOK_ID_HEADER = "X-Shopify-Webhook-Id"


async def _verified_event(request: Request, secret: bytes) -> WebhookEvent:
    # body() returns the bytes as received; nothing may parse them before verify()
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise AuthenticationError("Missing HMAC signature")
    if not verify(raw_body, signature, secret):
        raise AuthenticationError("Invalid HMAC signature")

    topic = request.headers.get(TOPIC_HEADER)
    if not topic:
        raise ValidationError(f"Missing {TOPIC_HEADER} header")
    payload = parse_payload(raw_body)
    event_id = payload.get("id") if payload.get("id") is not None else request.headers.get(WEBHOOK_ID_HEADER)
    if event_id is None:
        raise ValidationError("Payload has no id")
    return WebhookEvent(
        id=str(event_id),
        topic=topic,
        source_domain=request.headers.get(SHOP_HEADER, ""),
        received_at=datetime.now(UTC).isoformat(timespec="microseconds"),
        raw_payload=raw_body,
    )


@router.post("/webhooks/shopify/orders")
async def receive_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    queue: SQLiteJobQueue = Depends(get_queue),
) -> WebhookAck:
    try:
        async with asyncio.timeout(settings.ingest_timeout):
            event = await _verified_event(request, settings.secret_bytes)
            job_id = await queue.enqueue(event)
    except AuthenticationError as e:
        REQUESTS_TOTAL.labels(result="unauthorized").inc()
        logger.warning("Rejected webhook from %s: %s", request.client.host if request.client else "-", e)
        raise HTTPException(status_code=401, detail=str(e)) from e
    except ValidationError as e:
        # signed by the producer, so redelivering the same bytes cannot help
        REQUESTS_TOTAL.labels(result="invalid").inc()
        logger.error("Dropping signed webhook with invalid payload: %s", e)
        return WebhookAck(received=True, job_id=None, event_id=None)
    except QueueUnavailableError as e:
        REQUESTS_TOTAL.labels(result="unavailable").inc()
        logger.error("Error adding job to queue: %s", e)
        raise HTTPException(status_code=503, detail="Queue unavailable") from e
    except TimeoutError as e:
        REQUESTS_TOTAL.labels(result="unavailable").inc()
        logger.error("Webhook ingestion exceeded %.1fs", settings.ingest_timeout)
        raise HTTPException(status_code=503, detail="Ingestion timed out") from e

    REQUESTS_TOTAL.labels(result="accepted").inc()
    logger.info(
        "Accepted webhook job=%s event=%s topic=%s shop=%s",
        job_id,
        event.id,
        event.topic,
        event.source_domain,
    )
    return WebhookAck(received=True, job_id=job_id, event_id=event.id)


@router.get("/webhooks/jobs/{job_id}")
async def get_job(
    job_id: str,
    queue: SQLiteJobQueue = Depends(get_queue),
) -> JobStatusResponse:
    try:
        job = await queue.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Job not found") from e
    return JobStatusResponse(
        job_id=job.job_id,
        event_id=job.event_id,
        topic=job.topic,
        source_domain=job.source_domain,
        state=job.state.value,
        attempt_count=job.attempt_count,
        last_error=job.last_error,
        result=job.result,
        next_eligible_at=job.next_eligible_at,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.get("/health")
async def health(queue: SQLiteJobQueue = Depends(get_queue)) -> HealthResponse:
    counts = await refresh_queue_gauge(queue)
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(UTC).isoformat(),
        queue=QueueCounts(**counts),
    )


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/ready")
async def ready(request: Request) -> dict:
    if not request.app.state.ready:
        raise HTTPException(status_code=503)
    return {"status": "ok"}
