import asyncio
import json
import logging

import httpx
import pytest
from conftest import ORDER, SECRET, make_event, signed_headers
from httpx import ASGITransport, AsyncClient

from webhook_pipeline.app import build_pipeline, create_app
from webhook_pipeline.config import Settings
from webhook_pipeline.database import open_db
from webhook_pipeline.jobs import JobState, SQLiteJobQueue
from webhook_pipeline.sync import HttpOrderSync


async def test_build_pipeline_uses_http_sync_when_configured(queue) -> None:
    settings = Settings(internal_api_url="http://erp.internal", alert_webhook_url="https://hooks.slack.test/x")
    async with httpx.AsyncClient() as http:
        dispatcher, scheduler = build_pipeline(queue, settings, http)
    handler = dispatcher._handlers["orders/create"]
    assert isinstance(handler.__self__._sync, HttpOrderSync)
    assert scheduler.max_attempts == 5


async def test_webhook_is_processed_end_to_end(tmp_path: pytest.TempPathFactory) -> None:
    settings = Settings(
        db_path=str(tmp_path / "app.db"),
        webhook_secret=SECRET,
        worker_count=2,
        poll_interval=0.01,
    )
    app = create_app(settings)
    body = json.dumps(ORDER).encode()
    async with app.router.lifespan_context(app):
        assert app.state.ready is True
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/webhooks/shopify/orders", content=body, headers=signed_headers(body))
            assert response.status_code == 200
            job_id = response.json()["job_id"]
            for _ in range(200):
                job = (await client.get(f"/webhooks/jobs/{job_id}")).json()
                if job["state"] == "succeeded":
                    break
                await asyncio.sleep(0.01)
    assert job["state"] == "succeeded"
    assert job["attempt_count"] == 1
    assert job["result"] == {"order_id": "42", "synced": True}


async def test_startup_alerts_on_job_interrupted_on_last_attempt(
    tmp_path: pytest.TempPathFactory, caplog: pytest.LogCaptureFixture
) -> None:
    settings = Settings(db_path=str(tmp_path / "app.db"), webhook_secret=SECRET, max_attempts=1, worker_count=0)
    db = await open_db(settings.db_path)
    queue = SQLiteJobQueue(db)
    job_id = await queue.enqueue(make_event())
    await queue.dequeue_ready()
    await db.close()

    app = create_app(settings)
    with caplog.at_level(logging.CRITICAL, logger="webhook_pipeline.alerts"):
        async with app.router.lifespan_context(app):
            job = await SQLiteJobQueue(app.state.db).get(job_id)
    assert job.state == JobState.EXHAUSTED
    assert job.last_error == "interrupted"
    assert f"job={job_id}" in caplog.text
    assert "attempts=1" in caplog.text
