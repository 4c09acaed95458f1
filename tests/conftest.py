import json
from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient

from webhook_pipeline.alerts import Alert
from webhook_pipeline.app import create_app
from webhook_pipeline.config import Settings
from webhook_pipeline.database import open_db
from webhook_pipeline.dependencies import get_db
from webhook_pipeline.jobs import SQLiteJobQueue, WebhookEvent
from webhook_pipeline.signature import sign

SECRET = "shpss_test_secret"

ORDER = {
    "id": 42,
    "order_number": 1042,
    "email": "buyer@example.com",
    "total_price": "19.99",
    "currency": "USD",
    "line_items": [
        {"product_id": 7, "variant_id": 70, "quantity": 1, "price": "19.99", "title": "Mug"},
    ],
    "created_at": "2026-10-18T10:00:00-04:00",
}


def make_event(payload: dict | None = None, topic: str = "orders/create") -> WebhookEvent:
    payload = ORDER if payload is None else payload
    return WebhookEvent(
        id=str(payload.get("id")),
        topic=topic,
        source_domain="demo.myshopify.com",
        received_at=datetime.now(UTC).isoformat(),
        raw_payload=json.dumps(payload).encode(),
    )


def signed_headers(body: bytes, topic: str = "orders/create", secret: str = SECRET) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Shopify-Hmac-Sha256": sign(body, secret.encode()),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "demo.myshopify.com",
    }


class RecordingAlertSink:
    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    async def send(self, alert: Alert) -> None:
        self.alerts.append(alert)


@pytest.fixture
async def db(tmp_path: pytest.TempPathFactory):
    conn = await open_db(str(tmp_path / "test.db"))
    yield conn
    await conn.close()


@pytest.fixture
def queue(db) -> SQLiteJobQueue:
    return SQLiteJobQueue(db)


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
async def client(tmp_path: pytest.TempPathFactory, db) -> AsyncClient:
    settings = Settings(db_path=str(tmp_path / "test.db"), webhook_secret=SECRET)
    app = create_app(settings)
    app.state.ready = True
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
