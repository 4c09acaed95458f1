"""
Locust load tests for the webhook pipeline.

The producer users sign their bodies with WEBHOOK_SECRET, which must match
the secret the server was started with.

Run against a local server:
    WEBHOOK_SECRET=load-test uv run python -m webhook_pipeline

Headless benchmark (60 s, 50 users, ramp 10/s):
    WEBHOOK_SECRET=load-test uv run locust -f load_tests/locustfile.py --headless \
        -u 50 -r 10 --run-time 60s --host http://localhost:3000
"""

import json
import os
import random

from locust import HttpUser, between, task

from webhook_pipeline.signature import sign

SECRET = os.environ.get("WEBHOOK_SECRET", "load-test").encode()
TOPICS = ["orders/create", "orders/updated", "orders/paid", "orders/fulfilled"]


def _order() -> dict:
    order_id = random.randint(1, 10**12)
    return {
        "id": order_id,
        "order_number": order_id % 100000,
        "email": f"buyer{order_id}@example.com",
        "total_price": "19.99",
        "currency": "USD",
        "financial_status": "paid",
        "line_items": [{"product_id": 1, "variant_id": 2, "quantity": 1, "price": "19.99", "title": "Mug"}],
        "fulfillments": [],
    }


def _headers(body: bytes, topic: str, signature: str | None = None) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Shopify-Hmac-Sha256": signature or sign(body, SECRET),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "load-test.myshopify.com",
    }


class ShopifyProducer(HttpUser):
    """Simulates Shopify delivering signed order webhooks."""

    wait_time = between(0.05, 0.2)
    weight = 4

    def on_start(self) -> None:
        self.job_ids: list[str] = []

    @task(10)
    def post_order_webhook(self) -> None:
        body = json.dumps(_order()).encode()
        resp = self.client.post("/webhooks/shopify/orders", data=body, headers=_headers(body, random.choice(TOPICS)))
        if resp.status_code == 200:
            self.job_ids = (self.job_ids + [resp.json()["job_id"]])[-50:]

    @task(1)
    def post_forged_webhook(self) -> None:
        body = json.dumps(_order()).encode()
        with self.client.post(
            "/webhooks/shopify/orders",
            data=body,
            headers=_headers(body, "orders/create", signature="Zm9yZ2Vk"),
            catch_response=True,
            name="/webhooks/shopify/orders [forged]",
        ) as resp:
            if resp.status_code == 401:
                resp.success()

    @task(3)
    def get_job_status(self) -> None:
        if self.job_ids:
            self.client.get(f"/webhooks/jobs/{random.choice(self.job_ids)}", name="/webhooks/jobs/[id]")


class OperatorUser(HttpUser):
    """Simulates monitoring polling health and metrics."""

    wait_time = between(0.5, 1.0)
    weight = 1

    @task
    def get_health(self) -> None:
        self.client.get("/health")

    @task
    def get_metrics(self) -> None:
        self.client.get("/metrics")
