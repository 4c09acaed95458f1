"""Clients for the internal order system the handlers sync into.

Every call is keyed by the Shopify order id so a retried job repeats the same
writes instead of adding new ones.
"""

import logging
from typing import Any, Protocol

import httpx

from webhook_pipeline.errors import PermanentHandlerError, TransientHandlerError

logger = logging.getLogger(__name__)


class OrderSync(Protocol):
    async def upsert_order(self, order: dict[str, Any]) -> None: ...

    async def update_order(self, order_id: str, updates: dict[str, Any]) -> None: ...

    async def mark_paid(self, order_id: str) -> None: ...

    async def trigger_fulfillment(self, order_id: str) -> None: ...

    async def update_fulfillment(self, order_id: str, fulfillments: list[dict[str, Any]]) -> None: ...

    async def notify_customer(self, email: str | None, order_id: str) -> None: ...


class InMemoryOrderSync:
    """Order system kept in process memory, used when no internal API is configured."""

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.paid: set[str] = set()
        self.fulfillment_requests: set[str] = set()
        self.notifications: set[tuple[str | None, str]] = set()

    async def upsert_order(self, order: dict[str, Any]) -> None:
        self.orders[order["shopify_order_id"]] = order
        logger.info("Order synced to internal system order=%s", order["shopify_order_id"])

    async def update_order(self, order_id: str, updates: dict[str, Any]) -> None:
        self.orders.setdefault(order_id, {"shopify_order_id": order_id}).update(updates)
        logger.info("Updating order %s", order_id)

    async def mark_paid(self, order_id: str) -> None:
        self.paid.add(order_id)
        logger.info("Marking order %s as paid", order_id)

    async def trigger_fulfillment(self, order_id: str) -> None:
        self.fulfillment_requests.add(order_id)
        logger.info("Triggering fulfillment for order %s", order_id)

    async def update_fulfillment(self, order_id: str, fulfillments: list[dict[str, Any]]) -> None:
        self.orders.setdefault(order_id, {"shopify_order_id": order_id})["fulfillments"] = fulfillments
        logger.info("Updating fulfillment status for order %s", order_id)

    async def notify_customer(self, email: str | None, order_id: str) -> None:
        self.notifications.add((email, order_id))
        logger.info("Sending customer notification for order %s", order_id)


class HttpOrderSync:
    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _request(self, method: str, path: str, **kwargs: Any) -> None:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransientHandlerError(f"{method} {path}: {e}") from e
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientHandlerError(f"{method} {path}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PermanentHandlerError(f"{method} {path}: HTTP {response.status_code} {response.text[:200]}")

    async def upsert_order(self, order: dict[str, Any]) -> None:
        await self._request("PUT", f"/orders/{order['shopify_order_id']}", json=order)

    async def update_order(self, order_id: str, updates: dict[str, Any]) -> None:
        await self._request("PATCH", f"/orders/{order_id}", json=updates)

    async def mark_paid(self, order_id: str) -> None:
        await self._request("PUT", f"/orders/{order_id}/payment", json={"status": "paid"})

    async def trigger_fulfillment(self, order_id: str) -> None:
        await self._request("PUT", f"/orders/{order_id}/fulfillment-request", json={})

    async def update_fulfillment(self, order_id: str, fulfillments: list[dict[str, Any]]) -> None:
        await self._request("PUT", f"/orders/{order_id}/fulfillment", json={"fulfillments": fulfillments})

    async def notify_customer(self, email: str | None, order_id: str) -> None:
        await self._request(
            "POST",
            "/notifications",
            json={"email": email, "order_id": order_id, "kind": "order_fulfilled"},
            headers={"Idempotency-Key": f"order-fulfilled-{order_id}"},
        )
