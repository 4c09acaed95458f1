import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from webhook_pipeline.dispatcher import Handler
from webhook_pipeline.errors import ValidationError
from webhook_pipeline.jobs import WebhookEvent
from webhook_pipeline.sync import OrderSync

logger = logging.getLogger(__name__)


def _order_id(payload: dict[str, Any]) -> str:
    if payload.get("id") is None:
        raise ValidationError("Order payload has no id")
    return str(payload["id"])


def _price(value: Any, field: str) -> str:
    # kept as a decimal string, floats would lose cents
    try:
        return str(Decimal(str(value)))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e


def build_internal_order(payload: dict[str, Any]) -> dict[str, Any]:
    line_items = payload.get("line_items")
    if not isinstance(line_items, list):
        raise ValidationError("Order payload has no line_items")
    return {
        "shopify_order_id": _order_id(payload),
        "order_number": payload.get("order_number"),
        "customer_email": payload.get("email"),
        "total_price": _price(payload.get("total_price", "0"), "total_price"),
        "currency": payload.get("currency"),
        "line_items": [
            {
                "product_id": item.get("product_id"),
                "variant_id": item.get("variant_id"),
                "quantity": item.get("quantity"),
                "price": _price(item.get("price", "0"), "line item price"),
                "title": item.get("title"),
            }
            for item in line_items
        ],
        "shipping_address": payload.get("shipping_address"),
        "billing_address": payload.get("billing_address"),
        "created_at": payload.get("created_at"),
    }


class OrderHandlers:
    def __init__(self, sync: OrderSync) -> None:
        self._sync = sync

    def registry(self) -> dict[str, Handler]:
        return {
            "orders/create": self.order_created,
            "orders/updated": self.order_updated,
            "orders/paid": self.order_paid,
            "orders/fulfilled": self.order_fulfilled,
        }

    async def order_created(self, event: WebhookEvent) -> dict[str, Any]:
        order = build_internal_order(event.parsed_payload)
        logger.info(
            "Handling order creation order=%s number=%s total=%s",
            order["shopify_order_id"],
            order["order_number"],
            order["total_price"],
        )
        await self._sync.upsert_order(order)
        return {"order_id": order["shopify_order_id"], "synced": True}

    async def order_updated(self, event: WebhookEvent) -> dict[str, Any]:
        payload = event.parsed_payload
        order_id = _order_id(payload)
        await self._sync.update_order(
            order_id,
            {
                "status": payload.get("financial_status"),
                "fulfillment_status": payload.get("fulfillment_status"),
                "updated_at": payload.get("updated_at"),
            },
        )
        return {"order_id": order_id, "updated": True}

    async def order_paid(self, event: WebhookEvent) -> dict[str, Any]:
        order_id = _order_id(event.parsed_payload)
        await self._sync.mark_paid(order_id)
        await self._sync.trigger_fulfillment(order_id)
        return {"order_id": order_id, "paid": True}

    async def order_fulfilled(self, event: WebhookEvent) -> dict[str, Any]:
        payload = event.parsed_payload
        order_id = _order_id(payload)
        await self._sync.update_fulfillment(order_id, payload.get("fulfillments") or [])
        await self._sync.notify_customer(payload.get("email"), order_id)
        return {"order_id": order_id, "fulfilled": True}
