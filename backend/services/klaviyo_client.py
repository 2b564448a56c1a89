# services/klaviyo_client.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - MARKETING EVENT TRACKER CLIENT
# ============================================================================
# Klaviyo events API. Every event carries a unique_id so the tracker itself
# deduplicates redelivered webhooks.
# ============================================================================

from typing import Any, Optional

import httpx

from config import KlaviyoConfig
from pipeline.errors import IntegrationError
from schemas import Order, utcnow
from services.http_client import IntegrationClient


def order_items(order: Order) -> list[dict[str, Any]]:
    return [
        {
            "product_id": order.program_id,
            "sku": order.tier_id or order.metadata.get("tierId"),
            "name": order.program_name or "Trading Program",
            "quantity": 1,
            "price": order.total_price or 0,
        }
    ]


class KlaviyoClient(IntegrationClient):
    name = "klaviyo"

    def __init__(
        self,
        config: Optional[KlaviyoConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or KlaviyoConfig.from_env()
        super().__init__(timeout_seconds=self.config.timeout_seconds, transport=transport)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def track_event(
        self,
        metric_name: str,
        email: str,
        properties: dict[str, Any],
        unique_id: Optional[str] = None,
    ) -> None:
        if not self.config.api_key:
            raise IntegrationError("Klaviyo API key not configured", integration=self.name)

        attributes: dict[str, Any] = {
            "metric": {"data": {"type": "metric", "attributes": {"name": metric_name}}},
            "properties": {k: v for k, v in properties.items() if v is not None},
            "time": utcnow().isoformat(),
            "profile": {"data": {"type": "profile", "attributes": {"email": email.strip().lower()}}},
        }
        if unique_id:
            attributes["unique_id"] = unique_id

        await self._request(
            "POST",
            f"{self.config.api_url}/events/",
            headers={
                "Authorization": f"Klaviyo-API-Key {self.config.api_key}",
                "Content-Type": "application/json",
                "revision": self.config.revision,
            },
            json={"data": {"type": "event", "attributes": attributes}},
        )
        self._logger.info("klaviyo_event_tracked", metric=metric_name, unique_id=unique_id)

    async def track_placed_order(self, order: Order) -> int:
        """'Placed Order' plus one 'Ordered Product' per item. Returns events sent."""
        items = order_items(order)
        await self.track_event(
            "Placed Order",
            order.customer_email,
            {
                "$value": order.total_price or 0,
                "order_id": order.order_number,
                "currency": order.currency or "USD",
                "discount_code": order.discount_code,
                "items": items,
            },
            unique_id=f"placed_{order.order_number}",
        )
        for item in items:
            await self.track_event(
                "Ordered Product",
                order.customer_email,
                {
                    "$value": item["price"] * item["quantity"],
                    "order_id": order.order_number,
                    **item,
                },
                unique_id=f"placed_{order.order_number}_{item['sku'] or item['product_id'] or item['name']}",
            )
        return 1 + len(items)

    async def track_order_failed(self, order: Order, reason: Optional[str] = None) -> int:
        await self.track_event(
            "Order Failed",
            order.customer_email,
            {
                "$value": order.total_price or 0,
                "order_id": order.order_number,
                "currency": order.currency or "USD",
                "discount_code": order.discount_code,
                "items": order_items(order),
                "reason": reason or "Payment declined",
            },
            unique_id=f"failed_{order.order_number}",
        )
        return 1
