# services/hyros_client.py
# Purchase-attribution tracker client.

from typing import Optional

import httpx

from config import HyrosConfig
from pipeline.errors import IntegrationError
from schemas import Order, utcnow
from services.http_client import IntegrationClient

# Hyros stage per purchase outcome
STAGES = {"completed": "Customer", "declined": "Lead", "pending": "Lead"}


def build_purchase_event(order: Order, outcome: str, ip_address: Optional[str] = None) -> dict:
    event = {
        "email": order.customer_email,
        "firstName": order.first_name or None,
        "lastName": order.last_name or None,
        "orderId": order.order_number,
        "date": utcnow().strftime("%Y-%m-%dT%H:%M:%S"),
        "currency": order.currency or "USD",
        "priceFormat": "DECIMAL",
        "stage": STAGES.get(outcome, "Lead"),
        "items": [
            {
                "name": order.program_name or "Trading Program",
                "price": order.total_price or 0,
                "externalId": str(order.program_id or ""),
                "quantity": 1,
                "tag": order.platform_name or None,
                "categoryName": order.purchase_type.value,
            }
        ],
    }
    if ip_address:
        event["leadIps"] = [ip_address]
    if order.discount_code:
        event["orderDiscount"] = (order.purchase_price or 0) - (order.total_price or 0)
    return {k: v for k, v in event.items() if v is not None}


class HyrosClient(IntegrationClient):
    name = "hyros"

    def __init__(
        self,
        config: Optional[HyrosConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or HyrosConfig.from_env()
        super().__init__(timeout_seconds=self.config.timeout_seconds, transport=transport)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def track_purchase(self, order: Order, outcome: str, ip_address: Optional[str] = None) -> dict:
        """Send one purchase event; returns the tracker's response body."""
        if not self.config.api_key:
            raise IntegrationError("Hyros API key not configured", integration=self.name)

        response = await self._request(
            "POST",
            f"{self.config.api_url}/orders",
            headers={"API-Key": self.config.api_key, "Content-Type": "application/json"},
            json=build_purchase_event(order, outcome, ip_address),
        )
        data = self._json(response) or {}
        self._logger.info(
            "hyros_purchase_tracked",
            order_number=order.order_number,
            outcome=outcome,
            event_id=data.get("event_id"),
        )
        return data
