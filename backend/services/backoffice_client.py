# services/backoffice_client.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - BACK-OFFICE ORDER CLIENT
# ============================================================================
# The back office ingests completed orders through a WooCommerce-shaped
# order webhook. Currency is always the back office's own.
# ============================================================================

from typing import Any, Optional, Union

import httpx

from config import BackofficeConfig
from pipeline.errors import IntegrationError
from schemas import Order, PurchaseType, utcnow
from services.http_client import IntegrationClient

ADD_ON_META_KEY = "_wc_checkout_add_on_value"


def format_amount(value: Optional[float]) -> str:
    """499.0 -> '499'; 499.5 -> '499.5'; None -> '0'"""
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def external_order_id(order_number: str) -> Union[int, str]:
    return int(order_number) if str(order_number).isdigit() else order_number


def build_order_payload(
    order: Order,
    product_id: int,
    variation_id: int,
    add_on_keys: list[str],
    currency: str = "USD",
) -> dict[str, Any]:
    """
    Vendor order payload. The line item total is the base purchase price;
    add-ons travel separately as fee_lines.

    Stored mappings keep the back-office product in `variation_id` and the
    back-office variation in `product_id`, so the line item swaps them.
    """
    total = format_amount(order.purchase_price or 0)
    account_id = order.metadata.get("account_id")
    billing = order.billing_address

    payload: dict[str, Any] = {
        "id": external_order_id(order.order_number),
        "status": "completed",
        "currency": currency,
        "date_created": utcnow().isoformat(),
        "total": total,
        "billing": {
            "first_name": order.first_name,
            "last_name": order.last_name,
            "company": "",
            "address_1": billing.address or "",
            "address_2": "",
            "city": billing.city or "",
            "state": billing.state or "",
            "postcode": billing.postal_code or "",
            "country": (billing.country or "").upper(),
            "email": order.customer_email or "",
            "phone": "",
        },
        "line_items": [
            {
                "name": order.program_name or "Program",
                "product_id": variation_id,
                "variation_id": product_id,
                "total": total,
            }
        ],
        "fee_lines": (
            [{"meta_data": [{"key": ADD_ON_META_KEY, "value": add_on_keys}]}]
            if add_on_keys else []
        ),
    }

    if account_id:
        payload["account_id"] = account_id
        if order.purchase_type in (PurchaseType.RESET, PurchaseType.ACTIVATION):
            payload["meta_data"] = [{"key": "account_id", "value": account_id}]

    return payload


class BackofficeClient(IntegrationClient):
    name = "backoffice"

    def __init__(
        self,
        config: Optional[BackofficeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or BackofficeConfig.from_env()
        super().__init__(timeout_seconds=self.config.timeout_seconds, transport=transport)

    @property
    def currency(self) -> str:
        return self.config.currency

    async def post_order(self, payload: dict[str, Any]) -> int:
        """POST the order; returns the HTTP status."""
        if not self.config.webhook_url:
            raise IntegrationError("Back-office webhook URL not configured", integration=self.name)

        response = await self._request(
            "POST",
            self.config.webhook_url,
            headers={"Content-Type": "application/json"},
            json={**payload, "currency": self.config.currency},
        )
        self._logger.info(
            "backoffice_order_posted",
            order_id=payload.get("id"),
            status=response.status_code,
        )
        return response.status_code
