"""Shared fixtures for the fulfillment backend tests"""
import pytest

from observability import RecordingErrorReporter
from schemas import BillingAddress, Order


@pytest.fixture
def reporter() -> RecordingErrorReporter:
    return RecordingErrorReporter()


@pytest.fixture
def make_order():
    """Order factory with storefront defaults; keyword overrides win."""

    def _make(**overrides) -> Order:
        values = {
            "order_number": "10042",
            "purchase_price": 499.0,
            "total_price": 499.0,
            "program_id": "prog_1",
            "program_name": "Evaluation Challenge",
            "platform_slug": "mt5",
            "platform_name": "MetaTrader 5",
            "account_size": "$50,000",
            "tier_id": "tier_50k",
            "customer_email": "trader@example.com",
            "customer_name": "Ada Lovelace",
            "billing_address": BillingAddress(
                address="1 Main St", city="Austin", state="TX", postal_code="73301", country="us"
            ),
        }
        values.update(overrides)
        return Order(**values)

    return _make
