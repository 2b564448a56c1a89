"""Price reconciliation guard tests"""
import asyncio

from pipeline.errors import PriceDivergence
from pipeline.price_guard import PriceGuard
from storage import InMemoryOrderRepository


def test_divergent_metadata_total_is_rewritten(make_order, reporter):
    """Root total wins and the correction is marked and reported"""

    async def _run():
        orders = InMemoryOrderRepository()
        order = await orders.save(make_order(total_price=499.0, purchase_price=549.0, metadata={"totalPrice": 399}))
        guard = PriceGuard(orders, reporter=reporter, fixed_by="gateway-webhook")
        patched, check = await guard.reconcile(order)
        stored = await orders.get(order.id)
        return patched, check, stored

    patched, check, stored = asyncio.run(_run())

    assert check.corrected
    assert check.difference == 100
    assert stored.metadata["totalPrice"] == 499.0
    assert stored.metadata["originalPrice"] == 549.0
    assert stored.metadata["priceFixedBy"] == "gateway-webhook"
    assert "priceFixedAt" in stored.metadata
    assert patched.metadata == stored.metadata
    assert len(reporter.of_type(PriceDivergence)) == 1


def test_difference_within_tolerance_is_left_alone(make_order, reporter):
    """Rounding noise under one unit does not trigger a write"""

    async def _run():
        orders = InMemoryOrderRepository()
        order = await orders.save(make_order(total_price=499.0, metadata={"totalPrice": 498.5}))
        guard = PriceGuard(orders, reporter=reporter, tolerance=1)
        _, check = await guard.reconcile(order)
        return order, check, await orders.get(order.id)

    order, check, stored = asyncio.run(_run())

    assert not check.corrected
    assert stored.metadata == {"totalPrice": 498.5}
    assert stored.updated_at == order.updated_at
    assert reporter.reports == []


def test_missing_or_non_numeric_metadata_total_is_skipped(make_order):
    """Only two real, positive numbers are compared"""

    guard = PriceGuard(InMemoryOrderRepository())

    assert not guard.check(make_order(metadata={})).corrected
    assert not guard.check(make_order(metadata={"totalPrice": "399"})).corrected
    assert not guard.check(make_order(metadata={"totalPrice": 0})).corrected
    assert not guard.check(make_order(total_price=None, metadata={"totalPrice": 399})).corrected
