"""End-to-end webhook processing tests against in-memory storage"""
import asyncio
import json

import httpx
from structlog.testing import capture_logs

from config import BackofficeConfig, HyrosConfig, KlaviyoConfig
from pipeline.dispatcher import FulfillmentDispatcher
from pipeline.errors import InternalError, OrderNotFound, PriceDivergence
from pipeline.mapping_resolver import MappingResolver
from pipeline.steps import BackofficeStep, CommissionStep, HyrosStep, KlaviyoStep
from pipeline.webhook_processor import PaymentWebhookProcessor
from schemas import OrderStatus, ProductMapping
from services import BackofficeClient, HyrosClient, KlaviyoClient
from storage import (
    InMemoryAddOnRepository,
    InMemoryIntegrationLedger,
    InMemoryMappingRepository,
    InMemoryOrderRepository,
    InMemoryProgramRepository,
)


class _UnusedAffiliateClient:
    """Fails loudly if the commission step reaches the network"""

    async def lookup_affiliate_by_username(self, username):
        raise AssertionError("unexpected affiliate lookup")

    async def record_referral(self, **kwargs):
        raise AssertionError("unexpected referral")


class _BrokenOrderRepository(InMemoryOrderRepository):
    async def get_by_order_number(self, order_number):
        raise RuntimeError("database unavailable")


def _approved(order_ref="10042", transaction_id="tx_1") -> bytes:
    return json.dumps({
        "type": "approved",
        "data": {
            "charge": {
                "order_id": order_ref,
                "psp_order_id": transaction_id,
                "attributes": {
                    "status": "approved",
                    "amount": 499,
                    "currency": "USD",
                    "card_brand": "visa",
                    "card_number": "4242",
                },
            },
        },
    }).encode()


def _declined(order_ref="10042") -> bytes:
    return json.dumps({
        "type": "declined",
        "data": {
            "charge": {
                "order_id": order_ref,
                "attributes": {"status": "declined", "decline_reason": "insufficient_funds"},
            },
        },
    }).encode()


def _pipeline(reporter, orders=None):
    """Wire the full pipeline; back-office posts are captured."""
    orders = orders or InMemoryOrderRepository()
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    resolver = MappingResolver(
        InMemoryMappingRepository([
            ProductMapping(program_id="prog_1", tier_id="tier_50k", platform_id="mt5", product_id="101", variation_id="201"),
        ]),
        InMemoryProgramRepository(),
        reporter=reporter,
    )
    dispatcher = FulfillmentDispatcher(
        steps=[
            CommissionStep(orders, client=_UnusedAffiliateClient()),
            HyrosStep(HyrosClient(config=HyrosConfig(api_url="https://hyros.test", api_key=""))),
            KlaviyoStep(KlaviyoClient(config=KlaviyoConfig(api_url="https://klaviyo.test", api_key=""))),
            BackofficeStep(
                resolver,
                InMemoryAddOnRepository(),
                client=BackofficeClient(
                    config=BackofficeConfig(webhook_url="https://backoffice.test/orders"),
                    transport=httpx.MockTransport(handler),
                ),
            ),
        ],
        ledger=InMemoryIntegrationLedger(),
        reporter=reporter,
    )
    processor = PaymentWebhookProcessor(orders, dispatcher, reporter=reporter, gateway_name="bridgerpay")
    return processor, orders, posted


def test_approved_payment_completes_order_and_fulfils_once(make_order, reporter):
    """Approval heals the price, completes the order and posts it to the back office"""

    processor, orders, posted = _pipeline(reporter)
    order = make_order(total_price=499.0, purchase_price=499.0, metadata={"totalPrice": 399})

    async def _run():
        await orders.save(order)
        result = await processor.process(_approved())
        return result, await orders.get(order.id)

    result, stored = asyncio.run(_run())

    assert result.status_code == 200
    assert result.body["processed"] is True
    assert result.body["status"] == "completed"
    assert result.body["status_changed"] is True
    assert result.body["price_corrected"] is True
    assert result.body["dispatch"] == {
        "commission": "skipped",
        "hyros.completed": "skipped",
        "klaviyo.completed": "skipped",
        "backoffice": "sent",
    }

    assert stored.status == OrderStatus.COMPLETED
    assert stored.transaction_id == "tx_1"
    assert stored.payment_method == "credit_card"
    assert stored.payment.amount == 499
    assert stored.payment.card_last4 == "4242"
    assert stored.metadata["totalPrice"] == 499.0
    assert "tx_1" in stored.notes

    assert len(posted) == 1
    assert posted[0]["line_items"][0]["total"] == "499"
    assert posted[0]["line_items"][0]["product_id"] == 201
    assert posted[0]["line_items"][0]["variation_id"] == 101
    assert len(reporter.of_type(PriceDivergence)) == 1


def test_replayed_approval_does_not_fulfil_twice(make_order, reporter):
    """A redelivered event leaves the order alone and skips sent steps"""

    processor, orders, posted = _pipeline(reporter)
    order = make_order()

    async def _run():
        await orders.save(order)
        await processor.process(_approved())
        completed = await orders.get(order.id)
        replay = await processor.process(_approved())
        return completed, replay, await orders.get(order.id)

    completed, replay, stored = asyncio.run(_run())

    assert replay.status_code == 200
    assert replay.body["status_changed"] is False
    assert replay.body["dispatch"]["backoffice"] == "already_sent"
    assert stored.updated_at == completed.updated_at
    assert len(posted) == 1


def test_declined_payment_fails_order_without_fulfilment(make_order, reporter):
    """Declines record the reason and never reach the back office"""

    processor, orders, posted = _pipeline(reporter)
    order = make_order()

    async def _run():
        await orders.save(order)
        result = await processor.process(_declined())
        return result, await orders.get(order.id)

    result, stored = asyncio.run(_run())

    assert result.body["status"] == "failed"
    assert stored.status == OrderStatus.FAILED
    assert stored.transaction_id is None
    assert "insufficient_funds" in stored.notes
    assert stored.payment.decline_reason == "insufficient_funds"
    assert "backoffice" not in result.body["dispatch"]
    assert posted == []


def test_later_event_type_wins(make_order, reporter):
    """An approval followed by a decline leaves the order failed"""

    processor, orders, _ = _pipeline(reporter)
    order = make_order()

    async def _run():
        await orders.save(order)
        await processor.process(_approved())
        await processor.process(_declined())
        return await orders.get(order.id)

    assert asyncio.run(_run()).status == OrderStatus.FAILED


def test_unrecognized_event_type_is_acknowledged_without_changes(make_order, reporter):
    """Session lifecycle callbacks are dropped with a 200"""

    processor, orders, posted = _pipeline(reporter)
    order = make_order()
    body = json.dumps({"type": "cashier.session.close", "order_id": "10042"}).encode()

    async def _run():
        await orders.save(order)
        result = await processor.process(body)
        return result, await orders.get(order.id)

    result, stored = asyncio.run(_run())

    assert result.status_code == 200
    assert result.body["received"] is True
    assert result.body["processed"] is False
    assert stored == order
    assert posted == []


def test_missing_order_reference_is_acknowledged(reporter):
    """An accepted event without any order reference is dropped with a 200"""

    processor, _, _ = _pipeline(reporter)
    result = asyncio.run(processor.process(b'{"type": "approved"}'))

    assert result.status_code == 200
    assert result.body["processed"] is False


def test_unknown_order_is_acknowledged_and_reported(reporter):
    """The gateway is told to stop retrying, and the miss is reported"""

    processor, _, posted = _pipeline(reporter)
    result = asyncio.run(processor.process(_approved(order_ref="99999")))

    assert result.status_code == 200
    assert result.body["processed"] is False
    assert len(reporter.of_type(OrderNotFound)) == 1
    assert posted == []


def test_unknown_order_is_a_single_error_event():
    """With the default reporter the miss is logged once"""

    processor = PaymentWebhookProcessor(InMemoryOrderRepository(), FulfillmentDispatcher([]))

    with capture_logs() as logs:
        asyncio.run(processor.process(_approved(order_ref="99999")))

    errors = [entry for entry in logs if entry["log_level"] == "error"]
    assert len(errors) == 1
    assert errors[0]["error_type"] == "OrderNotFound"
    assert errors[0]["order_number"] == "99999"


def test_malformed_bodies_are_rejected(reporter):
    """Empty and invalid JSON bodies answer 400"""

    processor, _, _ = _pipeline(reporter)

    empty = asyncio.run(processor.process(b""))
    invalid = asyncio.run(processor.process(b"{not json"))

    assert empty.status_code == 400
    assert empty.body == {"error": "Empty request body"}
    assert invalid.status_code == 400


def test_unexpected_failure_answers_500(reporter):
    """Storage failures surface as a retryable 500"""

    processor, _, _ = _pipeline(reporter, orders=_BrokenOrderRepository())
    result = asyncio.run(processor.process(_approved()))

    assert result.status_code == 500
    assert result.body == {"error": "Internal server error"}
    assert len(reporter.of_type(InternalError)) == 1


def test_verification_handshake(reporter):
    """The challenge is echoed back; without one the endpoint reports itself active"""

    processor, _, _ = _pipeline(reporter)

    assert processor.verify("abc123") == {"challenge": "abc123"}
    assert processor.verify()["status"] == "active"
