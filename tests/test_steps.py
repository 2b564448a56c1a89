"""Fulfillment step tests: commission decisions, analytics gating, back-office payload"""
import asyncio
import json
from datetime import timedelta

import httpx

from config import BackofficeConfig, HyrosConfig, KlaviyoConfig
from pipeline.dispatcher import DispatchContext
from pipeline.mapping_resolver import MappingResolver
from pipeline.steps import BackofficeStep, CommissionStep, HyrosStep, KlaviyoStep
from schemas import AddOn, OrderStatus, ProductMapping, PurchaseType, SelectedAddOn, utcnow
from services import Affiliate, BackofficeClient, HyrosClient, KlaviyoClient, Referral
from storage import (
    InMemoryAddOnRepository,
    InMemoryMappingRepository,
    InMemoryOrderRepository,
    InMemoryProgramRepository,
)

COMPLETED = DispatchContext(status=OrderStatus.COMPLETED)


class _FakeAffiliateClient:
    """Commission-tracking client double"""

    def __init__(self, affiliates=None):
        self.affiliates = affiliates or {}
        self.lookups = []
        self.referrals = []

    async def lookup_affiliate_by_username(self, username):
        self.lookups.append(username)
        return self.affiliates.get(username)

    async def record_referral(self, affiliate_id, amount, description, reference, context="storefront", custom=None):
        self.referrals.append({"affiliate_id": affiliate_id, "amount": amount, "reference": reference})
        return Referral(referral_id=900, affiliate_id=affiliate_id, amount=amount, reference=reference)


def _run_commission(make_order, history=(), affiliates=None, **order_overrides):
    orders = InMemoryOrderRepository()
    client = _FakeAffiliateClient(
        affiliates if affiliates is not None
        else {"partner": Affiliate(affiliate_id=7, username="partner", status="active")}
    )
    step = CommissionStep(orders, client=client, lifetime_days=60)
    order = make_order(**{"affiliate_username": "partner", **order_overrides})

    async def _run():
        for previous in history:
            await orders.save(previous)
        await orders.save(order)
        return await step.run(order, COMPLETED)

    return asyncio.run(_run()), client


# =============================================================================
# COMMISSION
# =============================================================================

def test_new_customer_with_affiliate_is_credited(make_order):
    """A first purchase carrying an affiliate username records a referral"""

    result, client = _run_commission(make_order, total_price=449.0)

    assert result.status == "sent"
    assert result.reason == "new_customer_with_affiliate"
    assert result.data["referral_id"] == 900
    assert client.referrals == [{"affiliate_id": 7, "amount": 449.0, "reference": "10042"}]


def test_returning_customer_inside_window_is_credited(make_order):
    """The most recent attributed order is within the lifetime window"""

    previous = make_order(order_number="9001", affiliate_username="partner", created_at=utcnow() - timedelta(days=10))
    result, client = _run_commission(make_order, history=[previous])

    assert result.status == "sent"
    assert result.reason == "returning_customer_within_lifetime"
    assert len(client.referrals) == 1


def test_returning_customer_outside_window_is_skipped(make_order):
    """An attribution older than the window is not credited and no lookup happens"""

    previous = make_order(order_number="9001", affiliate_username="partner", created_at=utcnow() - timedelta(days=90))
    result, client = _run_commission(make_order, history=[previous])

    assert result.status == "skipped"
    assert result.reason == "returning_customer_outside_lifetime_window"
    assert client.lookups == []


def test_returning_customer_without_attribution_is_skipped(make_order):
    """A customer who bought before without an affiliate stays unattributed"""

    previous = make_order(order_number="9001", affiliate_username=None)
    result, client = _run_commission(make_order, history=[previous])

    assert result.status == "skipped"
    assert result.reason == "existing_customer_no_affiliate"
    assert client.referrals == []


def test_reset_orders_and_missing_usernames_are_skipped(make_order):
    """Resets never pay commission; orders without a username have nothing to credit"""

    reset, _ = _run_commission(make_order, purchase_type=PurchaseType.RESET)
    anonymous, _ = _run_commission(make_order, affiliate_username=None)

    assert reset.reason == "reset_order"
    assert anonymous.reason == "no_affiliate_username"


def test_metadata_username_takes_precedence(make_order):
    """The checkout metadata username is preferred over the root field"""

    affiliates = {"meta-partner": Affiliate(affiliate_id=8, username="meta-partner", status="active")}
    result, client = _run_commission(
        make_order,
        affiliates=affiliates,
        affiliate_username="stale",
        metadata={"affiliateUsername": "meta-partner"},
    )

    assert result.status == "sent"
    assert client.lookups == ["meta-partner"]


def test_unknown_affiliate_fails_and_inactive_affiliate_skips(make_order):
    """Lookup misses are failures (retried); inactive affiliates are skipped"""

    missing, _ = _run_commission(make_order, affiliates={})
    inactive, client = _run_commission(
        make_order,
        affiliates={"partner": Affiliate(affiliate_id=7, username="partner", status="inactive")},
    )

    assert missing.status == "failed"
    assert missing.error == "affiliate_not_found"
    assert inactive.status == "skipped"
    assert inactive.reason == "affiliate_status_inactive"
    assert client.referrals == []


# =============================================================================
# ANALYTICS
# =============================================================================

def test_disabled_trackers_are_skipped(make_order):
    """Disabled analytics short-circuit without any HTTP call"""

    hyros = HyrosStep(HyrosClient(config=HyrosConfig(api_url="https://hyros.test", api_key="k", enabled=False)))
    klaviyo = KlaviyoStep(KlaviyoClient(config=KlaviyoConfig(api_url="https://klaviyo.test", api_key="k")))

    assert asyncio.run(hyros.run(make_order(), COMPLETED)).reason == "tracking_disabled"
    assert asyncio.run(klaviyo.run(make_order(), COMPLETED)).reason == "tracking_disabled"


def test_analytics_markers_are_per_outcome():
    """A decline and a later approval are tracked separately"""

    step = HyrosStep(HyrosClient(config=HyrosConfig(api_url="https://hyros.test", api_key="k")))

    assert step.marker(COMPLETED) == "hyros.completed"
    assert step.marker(DispatchContext(status=OrderStatus.FAILED)) == "hyros.declined"
    assert step.applies_to(OrderStatus.FAILED)
    assert not step.applies_to(OrderStatus.PENDING)


def test_klaviyo_step_sends_placed_order_events(make_order):
    """A completed order emits 'Placed Order' plus one 'Ordered Product'"""

    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    client = KlaviyoClient(
        config=KlaviyoConfig(api_url="https://klaviyo.test/api", api_key="pk_test", enabled=True),
        transport=httpx.MockTransport(handler),
    )
    result = asyncio.run(KlaviyoStep(client).run(make_order(), COMPLETED))

    assert result.status == "sent"
    assert result.data["events"] == 2
    bodies = [json.loads(r.content) for r in requests]
    assert [b["data"]["attributes"]["unique_id"] for b in bodies] == ["placed_10042", "placed_10042_tier_50k"]
    assert requests[0].headers["Authorization"] == "Klaviyo-API-Key pk_test"
    assert requests[0].headers["revision"] == "2024-07-15"


# =============================================================================
# BACK OFFICE
# =============================================================================

def test_backoffice_step_posts_resolved_order(make_order, reporter):
    """Resolved product ids, base price and known add-on keys reach the back office"""

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
    step = BackofficeStep(
        resolver,
        InMemoryAddOnRepository([AddOn(id="a1", key="profit_split_90", name="90% split")]),
        client=BackofficeClient(
            config=BackofficeConfig(webhook_url="https://backoffice.test/orders"),
            transport=httpx.MockTransport(handler),
        ),
    )
    order = make_order(
        purchase_price=499.0,
        total_price=549.0,
        selected_add_ons=[SelectedAddOn(add_on_id="a1"), SelectedAddOn(add_on_id="gone")],
    )

    result = asyncio.run(step.run(order, COMPLETED))

    assert result.status == "sent"
    assert result.data["http_status"] == 200
    assert len(posted) == 1
    payload = posted[0]
    assert payload["id"] == 10042
    assert payload["currency"] == "USD"
    assert payload["total"] == "499"
    assert payload["line_items"] == [
        {"name": "Evaluation Challenge", "product_id": 201, "variation_id": 101, "total": "499"}
    ]
    assert payload["fee_lines"] == [
        {"meta_data": [{"key": "_wc_checkout_add_on_value", "value": ["profit_split_90"]}]}
    ]
    assert payload["billing"]["country"] == "US"
    assert payload["billing"]["first_name"] == "Ada"
    assert "account_id" not in payload
