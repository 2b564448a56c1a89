# pipeline/steps.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - FULFILLMENT STEPS
# ============================================================================
# commission -> analytics (hyros, klaviyo) -> back office
# ============================================================================

from typing import Optional

import structlog

from config import settings
from pipeline.dispatcher import DispatchContext, DispatchStep, StepResult
from pipeline.mapping_resolver import MappingResolver
from schemas import Order, OrderStatus, PurchaseType
from services import (
    AffiliateClient,
    BackofficeClient,
    HyrosClient,
    KlaviyoClient,
    build_order_payload,
    get_customer_affiliate_info,
)
from storage import IAddOnRepository, IOrderRepository

logger = structlog.get_logger(component="fulfillment_steps")


# =============================================================================
# COMMISSION
# =============================================================================

class CommissionStep(DispatchStep):
    """
    Record an affiliate referral for completed original orders.

    Decision:
    - new customer with an affiliate username: send
    - returning customer with an attributed order: send only inside the
      lifetime window, measured from the most recent attributed order
    - returning customer never attributed: skip
    """

    name = "commission"

    def __init__(
        self,
        orders: IOrderRepository,
        client: Optional[AffiliateClient] = None,
        lifetime_days: Optional[int] = None,
    ):
        self.orders = orders
        self.client = client or AffiliateClient()
        self.lifetime_days = settings.AFFILIATE_LIFETIME_DAYS if lifetime_days is None else lifetime_days

    async def run(self, order: Order, context: DispatchContext) -> StepResult:
        if order.purchase_type in (PurchaseType.RESET, PurchaseType.ACTIVATION):
            return StepResult.skipped(f"{order.purchase_type.value}_order")
        if not order.customer_email:
            return StepResult.skipped("no_customer_email")

        username = order.metadata.get("affiliateUsername") or order.affiliate_username
        if not username:
            return StepResult.skipped("no_affiliate_username")

        info = await get_customer_affiliate_info(
            self.orders,
            order.customer_email,
            current_order_number=order.order_number,
            lifetime_days=self.lifetime_days,
        )

        if info.is_new_customer:
            reason = "new_customer_with_affiliate"
        elif info.has_any_affiliate_association:
            reason = (
                "returning_customer_within_lifetime"
                if info.is_within_lifetime_window
                else "returning_customer_outside_lifetime_window"
            )
        else:
            reason = "existing_customer_no_affiliate"

        if reason not in ("new_customer_with_affiliate", "returning_customer_within_lifetime"):
            return StepResult.skipped(reason, affiliate_username=username)

        affiliate = await self.client.lookup_affiliate_by_username(username)
        if affiliate is None:
            return StepResult.failed("affiliate_not_found", reason=reason, affiliate_username=username)
        if not affiliate.is_active:
            return StepResult.skipped(f"affiliate_status_{affiliate.status}", affiliate_id=affiliate.affiliate_id)

        referral = await self.client.record_referral(
            affiliate_id=affiliate.affiliate_id,
            amount=order.total_price or order.purchase_price or 0,
            description=f"Order #{order.order_number} - {order.program_name or 'Purchase'}",
            reference=order.order_number,
            custom={
                "customer_email": order.customer_email,
                "customer_first_name": order.first_name,
                "customer_last_name": order.last_name,
            },
        )
        return StepResult(
            status="sent",
            reason=reason,
            data={
                "affiliate_id": affiliate.affiliate_id,
                "affiliate_username": username,
                "referral_id": referral.referral_id,
                "is_new_customer": info.is_new_customer,
            },
        )


# =============================================================================
# ANALYTICS
# =============================================================================

class _AnalyticsStep(DispatchStep):
    statuses = frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED})

    def marker(self, context: DispatchContext) -> str:
        return f"{self.name}.{context.outcome}"


class HyrosStep(_AnalyticsStep):
    name = "hyros"

    def __init__(self, client: Optional[HyrosClient] = None):
        self.client = client or HyrosClient()

    async def run(self, order: Order, context: DispatchContext) -> StepResult:
        if not self.client.enabled:
            return StepResult.skipped("tracking_disabled")
        if not order.customer_email:
            return StepResult.skipped("no_customer_email")

        ip_address = context.event.customer_ip if context.event else None
        response = await self.client.track_purchase(order, context.outcome, ip_address=ip_address)
        return StepResult.sent(event_id=response.get("event_id"), outcome=context.outcome)


class KlaviyoStep(_AnalyticsStep):
    name = "klaviyo"

    def __init__(self, client: Optional[KlaviyoClient] = None):
        self.client = client or KlaviyoClient()

    async def run(self, order: Order, context: DispatchContext) -> StepResult:
        if not self.client.enabled:
            return StepResult.skipped("tracking_disabled")
        if not order.customer_email:
            return StepResult.skipped("no_customer_email")

        if context.status == OrderStatus.COMPLETED:
            events = await self.client.track_placed_order(order)
        else:
            events = await self.client.track_order_failed(order, reason=context.decline_reason)
        return StepResult.sent(events=events, outcome=context.outcome)


# =============================================================================
# BACK OFFICE
# =============================================================================

class BackofficeStep(DispatchStep):
    """Create the order in the back office with resolved product identifiers."""

    name = "backoffice"

    def __init__(
        self,
        resolver: MappingResolver,
        add_ons: IAddOnRepository,
        client: Optional[BackofficeClient] = None,
    ):
        self.resolver = resolver
        self.add_ons = add_ons
        self.client = client or BackofficeClient()

    async def resolve_add_on_keys(self, order: Order) -> list[str]:
        keys: list[str] = []
        for selected in order.selected_add_ons:
            try:
                add_on = await self.add_ons.get(selected.add_on_id)
            except Exception as e:
                logger.warning("add_on_lookup_failed", add_on_id=selected.add_on_id, error=str(e))
                continue
            if add_on is None or not add_on.key:
                logger.warning("add_on_missing", add_on_id=selected.add_on_id, order_number=order.order_number)
                continue
            keys.append(add_on.key)
        return keys

    async def run(self, order: Order, context: DispatchContext) -> StepResult:
        product = await self.resolver.resolve_for_order(order)
        add_on_keys = await self.resolve_add_on_keys(order)

        payload = build_order_payload(
            order,
            product_id=product.product_id,
            variation_id=product.variation_id,
            add_on_keys=add_on_keys,
            currency=self.client.currency,
        )
        status = await self.client.post_order(payload)
        return StepResult.sent(
            http_status=status,
            product_id=product.product_id,
            variation_id=product.variation_id,
            mapping_source=product.source,
            add_on_keys=add_on_keys,
        )
