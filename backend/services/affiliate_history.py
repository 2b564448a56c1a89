# services/affiliate_history.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - CUSTOMER AFFILIATE HISTORY
# ============================================================================
# Reads a customer's previous orders to answer two questions:
#   - which affiliate owns this customer (first attributed order)
#   - is the customer still inside the attribution window (latest one)
# Shared by the commission step and the coupon affiliate-binding rule.
# ============================================================================

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel

from config import settings
from schemas import Order, OrderStatus, utcnow
from storage import IOrderRepository

logger = structlog.get_logger(component="affiliate_history")

HISTORY_STATUSES = [OrderStatus.PENDING, OrderStatus.COMPLETED]


class CustomerAffiliateInfo(BaseModel):
    is_new_customer: bool
    has_previous_orders: bool
    existing_affiliate_id: Optional[str] = None
    existing_affiliate_username: Optional[str] = None
    first_affiliated_order_number: Optional[str] = None
    has_any_affiliate_association: bool = False
    is_within_lifetime_window: bool = False
    days_since_last_purchase: Optional[float] = None
    last_purchase_date: Optional[datetime] = None


def _is_attributed(order: Order) -> bool:
    return bool(order.affiliate_id or order.affiliate_username)


async def get_customer_affiliate_info(
    orders: IOrderRepository,
    customer_email: str,
    current_order_number: Optional[str] = None,
    lifetime_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> CustomerAffiliateInfo:
    """
    Summarize a customer's affiliate attribution history.

    On repository failure the answer is conservative: an existing customer
    with no known affiliate, outside any window.
    """
    lifetime_days = settings.AFFILIATE_LIFETIME_DAYS if lifetime_days is None else lifetime_days
    now = now or utcnow()

    try:
        history = [
            o for o in await orders.list_by_email(customer_email, statuses=HISTORY_STATUSES)
            if o.order_number != current_order_number
        ]
    except Exception as e:
        logger.error("affiliate_history_failed", customer_email=customer_email, error=str(e))
        return CustomerAffiliateInfo(is_new_customer=False, has_previous_orders=True)

    attributed = [o for o in history if _is_attributed(o)]
    first = attributed[0] if attributed else None
    latest = attributed[-1] if attributed else None

    days_since = None
    within_window = False
    if latest is not None:
        days_since = (now - latest.created_at).total_seconds() / 86400
        within_window = days_since <= lifetime_days

    info = CustomerAffiliateInfo(
        is_new_customer=not history,
        has_previous_orders=bool(history),
        existing_affiliate_id=first.affiliate_id if first else None,
        existing_affiliate_username=first.affiliate_username if first else None,
        first_affiliated_order_number=first.order_number if first else None,
        has_any_affiliate_association=first is not None,
        is_within_lifetime_window=within_window,
        days_since_last_purchase=days_since,
        last_purchase_date=latest.created_at if latest else None,
    )

    logger.info(
        "affiliate_history_loaded",
        customer_email=customer_email,
        previous_orders=len(history),
        existing_affiliate_id=info.existing_affiliate_id,
        within_window=within_window,
        days_since_last_purchase=days_since,
    )
    return info
