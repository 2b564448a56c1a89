# pipeline/price_guard.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - PRICE RECONCILIATION GUARD
# ============================================================================
# The order keeps its price twice: root fields and a denormalized copy in
# metadata. Root is authoritative. A divergent metadata copy is rewritten
# in one patch and the anomaly is reported, never raised.
# ============================================================================

from typing import Optional

import structlog
from pydantic import BaseModel

from config import settings
from observability import IErrorReporter, StructlogErrorReporter
from pipeline.errors import PriceDivergence
from schemas import Order, utcnow
from storage import IOrderRepository


class PriceCheck(BaseModel):
    """Outcome of one reconciliation pass"""
    corrected: bool = False
    root_total: Optional[float] = None
    meta_total: Optional[float] = None
    difference: float = 0.0


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


class PriceGuard:
    """
    Detect and heal root/metadata price divergence.

    Example:
        guard = PriceGuard(orders)
        order, check = await guard.reconcile(order)
    """

    def __init__(
        self,
        orders: IOrderRepository,
        reporter: Optional[IErrorReporter] = None,
        tolerance: Optional[float] = None,
        fixed_by: Optional[str] = None,
    ):
        self.orders = orders
        self.reporter = reporter or StructlogErrorReporter()
        self.tolerance = settings.PRICE_TOLERANCE if tolerance is None else tolerance
        self.fixed_by = fixed_by or settings.price_fixed_by
        self._logger = structlog.get_logger(component="price_guard")

    def check(self, order: Order) -> PriceCheck:
        """Pure comparison; no writes."""
        root_total = _as_number(order.total_price)
        meta_total = _as_number(order.metadata.get("totalPrice"))

        if root_total is None or meta_total is None or meta_total <= 0:
            return PriceCheck(root_total=root_total, meta_total=meta_total)

        difference = abs(root_total - meta_total)
        return PriceCheck(
            corrected=difference > self.tolerance,
            root_total=root_total,
            meta_total=meta_total,
            difference=difference,
        )

    async def reconcile(self, order: Order) -> tuple[Order, PriceCheck]:
        """Return the (possibly patched) order and what was found."""
        result = self.check(order)
        if not result.corrected:
            return order, result

        patched = await self.orders.patch(
            order.id,
            metadata={
                "totalPrice": order.total_price,
                "originalPrice": order.purchase_price,
                "priceFixedAt": utcnow().isoformat(),
                "priceFixedBy": self.fixed_by,
            },
        )

        self._logger.warning(
            "price_divergence_corrected",
            order_number=order.order_number,
            root_total=result.root_total,
            meta_total=result.meta_total,
            difference=result.difference,
        )
        self.reporter.report(
            PriceDivergence(
                "Metadata total diverged from order total",
                order_number=order.order_number,
                root_total=result.root_total,
                meta_total=result.meta_total,
            ),
            order_number=order.order_number,
            severity="warning",
        )
        return patched, result
