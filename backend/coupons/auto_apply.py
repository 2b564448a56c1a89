# coupons/auto_apply.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - COUPON AUTO-APPLY RESOLVER
# ============================================================================
# Entry points return {success, ...} envelopes and never raise.
# Auto-apply candidates go through the shared rule set only; the
# manual-entry gate belongs to the typed-code path.
# ============================================================================

import re
from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from config import settings
from coupons.validation import CouponContext, CouponValidation, CouponValidator
from schemas import Coupon, DiscountType, utcnow
from storage import ICouponRepository

URL_PARAM_NAMES = ("coupon", "code", "discount", "promo")
URL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$", re.IGNORECASE)


class AutoApplyDiscount(BaseModel):
    type: DiscountType
    value: float


class AutoApplyCoupon(BaseModel):
    coupon_id: str
    code: str
    message: Optional[str] = None
    priority: float = 0
    discount: AutoApplyDiscount
    discount_amount: Optional[float] = None
    final_price: Optional[float] = None


class AutoApplyResult(BaseModel):
    success: bool
    coupons: list[AutoApplyCoupon] = Field(default_factory=list)
    error: Optional[str] = None


class BestCouponResult(BaseModel):
    success: bool
    coupon: Optional[AutoApplyCoupon] = None
    error: Optional[str] = None


def extract_url_coupon_code(url_params: dict[str, str]) -> Optional[str]:
    """Named params first, then any value shaped like a code."""
    for name in URL_PARAM_NAMES:
        value = url_params.get(name)
        if value:
            return value.strip().upper()
    for value in url_params.values():
        if isinstance(value, str) and URL_CODE_PATTERN.match(value):
            return value.upper()
    return None


def _to_auto_apply(coupon: Coupon, validation: CouponValidation) -> AutoApplyCoupon:
    discount = validation.discount
    return AutoApplyCoupon(
        coupon_id=coupon.id,
        code=coupon.code,
        message=coupon.auto_apply_message,
        priority=coupon.auto_apply_priority or 0,
        discount=AutoApplyDiscount(type=coupon.discount_type, value=validation.discount_value),
        discount_amount=discount.discount_amount if discount else None,
        final_price=discount.final_price if discount else None,
    )


class CouponService:
    """
    Example:
        service = CouponService(coupons, validator)
        best = await service.get_best_auto_apply_coupon(
            CouponContext(program_id="12", account_size="$50,000", order_amount=299)
        )
    """

    def __init__(
        self,
        coupons: ICouponRepository,
        validator: CouponValidator,
        query_limit: Optional[int] = None,
    ):
        self.coupons = coupons
        self.validator = validator
        self.query_limit = query_limit or settings.COUPON_QUERY_LIMIT
        self._logger = structlog.get_logger(component="coupon_service")

    async def validate_coupon(
        self,
        code: str,
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        """Typed-code path, including the manual-entry gate."""
        try:
            return await self.validator.validate_code(code, context, now=now)
        except Exception as e:
            self._logger.error("coupon_validation_failed", code=code, error=str(e), error_type=type(e).__name__)
            return CouponValidation.reject("error", "Failed to validate coupon")

    async def find_auto_apply_coupons(
        self,
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> AutoApplyResult:
        now = now or utcnow()
        try:
            candidates = await self.coupons.find_auto_apply_candidates(now, limit=self.query_limit)

            matches: list[AutoApplyCoupon] = []
            for coupon in candidates:
                validation = await self.validator.check_rules(coupon, context, now=now)
                if not validation.valid:
                    self._logger.debug("auto_apply_rejected", code=coupon.code, reason=validation.reason)
                    continue
                matches.append(_to_auto_apply(coupon, validation))

            matches.sort(key=lambda c: c.priority, reverse=True)
            self._logger.info(
                "auto_apply_resolved",
                program_id=context.program_id,
                candidates=len(candidates),
                matches=[c.code for c in matches],
            )
            return AutoApplyResult(success=True, coupons=matches)

        except Exception as e:
            self._logger.error("auto_apply_failed", error=str(e), error_type=type(e).__name__)
            return AutoApplyResult(success=False, error="Failed to find auto-apply coupons")

    async def get_best_auto_apply_coupon(
        self,
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> BestCouponResult:
        result = await self.find_auto_apply_coupons(context, now=now)
        if not result.success:
            return BestCouponResult(success=False, error="Failed to get auto-apply coupon")
        return BestCouponResult(success=True, coupon=result.coupons[0] if result.coupons else None)

    async def check_url_coupon(
        self,
        url_params: dict[str, str],
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> BestCouponResult:
        """
        A code carried in the landing URL is treated as typed by the customer.
        When it is missing or rejected, the best auto-apply coupon is offered.
        """
        try:
            code = extract_url_coupon_code(url_params or {})
            if code:
                validation = await self.validator.validate_code(code, context, now=now)
                if validation.valid:
                    return BestCouponResult(success=True, coupon=_to_auto_apply(validation.coupon, validation))
                self._logger.info("url_coupon_rejected", code=code, reason=validation.reason)

            return await self.get_best_auto_apply_coupon(context, now=now)

        except Exception as e:
            self._logger.error("url_coupon_failed", error=str(e), error_type=type(e).__name__)
            return BestCouponResult(success=False, error="Failed to check URL coupon")

    async def can_manually_enter_coupon(self, code: str) -> bool:
        try:
            coupon = await self.coupons.get_by_code(code)
        except Exception as e:
            self._logger.error("coupon_lookup_failed", error=str(e))
            return False
        if coupon is None:
            return False
        return not (coupon.auto_apply and coupon.prevent_manual_entry)
