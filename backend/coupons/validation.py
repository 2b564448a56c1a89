# coupons/validation.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - COUPON VALIDATION
# ============================================================================
# Two entry paths share one rule set:
#   validate_code()  manual entry: lookup by code, then the manual-entry gate
#   check_rules()    shared rules, also run for every auto-apply candidate
#
# Rule order: status -> window -> affiliate binding -> program restriction
#             -> usage limits -> account-size discount value
# ============================================================================

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel

from coupons.calculation import DiscountCalculation, calculate_discount
from schemas import Coupon, CouponStatus, RestrictionType, utcnow
from services.affiliate_history import get_customer_affiliate_info
from storage import ICouponRepository, ICouponUsageRepository, IOrderRepository

logger = structlog.get_logger(component="coupon_validation")


class CouponContext(BaseModel):
    """Order context a coupon is validated against"""
    program_id: Optional[str] = None
    account_size: Optional[str] = None
    order_amount: Optional[float] = None
    customer_email: Optional[str] = None


class CouponValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    coupon: Optional[Coupon] = None
    discount_value: Optional[float] = None
    discount: Optional[DiscountCalculation] = None

    @classmethod
    def reject(cls, reason: str, error: str, coupon: Optional[Coupon] = None) -> "CouponValidation":
        return cls(valid=False, reason=reason, error=error, coupon=coupon)


def discount_value_for_account_size(coupon: Coupon, account_size: Optional[str]) -> float:
    """Per-size override if configured, else the coupon's base value."""
    if account_size:
        for override in coupon.account_size_discounts:
            if override.account_size == account_size:
                return override.discount_value
    return coupon.discount_value


class CouponValidator:

    def __init__(
        self,
        coupons: ICouponRepository,
        usages: ICouponUsageRepository,
        orders: IOrderRepository,
    ):
        self.coupons = coupons
        self.usages = usages
        self.orders = orders

    async def validate_code(
        self,
        code: str,
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        """Manual entry path."""
        coupon = await self.coupons.get_by_code((code or "").strip().upper())
        if coupon is None:
            return CouponValidation.reject("not_found", "Invalid coupon code")

        if coupon.auto_apply and coupon.prevent_manual_entry:
            return CouponValidation.reject(
                "manual_entry_blocked",
                "This coupon code cannot be entered manually",
                coupon,
            )

        return await self.check_rules(coupon, context, now=now)

    async def check_rules(
        self,
        coupon: Coupon,
        context: CouponContext,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        now = now or utcnow()
        log = logger.bind(coupon_code=coupon.code, program_id=context.program_id)

        if coupon.status != CouponStatus.ACTIVE:
            return CouponValidation.reject("inactive", "This coupon is not active", coupon)

        if coupon.valid_from > now:
            return CouponValidation.reject("not_yet_valid", "This coupon is not yet valid", coupon)

        if coupon.valid_to is not None and now > coupon.valid_to:
            return CouponValidation.reject("expired", "This coupon has expired", coupon)

        # Binding can only be checked once the customer is known
        if coupon.affiliate_id and context.customer_email:
            info = await get_customer_affiliate_info(self.orders, context.customer_email, now=now)
            if info.existing_affiliate_id and str(info.existing_affiliate_id) != str(coupon.affiliate_id):
                log.info(
                    "coupon_affiliate_conflict",
                    existing_affiliate_id=info.existing_affiliate_id,
                    coupon_affiliate_id=coupon.affiliate_id,
                )
                return CouponValidation.reject(
                    "affiliate_conflict",
                    "This coupon is not applicable as you are bound to another affiliate.",
                    coupon,
                )

        program_check = self._check_program(coupon, context.program_id)
        if program_check is not None:
            return program_check

        if coupon.total_usage_limit:
            used = await self.usages.count(coupon.id)
            if used >= coupon.total_usage_limit:
                return CouponValidation.reject(
                    "usage_limit_reached", "This coupon has reached its usage limit", coupon
                )

        if coupon.usage_per_user and context.customer_email:
            used = await self.usages.count(coupon.id, customer_email=context.customer_email)
            if used >= coupon.usage_per_user:
                return CouponValidation.reject(
                    "user_usage_limit_reached",
                    "You have already used this coupon the maximum number of times",
                    coupon,
                )

        value = discount_value_for_account_size(coupon, context.account_size)
        discount = None
        if context.order_amount is not None:
            discount = calculate_discount(
                context.order_amount,
                coupon.discount_type,
                value,
                max_discount_amount=coupon.max_discount_amount,
            )

        return CouponValidation(valid=True, coupon=coupon, discount_value=value, discount=discount)

    @staticmethod
    def _check_program(coupon: Coupon, program_id: Optional[str]) -> Optional[CouponValidation]:
        if coupon.restriction_type == RestrictionType.ALL or not program_id:
            return None

        if coupon.restriction_type == RestrictionType.WHITELIST:
            if program_id not in {str(p) for p in coupon.applicable_programs}:
                return CouponValidation.reject(
                    "program_not_eligible",
                    "This coupon is not valid for the selected program",
                    coupon,
                )

        if coupon.restriction_type == RestrictionType.BLACKLIST:
            if program_id in {str(p) for p in coupon.excluded_programs}:
                return CouponValidation.reject(
                    "program_excluded",
                    "This coupon cannot be used with the selected program",
                    coupon,
                )
        return None
