# coupons/__init__.py
from coupons.auto_apply import (
    AutoApplyCoupon,
    AutoApplyResult,
    BestCouponResult,
    CouponService,
    extract_url_coupon_code,
)
from coupons.calculation import DiscountCalculation, calculate_discount
from coupons.validation import CouponContext, CouponValidation, CouponValidator

__all__ = [
    "AutoApplyCoupon",
    "AutoApplyResult",
    "BestCouponResult",
    "CouponService",
    "extract_url_coupon_code",
    "DiscountCalculation",
    "calculate_discount",
    "CouponContext",
    "CouponValidation",
    "CouponValidator",
]
