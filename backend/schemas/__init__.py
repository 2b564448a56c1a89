# schemas/__init__.py
from schemas.commerce import (
    AccountSizeDiscount,
    AddOn,
    BillingAddress,
    Coupon,
    CouponStatus,
    CouponUsage,
    DiscountType,
    IntegrationOutcome,
    Order,
    OrderStatus,
    OutcomeStatus,
    PaymentDetails,
    PricingTier,
    ProductMapping,
    Program,
    PurchaseType,
    RestrictionType,
    SelectedAddOn,
    utcnow,
)

__all__ = [
    "AccountSizeDiscount",
    "AddOn",
    "BillingAddress",
    "Coupon",
    "CouponStatus",
    "CouponUsage",
    "DiscountType",
    "IntegrationOutcome",
    "Order",
    "OrderStatus",
    "OutcomeStatus",
    "PaymentDetails",
    "PricingTier",
    "ProductMapping",
    "Program",
    "PurchaseType",
    "RestrictionType",
    "SelectedAddOn",
    "utcnow",
]
