# schemas/commerce.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - COMMERCE DOMAIN MODELS
# ============================================================================
# Orders, catalogue configuration (programs, product mappings, add-ons),
# coupons and the integration outcome ledger.
# ============================================================================

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PurchaseType(str, Enum):
    ORIGINAL = "original"
    RESET = "reset"
    ACTIVATION = "activation"


class OutcomeStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    SCHEDULED = "scheduled"
    INACTIVE = "inactive"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class RestrictionType(str, Enum):
    ALL = "all"
    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"


# ============================================================================
# SECTION 2: ORDER
# ============================================================================

class BillingAddress(BaseModel):
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class SelectedAddOn(BaseModel):
    add_on_id: str
    percentage: Optional[float] = None


class PaymentDetails(BaseModel):
    """Gateway-side details recorded when a payment event is applied"""
    charge_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    psp_name: Optional[str] = None
    mid_alias: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    card_masked: Optional[str] = None
    customer_email: Optional[str] = None
    customer_ip: Optional[str] = None
    decline_reason: Optional[str] = None
    webhook_type: Optional[str] = None
    gateway_created_at: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)


class Order(BaseModel):
    """Canonical purchase record"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_number: str

    purchase_price: Optional[float] = None
    total_price: Optional[float] = None
    currency: str = "USD"
    discount_code: Optional[str] = None

    purchase_type: PurchaseType = PurchaseType.ORIGINAL
    is_in_app_purchase: bool = False

    program_id: Optional[str] = None
    program_name: Optional[str] = None
    platform_slug: Optional[str] = None
    platform_name: Optional[str] = None
    account_size: Optional[str] = None
    tier_id: Optional[str] = None
    selected_add_ons: list[SelectedAddOn] = Field(default_factory=list)

    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    billing_address: BillingAddress = Field(default_factory=BillingAddress)

    affiliate_id: Optional[str] = None
    affiliate_username: Optional[str] = None

    status: OrderStatus = OrderStatus.PENDING
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment: Optional[PaymentDetails] = None
    notes: Optional[str] = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.COMPLETED

    @property
    def first_name(self) -> str:
        parts = (self.customer_name or "").split(" ")
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        return " ".join((self.customer_name or "").split(" ")[1:])


# ============================================================================
# SECTION 3: CATALOGUE CONFIGURATION
# ============================================================================

class PricingTier(BaseModel):
    id: str
    account_size: str


class Program(BaseModel):
    id: str
    name: str
    pricing_tiers: list[PricingTier] = Field(default_factory=list)


class ProductMapping(BaseModel):
    """(program, tier, platform) -> back-office product identifiers"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    program_id: str
    tier_id: str
    platform_id: str
    product_id: Optional[str] = None
    variation_id: Optional[str] = None
    reset_fee_product_id: Optional[str] = None
    reset_fee_funded_product_id: Optional[str] = None
    reset_fee_funded_variation_id: Optional[str] = None
    activation_product_id: Optional[str] = None


class AddOn(BaseModel):
    id: str
    key: str
    name: str = ""


# ============================================================================
# SECTION 4: COUPONS
# ============================================================================

class AccountSizeDiscount(BaseModel):
    account_size: str
    discount_value: float


class Coupon(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    code: str
    status: CouponStatus = CouponStatus.ACTIVE

    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = 0
    account_size_discounts: list[AccountSizeDiscount] = Field(default_factory=list)
    max_discount_amount: Optional[float] = None

    restriction_type: RestrictionType = RestrictionType.ALL
    applicable_programs: list[str] = Field(default_factory=list)
    excluded_programs: list[str] = Field(default_factory=list)

    affiliate_id: Optional[str] = None

    auto_apply: bool = False
    auto_apply_priority: float = 0
    prevent_manual_entry: bool = False
    auto_apply_message: Optional[str] = None

    total_usage_limit: Optional[int] = None
    usage_per_user: Optional[int] = None

    valid_from: datetime = Field(default_factory=utcnow)
    valid_to: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class CouponUsage(BaseModel):
    coupon_id: str
    customer_email: Optional[str] = None
    order_number: Optional[str] = None
    used_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# SECTION 5: INTEGRATION LEDGER
# ============================================================================

class IntegrationOutcome(BaseModel):
    """Append-only record of one downstream step for one order"""
    outcome_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    order_number: Optional[str] = None
    integration: str
    status: OutcomeStatus
    reason: Optional[str] = None
    error: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=utcnow)
