# services/__init__.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - SERVICES MODULE
# ============================================================================
# Outbound integration clients and customer history lookups
# ============================================================================

from services.affiliate_client import Affiliate, AffiliateClient, Referral
from services.affiliate_history import CustomerAffiliateInfo, get_customer_affiliate_info
from services.backoffice_client import BackofficeClient, build_order_payload, format_amount
from services.hyros_client import HyrosClient, build_purchase_event
from services.klaviyo_client import KlaviyoClient

__all__ = [
    # Commission tracking
    "Affiliate",
    "AffiliateClient",
    "Referral",
    "CustomerAffiliateInfo",
    "get_customer_affiliate_info",
    # Back office
    "BackofficeClient",
    "build_order_payload",
    "format_amount",
    # Analytics
    "HyrosClient",
    "build_purchase_event",
    "KlaviyoClient",
]
