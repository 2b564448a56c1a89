# storage/__init__.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - STORAGE MODULE
# ============================================================================
# Repository interfaces, their in-memory implementations and the catalogue
# file loader
# ============================================================================

from storage.repositories import (
    IAddOnRepository,
    ICouponRepository,
    ICouponUsageRepository,
    IIntegrationLedger,
    IMappingRepository,
    IOrderRepository,
    IProgramRepository,
    InMemoryAddOnRepository,
    InMemoryCouponRepository,
    InMemoryCouponUsageRepository,
    InMemoryIntegrationLedger,
    InMemoryMappingRepository,
    InMemoryOrderRepository,
    InMemoryProgramRepository,
)
from storage.catalogue import Catalogue, load_catalogue

__all__ = [
    # Interfaces
    "IAddOnRepository",
    "ICouponRepository",
    "ICouponUsageRepository",
    "IIntegrationLedger",
    "IMappingRepository",
    "IOrderRepository",
    "IProgramRepository",
    # In-memory
    "InMemoryAddOnRepository",
    "InMemoryCouponRepository",
    "InMemoryCouponUsageRepository",
    "InMemoryIntegrationLedger",
    "InMemoryMappingRepository",
    "InMemoryOrderRepository",
    "InMemoryProgramRepository",
    # Catalogue file
    "Catalogue",
    "load_catalogue",
]
