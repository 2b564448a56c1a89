# storage/repositories.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - REPOSITORIES
# ============================================================================
# Persistence interfaces plus in-memory implementations. PostgreSQL
# implementations for the hot-path stores live in storage/postgres.py.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from schemas import (
    AddOn,
    Coupon,
    CouponStatus,
    CouponUsage,
    IntegrationOutcome,
    Order,
    OrderStatus,
    ProductMapping,
    Program,
    utcnow,
)


# =============================================================================
# PERSISTENCE INTERFACES
# =============================================================================

class IOrderRepository(ABC):
    """Order store. `patch` is the only mutation used by the webhook path."""

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def save(self, order: Order) -> Order:
        pass

    @abstractmethod
    async def patch(
        self,
        order_id: str,
        fields: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Order:
        """Atomically apply root-field updates and a metadata merge."""
        pass

    @abstractmethod
    async def list_by_email(
        self,
        email: str,
        statuses: Optional[list[OrderStatus]] = None,
    ) -> list[Order]:
        """Orders for a customer email, oldest first."""
        pass


class IIntegrationLedger(ABC):
    """Append-only record of downstream step outcomes"""

    @abstractmethod
    async def append(self, outcome: IntegrationOutcome) -> None:
        pass

    @abstractmethod
    async def latest(self, order_id: str, integration: str) -> Optional[IntegrationOutcome]:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> list[IntegrationOutcome]:
        pass


class IMappingRepository(ABC):

    @abstractmethod
    async def save(self, mapping: ProductMapping) -> ProductMapping:
        pass

    @abstractmethod
    async def find(self, program_id: str, tier_id: str, platform_id: str) -> Optional[ProductMapping]:
        pass

    @abstractmethod
    async def list_for_program(
        self,
        program_id: str,
        platform_id: Optional[str] = None,
    ) -> list[ProductMapping]:
        pass

    @abstractmethod
    async def list_all(self) -> list[ProductMapping]:
        pass


class IProgramRepository(ABC):

    @abstractmethod
    async def get(self, program_id: str) -> Optional[Program]:
        pass

    @abstractmethod
    async def save(self, program: Program) -> Program:
        pass


class IAddOnRepository(ABC):

    @abstractmethod
    async def get(self, add_on_id: str) -> Optional[AddOn]:
        pass

    @abstractmethod
    async def save(self, add_on: AddOn) -> AddOn:
        pass


class ICouponRepository(ABC):

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Coupon]:
        pass

    @abstractmethod
    async def save(self, coupon: Coupon) -> Coupon:
        pass

    @abstractmethod
    async def find_auto_apply_candidates(self, now: datetime, limit: int = 100) -> list[Coupon]:
        """Active auto-apply coupons whose validity window contains `now`."""
        pass


class ICouponUsageRepository(ABC):

    @abstractmethod
    async def record(self, usage: CouponUsage) -> None:
        pass

    @abstractmethod
    async def count(self, coupon_id: str, customer_email: Optional[str] = None) -> int:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryOrderRepository(IOrderRepository):
    """Lock-guarded in-memory order repository"""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self._orders.get(order_id)

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        async with self._lock:
            for order in self._orders.values():
                if order.order_number == order_number:
                    return order
            return None

    async def save(self, order: Order) -> Order:
        async with self._lock:
            self._orders[order.id] = order
            return order

    async def patch(
        self,
        order_id: str,
        fields: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Order:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise KeyError(order_id)

            update = dict(fields or {})
            if metadata:
                update["metadata"] = {**current.metadata, **metadata}
            update["updated_at"] = utcnow()

            patched = current.model_copy(update=update, deep=True)
            self._orders[order_id] = patched
            return patched

    async def list_by_email(
        self,
        email: str,
        statuses: Optional[list[OrderStatus]] = None,
    ) -> list[Order]:
        needle = email.strip().lower()
        async with self._lock:
            matches = [
                o for o in self._orders.values()
                if (o.customer_email or "").strip().lower() == needle
                and (statuses is None or o.status in statuses)
            ]
        return sorted(matches, key=lambda o: o.created_at)


class InMemoryIntegrationLedger(IIntegrationLedger):
    """Append-only ledger"""

    def __init__(self):
        self._entries: list[IntegrationOutcome] = []
        self._by_order: dict[str, list[IntegrationOutcome]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, outcome: IntegrationOutcome) -> None:
        async with self._lock:
            self._entries.append(outcome)
            self._by_order[outcome.order_id].append(outcome)

    async def latest(self, order_id: str, integration: str) -> Optional[IntegrationOutcome]:
        async with self._lock:
            for outcome in reversed(self._by_order.get(order_id, [])):
                if outcome.integration == integration:
                    return outcome
            return None

    async def list_for_order(self, order_id: str) -> list[IntegrationOutcome]:
        async with self._lock:
            return list(self._by_order.get(order_id, []))


class InMemoryMappingRepository(IMappingRepository):

    def __init__(self, mappings: Optional[list[ProductMapping]] = None):
        self._mappings: dict[tuple[str, str, str], ProductMapping] = {}
        self._lock = asyncio.Lock()
        for mapping in mappings or []:
            self._mappings[(mapping.program_id, mapping.tier_id, mapping.platform_id)] = mapping

    async def save(self, mapping: ProductMapping) -> ProductMapping:
        async with self._lock:
            self._mappings[(mapping.program_id, mapping.tier_id, mapping.platform_id)] = mapping
            return mapping

    async def find(self, program_id: str, tier_id: str, platform_id: str) -> Optional[ProductMapping]:
        async with self._lock:
            return self._mappings.get((program_id, tier_id, platform_id))

    async def list_for_program(
        self,
        program_id: str,
        platform_id: Optional[str] = None,
    ) -> list[ProductMapping]:
        async with self._lock:
            return [
                m for m in self._mappings.values()
                if m.program_id == program_id
                and (platform_id is None or m.platform_id == platform_id)
            ]

    async def list_all(self) -> list[ProductMapping]:
        async with self._lock:
            return list(self._mappings.values())


class InMemoryProgramRepository(IProgramRepository):

    def __init__(self, programs: Optional[list[Program]] = None):
        self._programs: dict[str, Program] = {p.id: p for p in programs or []}
        self._lock = asyncio.Lock()

    async def get(self, program_id: str) -> Optional[Program]:
        async with self._lock:
            return self._programs.get(program_id)

    async def save(self, program: Program) -> Program:
        async with self._lock:
            self._programs[program.id] = program
            return program


class InMemoryAddOnRepository(IAddOnRepository):

    def __init__(self, add_ons: Optional[list[AddOn]] = None):
        self._add_ons: dict[str, AddOn] = {a.id: a for a in add_ons or []}
        self._lock = asyncio.Lock()

    async def get(self, add_on_id: str) -> Optional[AddOn]:
        async with self._lock:
            return self._add_ons.get(add_on_id)

    async def save(self, add_on: AddOn) -> AddOn:
        async with self._lock:
            self._add_ons[add_on.id] = add_on
            return add_on


class InMemoryCouponRepository(ICouponRepository):

    def __init__(self, coupons: Optional[list[Coupon]] = None):
        self._coupons: dict[str, Coupon] = {c.code: c for c in coupons or []}
        self._lock = asyncio.Lock()

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        async with self._lock:
            return self._coupons.get(code.strip().upper())

    async def save(self, coupon: Coupon) -> Coupon:
        async with self._lock:
            self._coupons[coupon.code] = coupon
            return coupon

    async def find_auto_apply_candidates(self, now: datetime, limit: int = 100) -> list[Coupon]:
        async with self._lock:
            candidates = [
                c for c in self._coupons.values()
                if c.status == CouponStatus.ACTIVE
                and c.auto_apply
                and c.valid_from <= now
                and (c.valid_to is None or c.valid_to > now)
            ]
        candidates.sort(key=lambda c: c.auto_apply_priority, reverse=True)
        return candidates[:limit]


class InMemoryCouponUsageRepository(ICouponUsageRepository):

    def __init__(self):
        self._usages: list[CouponUsage] = []
        self._lock = asyncio.Lock()

    async def record(self, usage: CouponUsage) -> None:
        async with self._lock:
            self._usages.append(usage)

    async def count(self, coupon_id: str, customer_email: Optional[str] = None) -> int:
        email = customer_email.strip().lower() if customer_email else None
        async with self._lock:
            return sum(
                1 for u in self._usages
                if u.coupon_id == coupon_id
                and (email is None or (u.customer_email or "").strip().lower() == email)
            )
