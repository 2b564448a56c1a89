# pipeline/mapping_resolver.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - PRODUCT MAPPING RESOLVER
# ============================================================================
# (program, tier, platform, purchase type) -> back-office product and
# variation identifiers.
#
# Lookup order:
#   1. derive the tier from the account size when the order carries none
#   2. exact (program, tier, platform) mapping
#   3. legacy mapping: same platform, tier id ending in the sanitized size
#   4. zero identifiers plus a structured warning
#
# The purchase-type branch is applied to whichever mapping was found.
# ============================================================================

import re
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from observability import IErrorReporter, StructlogErrorReporter
from pipeline.errors import MappingUnresolved
from schemas import Order, ProductMapping, PurchaseType
from storage import IMappingRepository, IProgramRepository


class ResolvedProduct(BaseModel):
    product_id: int = 0
    variation_id: int = 0
    source: str = "unresolved"  # "exact" | "legacy" | "unresolved"
    branch: Optional[str] = None
    tier_id: Optional[str] = None
    mapping_id: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.source != "unresolved"


def normalize_account_size(size: str) -> str:
    """'$ 100,000' -> '100000'; '50k' -> '50K'"""
    return re.sub(r"[\s$,]", "", size or "").upper()


def sanitize_account_size(size: str) -> str:
    """'$100,000' -> '-100-000' for legacy tier-id suffix matching"""
    return re.sub(r"[^a-zA-Z0-9]", "-", size or "").lower()


def to_external_id(value: Any) -> int:
    """Identifiers are stored as text and emitted as integers; junk becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def select_branch(
    mapping: ProductMapping,
    purchase_type: PurchaseType,
    metadata: Optional[dict] = None,
) -> tuple[Optional[str], Optional[str], str]:
    """Return (product_id, variation_id, branch name) for the purchase type.

    A reset never falls back to the default product: without a reset product
    the ids are None.
    """
    metadata = metadata or {}

    if purchase_type == PurchaseType.RESET:
        if metadata.get("reset_product_type") == "funded" and mapping.reset_fee_funded_product_id:
            return (
                mapping.reset_fee_funded_product_id,
                mapping.reset_fee_funded_variation_id or mapping.variation_id,
                "reset_funded",
            )
        if mapping.reset_fee_product_id:
            return mapping.reset_fee_product_id, mapping.variation_id, "reset_evaluation"
        return None, None, "reset_unmapped"

    if purchase_type == PurchaseType.ACTIVATION and mapping.activation_product_id:
        return mapping.activation_product_id, mapping.variation_id, "activation"

    return mapping.product_id, mapping.variation_id, "default"


class MappingResolver:
    """
    Layered product mapping lookup. Never raises to the caller.

    Example:
        resolver = MappingResolver(mappings, programs)
        product = await resolver.resolve_for_order(order)
        # product.product_id == 0 when nothing matched
    """

    def __init__(
        self,
        mappings: IMappingRepository,
        programs: IProgramRepository,
        reporter: Optional[IErrorReporter] = None,
    ):
        self.mappings = mappings
        self.programs = programs
        self.reporter = reporter or StructlogErrorReporter()
        self._logger = structlog.get_logger(component="mapping_resolver")

    async def derive_tier_id(self, program_id: str, account_size: Optional[str]) -> Optional[str]:
        if not program_id or not account_size:
            return None
        program = await self.programs.get(program_id)
        if program is None:
            return None

        wanted = normalize_account_size(account_size)
        for tier in program.pricing_tiers:
            if normalize_account_size(tier.account_size) == wanted:
                return tier.id
        return None

    async def _legacy_lookup(
        self,
        program_id: str,
        platform_slug: Optional[str],
        account_size: Optional[str],
    ) -> Optional[ProductMapping]:
        if not account_size or not platform_slug:
            return None
        suffix = sanitize_account_size(account_size)
        for mapping in await self.mappings.list_for_program(program_id, platform_slug):
            if mapping.tier_id.lower().endswith(suffix):
                return mapping
        return None

    async def resolve(
        self,
        program_id: Optional[str],
        tier_id: Optional[str],
        account_size: Optional[str],
        platform_slug: Optional[str],
        purchase_type: PurchaseType = PurchaseType.ORIGINAL,
        metadata: Optional[dict] = None,
        order_number: Optional[str] = None,
    ) -> ResolvedProduct:
        log = self._logger.bind(order_number=order_number)

        try:
            if not program_id:
                return self._unresolved(log, program_id, tier_id, platform_slug, account_size, order_number)

            if not tier_id:
                tier_id = await self.derive_tier_id(program_id, account_size)
                if tier_id:
                    log.info("tier_derived", program_id=program_id, account_size=account_size, tier_id=tier_id)

            mapping = None
            source = "exact"
            if tier_id and platform_slug:
                mapping = await self.mappings.find(program_id, tier_id, platform_slug)

            if mapping is None:
                mapping = await self._legacy_lookup(program_id, platform_slug, account_size)
                source = "legacy"

            if mapping is None:
                return self._unresolved(log, program_id, tier_id, platform_slug, account_size, order_number)

            product_id, variation_id, branch = select_branch(mapping, purchase_type, metadata)
            if product_id is None:
                log.warning("mapping_branch_missing", mapping_id=mapping.id, branch=branch)
                return self._unresolved(log, program_id, tier_id, platform_slug, account_size, order_number)

            resolved = ResolvedProduct(
                product_id=to_external_id(product_id),
                variation_id=to_external_id(variation_id),
                source=source,
                branch=branch,
                tier_id=tier_id or mapping.tier_id,
                mapping_id=mapping.id,
            )
            log.info(
                "mapping_resolved",
                source=source,
                branch=branch,
                product_id=resolved.product_id,
                variation_id=resolved.variation_id,
            )
            return resolved

        except Exception as e:
            log.error("mapping_lookup_failed", error=str(e), error_type=type(e).__name__)
            self.reporter.report(e, order_number=order_number, stage="mapping_resolver")
            return ResolvedProduct(tier_id=tier_id)

    async def resolve_for_order(self, order: Order) -> ResolvedProduct:
        return await self.resolve(
            program_id=order.program_id,
            tier_id=order.tier_id or order.metadata.get("tierId"),
            account_size=order.account_size,
            platform_slug=order.platform_slug,
            purchase_type=order.purchase_type,
            metadata=order.metadata,
            order_number=order.order_number,
        )

    def _unresolved(self, log, program_id, tier_id, platform_slug, account_size, order_number) -> ResolvedProduct:
        log.warning(
            "mapping_unresolved",
            program_id=program_id,
            tier_id=tier_id,
            platform=platform_slug,
            account_size=account_size,
        )
        self.reporter.report(
            MappingUnresolved(
                "No product mapping for combination",
                program_id=program_id,
                tier_id=tier_id,
                platform=platform_slug,
                account_size=account_size,
            ),
            order_number=order_number,
            severity="warning",
        )
        return ResolvedProduct(tier_id=tier_id)

    # =========================================================================
    # CATALOGUE LOOKUPS
    # =========================================================================

    async def find_mapping_by_product_id(
        self, product_id: str
    ) -> Optional[tuple[ProductMapping, PurchaseType]]:
        """Reverse lookup from a back-office product id to its mapping."""
        product_id = str(product_id)
        for mapping in await self.mappings.list_all():
            if mapping.variation_id == product_id:
                return mapping, PurchaseType.ORIGINAL
            if product_id in (mapping.reset_fee_product_id, mapping.reset_fee_funded_product_id):
                return mapping, PurchaseType.RESET
            if mapping.activation_product_id == product_id:
                return mapping, PurchaseType.ACTIVATION
        return None

    async def available_platforms(self, program_id: str) -> list[str]:
        seen: list[str] = []
        for mapping in await self.mappings.list_for_program(program_id):
            if mapping.product_id and mapping.variation_id and mapping.platform_id not in seen:
                seen.append(mapping.platform_id)
        return seen

    async def available_tiers(self, program_id: str, platform_id: str) -> list[str]:
        seen: list[str] = []
        for mapping in await self.mappings.list_for_program(program_id, platform_id):
            if mapping.product_id and mapping.variation_id and mapping.tier_id not in seen:
                seen.append(mapping.tier_id)
        return seen

    async def validate_purchase_combination(self, program_id: str, tier_id: str, platform_id: str) -> bool:
        mapping = await self.mappings.find(program_id, tier_id, platform_id)
        return bool(mapping and mapping.product_id and mapping.variation_id)
