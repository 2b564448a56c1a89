"""Product mapping resolver tests"""
import asyncio

from pipeline.errors import MappingUnresolved
from pipeline.mapping_resolver import (
    MappingResolver,
    normalize_account_size,
    sanitize_account_size,
    select_branch,
    to_external_id,
)
from schemas import PricingTier, ProductMapping, Program, PurchaseType
from storage import InMemoryMappingRepository, InMemoryProgramRepository


def _mapping(**overrides) -> ProductMapping:
    values = {
        "program_id": "prog_1",
        "tier_id": "tier_50k",
        "platform_id": "mt5",
        "product_id": "101",
        "variation_id": "201",
        "reset_fee_product_id": "301",
        "reset_fee_funded_product_id": "401",
        "reset_fee_funded_variation_id": "402",
        "activation_product_id": "501",
    }
    values.update(overrides)
    return ProductMapping(**values)


def _resolver(mappings, reporter, programs=None) -> MappingResolver:
    program = Program(
        id="prog_1",
        name="Evaluation Challenge",
        pricing_tiers=[
            PricingTier(id="tier_50k", account_size="$50,000"),
            PricingTier(id="tier_100k", account_size="$100,000"),
        ],
    )
    return MappingResolver(
        InMemoryMappingRepository(mappings),
        InMemoryProgramRepository(programs if programs is not None else [program]),
        reporter=reporter,
    )


def test_exact_mapping_resolves_default_branch(make_order, reporter):
    """An exact (program, tier, platform) hit yields the main product"""

    resolver = _resolver([_mapping()], reporter)
    product = asyncio.run(resolver.resolve_for_order(make_order()))

    assert product.source == "exact"
    assert product.branch == "default"
    assert (product.product_id, product.variation_id) == (101, 201)
    assert reporter.reports == []


def test_tier_is_derived_from_account_size(make_order, reporter):
    """An order without a tier id is matched through the program's pricing tiers"""

    resolver = _resolver([_mapping(tier_id="tier_100k", product_id="111", variation_id="211")], reporter)
    order = make_order(tier_id=None, account_size="$100,000")
    product = asyncio.run(resolver.resolve_for_order(order))

    assert product.source == "exact"
    assert product.tier_id == "tier_100k"
    assert product.product_id == 111


def test_metadata_tier_id_is_used_when_root_is_missing(make_order, reporter):
    """Older orders keep the tier only in metadata"""

    resolver = _resolver([_mapping()], reporter, programs=[])
    order = make_order(tier_id=None, metadata={"tierId": "tier_50k"})
    product = asyncio.run(resolver.resolve_for_order(order))

    assert product.source == "exact"
    assert product.product_id == 101


def test_legacy_mapping_matches_sanitized_size_suffix(make_order, reporter):
    """Legacy tier ids end in the sanitized account size"""

    legacy = _mapping(tier_id="legacy-tier--50-000", product_id="901", variation_id="902")
    resolver = _resolver([legacy], reporter, programs=[])
    order = make_order(tier_id=None, account_size="$50,000")
    product = asyncio.run(resolver.resolve_for_order(order))

    assert product.source == "legacy"
    assert (product.product_id, product.variation_id) == (901, 902)


def test_unresolved_mapping_returns_zero_ids_and_reports(make_order, reporter):
    """No mapping at all is a warning, never an exception"""

    resolver = _resolver([], reporter)
    product = asyncio.run(resolver.resolve_for_order(make_order(platform_slug="ctrader")))

    assert not product.resolved
    assert (product.product_id, product.variation_id) == (0, 0)
    assert len(reporter.of_type(MappingUnresolved)) == 1


def test_purchase_type_branches():
    """Reset and activation purchases use their own product ids"""

    mapping = _mapping()

    assert select_branch(mapping, PurchaseType.ORIGINAL) == ("101", "201", "default")
    assert select_branch(mapping, PurchaseType.RESET) == ("301", "201", "reset_evaluation")
    assert select_branch(mapping, PurchaseType.RESET, {"reset_product_type": "funded"}) == (
        "401", "402", "reset_funded"
    )
    assert select_branch(mapping, PurchaseType.ACTIVATION) == ("501", "201", "activation")


def test_funded_reset_without_funded_product_falls_back():
    """A funded reset with no funded product uses the evaluation reset product"""

    mapping = _mapping(reset_fee_funded_product_id=None, reset_fee_funded_variation_id=None)

    assert select_branch(mapping, PurchaseType.RESET, {"reset_product_type": "funded"}) == (
        "301", "201", "reset_evaluation"
    )


def test_funded_variation_defaults_to_main_variation():
    """A funded reset without its own variation reuses the main variation"""

    mapping = _mapping(reset_fee_funded_variation_id=None)

    assert select_branch(mapping, PurchaseType.RESET, {"reset_product_type": "funded"}) == (
        "401", "201", "reset_funded"
    )


def test_reverse_lookup_reports_purchase_type(reporter):
    """A back-office product id maps back to its mapping and purchase type"""

    resolver = _resolver([_mapping()], reporter)

    mapping, purchase_type = asyncio.run(resolver.find_mapping_by_product_id("301"))
    assert mapping.tier_id == "tier_50k"
    assert purchase_type == PurchaseType.RESET
    assert asyncio.run(resolver.find_mapping_by_product_id("999")) is None


def test_reverse_lookup_matches_backoffice_product_on_variation_field(reporter):
    """The stored variation id is the back-office product id of an original purchase"""

    resolver = _resolver([_mapping()], reporter)

    mapping, purchase_type = asyncio.run(resolver.find_mapping_by_product_id("201"))
    assert mapping.tier_id == "tier_50k"
    assert purchase_type == PurchaseType.ORIGINAL
    assert asyncio.run(resolver.find_mapping_by_product_id("101")) is None


def test_reset_without_reset_product_stays_unresolved(make_order, reporter):
    """A reset never posts the full challenge product when no reset product is mapped"""

    mapping = _mapping(reset_fee_product_id=None, reset_fee_funded_product_id=None)
    assert select_branch(mapping, PurchaseType.RESET) == (None, None, "reset_unmapped")

    resolver = _resolver([mapping], reporter)
    product = asyncio.run(resolver.resolve_for_order(make_order(purchase_type=PurchaseType.RESET)))

    assert not product.resolved
    assert (product.product_id, product.variation_id) == (0, 0)
    assert len(reporter.of_type(MappingUnresolved)) == 1


def test_catalogue_helpers(reporter):
    """Platform and tier listings only include fully mapped combinations"""

    resolver = _resolver(
        [_mapping(), _mapping(tier_id="tier_100k", platform_id="ctrader", variation_id=None)],
        reporter,
    )

    assert asyncio.run(resolver.available_platforms("prog_1")) == ["mt5"]
    assert asyncio.run(resolver.available_tiers("prog_1", "mt5")) == ["tier_50k"]
    assert asyncio.run(resolver.validate_purchase_combination("prog_1", "tier_50k", "mt5"))
    assert not asyncio.run(resolver.validate_purchase_combination("prog_1", "tier_100k", "ctrader"))


def test_identifier_helpers():
    """Sizes normalize for comparison and ids coerce to integers"""

    assert normalize_account_size("$ 100,000") == "100000"
    assert sanitize_account_size("$50,000") == "-50-000"
    assert to_external_id("123") == 123
    assert to_external_id(None) == 0
    assert to_external_id("abc") == 0
    assert to_external_id(True) == 0
