"""Tests for the pricing engine: stage order, selection, audit trail, availability."""

from __future__ import annotations

from datetime import date

import pytest

from deal_fixtures import make_product
from src.dealreg.deals.pricing import (
    DEFAULT_RESTRICTION_REASON,
    PRICING_STAGES,
    PriceState,
    PricingRuleSet,
    ProductNotFoundError,
    apply_volume_discount,
    availability_from_rows,
    run_pricing_stages,
)
from src.dealreg.deals.schemas import (
    AdjustmentType,
    DealRegistrationPricing,
    DiscountType,
    PartnerTier,
    PartnerTierPricing,
    PricingContext,
    ProductAvailability,
    PromotionalPricing,
    TerritoryPricing,
    VolumeDiscount,
)
from src.dealreg.deals.store import StoreError

CALC_DATE = date(2026, 3, 1)


def _volume(
    rule_id: str = "vd1",
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    value: float = 10,
    min_quantity: int = 5,
    **overrides,
) -> VolumeDiscount:
    return VolumeDiscount(
        id=rule_id,
        product_id="p1",
        min_quantity=min_quantity,
        discount_type=discount_type,
        discount_value=value,
        **overrides,
    )


def _promotion(
    value: float = 5,
    discount_type: DiscountType = DiscountType.FIXED_AMOUNT,
    start: date = date(2026, 2, 1),
    end: date = date(2026, 3, 31),
) -> PromotionalPricing:
    return PromotionalPricing(
        id="promo1",
        product_id="p1",
        promotion_name="Spring Promotion",
        discount_type=discount_type,
        discount_value=value,
        start_date=start,
        end_date=end,
    )


# ── Single Stages ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_price_without_rules(store, pricing_engine):
    result = await pricing_engine.calculate_price("p1", PricingContext())

    assert result.base_price == 1000.0
    assert result.final_price == 1000.0
    assert result.line_total == 1000.0
    assert result.currency == "GBP"
    assert result.discounts_applied == []


@pytest.mark.asyncio
async def test_volume_discount_recorded_per_unit(store, pricing_engine):
    store.volume_discounts.append(_volume())

    result = await pricing_engine.calculate_price(
        "p1", PricingContext(quantity=10, calculation_date=CALC_DATE)
    )

    assert result.final_price == 900.0
    assert result.line_total == 9000.0
    assert result.volume_discount == 100.0
    [entry] = result.discounts_applied
    assert entry.type == AdjustmentType.VOLUME
    assert entry.name == "Volume discount (10+ units)"
    assert entry.amount == -100.0
    assert entry.percentage == 10


@pytest.mark.asyncio
async def test_volume_discount_below_minimum_quantity(store, pricing_engine):
    store.volume_discounts.append(_volume())

    result = await pricing_engine.calculate_price("p1", PricingContext(quantity=4))

    assert result.final_price == 1000.0
    assert result.discounts_applied == []


@pytest.mark.asyncio
async def test_largest_volume_discount_wins(store, pricing_engine):
    store.volume_discounts.append(_volume("pct", value=10))
    store.volume_discounts.append(
        _volume("fixed", discount_type=DiscountType.FIXED_AMOUNT, value=150)
    )

    result = await pricing_engine.calculate_price("p1", PricingContext(quantity=10))

    assert result.final_price == 850.0
    [entry] = result.discounts_applied
    assert entry.amount == -150.0
    assert entry.percentage is None


@pytest.mark.asyncio
async def test_volume_discount_scoped_to_tier(store, pricing_engine):
    store.volume_discounts.append(_volume(reseller_tier=PartnerTier.GOLD))

    silver = await pricing_engine.calculate_price(
        "p1", PricingContext(quantity=10, reseller_tier=PartnerTier.SILVER)
    )
    gold = await pricing_engine.calculate_price(
        "p1", PricingContext(quantity=10, reseller_tier=PartnerTier.GOLD)
    )

    assert silver.final_price == 1000.0
    assert gold.final_price == 900.0


@pytest.mark.asyncio
async def test_territory_multiplier(store, pricing_engine):
    store.territory_pricing.append(
        TerritoryPricing(id="t1", product_id="p1", territory="EMEA", price_multiplier=1.1)
    )

    result = await pricing_engine.calculate_price("p1", PricingContext(territory="EMEA"))

    assert result.final_price == 1100.0
    assert result.territory_adjustment == 100.0
    [entry] = result.discounts_applied
    assert entry.type == AdjustmentType.TERRITORY
    assert entry.name == "Territory adjustment (EMEA)"
    assert entry.percentage == 10.0


@pytest.mark.asyncio
async def test_lowest_territory_multiplier_wins(store, pricing_engine):
    for rule_id, multiplier in (("t1", 1.2), ("t2", 0.9)):
        store.territory_pricing.append(
            TerritoryPricing(
                id=rule_id, product_id="p1", territory="EMEA", price_multiplier=multiplier
            )
        )

    result = await pricing_engine.calculate_price("p1", PricingContext(territory="EMEA"))

    assert result.final_price == 900.0


@pytest.mark.asyncio
async def test_tier_price_equal_to_running_price_records_tier_only(store, pricing_engine):
    store.tier_pricing.append(
        PartnerTierPricing(
            id="tp1",
            product_id="p1",
            tier_name="Silver Partner",
            reseller_tier=PartnerTier.SILVER,
            price=1000.0,
        )
    )

    result = await pricing_engine.calculate_price(
        "p1", PricingContext(reseller_tier=PartnerTier.SILVER)
    )

    assert result.pricing_tier == "Silver Partner"
    assert result.discounts_applied == []


@pytest.mark.asyncio
async def test_promotion_outside_date_range_ignored(store, pricing_engine):
    store.promotions.append(_promotion(start=date(2025, 1, 1), end=date(2025, 1, 31)))

    result = await pricing_engine.calculate_price(
        "p1", PricingContext(calculation_date=CALC_DATE)
    )

    assert result.final_price == 1000.0


@pytest.mark.asyncio
async def test_deal_registration_requires_flag(store, pricing_engine):
    store.deal_registration.append(
        DealRegistrationPricing(id="dr1", product_id="p1", price=800.0)
    )

    plain = await pricing_engine.calculate_price("p1", PricingContext(deal_value=5000))
    registered = await pricing_engine.calculate_price(
        "p1", PricingContext(is_deal_registration=True, deal_value=5000)
    )

    assert plain.final_price == 1000.0
    assert plain.is_deal_registration_eligible is False
    assert registered.final_price == 800.0
    assert registered.is_deal_registration_eligible is True


@pytest.mark.asyncio
async def test_deal_registration_price_above_running_price_keeps_price(store, pricing_engine):
    store.deal_registration.append(
        DealRegistrationPricing(id="dr1", product_id="p1", price=1200.0)
    )

    result = await pricing_engine.calculate_price(
        "p1", PricingContext(is_deal_registration=True, deal_value=5000)
    )

    assert result.final_price == 1000.0
    assert result.is_deal_registration_eligible is True
    assert result.discounts_applied == []


@pytest.mark.asyncio
async def test_deal_registration_outside_value_band(store, pricing_engine):
    store.deal_registration.append(
        DealRegistrationPricing(id="dr1", product_id="p1", price=800.0, min_deal_value=10_000)
    )

    result = await pricing_engine.calculate_price(
        "p1", PricingContext(is_deal_registration=True, deal_value=5000)
    )

    assert result.final_price == 1000.0
    assert result.is_deal_registration_eligible is False


# ── Stage Order ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stages_apply_in_order_on_running_price(store, pricing_engine):
    store.territory_pricing.append(
        TerritoryPricing(id="t1", product_id="p1", territory="EMEA", price_multiplier=1.1)
    )
    store.tier_pricing.append(
        PartnerTierPricing(
            id="tp1",
            product_id="p1",
            tier_name="Gold Partner",
            reseller_tier=PartnerTier.GOLD,
            price=950.0,
        )
    )
    store.volume_discounts.append(_volume())
    store.promotions.append(_promotion())
    store.deal_registration.append(
        DealRegistrationPricing(id="dr1", product_id="p1", price=800.0)
    )

    result = await pricing_engine.calculate_price(
        "p1",
        PricingContext(
            quantity=10,
            reseller_tier=PartnerTier.GOLD,
            territory="EMEA",
            is_deal_registration=True,
            deal_value=20_000,
            calculation_date=CALC_DATE,
        ),
    )

    assert [e.type for e in result.discounts_applied] == [
        AdjustmentType.TERRITORY,
        AdjustmentType.PARTNER_TIER,
        AdjustmentType.VOLUME,
        AdjustmentType.PROMOTIONAL,
        AdjustmentType.DEAL_REGISTRATION,
    ]
    assert [e.amount for e in result.discounts_applied] == [100.0, -150.0, -95.0, -5.0, -50.0]
    assert result.pricing_tier == "Gold Partner"
    assert result.final_price == 800.0
    assert result.line_total == 8000.0


@pytest.mark.asyncio
async def test_final_price_clamped_at_zero(store, pricing_engine):
    store.volume_discounts.append(
        _volume(discount_type=DiscountType.FIXED_AMOUNT, value=1500, min_quantity=1)
    )

    result = await pricing_engine.calculate_price("p1", PricingContext())

    assert result.final_price == 0.0
    assert result.line_total == 0.0


@pytest.mark.asyncio
async def test_calculation_is_repeatable(store, pricing_engine):
    store.volume_discounts.append(_volume())
    store.promotions.append(_promotion())
    context = PricingContext(quantity=10, calculation_date=CALC_DATE)

    first = await pricing_engine.calculate_price("p1", context)
    second = await pricing_engine.calculate_price("p1", context)

    assert first == second


def test_run_pricing_stages_with_custom_stage_list():
    rules = PricingRuleSet(product=make_product(), volume_discounts=(_volume(),))
    context = PricingContext(quantity=10)

    state = run_pricing_stages(rules, context, stages=(apply_volume_discount,))

    assert state.price == 900.0
    assert len(state.trail) == 1
    assert len(PRICING_STAGES) == 5


def test_price_state_apply_returns_new_state():
    state = PriceState(price=100.0)
    rules = PricingRuleSet(product=make_product(), volume_discounts=(_volume(min_quantity=1),))

    updated = apply_volume_discount(state, rules, PricingContext())

    assert state.price == 100.0
    assert state.trail == ()
    assert updated.price == 90.0


# ── Errors ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unknown_product_raises(pricing_engine):
    with pytest.raises(ProductNotFoundError):
        await pricing_engine.calculate_price("p404", PricingContext())


@pytest.mark.asyncio
async def test_store_failure_propagates(store, pricing_engine):
    store.fail_on.add("list_promotions")

    with pytest.raises(StoreError):
        await pricing_engine.calculate_price("p1", PricingContext())


# ── Availability ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_product_available_without_overrides(pricing_engine):
    result = await pricing_engine.check_product_availability("p1", territory="EMEA")
    assert result.available is True


@pytest.mark.asyncio
async def test_tier_restriction_applies_only_to_that_tier(store, pricing_engine):
    store.availability.append(
        ProductAvailability(
            id="av1",
            product_id="p1",
            reseller_tier=PartnerTier.BRONZE,
            is_available=False,
            restriction_reason="Requires silver partnership or above",
        )
    )

    bronze = await pricing_engine.check_product_availability(
        "p1", reseller_tier=PartnerTier.BRONZE
    )
    gold = await pricing_engine.check_product_availability("p1", reseller_tier=PartnerTier.GOLD)

    assert bronze.available is False
    assert bronze.reason == "Requires silver partnership or above"
    assert gold.available is True


def test_restriction_without_reason_uses_default():
    rows = [ProductAvailability(id="av1", product_id="p1", territory="APAC", is_available=False)]

    result = availability_from_rows(rows, territory="APAC")

    assert result.available is False
    assert result.reason == DEFAULT_RESTRICTION_REASON


def test_scoped_row_requires_known_scope():
    rows = [ProductAvailability(id="av1", product_id="p1", reseller_id="r9", is_available=False)]

    assert availability_from_rows(rows, reseller_id=None).available is True
    assert availability_from_rows(rows, reseller_id="r9").available is False
