"""Pricing engine -- ordered price adjustments with a discount audit trail.

The engine loads a PricingRuleSet snapshot for a product, then folds the
pricing stages over an immutable PriceState. Each stage is a pure function
of (state, rules, context) and consumes the previous stage's price:

1. territory multiplier
2. partner-tier price (replaces the running price)
3. volume discount
4. promotional discount
5. deal-registration price

Amounts recorded on DiscountEntry and the final price are per unit;
``line_total`` is the final price times the quantity.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence
from datetime import date

import structlog
from pydantic import BaseModel, ConfigDict

from src.dealreg.core.monitoring import pricing_calculations_total
from src.dealreg.deals.schemas import (
    AdjustmentType,
    DealRegistrationPricing,
    DiscountEntry,
    DiscountType,
    PartnerTier,
    PartnerTierPricing,
    PricingContext,
    PricingResult,
    Product,
    ProductAvailability,
    ProductAvailabilityResult,
    PromotionalPricing,
    TerritoryPricing,
    VolumeDiscount,
)
from src.dealreg.deals.selection import (
    scope_matches,
    select_largest_discount,
    select_lowest_price,
)

logger = structlog.get_logger(__name__)

DEFAULT_RESTRICTION_REASON = "Product not available for this reseller/territory"


class ProductNotFoundError(LookupError):
    """Raised when pricing is requested for an unknown product."""


# ── Pricing State ───────────────────────────────────────────────────────────


class PricingRuleSet(BaseModel):
    """Snapshot of every active pricing rule that may apply to one product."""

    model_config = ConfigDict(frozen=True)

    product: Product
    territory_pricing: tuple[TerritoryPricing, ...] = ()
    tier_pricing: tuple[PartnerTierPricing, ...] = ()
    volume_discounts: tuple[VolumeDiscount, ...] = ()
    promotions: tuple[PromotionalPricing, ...] = ()
    deal_registration: tuple[DealRegistrationPricing, ...] = ()


class PriceState(BaseModel):
    """Running price and audit trail threaded through the pricing stages."""

    model_config = ConfigDict(frozen=True)

    price: float
    trail: tuple[DiscountEntry, ...] = ()
    pricing_tier: str | None = None
    is_deal_registration_eligible: bool = False
    territory_adjustment: float | None = None
    volume_discount: float | None = None
    promotional_discount: float | None = None

    def apply(self, price: float, entry: DiscountEntry, **changes: object) -> PriceState:
        """Return a new state at ``price`` with ``entry`` appended to the trail."""
        return self.model_copy(
            update={"price": price, "trail": self.trail + (entry,), **changes}
        )


PricingStage = Callable[[PriceState, PricingRuleSet, PricingContext], PriceState]


def _in_band(value: float, minimum: float | None, maximum: float | None) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


def _discount_total(
    discount_type: DiscountType, discount_value: float, unit_price: float, quantity: int
) -> float:
    """Total discount over the whole line for one volume/promotional rule."""
    if discount_type == DiscountType.PERCENTAGE:
        return unit_price * quantity * discount_value / 100
    return discount_value * quantity


# ── Stages ──────────────────────────────────────────────────────────────────


def apply_territory_adjustment(
    state: PriceState, rules: PricingRuleSet, context: PricingContext
) -> PriceState:
    if not context.territory:
        return state
    best = select_lowest_price(
        rules.territory_pricing, lambda rule: state.price * rule.price_multiplier
    )
    if best is None:
        return state
    rule, adjusted = best
    if rule.price_multiplier == 1:
        return state
    adjustment = adjusted - state.price
    entry = DiscountEntry(
        type=AdjustmentType.TERRITORY,
        name=f"Territory adjustment ({rule.territory})",
        amount=round(adjustment, 2),
        percentage=round((rule.price_multiplier - 1) * 100, 2),
    )
    return state.apply(adjusted, entry, territory_adjustment=round(adjustment, 2))


def apply_partner_tier_price(
    state: PriceState, rules: PricingRuleSet, context: PricingContext
) -> PriceState:
    if context.reseller_tier is None:
        return state
    eligible = [
        rule
        for rule in rules.tier_pricing
        if scope_matches(rule.reseller_tier, context.reseller_tier)
        and scope_matches(rule.territory, context.territory)
    ]
    best = select_lowest_price(eligible, lambda rule: rule.price)
    if best is None:
        return state
    rule, tier_price = best
    if tier_price == state.price:
        return state.model_copy(update={"pricing_tier": rule.tier_name})
    entry = DiscountEntry(
        type=AdjustmentType.PARTNER_TIER,
        name=f"{rule.tier_name} pricing",
        amount=round(tier_price - state.price, 2),
    )
    return state.apply(tier_price, entry, pricing_tier=rule.tier_name)


def _scoped_to(rule: VolumeDiscount | PromotionalPricing, context: PricingContext) -> bool:
    return (
        _in_band(context.quantity, rule.min_quantity, rule.max_quantity)
        and scope_matches(rule.reseller_tier, context.reseller_tier)
        and scope_matches(rule.territory, context.territory)
    )


def apply_volume_discount(
    state: PriceState, rules: PricingRuleSet, context: PricingContext
) -> PriceState:
    eligible = [rule for rule in rules.volume_discounts if _scoped_to(rule, context)]
    best = select_largest_discount(
        eligible,
        lambda rule: _discount_total(
            rule.discount_type, rule.discount_value, state.price, context.quantity
        ),
    )
    if best is None:
        return state
    rule, total = best
    per_unit = total / context.quantity
    entry = DiscountEntry(
        type=AdjustmentType.VOLUME,
        name=f"Volume discount ({context.quantity}+ units)",
        amount=round(-per_unit, 2),
        percentage=rule.discount_value if rule.discount_type == DiscountType.PERCENTAGE else None,
    )
    return state.apply(state.price - per_unit, entry, volume_discount=round(per_unit, 2))


def apply_promotional_discount(
    state: PriceState, rules: PricingRuleSet, context: PricingContext
) -> PriceState:
    on_date = context.calculation_date or date.today()
    eligible = [
        rule
        for rule in rules.promotions
        if _scoped_to(rule, context) and rule.start_date <= on_date <= rule.end_date
    ]
    best = select_largest_discount(
        eligible,
        lambda rule: _discount_total(
            rule.discount_type, rule.discount_value, state.price, context.quantity
        ),
    )
    if best is None:
        return state
    rule, total = best
    per_unit = total / context.quantity
    entry = DiscountEntry(
        type=AdjustmentType.PROMOTIONAL,
        name=rule.promotion_name,
        amount=round(-per_unit, 2),
        percentage=rule.discount_value if rule.discount_type == DiscountType.PERCENTAGE else None,
    )
    return state.apply(
        state.price - per_unit, entry, promotional_discount=round(per_unit, 2)
    )


def apply_deal_registration_price(
    state: PriceState, rules: PricingRuleSet, context: PricingContext
) -> PriceState:
    if not context.is_deal_registration or not context.deal_value:
        return state
    eligible = [
        rule
        for rule in rules.deal_registration
        if _in_band(context.deal_value, rule.min_deal_value, rule.max_deal_value)
        and scope_matches(rule.reseller_tier, context.reseller_tier)
        and scope_matches(rule.territory, context.territory)
    ]
    best = select_lowest_price(eligible, lambda rule: rule.price)
    if best is None:
        return state
    _, registration_price = best
    if registration_price >= state.price:
        return state.model_copy(update={"is_deal_registration_eligible": True})
    savings = state.price - registration_price
    entry = DiscountEntry(
        type=AdjustmentType.DEAL_REGISTRATION,
        name="Deal registration pricing",
        amount=round(-savings, 2),
        percentage=round(savings / state.price * 100, 2) if state.price else None,
    )
    return state.apply(registration_price, entry, is_deal_registration_eligible=True)


PRICING_STAGES: tuple[PricingStage, ...] = (
    apply_territory_adjustment,
    apply_partner_tier_price,
    apply_volume_discount,
    apply_promotional_discount,
    apply_deal_registration_price,
)


def run_pricing_stages(
    rules: PricingRuleSet,
    context: PricingContext,
    stages: Sequence[PricingStage] = PRICING_STAGES,
) -> PriceState:
    """Fold ``stages`` over the product's list price."""
    return functools.reduce(
        lambda state, stage: stage(state, rules, context),
        stages,
        PriceState(price=rules.product.list_price),
    )


# ── Availability ────────────────────────────────────────────────────────────


def availability_from_rows(
    rows: Sequence[ProductAvailability],
    reseller_id: str | None = None,
    territory: str | None = None,
    reseller_tier: PartnerTier | None = None,
) -> ProductAvailabilityResult:
    """Resolve availability from override rows whose scopes all match.

    Any matching row with ``is_available`` False makes the product
    unavailable; no matching restriction means available.
    """
    for row in rows:
        if not (
            scope_matches(row.reseller_id, reseller_id)
            and scope_matches(row.territory, territory)
            and scope_matches(row.reseller_tier, reseller_tier)
        ):
            continue
        if not row.is_available:
            return ProductAvailabilityResult(
                available=False,
                reason=row.restriction_reason or DEFAULT_RESTRICTION_REASON,
            )
    return ProductAvailabilityResult(available=True)


# ── Engine ──────────────────────────────────────────────────────────────────


class PricingEngine:
    """Computes per-product prices from the store's pricing rules.

    Args:
        store: DealStore (or compatible) providing pricing rule lookups.
        currency: ISO currency code stamped on every result.
    """

    def __init__(self, store, currency: str = "GBP") -> None:
        self._store = store
        self._currency = currency

    async def calculate_price(
        self, product_id: str, context: PricingContext
    ) -> PricingResult:
        """Price one product line.

        Args:
            product_id: Product to price.
            context: Quantity, partner scope, and deal-registration inputs.

        Returns:
            PricingResult with the final per-unit price and audit trail.

        Raises:
            ProductNotFoundError: The product does not exist.
            StoreError: A rule lookup failed.
        """
        try:
            product = await self._store.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(f"Product {product_id} not found")
            rules = await self.load_rules(product, context)
        except ProductNotFoundError:
            pricing_calculations_total.labels(status="not_found").inc()
            raise
        except Exception:
            pricing_calculations_total.labels(status="error").inc()
            raise

        state = run_pricing_stages(rules, context)
        result = self._build_result(product, context, state)
        pricing_calculations_total.labels(status="success").inc()

        logger.info(
            "price_calculated",
            product_id=product_id,
            quantity=context.quantity,
            base_price=result.base_price,
            final_price=result.final_price,
            adjustments=len(result.discounts_applied),
        )
        return result

    async def load_rules(self, product: Product, context: PricingContext) -> PricingRuleSet:
        """Snapshot every rule that may apply to ``product`` under ``context``."""
        territory_pricing: list[TerritoryPricing] = []
        if context.territory:
            territory_pricing = await self._store.list_territory_pricing(
                product.id, context.territory
            )
        tier_pricing: list[PartnerTierPricing] = []
        if context.reseller_tier is not None:
            tier_pricing = await self._store.list_partner_tier_pricing(
                product.id, context.reseller_tier
            )
        deal_registration: list[DealRegistrationPricing] = []
        if context.is_deal_registration and context.deal_value:
            deal_registration = await self._store.list_deal_registration_pricing(
                product.id
            )

        return PricingRuleSet(
            product=product,
            territory_pricing=tuple(territory_pricing),
            tier_pricing=tuple(tier_pricing),
            volume_discounts=tuple(await self._store.list_volume_discounts(product.id)),
            promotions=tuple(await self._store.list_promotions(product.id)),
            deal_registration=tuple(deal_registration),
        )

    def _build_result(
        self, product: Product, context: PricingContext, state: PriceState
    ) -> PricingResult:
        final_price = round(max(0.0, state.price), 2)
        return PricingResult(
            product_id=product.id,
            base_price=product.list_price,
            final_price=final_price,
            currency=self._currency,
            quantity=context.quantity,
            line_total=round(final_price * context.quantity, 2),
            discounts_applied=list(state.trail),
            pricing_tier=state.pricing_tier,
            is_deal_registration_eligible=state.is_deal_registration_eligible,
            territory_adjustment=state.territory_adjustment,
            volume_discount=state.volume_discount,
            promotional_discount=state.promotional_discount,
        )

    async def check_product_availability(
        self,
        product_id: str,
        reseller_id: str | None = None,
        territory: str | None = None,
        reseller_tier: PartnerTier | None = None,
    ) -> ProductAvailabilityResult:
        """Whether a product may be sold by this reseller in this territory."""
        rows = await self._store.list_product_availability(product_id)
        result = availability_from_rows(rows, reseller_id, territory, reseller_tier)
        if not result.available:
            logger.info(
                "product_unavailable",
                product_id=product_id,
                reseller_id=reseller_id,
                territory=territory,
                reason=result.reason,
            )
        return result
