"""Named selection policies for resolving several matching rules to one.

When more than one rule of a kind matches a deal, exactly one applies. The
policy per rule kind is fixed here so every engine resolves ties the same
way:

- FIRST_ELIGIBLE: approval workflows, deal-size rules (store order wins)
- LOWEST_PRICE: territory, partner-tier, and deal-registration pricing
- LARGEST_DISCOUNT: volume and promotional discounts

Ties keep the earliest candidate.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")


class SelectionPolicy(str, Enum):
    FIRST_ELIGIBLE = "first_eligible"
    LOWEST_PRICE = "lowest_price"
    LARGEST_DISCOUNT = "largest_discount"


RULE_SELECTION_POLICIES: dict[str, SelectionPolicy] = {
    "approval_workflow": SelectionPolicy.FIRST_ELIGIBLE,
    "deal_size_rule": SelectionPolicy.FIRST_ELIGIBLE,
    "territory_pricing": SelectionPolicy.LOWEST_PRICE,
    "partner_tier_pricing": SelectionPolicy.LOWEST_PRICE,
    "deal_registration_pricing": SelectionPolicy.LOWEST_PRICE,
    "volume_discount": SelectionPolicy.LARGEST_DISCOUNT,
    "promotional_pricing": SelectionPolicy.LARGEST_DISCOUNT,
}


def scope_matches(rule_value: Any, actual: Any) -> bool:
    """An unset rule scope applies to everything; a set one must equal ``actual``."""
    if rule_value is None:
        return True
    if actual is None:
        return False
    return getattr(rule_value, "value", rule_value) == getattr(actual, "value", actual)


def select_first_eligible(
    candidates: Iterable[T], is_eligible: Callable[[T], bool]
) -> T | None:
    for candidate in candidates:
        if is_eligible(candidate):
            return candidate
    return None


def select_lowest_price(
    candidates: Iterable[T], price_of: Callable[[T], float]
) -> tuple[T, float] | None:
    """Return the candidate with the lowest resulting price, and that price."""
    best: tuple[T, float] | None = None
    for candidate in candidates:
        price = price_of(candidate)
        if best is None or price < best[1]:
            best = (candidate, price)
    return best


def select_largest_discount(
    candidates: Iterable[T], discount_of: Callable[[T], float]
) -> tuple[T, float] | None:
    """Return the candidate with the largest positive discount, and that discount."""
    best: tuple[T, float] | None = None
    for candidate in candidates:
        discount = discount_of(candidate)
        if discount <= 0:
            continue
        if best is None or discount > best[1]:
            best = (candidate, discount)
    return best
