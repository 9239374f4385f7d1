"""Tests for rule selection policies."""

from __future__ import annotations

from src.dealreg.deals.schemas import PartnerTier
from src.dealreg.deals.selection import (
    RULE_SELECTION_POLICIES,
    SelectionPolicy,
    scope_matches,
    select_first_eligible,
    select_largest_discount,
    select_lowest_price,
)


def test_first_eligible_keeps_store_order():
    assert select_first_eligible([1, 2, 3, 4], lambda n: n % 2 == 0) == 2


def test_first_eligible_none_when_nothing_matches():
    assert select_first_eligible([1, 3], lambda n: n % 2 == 0) is None


def test_lowest_price_returns_candidate_and_price():
    assert select_lowest_price(["a", "bb", "c"], len) == ("a", 1)


def test_lowest_price_tie_keeps_earliest():
    candidates = [("first", 10.0), ("second", 10.0)]
    best = select_lowest_price(candidates, lambda c: c[1])
    assert best == (("first", 10.0), 10.0)


def test_lowest_price_empty():
    assert select_lowest_price([], len) is None


def test_largest_discount_skips_non_positive():
    assert select_largest_discount([0.0, -5.0], lambda d: d) is None


def test_largest_discount_picks_maximum_and_keeps_earliest_on_tie():
    candidates = [("a", 50.0), ("b", 80.0), ("c", 80.0)]
    best = select_largest_discount(candidates, lambda c: c[1])
    assert best == (("b", 80.0), 80.0)


def test_scope_matches_unset_rule_applies_everywhere():
    assert scope_matches(None, "EMEA")
    assert scope_matches(None, None)


def test_scope_matches_set_rule_requires_value():
    assert scope_matches("EMEA", "EMEA")
    assert not scope_matches("EMEA", "APAC")
    assert not scope_matches("EMEA", None)


def test_scope_matches_enum_against_string():
    assert scope_matches(PartnerTier.GOLD, "gold")
    assert scope_matches("gold", PartnerTier.GOLD)


def test_policy_table():
    assert RULE_SELECTION_POLICIES["approval_workflow"] == SelectionPolicy.FIRST_ELIGIBLE
    assert RULE_SELECTION_POLICIES["territory_pricing"] == SelectionPolicy.LOWEST_PRICE
    assert RULE_SELECTION_POLICIES["volume_discount"] == SelectionPolicy.LARGEST_DISCOUNT
