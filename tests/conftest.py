"""Shared fixtures for deal evaluation tests.

Provides:
- An InMemoryDealStore seeded with one silver reseller, one product, and
  one staff user per role
- Engine instances wired to that store the same way the app wires them
"""

from __future__ import annotations

import pytest

from deal_fixtures import InMemoryDealStore, make_product, make_reseller, make_staff
from src.dealreg.deals.approvals import ApprovalWorkflowEngine
from src.dealreg.deals.conflicts import ConflictDetectionEngine
from src.dealreg.deals.pipeline import DealEvaluationPipeline
from src.dealreg.deals.pricing import PricingEngine
from src.dealreg.deals.schemas import StaffRole
from src.dealreg.deals.validation import ValidationEngine


@pytest.fixture
def store() -> InMemoryDealStore:
    """Store with reseller r1 (silver, North America), product p1 (1000.00), and staff."""
    store = InMemoryDealStore()
    store.add_reseller(make_reseller())
    store.add_product(make_product())
    store.add_staff(make_staff("s1", StaffRole.STAFF, name="Sam Staff"))
    store.add_staff(make_staff("m1", StaffRole.MANAGER, name="Morgan Manager"))
    store.add_staff(make_staff("a1", StaffRole.ADMIN, name="Alex Admin"))
    return store


@pytest.fixture
def conflict_engine(store) -> ConflictDetectionEngine:
    return ConflictDetectionEngine(store)


@pytest.fixture
def validation_engine(store, conflict_engine) -> ValidationEngine:
    return ValidationEngine(store, conflict_engine)


@pytest.fixture
def pricing_engine(store) -> PricingEngine:
    return PricingEngine(store)


@pytest.fixture
def approval_engine(store) -> ApprovalWorkflowEngine:
    return ApprovalWorkflowEngine(store)


@pytest.fixture
def pipeline(
    store, validation_engine, conflict_engine, pricing_engine, approval_engine
) -> DealEvaluationPipeline:
    return DealEvaluationPipeline(
        store, validation_engine, conflict_engine, pricing_engine, approval_engine
    )
