"""Tests for staff capability checks."""

from __future__ import annotations

import pytest

from src.dealreg.core.permissions import (
    ACTION_CAPABILITIES,
    Capability,
    capability_for_action,
    has_capability,
)
from src.dealreg.deals.schemas import ApprovalAction, StaffRole


@pytest.mark.parametrize("role", list(StaffRole))
@pytest.mark.parametrize(
    "capability",
    [
        Capability.APPROVE_DEAL,
        Capability.REJECT_DEAL,
        Capability.REQUEST_CHANGES,
        Capability.EVALUATE_DEAL,
    ],
)
def test_review_capabilities_open_to_every_role(role, capability):
    assert has_capability(role, capability)


@pytest.mark.parametrize(
    "role, allowed",
    [
        (StaffRole.STAFF, True),
        (StaffRole.MANAGER, True),
        (StaffRole.ADMIN, False),
    ],
)
def test_escalation_not_available_to_admin(role, allowed):
    assert has_capability(role, Capability.ESCALATE_DEAL) is allowed


@pytest.mark.parametrize("capability", [Capability.BULK_APPROVE, Capability.RESOLVE_CONFLICT])
@pytest.mark.parametrize(
    "role, allowed",
    [
        (StaffRole.STAFF, False),
        (StaffRole.MANAGER, True),
        (StaffRole.ADMIN, True),
    ],
)
def test_manager_capabilities(capability, role, allowed):
    assert has_capability(role, capability) is allowed


def test_every_action_maps_to_a_capability():
    assert set(ACTION_CAPABILITIES) == set(ApprovalAction)
    assert capability_for_action(ApprovalAction.ESCALATE) == Capability.ESCALATE_DEAL
