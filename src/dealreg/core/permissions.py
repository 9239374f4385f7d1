"""Staff capability checks for deal review operations.

Each Capability maps to a pure predicate over the acting staff role. The API
layer consults has_capability() before invoking an engine and answers 403
when it is False.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from src.dealreg.deals.schemas import ApprovalAction, StaffRole


class Capability(str, Enum):
    APPROVE_DEAL = "approve_deal"
    REJECT_DEAL = "reject_deal"
    REQUEST_CHANGES = "request_changes"
    ESCALATE_DEAL = "escalate_deal"
    BULK_APPROVE = "bulk_approve"
    RESOLVE_CONFLICT = "resolve_conflict"
    EVALUATE_DEAL = "evaluate_deal"


ROLE_RANK: dict[StaffRole, int] = {
    StaffRole.STAFF: 1,
    StaffRole.MANAGER: 2,
    StaffRole.ADMIN: 3,
}


def _at_least(minimum: StaffRole) -> Callable[[StaffRole], bool]:
    return lambda role: ROLE_RANK[role] >= ROLE_RANK[minimum]


def _any_role(role: StaffRole) -> bool:
    return True


def _below_admin(role: StaffRole) -> bool:
    # Admin is the escalation target, there is nowhere further to go
    return role != StaffRole.ADMIN


CAPABILITY_CHECKS: dict[Capability, Callable[[StaffRole], bool]] = {
    Capability.APPROVE_DEAL: _any_role,
    Capability.REJECT_DEAL: _any_role,
    Capability.REQUEST_CHANGES: _any_role,
    Capability.ESCALATE_DEAL: _below_admin,
    Capability.BULK_APPROVE: _at_least(StaffRole.MANAGER),
    Capability.RESOLVE_CONFLICT: _at_least(StaffRole.MANAGER),
    Capability.EVALUATE_DEAL: _any_role,
}

ACTION_CAPABILITIES: dict[ApprovalAction, Capability] = {
    ApprovalAction.APPROVE: Capability.APPROVE_DEAL,
    ApprovalAction.REJECT: Capability.REJECT_DEAL,
    ApprovalAction.REQUEST_CHANGES: Capability.REQUEST_CHANGES,
    ApprovalAction.ESCALATE: Capability.ESCALATE_DEAL,
}


def has_capability(role: StaffRole, capability: Capability) -> bool:
    """Whether a staff member with ``role`` may perform ``capability``."""
    check = CAPABILITY_CHECKS.get(capability)
    return check is not None and check(role)


def capability_for_action(action: ApprovalAction) -> Capability:
    return ACTION_CAPABILITIES[action]
