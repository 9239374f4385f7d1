"""Tests for ApprovalWorkflowEngine routing, actions, and bulk operations.

Uses the InMemoryDealStore, which enforces the single unresolved approval
row per deal and compare-and-swap resolution like the database does.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from deal_fixtures import BASE_TIME, make_deal, make_reseller, make_step, make_workflow
from src.dealreg.deals.approvals import (
    AUTO_APPROVAL_COMMENT,
    estimate_approval_time,
    estimate_step_time,
    find_auto_approval_step,
    find_matching_workflow,
    next_required_step,
    workflow_matches,
)
from src.dealreg.deals.schemas import (
    ApprovalAction,
    DealStatus,
    DealSubstatus,
    PartnerTier,
    StaffRole,
    WorkflowConditions,
)


@pytest.fixture
def standard_workflow(store):
    return store.add_workflow(make_workflow())


@pytest.fixture
def deal(store):
    return store.add_deal(make_deal("d1"))


async def _start(engine, store, deal_id: str = "d1"):
    return await engine.determine_workflow(await store.get_deal(deal_id))


# ── Workflow Selection ───────────────────────────────────────────────────────


def test_workflow_without_conditions_matches_everything():
    assert workflow_matches(make_workflow(), make_deal(), None)


def test_workflow_value_band():
    workflow = make_workflow(conditions=WorkflowConditions(min_deal_value=50_000))

    assert not workflow_matches(workflow, make_deal(total_value=1000), make_reseller())
    assert workflow_matches(workflow, make_deal(total_value=50_000), make_reseller())


def test_workflow_tier_condition_needs_reseller():
    workflow = make_workflow(conditions=WorkflowConditions(partner_tiers=[PartnerTier.GOLD]))

    assert not workflow_matches(workflow, make_deal(), None)
    assert not workflow_matches(workflow, make_deal(), make_reseller(tier=PartnerTier.SILVER))
    assert workflow_matches(workflow, make_deal(), make_reseller(tier=PartnerTier.GOLD))


def test_find_matching_workflow_prefers_first_eligible():
    enterprise = make_workflow(
        "wf-enterprise",
        name="Enterprise",
        conditions=WorkflowConditions(min_deal_value=50_000),
    )
    gold = make_workflow(
        "wf-gold", name="Gold Fast Track", conditions=WorkflowConditions(partner_tiers=[PartnerTier.GOLD])
    )
    standard = make_workflow()

    chosen = find_matching_workflow(
        [enterprise, gold, standard],
        make_deal(),
        make_reseller(tier=PartnerTier.GOLD),
        "Standard Deal Approval",
    )

    assert chosen.id == "wf-gold"


def test_find_matching_workflow_falls_back_to_default_then_first():
    enterprise = make_workflow(
        "wf-enterprise", name="Enterprise", conditions=WorkflowConditions(min_deal_value=50_000)
    )
    federal = make_workflow(
        "wf-federal", name="Federal", conditions=WorkflowConditions(territories=["Federal"])
    )
    reseller = make_reseller()

    assert find_matching_workflow([enterprise, federal], make_deal(), reseller, "Federal").id == "wf-federal"
    assert find_matching_workflow([enterprise, federal], make_deal(), reseller, "Missing").id == "wf-enterprise"
    assert find_matching_workflow([], make_deal(), reseller, "Federal") is None


def test_auto_approval_threshold_is_inclusive():
    workflow = make_workflow(steps=[make_step(1, StaffRole.STAFF, threshold=5000)])

    assert find_auto_approval_step(workflow, 5000) is not None
    assert find_auto_approval_step(workflow, 5000.01) is None


def test_next_required_step_skips_optional():
    workflow = make_workflow()

    assert next_required_step(workflow, 1).step == 2
    assert next_required_step(workflow, 2) is None


def test_estimates():
    workflow = make_workflow()

    assert estimate_approval_time(workflow) == 4
    assert estimate_approval_time(make_workflow(steps=[make_step(1, StaffRole.STAFF, required=False)])) == 1
    assert estimate_step_time(make_step(3, StaffRole.ADMIN)) == 3


# ── Determine & Initialize ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_deal_under_threshold_is_auto_approved(store, approval_engine, deal):
    store.add_workflow(
        make_workflow(steps=[make_step(1, StaffRole.STAFF, threshold=5000), make_step(2, StaffRole.MANAGER)])
    )

    result = await _start(approval_engine, store)

    assert result.success is True
    assert result.message == "Deal auto-approved"
    assert result.next_step.auto_approved is True
    assert result.next_step.requires_manual_approval is False
    assert store.deals["d1"].status == DealStatus.APPROVED
    assert store.deals["d1"].substatus == DealSubstatus.APPROVED_CONDITIONAL
    [row] = store.approvals
    assert row.step_number == 0
    assert row.action == ApprovalAction.APPROVE
    assert row.comments == AUTO_APPROVAL_COMMENT
    assert row.is_resolved
    assert store.unresolved_approvals("d1") == []


@pytest.mark.asyncio
async def test_deal_at_threshold_is_auto_approved(store, approval_engine):
    store.add_deal(make_deal("d1", total_value=5000))
    store.add_workflow(make_workflow(steps=[make_step(1, StaffRole.STAFF, threshold=5000)]))

    result = await _start(approval_engine, store)

    assert result.next_step.auto_approved is True


@pytest.mark.asyncio
async def test_deal_starts_at_first_step(store, approval_engine, deal, standard_workflow):
    result = await _start(approval_engine, store)

    assert result.success is True
    assert result.message == "Approval workflow started at staff review"
    assert result.next_step.current_step == 1
    assert [s.id for s in result.next_step.next_approvers] == ["s1"]
    assert result.next_step.requires_manual_approval is True
    assert result.next_step.estimated_days == 4
    assert store.deals["d1"].status == DealStatus.PENDING
    assert store.deals["d1"].substatus == DealSubstatus.STAFF_REVIEW
    assert [a.step_number for a in store.unresolved_approvals("d1")] == [1]


@pytest.mark.asyncio
async def test_determine_twice_fails(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)

    second = await _start(approval_engine, store)

    assert second.success is False
    assert second.message == "Approval workflow already initialized"
    assert len(store.unresolved_approvals("d1")) == 1


@pytest.mark.asyncio
async def test_initialize_twice_keeps_single_pending_row(store, approval_engine, deal, standard_workflow):
    first = await approval_engine.initialize_workflow(deal, standard_workflow)
    second = await approval_engine.initialize_workflow(deal, standard_workflow)

    assert first.success is True
    assert second.success is False
    assert second.message == "Approval workflow already initialized"
    assert len(store.unresolved_approvals("d1")) == 1


@pytest.mark.asyncio
async def test_terminal_deal_is_not_routed(store, approval_engine, standard_workflow):
    store.add_deal(make_deal("d1", status=DealStatus.APPROVED, substatus=DealSubstatus.APPROVED_CONDITIONAL))

    result = await _start(approval_engine, store)

    assert result.success is False
    assert result.message == "Deal is already approved"
    assert store.approvals == []


@pytest.mark.asyncio
async def test_no_workflow_configured(store, approval_engine, deal):
    result = await _start(approval_engine, store)

    assert result.success is False
    assert result.message == "No approval workflow configured"


@pytest.mark.asyncio
async def test_workflow_without_steps(store, approval_engine, deal):
    store.add_workflow(make_workflow(steps=[]))

    result = await _start(approval_engine, store)

    assert result.success is False
    assert result.message == "Workflow has no steps defined"


@pytest.mark.asyncio
async def test_determine_store_failure(store, approval_engine, deal, standard_workflow):
    store.fail_on.add("list_active_workflows")

    result = await _start(approval_engine, store)

    assert result.success is False
    assert result.message.startswith("Failed to determine workflow")


# ── Approval Actions ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_approvals_advance_through_required_steps(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)

    staff_step = await approval_engine.process_approval_action("d1", "s1", "approve")

    assert staff_step.success is True
    assert staff_step.message == "Approved. Advanced to manager review."
    assert staff_step.next_step.current_step == 2
    assert [s.id for s in staff_step.next_step.next_approvers] == ["m1"]
    assert store.deals["d1"].substatus == DealSubstatus.MANAGER_REVIEW
    assert [a.step_number for a in store.unresolved_approvals("d1")] == [2]

    manager_step = await approval_engine.process_approval_action(
        "d1", "m1", ApprovalAction.APPROVE, comments="Looks good"
    )

    assert manager_step.success is True
    assert manager_step.message == "Deal approved successfully"
    assert manager_step.next_step is None
    assert store.deals["d1"].status == DealStatus.APPROVED
    assert store.unresolved_approvals("d1") == []
    assert store.history[-1]["changed_by"] == "m1"
    assert store.history[-1]["reason"] == "Looks good"


@pytest.mark.asyncio
async def test_reject(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)

    result = await approval_engine.process_approval_action(
        "d1", "s1", ApprovalAction.REJECT, comments="Customer not eligible"
    )

    assert result.success is True
    assert result.message == "Deal rejected"
    assert store.deals["d1"].status == DealStatus.REJECTED
    assert store.deals["d1"].substatus == DealSubstatus.REJECTED_APPROVAL
    assert store.history[-1]["reason"] == "Customer not eligible"


@pytest.mark.asyncio
async def test_request_changes(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)

    result = await approval_engine.process_approval_action(
        "d1", "s1", ApprovalAction.REQUEST_CHANGES
    )

    assert result.success is True
    assert result.message == "Changes requested from reseller"
    assert store.deals["d1"].status == DealStatus.PENDING
    assert store.deals["d1"].substatus == DealSubstatus.VALIDATION_PENDING


@pytest.mark.asyncio
async def test_escalate_to_admin_step(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)

    result = await approval_engine.process_approval_action(
        "d1", "s1", ApprovalAction.ESCALATE, escalate_to_id="a1"
    )

    assert result.success is True
    assert result.message == "Deal escalated to admin review"
    assert result.next_step.current_step == 3
    assert [s.id for s in result.next_step.next_approvers] == ["a1"]
    assert result.next_step.estimated_days == 3
    [pending] = store.unresolved_approvals("d1")
    assert pending.step_number == 3
    assert pending.approver_id == "a1"
    assert store.deals["d1"].substatus == DealSubstatus.ADMIN_REVIEW


@pytest.mark.asyncio
async def test_escalate_without_admin_step_leaves_row_pending(store, approval_engine, deal):
    store.add_workflow(
        make_workflow(steps=[make_step(1, StaffRole.STAFF), make_step(2, StaffRole.MANAGER)])
    )
    await _start(approval_engine, store)

    result = await approval_engine.process_approval_action("d1", "s1", ApprovalAction.ESCALATE)

    assert result.success is False
    assert result.message == "No escalation path available"
    [pending] = store.unresolved_approvals("d1")
    assert pending.step_number == 1


@pytest.mark.asyncio
async def test_invalid_action(approval_engine):
    result = await approval_engine.process_approval_action("d1", "s1", "archive")

    assert result.success is False
    assert result.message == "Invalid action: archive"


@pytest.mark.asyncio
async def test_action_without_pending_approval(approval_engine, deal):
    result = await approval_engine.process_approval_action("d1", "s1", ApprovalAction.APPROVE)

    assert result.success is False
    assert result.message == "No pending approval found"


@pytest.mark.asyncio
async def test_action_on_already_resolved_row(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)
    [stale] = store.unresolved_approvals("d1")
    await approval_engine.process_approval_action("d1", "s1", ApprovalAction.REJECT)
    store.get_pending_approval = AsyncMock(return_value=stale)

    result = await approval_engine.process_approval_action("d1", "s2", ApprovalAction.APPROVE)

    assert result.success is False
    assert result.message == "Approval was already processed by another request"
    assert store.deals["d1"].status == DealStatus.REJECTED


@pytest.mark.asyncio
async def test_action_store_failure(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)
    store.fail_on.add("resolve_approval")

    result = await approval_engine.process_approval_action("d1", "s1", ApprovalAction.APPROVE)

    assert result.success is False
    assert result.message.startswith("Failed to process approval action")
    assert len(store.unresolved_approvals("d1")) == 1


# ── Bulk ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bulk_approve_collects_errors(store, approval_engine, standard_workflow):
    for deal_id in ("d1", "d2"):
        store.add_deal(make_deal(deal_id))
        await _start(approval_engine, store, deal_id)

    result = await approval_engine.bulk_approve(["d1", "d2", "missing"], "s1")

    assert result.success is False
    assert result.processed == 2
    assert result.errors == ["Deal missing: No pending approval found"]
    assert store.deals["d1"].substatus == DealSubstatus.MANAGER_REVIEW


@pytest.mark.asyncio
async def test_bulk_approve_all_succeed(store, approval_engine, standard_workflow):
    store.add_deal(make_deal("d1"))
    await _start(approval_engine, store)

    result = await approval_engine.bulk_approve(["d1"], "s1", comments="Batch")

    assert result.success is True
    assert result.errors == []


@pytest.mark.asyncio
async def test_bulk_approval_candidates_by_role(store, approval_engine, standard_workflow):
    for offset, deal_id in ((30, "d1"), (20, "d2"), (10, "d3")):
        store.add_deal(make_deal(deal_id, created_at=BASE_TIME - timedelta(days=offset)))
        await _start(approval_engine, store, deal_id)
    await approval_engine.process_approval_action("d3", "s1", ApprovalAction.APPROVE)

    staff_queue = await approval_engine.get_bulk_approval_candidates("s1")
    manager_queue = await approval_engine.get_bulk_approval_candidates("m1")
    admin_queue = await approval_engine.get_bulk_approval_candidates("a1")

    assert [d.id for d in staff_queue] == ["d1", "d2"]
    assert [d.id for d in manager_queue] == ["d3"]
    assert admin_queue == []


@pytest.mark.asyncio
async def test_bulk_approval_candidates_unknown_staff(approval_engine):
    assert await approval_engine.get_bulk_approval_candidates("nobody") == []


@pytest.mark.asyncio
async def test_bulk_approval_candidates_store_failure(store, approval_engine, deal, standard_workflow):
    await _start(approval_engine, store)
    store.fail_on.add("list_pending_approvals")

    assert await approval_engine.get_bulk_approval_candidates("s1") == []


# ── Invariants ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_large_deal_over_threshold_starts_first_step(store, approval_engine):
    store.add_deal(make_deal("d1", total_value=5_000_000))
    store.add_workflow(make_workflow(steps=[make_step(1, StaffRole.STAFF, threshold=10_000)]))

    result = await _start(approval_engine, store)

    assert result.success is True
    assert result.next_step.auto_approved is False
    assert result.next_step.current_step == 1
    assert [a.step_number for a in store.unresolved_approvals("d1")] == [1]


@pytest.mark.asyncio
async def test_bulk_approve_deal_without_pending_approval(store, approval_engine, standard_workflow):
    store.add_deal(make_deal("d1"))
    store.add_deal(make_deal("d2"))
    await _start(approval_engine, store, "d1")

    result = await approval_engine.bulk_approve(["d1", "d2"], "s1")

    assert result.processed == 1
    assert result.errors == ["Deal d2: No pending approval found"]


@pytest.mark.asyncio
async def test_at_most_one_unresolved_row_across_actions(store, approval_engine, deal, standard_workflow):
    steps = [
        ("s1", ApprovalAction.APPROVE),
        ("m1", ApprovalAction.ESCALATE),
        ("m1", ApprovalAction.APPROVE),
        ("a1", ApprovalAction.APPROVE),
    ]
    await _start(approval_engine, store)
    assert len(store.unresolved_approvals("d1")) == 1

    for approver_id, action in steps:
        await approval_engine.process_approval_action("d1", approver_id, action)
        assert len(store.unresolved_approvals("d1")) <= 1
