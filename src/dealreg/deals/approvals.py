"""Approval workflow engine -- routes deals through staff approval steps.

State per deal::

    uninitialized -> pending(step N) -> ... -> approved | rejected

``escalate`` always targets the workflow's admin step and
``request_changes`` sends the deal back to validation_pending with the
workflow left open.

Every operation returns an explicit ApprovalActionResult; store failures
become ``success=False`` results and nothing is retried. The single
unresolved DealApproval row per deal is guaranteed by the store.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.dealreg.core.monitoring import approval_actions_total
from src.dealreg.deals.schemas import (
    ApprovalAction,
    ApprovalActionResult,
    ApprovalResult,
    ApprovalStep,
    ApprovalWorkflow,
    BulkApprovalResult,
    DealRead,
    DealStatus,
    DealStatusChange,
    DealSubstatus,
    NewDealApproval,
    Reseller,
    StaffRole,
)
from src.dealreg.deals.selection import scope_matches, select_first_eligible
from src.dealreg.deals.store import ConcurrentModificationError, StoreError

logger = structlog.get_logger(__name__)

AUTO_APPROVAL_COMMENT = "Auto-approved based on workflow conditions"

ROLE_SUBSTATUS: dict[StaffRole, DealSubstatus] = {
    StaffRole.STAFF: DealSubstatus.STAFF_REVIEW,
    StaffRole.MANAGER: DealSubstatus.MANAGER_REVIEW,
    StaffRole.ADMIN: DealSubstatus.ADMIN_REVIEW,
}

# Estimated review days per step role
ROLE_STEP_DAYS: dict[StaffRole, int] = {
    StaffRole.STAFF: 1,
    StaffRole.MANAGER: 2,
    StaffRole.ADMIN: 3,
}


# ── Workflow Selection ──────────────────────────────────────────────────────


def workflow_matches(
    workflow: ApprovalWorkflow, deal: DealRead, reseller: Reseller | None
) -> bool:
    """True when every condition the workflow sets holds for the deal."""
    conditions = workflow.conditions
    value = deal.total_value
    if conditions.min_deal_value is not None and value < conditions.min_deal_value:
        return False
    if conditions.max_deal_value is not None and value > conditions.max_deal_value:
        return False
    if conditions.partner_tiers:
        if reseller is None or not any(
            scope_matches(tier, reseller.tier) for tier in conditions.partner_tiers
        ):
            return False
    if conditions.territories:
        if reseller is None or reseller.territory not in conditions.territories:
            return False
    return True


def find_matching_workflow(
    workflows: list[ApprovalWorkflow],
    deal: DealRead,
    reseller: Reseller | None,
    default_name: str,
) -> ApprovalWorkflow | None:
    """First eligible workflow, else the default by name, else the first one."""
    match = select_first_eligible(workflows, lambda w: workflow_matches(w, deal, reseller))
    if match is not None:
        return match
    default = select_first_eligible(workflows, lambda w: w.name == default_name)
    if default is not None:
        return default
    return workflows[0] if workflows else None


def find_auto_approval_step(
    workflow: ApprovalWorkflow, deal_value: float
) -> ApprovalStep | None:
    """Step whose auto-approve threshold covers ``deal_value`` (inclusive)."""
    return select_first_eligible(
        workflow.ordered_steps,
        lambda s: s.auto_approve_threshold is not None
        and deal_value <= s.auto_approve_threshold,
    )


def next_required_step(
    workflow: ApprovalWorkflow, after_step: int
) -> ApprovalStep | None:
    return select_first_eligible(
        workflow.ordered_steps, lambda s: s.required and s.step > after_step
    )


def estimate_approval_time(workflow: ApprovalWorkflow) -> int:
    required = sum(1 for s in workflow.steps if s.required)
    return max(1, required * 2)


def estimate_step_time(step: ApprovalStep) -> int:
    return ROLE_STEP_DAYS.get(step.role, 1)


# ── Engine ──────────────────────────────────────────────────────────────────


class ApprovalWorkflowEngine:
    """Determines, initializes, and advances deal approval workflows.

    Args:
        store: DealStore (or compatible).
        default_workflow_name: Fallback workflow when no conditions match.
    """

    def __init__(self, store, default_workflow_name: str = "Standard Deal Approval") -> None:
        self._store = store
        self._default_workflow_name = default_workflow_name

    async def determine_workflow(self, deal: DealRead) -> ApprovalActionResult:
        """Choose a workflow for the deal and auto-approve or start it.

        Args:
            deal: The deal to route; its reseller is loaded if not attached.

        Returns:
            ApprovalActionResult whose ``next_step`` describes the workflow
            position (auto-approved or first pending step).
        """
        if deal.is_terminal:
            return ApprovalActionResult(
                success=False, message=f"Deal is already {deal.status.value}"
            )

        try:
            if await self._store.get_pending_approval(deal.id) is not None:
                return ApprovalActionResult(
                    success=False, message="Approval workflow already initialized"
                )

            workflows = await self._store.list_active_workflows()
            reseller = deal.reseller or await self._store.get_reseller(deal.reseller_id)
            workflow = find_matching_workflow(
                workflows, deal, reseller, self._default_workflow_name
            )
            if workflow is None:
                logger.warning("no_approval_workflow", deal_id=deal.id)
                return ApprovalActionResult(
                    success=False, message="No approval workflow configured"
                )

            logger.info(
                "approval_workflow_selected",
                deal_id=deal.id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
            )

            if find_auto_approval_step(workflow, deal.total_value) is not None:
                return await self._auto_approve(deal, workflow)
        except StoreError as exc:
            return self._store_failure("determine_workflow", deal.id, exc)

        return await self.initialize_workflow(deal, workflow)

    async def _auto_approve(
        self, deal: DealRead, workflow: ApprovalWorkflow
    ) -> ApprovalActionResult:
        await self._store.create_approval(
            NewDealApproval(
                deal_id=deal.id,
                workflow_id=workflow.id,
                step_number=0,
                action=ApprovalAction.APPROVE,
                comments=AUTO_APPROVAL_COMMENT,
                approved_at=datetime.now(timezone.utc),
            ),
            status_change=DealStatusChange(
                status=DealStatus.APPROVED,
                substatus=DealSubstatus.APPROVED_CONDITIONAL,
                reason=AUTO_APPROVAL_COMMENT,
            ),
        )
        approval_actions_total.labels(action="auto_approve", outcome="success").inc()
        logger.info("deal_auto_approved", deal_id=deal.id, workflow_id=workflow.id)
        return ApprovalActionResult(
            success=True,
            message="Deal auto-approved",
            next_step=ApprovalResult(
                workflow_id=workflow.id,
                current_step=0,
                auto_approved=True,
                requires_manual_approval=False,
                estimated_days=0,
            ),
        )

    async def initialize_workflow(
        self, deal: DealRead, workflow: ApprovalWorkflow
    ) -> ApprovalActionResult:
        """Create the first pending approval row and set the review substatus."""
        steps = workflow.ordered_steps
        if not steps:
            return ApprovalActionResult(
                success=False, message="Workflow has no steps defined"
            )
        first = steps[0]

        try:
            await self._store.create_approval(
                NewDealApproval(
                    deal_id=deal.id,
                    workflow_id=workflow.id,
                    step_number=first.step,
                ),
                status_change=DealStatusChange(
                    status=DealStatus.PENDING,
                    substatus=ROLE_SUBSTATUS[first.role],
                    reason=f"Approval workflow {workflow.name} started",
                ),
            )
            approvers = await self._store.list_staff_by_role(first.role)
        except ConcurrentModificationError:
            return ApprovalActionResult(
                success=False, message="Approval workflow already initialized"
            )
        except StoreError as exc:
            return self._store_failure("initialize_workflow", deal.id, exc)

        logger.info(
            "approval_workflow_initialized",
            deal_id=deal.id,
            workflow_id=workflow.id,
            step=first.step,
            role=first.role.value,
        )
        return ApprovalActionResult(
            success=True,
            message=f"Approval workflow started at {first.role.value} review",
            next_step=ApprovalResult(
                workflow_id=workflow.id,
                current_step=first.step,
                next_approvers=approvers,
                auto_approved=False,
                requires_manual_approval=True,
                estimated_days=estimate_approval_time(workflow),
            ),
        )

    async def process_approval_action(
        self,
        deal_id: str,
        approver_id: str,
        action: ApprovalAction | str,
        comments: str | None = None,
        escalate_to_id: str | None = None,
    ) -> ApprovalActionResult:
        """Resolve the deal's pending approval row with an approver action.

        Args:
            deal_id: Deal under review.
            approver_id: Staff user acting.
            action: approve, reject, request_changes, or escalate.
            comments: Optional comments recorded on the row and in history.
            escalate_to_id: Admin pre-assigned to the escalation row.

        Returns:
            ApprovalActionResult. ``next_step`` is set when the workflow
            advanced to another pending step.
        """
        try:
            action = ApprovalAction(action)
        except ValueError:
            return ApprovalActionResult(success=False, message=f"Invalid action: {action}")

        try:
            result = await self._process(deal_id, approver_id, action, comments, escalate_to_id)
        except ConcurrentModificationError:
            result = ApprovalActionResult(
                success=False,
                message="Approval was already processed by another request",
            )
        except StoreError as exc:
            result = self._store_failure("process_approval_action", deal_id, exc)

        approval_actions_total.labels(
            action=action.value, outcome="success" if result.success else "failure"
        ).inc()
        logger.info(
            "approval_action_processed",
            deal_id=deal_id,
            approver_id=approver_id,
            action=action.value,
            success=result.success,
            message=result.message,
        )
        return result

    async def _process(
        self,
        deal_id: str,
        approver_id: str,
        action: ApprovalAction,
        comments: str | None,
        escalate_to_id: str | None,
    ) -> ApprovalActionResult:
        current = await self._store.get_pending_approval(deal_id)
        if current is None:
            return ApprovalActionResult(success=False, message="No pending approval found")

        workflow = await self._store.get_workflow(current.workflow_id)
        if workflow is None:
            return ApprovalActionResult(success=False, message="Approval workflow not found")

        if action == ApprovalAction.APPROVE:
            return await self._approve(current.id, deal_id, approver_id, comments, workflow, current.step_number)

        if action == ApprovalAction.REJECT:
            await self._store.resolve_approval(
                current.id,
                approver_id,
                action,
                comments,
                status_change=DealStatusChange(
                    status=DealStatus.REJECTED,
                    substatus=DealSubstatus.REJECTED_APPROVAL,
                    reason=comments or "Rejected during approval",
                    changed_by=approver_id,
                ),
            )
            return ApprovalActionResult(success=True, message="Deal rejected")

        if action == ApprovalAction.REQUEST_CHANGES:
            await self._store.resolve_approval(
                current.id,
                approver_id,
                action,
                comments,
                status_change=DealStatusChange(
                    status=DealStatus.PENDING,
                    substatus=DealSubstatus.VALIDATION_PENDING,
                    reason=comments or "Changes requested",
                    changed_by=approver_id,
                ),
            )
            return ApprovalActionResult(success=True, message="Changes requested from reseller")

        # Escalate: check the target exists before resolving the current row
        admin_step = workflow.admin_step()
        if admin_step is None:
            return ApprovalActionResult(success=False, message="No escalation path available")

        await self._store.resolve_approval(
            current.id,
            approver_id,
            action,
            comments,
            next_approval=NewDealApproval(
                deal_id=deal_id,
                workflow_id=workflow.id,
                step_number=admin_step.step,
                approver_id=escalate_to_id,
            ),
            status_change=DealStatusChange(
                status=DealStatus.PENDING,
                substatus=DealSubstatus.ADMIN_REVIEW,
                reason=comments or "Escalated to admin review",
                changed_by=approver_id,
            ),
        )
        approvers = await self._store.list_staff_by_role(StaffRole.ADMIN)
        return ApprovalActionResult(
            success=True,
            message="Deal escalated to admin review",
            next_step=ApprovalResult(
                workflow_id=workflow.id,
                current_step=admin_step.step,
                next_approvers=approvers,
                estimated_days=estimate_step_time(admin_step),
            ),
        )

    async def _approve(
        self,
        approval_id: str,
        deal_id: str,
        approver_id: str,
        comments: str | None,
        workflow: ApprovalWorkflow,
        current_step: int,
    ) -> ApprovalActionResult:
        following = next_required_step(workflow, current_step)
        if following is None:
            await self._store.resolve_approval(
                approval_id,
                approver_id,
                ApprovalAction.APPROVE,
                comments,
                status_change=DealStatusChange(
                    status=DealStatus.APPROVED,
                    substatus=DealSubstatus.APPROVED_CONDITIONAL,
                    reason=comments or "Final approval granted",
                    changed_by=approver_id,
                ),
            )
            return ApprovalActionResult(success=True, message="Deal approved successfully")

        await self._store.resolve_approval(
            approval_id,
            approver_id,
            ApprovalAction.APPROVE,
            comments,
            next_approval=NewDealApproval(
                deal_id=deal_id,
                workflow_id=workflow.id,
                step_number=following.step,
            ),
            status_change=DealStatusChange(
                status=DealStatus.PENDING,
                substatus=ROLE_SUBSTATUS[following.role],
                reason=f"Approved at step {current_step}",
                changed_by=approver_id,
            ),
        )
        approvers = await self._store.list_staff_by_role(following.role)
        return ApprovalActionResult(
            success=True,
            message=f"Approved. Advanced to {following.role.value} review.",
            next_step=ApprovalResult(
                workflow_id=workflow.id,
                current_step=following.step,
                next_approvers=approvers,
                estimated_days=estimate_step_time(following),
            ),
        )

    async def bulk_approve(
        self, deal_ids: list[str], approver_id: str, comments: str | None = None
    ) -> BulkApprovalResult:
        """Approve several deals, collecting per-deal failures.

        Returns:
            BulkApprovalResult; ``errors`` entries read ``"Deal {id}: {message}"``.
        """
        processed = 0
        errors: list[str] = []
        for deal_id in deal_ids:
            try:
                result = await self.process_approval_action(
                    deal_id, approver_id, ApprovalAction.APPROVE, comments
                )
            except Exception as exc:
                logger.exception("bulk_approval_item_failed", deal_id=deal_id)
                errors.append(f"Deal {deal_id}: {exc}")
                continue
            if result.success:
                processed += 1
            else:
                errors.append(f"Deal {deal_id}: {result.message}")

        logger.info(
            "bulk_approval_completed",
            approver_id=approver_id,
            requested=len(deal_ids),
            processed=processed,
            failed=len(errors),
        )
        return BulkApprovalResult(success=not errors, processed=processed, errors=errors)

    async def get_bulk_approval_candidates(self, approver_id: str) -> list[DealRead]:
        """Pending deals whose current step is for the approver's role, oldest first."""
        try:
            approver = await self._store.get_staff_user(approver_id)
            if approver is None:
                return []

            workflows: dict[str, ApprovalWorkflow | None] = {}
            deal_ids: list[str] = []
            for approval in await self._store.list_pending_approvals():
                if approval.workflow_id not in workflows:
                    workflows[approval.workflow_id] = await self._store.get_workflow(
                        approval.workflow_id
                    )
                workflow = workflows[approval.workflow_id]
                step = workflow.get_step(approval.step_number) if workflow else None
                if step is not None and step.role == approver.role:
                    deal_ids.append(approval.deal_id)

            if not deal_ids:
                return []
            deals = await self._store.list_deals(deal_ids, status=DealStatus.PENDING)
        except StoreError as exc:
            logger.warning(
                "bulk_approval_candidates_failed", approver_id=approver_id, error=str(exc)
            )
            return []
        return sorted(deals, key=lambda d: d.created_at or datetime.min.replace(tzinfo=timezone.utc))

    def _store_failure(
        self, operation: str, deal_id: str, exc: StoreError
    ) -> ApprovalActionResult:
        logger.error(
            "approval_store_failure", operation=operation, deal_id=deal_id, error=str(exc)
        )
        return ApprovalActionResult(success=False, message=f"Failed to {operation.replace('_', ' ')}: {exc}")
