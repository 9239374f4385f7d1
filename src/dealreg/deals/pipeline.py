"""Deal evaluation pipeline -- runs the engines in order for one persisted deal.

validate -> detect and record conflicts -> price each line -> route to approval

Evaluation stops at the first stage that blocks the deal: validation errors
leave the deal untouched, a high-severity conflict leaves it disputed, and a
pricing failure leaves it pending without a workflow.
"""

from __future__ import annotations

from enum import Enum

import structlog
from pydantic import BaseModel, Field

from src.dealreg.deals.approvals import ApprovalWorkflowEngine
from src.dealreg.deals.conflicts import ConflictDetectionEngine
from src.dealreg.deals.pricing import PricingEngine, ProductNotFoundError
from src.dealreg.deals.schemas import (
    ApprovalActionResult,
    ConflictDetectionResult,
    ConflictSeverity,
    PricingContext,
    PricingResult,
    ValidationResult,
)
from src.dealreg.deals.store import StoreError
from src.dealreg.deals.validation import ValidationEngine

logger = structlog.get_logger(__name__)


class EvaluationStage(str, Enum):
    VALIDATION = "validation"
    CONFLICTS = "conflicts"
    PRICING = "pricing"
    WORKFLOW = "workflow"
    COMPLETE = "complete"


class DealEvaluationReport(BaseModel):
    """Every stage's result plus the stage at which evaluation stopped."""

    deal_id: str
    stopped_at: EvaluationStage
    validation: ValidationResult | None = None
    conflicts: ConflictDetectionResult | None = None
    conflicts_recorded: int = 0
    pricing: list[PricingResult] = Field(default_factory=list)
    pricing_errors: list[str] = Field(default_factory=list)
    workflow: ApprovalActionResult | None = None


class DealEvaluationPipeline:
    """Composes the four engines over a deal loaded from the store.

    Args:
        store: DealStore (or compatible).
        validation_engine: ValidationEngine instance.
        conflict_engine: ConflictDetectionEngine instance.
        pricing_engine: PricingEngine instance.
        approval_engine: ApprovalWorkflowEngine instance.
    """

    def __init__(
        self,
        store,
        validation_engine: ValidationEngine,
        conflict_engine: ConflictDetectionEngine,
        pricing_engine: PricingEngine,
        approval_engine: ApprovalWorkflowEngine,
    ) -> None:
        self._store = store
        self._validation = validation_engine
        self._conflicts = conflict_engine
        self._pricing = pricing_engine
        self._approvals = approval_engine

    async def evaluate_deal(self, deal_id: str) -> DealEvaluationReport | None:
        """Evaluate a persisted deal end to end.

        Returns:
            DealEvaluationReport, or None when the deal does not exist.

        Raises:
            StoreError: Loading the deal or recording conflicts failed.
        """
        deal = await self._store.get_deal(deal_id)
        if deal is None:
            return None

        log = logger.bind(deal_id=deal_id)
        submission = deal.to_submission()

        validation = await self._validation.validate_deal(submission)
        if not validation.is_valid:
            log.info("deal_evaluation_stopped", stage=EvaluationStage.VALIDATION.value)
            return DealEvaluationReport(
                deal_id=deal_id,
                stopped_at=EvaluationStage.VALIDATION,
                validation=validation,
            )

        conflicts = await self._conflicts.detect_conflicts(submission)
        recorded = await self._conflicts.create_conflict_records(deal_id, conflicts.conflicts)
        if any(c.severity == ConflictSeverity.HIGH for c in conflicts.conflicts):
            log.info(
                "deal_evaluation_stopped",
                stage=EvaluationStage.CONFLICTS.value,
                conflicts=len(conflicts.conflicts),
            )
            return DealEvaluationReport(
                deal_id=deal_id,
                stopped_at=EvaluationStage.CONFLICTS,
                validation=validation,
                conflicts=conflicts,
                conflicts_recorded=recorded,
            )

        reseller = deal.reseller or await self._store.get_reseller(deal.reseller_id)
        calculation_date = submission.submission_date.date() if submission.submission_date else None
        pricing: list[PricingResult] = []
        pricing_errors: list[str] = []
        for line in deal.products:
            context = PricingContext(
                quantity=line.quantity,
                reseller_tier=reseller.tier if reseller else None,
                territory=reseller.territory if reseller else None,
                reseller_id=deal.reseller_id,
                is_deal_registration=True,
                deal_value=deal.total_value,
                calculation_date=calculation_date,
            )
            try:
                pricing.append(await self._pricing.calculate_price(line.product_id, context))
            except (ProductNotFoundError, StoreError) as exc:
                pricing_errors.append(f"Product {line.product_id}: {exc}")

        if pricing_errors:
            log.warning(
                "deal_evaluation_stopped",
                stage=EvaluationStage.PRICING.value,
                errors=pricing_errors,
            )
            return DealEvaluationReport(
                deal_id=deal_id,
                stopped_at=EvaluationStage.PRICING,
                validation=validation,
                conflicts=conflicts,
                conflicts_recorded=recorded,
                pricing=pricing,
                pricing_errors=pricing_errors,
            )

        workflow = await self._approvals.determine_workflow(deal)
        stopped_at = EvaluationStage.COMPLETE if workflow.success else EvaluationStage.WORKFLOW
        log.info(
            "deal_evaluated",
            stage=stopped_at.value,
            workflow_message=workflow.message,
        )
        return DealEvaluationReport(
            deal_id=deal_id,
            stopped_at=stopped_at,
            validation=validation,
            conflicts=conflicts,
            conflicts_recorded=recorded,
            pricing=pricing,
            workflow=workflow,
        )
