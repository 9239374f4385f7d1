"""REST API endpoints for deal evaluation.

Exposes validation, conflict detection, pricing, the end-to-end evaluation
pipeline, and the approval workflow. Engines are read from app.state; the
acting staff user comes from get_current_staff and approval operations are
gated by core.permissions capabilities.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.dealreg.api.deps import get_current_staff, get_service
from src.dealreg.core.permissions import Capability, capability_for_action, has_capability
from src.dealreg.deals.pipeline import DealEvaluationReport
from src.dealreg.deals.pricing import ProductNotFoundError
from src.dealreg.deals.schemas import (
    ApprovalAction,
    ApprovalActionResult,
    BulkApprovalResult,
    ConflictDetectionResult,
    DealConflictRead,
    DealRead,
    DealSubmission,
    PartnerTier,
    PricingContext,
    PricingResult,
    ProductAvailabilityResult,
    ResolutionStatus,
    StaffUser,
    ValidationResult,
)
from src.dealreg.deals.store import StoreError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class PricingRequest(BaseModel):
    """Price several products under one partner context."""

    product_ids: list[str] = Field(min_length=1)
    quantity: int = Field(default=1, gt=0)
    reseller_tier: PartnerTier | None = None
    territory: str | None = None
    reseller_id: str | None = None
    is_deal_registration: bool = False
    deal_value: float | None = None


class ApprovalActionRequest(BaseModel):
    action: ApprovalAction
    comments: str | None = None
    escalate_to_id: str | None = None


class BulkApproveRequest(BaseModel):
    deal_ids: list[str] = Field(min_length=1)
    comments: str | None = None


class ResolveConflictRequest(BaseModel):
    resolution_status: ResolutionStatus
    assigned_to_staff: str | None = None


# ── Response Schemas ─────────────────────────────────────────────────────────


class ProductPricing(BaseModel):
    product_id: str
    pricing: PricingResult
    availability: ProductAvailabilityResult


class PricingError(BaseModel):
    product_id: str
    error: str


class PricingResponse(BaseModel):
    results: list[ProductPricing] = Field(default_factory=list)
    errors: list[PricingError] = Field(default_factory=list)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require(staff: StaffUser, capability: Capability) -> None:
    if not has_capability(staff.role, capability):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role {staff.role.value} may not {capability.value.replace('_', ' ')}",
        )


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Deal store unavailable: {exc}",
    )


async def _load_deal(request: Request, deal_id: str) -> DealRead:
    store = get_service(request, "deal_store")
    try:
        deal = await store.get_deal(deal_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if deal is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deal not found: {deal_id}",
        )
    return deal


def _action_result(result: ApprovalActionResult) -> ApprovalActionResult:
    """Surface workflow failures as 409 with the engine's message."""
    if not result.success:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return result


# ── Validation & Conflicts ───────────────────────────────────────────────────


@router.post("/validate", response_model=ValidationResult)
async def validate_deal(
    body: DealSubmission,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> ValidationResult:
    """Validate a deal submission without persisting anything."""
    engine = get_service(request, "validation_engine")
    return await engine.validate_deal(body)


@router.post("/conflicts/detect", response_model=ConflictDetectionResult)
async def detect_conflicts(
    body: DealSubmission,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> ConflictDetectionResult:
    """Detect conflicts between a submission and existing deals."""
    engine = get_service(request, "conflict_engine")
    return await engine.detect_conflicts(body)


@router.patch("/conflicts/{conflict_id}", response_model=DealConflictRead)
async def resolve_conflict(
    conflict_id: str,
    body: ResolveConflictRequest,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> DealConflictRead:
    """Resolve or dismiss a recorded conflict."""
    _require(staff, Capability.RESOLVE_CONFLICT)
    engine = get_service(request, "conflict_engine")
    try:
        conflict = await engine.resolve_conflict(
            conflict_id,
            body.resolution_status,
            assigned_to_staff=body.assigned_to_staff or staff.id,
        )
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if conflict is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conflict not found: {conflict_id}",
        )
    return conflict


# ── Pricing ──────────────────────────────────────────────────────────────────


@router.post("/pricing", response_model=PricingResponse)
async def calculate_pricing(
    body: PricingRequest,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> PricingResponse:
    """Price each requested product and report its availability.

    A failure for one product is reported in ``errors`` and does not stop
    the others.
    """
    engine = get_service(request, "pricing_engine")
    context = PricingContext(
        quantity=body.quantity,
        reseller_tier=body.reseller_tier,
        territory=body.territory,
        reseller_id=body.reseller_id,
        is_deal_registration=body.is_deal_registration,
        deal_value=body.deal_value,
    )

    response = PricingResponse()
    for product_id in body.product_ids:
        try:
            pricing = await engine.calculate_price(product_id, context)
            availability = await engine.check_product_availability(
                product_id,
                reseller_id=body.reseller_id,
                territory=body.territory,
                reseller_tier=body.reseller_tier,
            )
        except (ProductNotFoundError, StoreError) as exc:
            logger.warning("product_pricing_failed", product_id=product_id, error=str(exc))
            response.errors.append(PricingError(product_id=product_id, error=str(exc)))
            continue
        response.results.append(
            ProductPricing(product_id=product_id, pricing=pricing, availability=availability)
        )
    return response


@router.get("/pricing/{product_id}", response_model=PricingResult)
async def get_product_price(
    product_id: str,
    request: Request,
    quantity: int = 1,
    reseller_tier: PartnerTier | None = None,
    territory: str | None = None,
    staff: StaffUser = Depends(get_current_staff),
) -> PricingResult:
    """Price a single product; 404 when the product does not exist."""
    engine = get_service(request, "pricing_engine")
    try:
        return await engine.calculate_price(
            product_id,
            PricingContext(quantity=quantity, reseller_tier=reseller_tier, territory=territory),
        )
    except ProductNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


# ── Evaluation & Workflow ────────────────────────────────────────────────────


@router.post("/{deal_id}/evaluate", response_model=DealEvaluationReport)
async def evaluate_deal(
    deal_id: str,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> DealEvaluationReport:
    """Run validation, conflict detection, pricing, and workflow routing."""
    _require(staff, Capability.EVALUATE_DEAL)
    pipeline = get_service(request, "evaluation_pipeline")
    try:
        report = await pipeline.evaluate_deal(deal_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deal not found: {deal_id}",
        )
    return report


@router.post("/{deal_id}/workflow", response_model=ApprovalActionResult)
async def start_workflow(
    deal_id: str,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> ApprovalActionResult:
    """Determine the deal's approval workflow and auto-approve or start it."""
    engine = get_service(request, "approval_engine")
    deal = await _load_deal(request, deal_id)
    return _action_result(await engine.determine_workflow(deal))


@router.post("/{deal_id}/approval", response_model=ApprovalActionResult)
async def process_approval(
    deal_id: str,
    body: ApprovalActionRequest,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> ApprovalActionResult:
    """Approve, reject, request changes on, or escalate the deal's current step."""
    _require(staff, capability_for_action(body.action))
    engine = get_service(request, "approval_engine")
    result = await engine.process_approval_action(
        deal_id,
        staff.id,
        body.action,
        comments=body.comments,
        escalate_to_id=body.escalate_to_id,
    )
    return _action_result(result)


@router.post("/bulk-approve", response_model=BulkApprovalResult)
async def bulk_approve(
    body: BulkApproveRequest,
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> BulkApprovalResult:
    """Approve several deals; per-deal failures are listed in ``errors``."""
    _require(staff, Capability.BULK_APPROVE)
    engine = get_service(request, "approval_engine")
    return await engine.bulk_approve(body.deal_ids, staff.id, comments=body.comments)


@router.get("/bulk-approval-candidates", response_model=list[DealRead])
async def bulk_approval_candidates(
    request: Request,
    staff: StaffUser = Depends(get_current_staff),
) -> list[Any]:
    """Pending deals waiting on the acting staff member's role, oldest first."""
    engine = get_service(request, "approval_engine")
    return await engine.get_bulk_approval_candidates(staff.id)
