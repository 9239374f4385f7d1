"""Pydantic schemas for the deal evaluation pipeline.

Defines all structured types crossing the engine boundary:
- Enums: PartnerTier, DealStatus, DealSubstatus, StaffRole, ApprovalAction,
  ConflictType, ConflictSeverity, ResolutionStatus, DiscountType,
  AdjustmentType, IssueSeverity
- Reference data: Reseller, EndUser, Product, StaffUser
- Deals: DealLine, DealSubmission, DealRead, DealStatusChange
- Pricing rules: TerritoryPricing, PartnerTierPricing, VolumeDiscount,
  PromotionalPricing, DealRegistrationPricing, ProductAvailability
- Eligibility rules: EligibilityRule
- Workflows: ApprovalStep, WorkflowConditions, ApprovalWorkflow,
  DealApproval, NewDealApproval
- Conflicts: DealConflictCreate, DealConflictRead, DetectedConflict,
  ConflictDetectionResult, SimilarDeal
- Engine results: ValidationIssue, ValidationResult, PricingContext,
  DiscountEntry, PricingResult, ProductAvailabilityResult, ApprovalResult,
  ApprovalActionResult, BulkApprovalResult

Engines never hand store sessions or ORM rows across their boundary; every
operation accepts and returns these models.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class PartnerTier(str, Enum):
    """Partnership level gating pricing and product eligibility."""

    GOLD = "gold"
    SILVER = "silver"
    BRONZE = "bronze"


class DealStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    DISPUTED = "disputed"
    APPROVED = "approved"
    REJECTED = "rejected"


class DealSubstatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    VALIDATION_PENDING = "validation_pending"
    CONFLICT_REVIEW = "conflict_review"
    APPROVAL_PENDING = "approval_pending"
    STAFF_REVIEW = "staff_review"
    MANAGER_REVIEW = "manager_review"
    ADMIN_REVIEW = "admin_review"
    APPROVED_CONDITIONAL = "approved_conditional"
    REJECTED_VALIDATION = "rejected_validation"
    REJECTED_CONFLICT = "rejected_conflict"
    REJECTED_APPROVAL = "rejected_approval"
    APPEAL_PENDING = "appeal_pending"


TERMINAL_DEAL_STATUSES: frozenset[DealStatus] = frozenset(
    {DealStatus.APPROVED, DealStatus.REJECTED}
)


class StaffRole(str, Enum):
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    ESCALATE = "escalate"


class ConflictType(str, Enum):
    DUPLICATE_END_USER = "duplicate_end_user"
    TERRITORY_OVERLAP = "territory_overlap"
    TIMING_CONFLICT = "timing_conflict"


class ConflictSeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class AdjustmentType(str, Enum):
    """Pricing stage that produced a discount audit entry."""

    TERRITORY = "territory"
    PARTNER_TIER = "partner_tier"
    VOLUME = "volume"
    PROMOTIONAL = "promotional"
    DEAL_REGISTRATION = "deal_registration"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


# ── Reference Data ──────────────────────────────────────────────────────────


class Reseller(BaseModel):
    """Submitting partner. Read-only input to every engine."""

    id: str
    name: str
    email: str = ""
    territory: str
    tier: PartnerTier
    status: str = "active"


class EndUser(BaseModel):
    """End customer named on a deal."""

    id: str | None = None
    company_name: str = Field(min_length=1)
    contact_name: str = ""
    contact_email: str = ""
    territory: str = Field(min_length=1)


class Product(BaseModel):
    id: str
    name: str
    category: str = ""
    list_price: float = Field(gt=0)


class StaffUser(BaseModel):
    id: str
    name: str
    email: str = ""
    role: StaffRole = StaffRole.STAFF


# ── Deals ───────────────────────────────────────────────────────────────────


class DealLine(BaseModel):
    """One product line on a deal."""

    product_id: str
    quantity: int = Field(gt=0)
    price: float = Field(gt=0)

    @property
    def line_total(self) -> float:
        return self.quantity * self.price


class DealSubmission(BaseModel):
    """A deal as submitted for validation and conflict detection.

    ``id`` is set when the submission describes an already persisted deal,
    so the deal is never compared against itself.
    """

    id: str | None = None
    reseller_id: str
    end_user: EndUser
    products: list[DealLine] = Field(default_factory=list)
    submission_date: datetime | None = None

    @property
    def total_value(self) -> float:
        return sum(line.line_total for line in self.products)


class DealRead(BaseModel):
    """A persisted deal with its end customer, lines, and (optionally) reseller."""

    id: str
    reseller_id: str
    end_user: EndUser
    products: list[DealLine] = Field(default_factory=list)
    total_value: float
    status: DealStatus = DealStatus.PENDING
    substatus: DealSubstatus | None = DealSubstatus.SUBMITTED
    submission_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    reseller: Reseller | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DEAL_STATUSES

    def to_submission(self) -> DealSubmission:
        """Project this deal back to the submission shape used by validation."""
        return DealSubmission(
            id=self.id,
            reseller_id=self.reseller_id,
            end_user=self.end_user,
            products=list(self.products),
            submission_date=self.submission_date or self.created_at,
        )


class DealStatusChange(BaseModel):
    """Status transition applied by the store together with a history row."""

    status: DealStatus
    substatus: DealSubstatus
    reason: str | None = None
    changed_by: str | None = None


# ── Pricing Rules ───────────────────────────────────────────────────────────


class TerritoryPricing(BaseModel):
    id: str
    product_id: str
    territory: str
    price_multiplier: float = Field(gt=0)
    is_active: bool = True


class PartnerTierPricing(BaseModel):
    id: str
    product_id: str
    tier_name: str
    reseller_tier: PartnerTier
    territory: str | None = None
    price: float = Field(ge=0)
    is_active: bool = True


class VolumeDiscount(BaseModel):
    id: str
    product_id: str
    min_quantity: int = 1
    max_quantity: int | None = None
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    reseller_tier: PartnerTier | None = None
    territory: str | None = None
    is_active: bool = True


class PromotionalPricing(BaseModel):
    id: str
    product_id: str
    promotion_name: str
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    min_quantity: int = 1
    max_quantity: int | None = None
    reseller_tier: PartnerTier | None = None
    territory: str | None = None
    start_date: date
    end_date: date
    is_active: bool = True


class DealRegistrationPricing(BaseModel):
    id: str
    product_id: str
    price: float = Field(ge=0)
    min_deal_value: float | None = None
    max_deal_value: float | None = None
    reseller_tier: PartnerTier | None = None
    territory: str | None = None
    is_active: bool = True


class ProductAvailability(BaseModel):
    id: str
    product_id: str
    reseller_id: str | None = None
    territory: str | None = None
    reseller_tier: PartnerTier | None = None
    is_available: bool = True
    restriction_reason: str | None = None


class EligibilityRule(BaseModel):
    """Configurable business rule (territory, product, or deal_size).

    ``conditions`` keys in use: ``allowed_territories``, ``restricted_tiers``,
    ``restricted_products``, ``applies_to_tiers``, ``max_value``.
    """

    id: str
    name: str
    rule_type: str
    conditions: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


# ── Approval Workflows ──────────────────────────────────────────────────────


class ApprovalStep(BaseModel):
    step: int
    role: StaffRole
    required: bool = True
    auto_approve_threshold: float | None = None


class WorkflowConditions(BaseModel):
    """Eligibility conditions; an absent condition matches every deal."""

    min_deal_value: float | None = None
    max_deal_value: float | None = None
    partner_tiers: list[PartnerTier] | None = None
    territories: list[str] | None = None


class ApprovalWorkflow(BaseModel):
    id: str
    name: str
    description: str | None = None
    conditions: WorkflowConditions = Field(default_factory=WorkflowConditions)
    steps: list[ApprovalStep] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None

    @property
    def ordered_steps(self) -> list[ApprovalStep]:
        return sorted(self.steps, key=lambda s: s.step)

    def get_step(self, step_number: int) -> ApprovalStep | None:
        for step in self.steps:
            if step.step == step_number:
                return step
        return None

    def admin_step(self) -> ApprovalStep | None:
        """The designated escalation target: the first admin-role step."""
        for step in self.ordered_steps:
            if step.role == StaffRole.ADMIN:
                return step
        return None


class DealApproval(BaseModel):
    """One approval step attempt. Unresolved while ``approved_at`` is None."""

    id: str
    deal_id: str
    workflow_id: str
    step_number: int
    approver_id: str | None = None
    action: ApprovalAction | None = None
    comments: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.approved_at is not None


class NewDealApproval(BaseModel):
    """Insert payload for a DealApproval row."""

    deal_id: str
    workflow_id: str
    step_number: int
    approver_id: str | None = None
    action: ApprovalAction | None = None
    comments: str | None = None
    approved_at: datetime | None = None


# ── Conflicts ───────────────────────────────────────────────────────────────


class DealConflictCreate(BaseModel):
    deal_id: str
    competing_deal_id: str
    conflict_type: ConflictType
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING


class DealConflictRead(BaseModel):
    id: str
    deal_id: str
    competing_deal_id: str
    conflict_type: ConflictType
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    assigned_to_staff: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DetectedConflict(BaseModel):
    type: ConflictType
    severity: ConflictSeverity
    conflicting_deal: DealRead
    reason: str
    similarity: float | None = None


class ConflictDetectionResult(BaseModel):
    has_conflicts: bool = False
    conflicts: list[DetectedConflict] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class SimilarDeal(BaseModel):
    """An existing deal whose end customer resembles a candidate's."""

    deal: DealRead
    similarity: float


# ── Validation Results ──────────────────────────────────────────────────────


class ValidationIssue(BaseModel):
    """A single validation finding addressed to a field path."""

    field: str
    code: str
    message: str
    severity: IssueSeverity
    suggestion: str | None = None


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)


# ── Pricing Results ─────────────────────────────────────────────────────────


class PricingContext(BaseModel):
    quantity: int = Field(default=1, gt=0)
    reseller_tier: PartnerTier | None = None
    territory: str | None = None
    reseller_id: str | None = None
    is_deal_registration: bool = False
    deal_value: float | None = None
    calculation_date: date | None = None


class DiscountEntry(BaseModel):
    """Audit trail entry for one applied pricing stage (per-unit amount)."""

    model_config = ConfigDict(frozen=True)

    type: AdjustmentType
    name: str
    amount: float
    percentage: float | None = None


class PricingResult(BaseModel):
    product_id: str
    base_price: float
    final_price: float
    currency: str = "GBP"
    quantity: int = 1
    line_total: float
    discounts_applied: list[DiscountEntry] = Field(default_factory=list)
    pricing_tier: str | None = None
    is_deal_registration_eligible: bool = False
    territory_adjustment: float | None = None
    volume_discount: float | None = None
    promotional_discount: float | None = None


class ProductAvailabilityResult(BaseModel):
    available: bool
    reason: str | None = None


# ── Approval Results ────────────────────────────────────────────────────────


class ApprovalResult(BaseModel):
    """Where a deal stands in its workflow after an engine call."""

    workflow_id: str
    current_step: int
    next_approvers: list[StaffUser] = Field(default_factory=list)
    auto_approved: bool = False
    requires_manual_approval: bool = True
    estimated_days: int = 0


class ApprovalActionResult(BaseModel):
    """Explicit success/failure result of a workflow operation."""

    success: bool
    message: str
    next_step: ApprovalResult | None = None


class BulkApprovalResult(BaseModel):
    success: bool
    processed: int = 0
    errors: list[str] = Field(default_factory=list)
