"""Deal registration persistence models.

SQLAlchemy models for the deal evaluation pipeline:
- Reference data: ResellerModel, EndUserModel, ProductModel, StaffUserModel
- Deals: DealModel, DealProductModel, DealStatusHistoryModel
- Pricing rules: TerritoryPricingModel, ProductPricingTierModel,
  VolumeDiscountModel, PromotionalPricingModel, DealRegistrationPricingModel,
  ProductAvailabilityModel
- Rules and workflows: EligibilityRuleModel, ApprovalWorkflowModel,
  DealApprovalModel
- Conflicts: DealConflictModel

Two invariants live in the schema itself rather than in engine code:
- uq_deal_approvals_one_unresolved: at most one DealApproval row per deal
  with approved_at IS NULL (partial unique index).
- uq_deal_conflicts_pair: one conflict record per unordered deal pair,
  keyed on the normalized (pair_low, pair_high) columns.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.dealreg.core.database import Base


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now())


def _updated_at() -> Mapped[datetime | None]:
    return mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)


# ── Reference Data ──────────────────────────────────────────────────────────


class ResellerModel(Base):
    """Partner organization submitting deals."""

    __tablename__ = "resellers"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    territory: Mapped[str] = mapped_column(String(100), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()


class EndUserModel(Base):
    """End customer a deal is registered against."""

    __tablename__ = "end_users"

    id: Mapped[uuid.UUID] = _uuid_pk()
    company_name: Mapped[str] = mapped_column(String(300), nullable=False)
    contact_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    territory: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()


class ProductModel(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    list_price: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()


class StaffUserModel(Base):
    __tablename__ = "staff_users"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="staff")
    created_at: Mapped[datetime] = _created_at()


# ── Deals ───────────────────────────────────────────────────────────────────


class DealModel(Base):
    """A reseller's claim to sell products to an end user.

    Status and substatus are stored as strings matching the DealStatus and
    DealSubstatus enum values.
    """

    __tablename__ = "deals"
    __table_args__ = (
        Index("ix_deals_status_created", "status", "created_at"),
        Index("ix_deals_reseller_created", "reseller_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    reseller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("resellers.id"), nullable=False
    )
    end_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("end_users.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    substatus: Mapped[str | None] = mapped_column(
        String(40), nullable=True, default="submitted"
    )
    total_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    submission_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()

    reseller: Mapped[ResellerModel] = relationship()
    end_user: Mapped[EndUserModel] = relationship()
    lines: Mapped[list[DealProductModel]] = relationship(
        back_populates="deal", order_by="DealProductModel.id"
    )


class DealProductModel(Base):
    __tablename__ = "deal_products"
    __table_args__ = (
        UniqueConstraint("deal_id", "product_id", name="uq_deal_products_deal_product"),
        CheckConstraint("quantity > 0", name="ck_deal_products_quantity_positive"),
        CheckConstraint("price > 0", name="ck_deal_products_price_positive"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)

    deal: Mapped[DealModel] = relationship(back_populates="lines")


class DealStatusHistoryModel(Base):
    """Append-only audit trail of deal status transitions."""

    __tablename__ = "deal_status_history"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    old_substatus: Mapped[str | None] = mapped_column(String(40), nullable=True)
    new_substatus: Mapped[str | None] = mapped_column(String(40), nullable=True)
    changed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()


# ── Pricing Rules ───────────────────────────────────────────────────────────


class TerritoryPricingModel(Base):
    __tablename__ = "territory_pricing"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    territory: Mapped[str] = mapped_column(String(100), nullable=False)
    price_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class ProductPricingTierModel(Base):
    __tablename__ = "product_pricing_tiers"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    tier_name: Mapped[str] = mapped_column(String(100), nullable=False)
    reseller_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class VolumeDiscountModel(Base):
    __tablename__ = "volume_discounts"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[float] = mapped_column(Float, nullable=False)
    reseller_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class PromotionalPricingModel(Base):
    __tablename__ = "promotional_pricing"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    promotion_name: Mapped[str] = mapped_column(String(200), nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[float] = mapped_column(Float, nullable=False)
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reseller_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class DealRegistrationPricingModel(Base):
    __tablename__ = "deal_registration_pricing"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    price: Mapped[float] = mapped_column(Float, nullable=False)
    min_deal_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_deal_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    reseller_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class ProductAvailabilityModel(Base):
    """Availability override scoped by reseller, territory, and/or tier."""

    __tablename__ = "product_availability"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    reseller_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("resellers.id"), nullable=True
    )
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reseller_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    restriction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()


# ── Rules & Workflows ───────────────────────────────────────────────────────


class EligibilityRuleModel(Base):
    __tablename__ = "eligibility_rules"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    conditions: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()


class ApprovalWorkflowModel(Base):
    """Named approval workflow with JSON conditions and ordered JSON steps."""

    __tablename__ = "approval_workflows"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    steps: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()


class DealApprovalModel(Base):
    """One approval step attempt for a deal. Unresolved while approved_at IS NULL."""

    __tablename__ = "deal_approvals"
    __table_args__ = (
        Index(
            "uq_deal_approvals_one_unresolved",
            "deal_id",
            unique=True,
            postgresql_where=text("approved_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    workflow_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_workflows.id"), nullable=False
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff_users.id"), nullable=True
    )
    action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()


# ── Conflicts ───────────────────────────────────────────────────────────────


class DealConflictModel(Base):
    """Recorded conflict between two deals.

    pair_low/pair_high hold the two deal ids in sorted order so the unique
    constraint covers the unordered pair.
    """

    __tablename__ = "deal_conflicts"
    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_deal_conflicts_pair"),
        CheckConstraint("deal_id <> competing_deal_id", name="ck_deal_conflicts_distinct"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    competing_deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False
    )
    pair_low: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    pair_high: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    conflict_type: Mapped[str] = mapped_column(String(40), nullable=False)
    resolution_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    assigned_to_staff: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff_users.id"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime | None] = _updated_at()
