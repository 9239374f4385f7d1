"""Deal store -- async data access for the deal evaluation engines.

Provides DealStore with the session_factory callable pattern. Converts
between SQLAlchemy models and the Pydantic schemas in deals.schemas so no
session or ORM row ever leaves this module.

Store-enforced invariants:
- resolve_approval is a compare-and-swap on ``approved_at IS NULL``; losing
  the race raises ConcurrentModificationError.
- Resolving a row, inserting its successor, updating the deal status and
  writing the status history row happen in a single transaction.
- create_conflicts inserts with ON CONFLICT DO NOTHING on the normalized
  deal pair, so an unordered pair is recorded at most once.
- Deals in a terminal status (approved/rejected) are never updated.

Every SQLAlchemyError is re-raised as StoreError.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.dealreg.deals.models import (
    ApprovalWorkflowModel,
    DealApprovalModel,
    DealConflictModel,
    DealModel,
    DealRegistrationPricingModel,
    DealStatusHistoryModel,
    EligibilityRuleModel,
    EndUserModel,
    ProductAvailabilityModel,
    ProductModel,
    ProductPricingTierModel,
    PromotionalPricingModel,
    ResellerModel,
    StaffUserModel,
    TerritoryPricingModel,
    VolumeDiscountModel,
)
from src.dealreg.deals.schemas import (
    TERMINAL_DEAL_STATUSES,
    ApprovalAction,
    ApprovalStep,
    ApprovalWorkflow,
    DealApproval,
    DealConflictCreate,
    DealConflictRead,
    DealLine,
    DealRead,
    DealRegistrationPricing,
    DealStatus,
    DealStatusChange,
    EligibilityRule,
    EndUser,
    NewDealApproval,
    PartnerTier,
    PartnerTierPricing,
    Product,
    ProductAvailability,
    PromotionalPricing,
    ResolutionStatus,
    Reseller,
    StaffRole,
    StaffUser,
    TerritoryPricing,
    VolumeDiscount,
    WorkflowConditions,
)

logger = structlog.get_logger(__name__)


# ── Errors ──────────────────────────────────────────────────────────────────


class StoreError(Exception):
    """The relational store failed or rejected an operation."""


class ConcurrentModificationError(StoreError):
    """A compare-and-swap lost its race (row already resolved or duplicated)."""


class ImmutableDealError(StoreError):
    """An update targeted a deal that is already approved or rejected."""


def _translate_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Re-raise SQLAlchemy failures from a store method as StoreError."""

    @functools.wraps(func)
    async def wrapper(self: DealStore, *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(self, *args, **kwargs)
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "store_operation_failed",
                operation=func.__name__,
                error=str(exc),
            )
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


def _as_uuid(value: str | None) -> uuid.UUID | None:
    """Parse an id string; malformed ids behave like unknown ids."""
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_reseller(model: ResellerModel) -> Reseller:
    return Reseller(
        id=str(model.id),
        name=model.name,
        email=model.email or "",
        territory=model.territory,
        tier=PartnerTier(model.tier),
        status=model.status,
    )


def _model_to_end_user(model: EndUserModel) -> EndUser:
    return EndUser(
        id=str(model.id),
        company_name=model.company_name,
        contact_name=model.contact_name or "",
        contact_email=model.contact_email or "",
        territory=model.territory,
    )


def _model_to_product(model: ProductModel) -> Product:
    return Product(
        id=str(model.id),
        name=model.name,
        category=model.category or "",
        list_price=model.list_price,
    )


def _model_to_staff(model: StaffUserModel) -> StaffUser:
    return StaffUser(
        id=str(model.id),
        name=model.name,
        email=model.email,
        role=StaffRole(model.role),
    )


def _model_to_deal(model: DealModel) -> DealRead:
    """Convert DealModel (with end_user, lines, reseller loaded) to DealRead."""
    return DealRead(
        id=str(model.id),
        reseller_id=str(model.reseller_id),
        end_user=_model_to_end_user(model.end_user),
        products=[
            DealLine(
                product_id=str(line.product_id),
                quantity=line.quantity,
                price=line.price,
            )
            for line in model.lines
        ],
        total_value=model.total_value,
        status=model.status,
        substatus=model.substatus,
        submission_date=model.submission_date,
        created_at=model.created_at,
        updated_at=model.updated_at,
        reseller=_model_to_reseller(model.reseller) if model.reseller else None,
    )


def _model_to_workflow(model: ApprovalWorkflowModel) -> ApprovalWorkflow:
    """Convert ApprovalWorkflowModel to ApprovalWorkflow, parsing JSON columns."""
    return ApprovalWorkflow(
        id=str(model.id),
        name=model.name,
        description=model.description,
        conditions=WorkflowConditions.model_validate(model.conditions or {}),
        steps=[ApprovalStep.model_validate(s) for s in (model.steps or [])],
        is_active=model.is_active,
        created_at=model.created_at,
    )


def _model_to_approval(model: DealApprovalModel) -> DealApproval:
    return DealApproval(
        id=str(model.id),
        deal_id=str(model.deal_id),
        workflow_id=str(model.workflow_id),
        step_number=model.step_number,
        approver_id=_str_or_none(model.approver_id),
        action=ApprovalAction(model.action) if model.action else None,
        comments=model.comments,
        approved_at=model.approved_at,
        created_at=model.created_at,
    )


def _model_to_conflict(model: DealConflictModel) -> DealConflictRead:
    return DealConflictRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        competing_deal_id=str(model.competing_deal_id),
        conflict_type=model.conflict_type,
        resolution_status=model.resolution_status,
        assigned_to_staff=_str_or_none(model.assigned_to_staff),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _approval_model(data: NewDealApproval) -> DealApprovalModel:
    return DealApprovalModel(
        deal_id=uuid.UUID(data.deal_id),
        workflow_id=uuid.UUID(data.workflow_id),
        step_number=data.step_number,
        approver_id=_as_uuid(data.approver_id),
        action=data.action.value if data.action else None,
        comments=data.comments,
        approved_at=data.approved_at,
    )


def _deal_query():
    return select(DealModel).options(
        selectinload(DealModel.end_user),
        selectinload(DealModel.lines),
        selectinload(DealModel.reseller),
    )


# ── Store ───────────────────────────────────────────────────────────────────


class DealStore:
    """Async access to reference data, pricing rules, deals, approvals, and conflicts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Reference Data ──────────────────────────────────────────────────────

    @_translate_errors
    async def get_reseller(self, reseller_id: str) -> Reseller | None:
        key = _as_uuid(reseller_id)
        if key is None:
            return None
        async for session in self._session_factory():
            model = await session.get(ResellerModel, key)
            return _model_to_reseller(model) if model else None

    @_translate_errors
    async def get_product(self, product_id: str) -> Product | None:
        key = _as_uuid(product_id)
        if key is None:
            return None
        async for session in self._session_factory():
            model = await session.get(ProductModel, key)
            return _model_to_product(model) if model else None

    @_translate_errors
    async def get_products(self, product_ids: Sequence[str]) -> dict[str, Product]:
        """Load several products at once, keyed by id. Unknown ids are absent."""
        keys = [k for k in (_as_uuid(p) for p in product_ids) if k is not None]
        if not keys:
            return {}
        async for session in self._session_factory():
            result = await session.execute(
                select(ProductModel).where(ProductModel.id.in_(keys))
            )
            return {str(m.id): _model_to_product(m) for m in result.scalars().all()}

    @_translate_errors
    async def get_staff_user(self, staff_id: str) -> StaffUser | None:
        key = _as_uuid(staff_id)
        if key is None:
            return None
        async for session in self._session_factory():
            model = await session.get(StaffUserModel, key)
            return _model_to_staff(model) if model else None

    @_translate_errors
    async def list_staff_by_role(self, role: StaffRole) -> list[StaffUser]:
        async for session in self._session_factory():
            result = await session.execute(
                select(StaffUserModel)
                .where(StaffUserModel.role == role.value)
                .order_by(StaffUserModel.name)
            )
            return [_model_to_staff(m) for m in result.scalars().all()]

    # ── Deals ───────────────────────────────────────────────────────────────

    @_translate_errors
    async def get_deal(self, deal_id: str) -> DealRead | None:
        """Get a deal with its end user, lines, and reseller.

        Args:
            deal_id: Deal UUID string.

        Returns:
            DealRead if found, None otherwise.
        """
        key = _as_uuid(deal_id)
        if key is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(_deal_query().where(DealModel.id == key))
            model = result.scalar_one_or_none()
            return _model_to_deal(model) if model else None

    @_translate_errors
    async def list_deals(
        self, deal_ids: Sequence[str], status: DealStatus | None = None
    ) -> list[DealRead]:
        """List the given deals, oldest first, optionally filtered by status."""
        keys = [k for k in (_as_uuid(d) for d in deal_ids) if k is not None]
        if not keys:
            return []
        async for session in self._session_factory():
            stmt = _deal_query().where(DealModel.id.in_(keys))
            if status is not None:
                stmt = stmt.where(DealModel.status == status.value)
            result = await session.execute(stmt.order_by(DealModel.created_at.asc()))
            return [_model_to_deal(m) for m in result.scalars().all()]

    @_translate_errors
    async def list_recent_deals(
        self,
        limit: int,
        since: datetime | None = None,
        reseller_id: str | None = None,
        exclude_deal_id: str | None = None,
    ) -> list[DealRead]:
        """List the most recent non-rejected deals, newest first.

        Args:
            limit: Maximum number of deals returned.
            since: Only deals created at or after this instant.
            reseller_id: Only deals submitted by this reseller.
            exclude_deal_id: Deal to leave out (the candidate itself).

        Returns:
            List of DealRead ordered by created_at descending.
        """
        async for session in self._session_factory():
            stmt = _deal_query().where(DealModel.status != DealStatus.REJECTED.value)
            if since is not None:
                stmt = stmt.where(DealModel.created_at >= since)
            if reseller_id is not None:
                reseller_key = _as_uuid(reseller_id)
                if reseller_key is None:
                    return []
                stmt = stmt.where(DealModel.reseller_id == reseller_key)
            exclude_key = _as_uuid(exclude_deal_id)
            if exclude_key is not None:
                stmt = stmt.where(DealModel.id != exclude_key)
            stmt = stmt.order_by(DealModel.created_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_deal(m) for m in result.scalars().all()]

    @_translate_errors
    async def update_deal_status(self, deal_id: str, change: DealStatusChange) -> None:
        """Apply a status transition and append its history row atomically."""
        async for session in self._session_factory():
            async with session.begin():
                await self._apply_status_change(session, deal_id, change)
            return None

    async def _apply_status_change(
        self, session: AsyncSession, deal_id: str, change: DealStatusChange
    ) -> None:
        key = _as_uuid(deal_id)
        deal = await session.get(DealModel, key, with_for_update=True) if key else None
        if deal is None:
            raise StoreError(f"Deal {deal_id} not found")
        if DealStatus(deal.status) in TERMINAL_DEAL_STATUSES:
            raise ImmutableDealError(f"Deal {deal_id} is already {deal.status}")

        session.add(
            DealStatusHistoryModel(
                deal_id=deal.id,
                old_status=deal.status,
                new_status=change.status.value,
                old_substatus=deal.substatus,
                new_substatus=change.substatus.value,
                changed_by=_as_uuid(change.changed_by),
                reason=change.reason,
            )
        )
        deal.status = change.status.value
        deal.substatus = change.substatus.value

        logger.info(
            "deal_status_changed",
            deal_id=deal_id,
            status=change.status.value,
            substatus=change.substatus.value,
        )

    # ── Eligibility Rules ───────────────────────────────────────────────────

    @_translate_errors
    async def list_eligibility_rules(self, rule_type: str) -> list[EligibilityRule]:
        async for session in self._session_factory():
            result = await session.execute(
                select(EligibilityRuleModel)
                .where(
                    EligibilityRuleModel.rule_type == rule_type,
                    EligibilityRuleModel.is_active.is_(True),
                )
                .order_by(EligibilityRuleModel.created_at.asc())
            )
            return [
                EligibilityRule(
                    id=str(m.id),
                    name=m.name,
                    rule_type=m.rule_type,
                    conditions=m.conditions or {},
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    # ── Pricing Rules ───────────────────────────────────────────────────────
    # Each returns every active row for the product; band, scope and date
    # filtering happens in the pricing engine.

    @_translate_errors
    async def list_territory_pricing(
        self, product_id: str, territory: str
    ) -> list[TerritoryPricing]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(TerritoryPricingModel).where(
                    TerritoryPricingModel.product_id == key,
                    TerritoryPricingModel.territory == territory,
                    TerritoryPricingModel.is_active.is_(True),
                )
            )
            return [
                TerritoryPricing(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    territory=m.territory,
                    price_multiplier=m.price_multiplier,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    @_translate_errors
    async def list_partner_tier_pricing(
        self, product_id: str, reseller_tier: PartnerTier
    ) -> list[PartnerTierPricing]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(ProductPricingTierModel).where(
                    ProductPricingTierModel.product_id == key,
                    ProductPricingTierModel.reseller_tier == reseller_tier.value,
                    ProductPricingTierModel.is_active.is_(True),
                )
            )
            return [
                PartnerTierPricing(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    tier_name=m.tier_name,
                    reseller_tier=m.reseller_tier,
                    territory=m.territory,
                    price=m.price,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    @_translate_errors
    async def list_volume_discounts(self, product_id: str) -> list[VolumeDiscount]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(VolumeDiscountModel)
                .where(
                    VolumeDiscountModel.product_id == key,
                    VolumeDiscountModel.is_active.is_(True),
                )
                .order_by(VolumeDiscountModel.min_quantity.desc())
            )
            return [
                VolumeDiscount(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    min_quantity=m.min_quantity,
                    max_quantity=m.max_quantity,
                    discount_type=m.discount_type,
                    discount_value=m.discount_value,
                    reseller_tier=m.reseller_tier,
                    territory=m.territory,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    @_translate_errors
    async def list_promotions(self, product_id: str) -> list[PromotionalPricing]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(PromotionalPricingModel).where(
                    PromotionalPricingModel.product_id == key,
                    PromotionalPricingModel.is_active.is_(True),
                )
            )
            return [
                PromotionalPricing(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    promotion_name=m.promotion_name,
                    discount_type=m.discount_type,
                    discount_value=m.discount_value,
                    min_quantity=m.min_quantity,
                    max_quantity=m.max_quantity,
                    reseller_tier=m.reseller_tier,
                    territory=m.territory,
                    start_date=m.start_date,
                    end_date=m.end_date,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    @_translate_errors
    async def list_deal_registration_pricing(
        self, product_id: str
    ) -> list[DealRegistrationPricing]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(DealRegistrationPricingModel).where(
                    DealRegistrationPricingModel.product_id == key,
                    DealRegistrationPricingModel.is_active.is_(True),
                )
            )
            return [
                DealRegistrationPricing(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    price=m.price,
                    min_deal_value=m.min_deal_value,
                    max_deal_value=m.max_deal_value,
                    reseller_tier=m.reseller_tier,
                    territory=m.territory,
                    is_active=m.is_active,
                )
                for m in result.scalars().all()
            ]

    @_translate_errors
    async def list_product_availability(
        self, product_id: str
    ) -> list[ProductAvailability]:
        key = _as_uuid(product_id)
        if key is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(ProductAvailabilityModel).where(
                    ProductAvailabilityModel.product_id == key,
                )
            )
            return [
                ProductAvailability(
                    id=str(m.id),
                    product_id=str(m.product_id),
                    reseller_id=_str_or_none(m.reseller_id),
                    territory=m.territory,
                    reseller_tier=m.reseller_tier,
                    is_available=m.is_available,
                    restriction_reason=m.restriction_reason,
                )
                for m in result.scalars().all()
            ]

    # ── Workflows & Approvals ───────────────────────────────────────────────

    @_translate_errors
    async def list_active_workflows(self) -> list[ApprovalWorkflow]:
        """Active workflows in creation order (first eligible wins)."""
        async for session in self._session_factory():
            result = await session.execute(
                select(ApprovalWorkflowModel)
                .where(ApprovalWorkflowModel.is_active.is_(True))
                .order_by(ApprovalWorkflowModel.created_at.asc())
            )
            return [_model_to_workflow(m) for m in result.scalars().all()]

    @_translate_errors
    async def get_workflow(self, workflow_id: str) -> ApprovalWorkflow | None:
        key = _as_uuid(workflow_id)
        if key is None:
            return None
        async for session in self._session_factory():
            model = await session.get(ApprovalWorkflowModel, key)
            return _model_to_workflow(model) if model else None

    @_translate_errors
    async def get_pending_approval(self, deal_id: str) -> DealApproval | None:
        """The deal's single unresolved approval row, if any."""
        key = _as_uuid(deal_id)
        if key is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(DealApprovalModel)
                .where(
                    DealApprovalModel.deal_id == key,
                    DealApprovalModel.approved_at.is_(None),
                )
                .order_by(DealApprovalModel.step_number.desc())
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return _model_to_approval(model) if model else None

    @_translate_errors
    async def list_pending_approvals(self) -> list[DealApproval]:
        async for session in self._session_factory():
            result = await session.execute(
                select(DealApprovalModel)
                .where(DealApprovalModel.approved_at.is_(None))
                .order_by(DealApprovalModel.created_at.asc())
            )
            return [_model_to_approval(m) for m in result.scalars().all()]

    @_translate_errors
    async def create_approval(
        self,
        approval: NewDealApproval,
        status_change: DealStatusChange | None = None,
    ) -> DealApproval:
        """Insert an approval row and apply the deal's status change atomically.

        Raises:
            ConcurrentModificationError: An unresolved row already exists for the deal.
        """
        async for session in self._session_factory():
            try:
                async with session.begin():
                    model = _approval_model(approval)
                    session.add(model)
                    await session.flush()
                    if status_change is not None:
                        await self._apply_status_change(
                            session, approval.deal_id, status_change
                        )
            except IntegrityError as exc:
                raise ConcurrentModificationError(
                    f"Deal {approval.deal_id} already has a pending approval"
                ) from exc
            return _model_to_approval(model)

    @_translate_errors
    async def resolve_approval(
        self,
        approval_id: str,
        approver_id: str,
        action: ApprovalAction,
        comments: str | None = None,
        next_approval: NewDealApproval | None = None,
        status_change: DealStatusChange | None = None,
    ) -> DealApproval:
        """Resolve an unresolved approval row and advance the workflow atomically.

        Args:
            approval_id: The unresolved DealApproval row.
            approver_id: Staff user resolving the row.
            action: Action recorded on the row.
            comments: Optional approver comments.
            next_approval: Successor row to insert in the same transaction.
            status_change: Deal status transition to apply in the same transaction.

        Returns:
            The resolved DealApproval.

        Raises:
            ConcurrentModificationError: The row was already resolved, or the
                successor would create a second unresolved row.
        """
        key = _as_uuid(approval_id)
        if key is None:
            raise ConcurrentModificationError(f"Approval {approval_id} not found")
        now = datetime.now(timezone.utc)

        async for session in self._session_factory():
            try:
                async with session.begin():
                    result = await session.execute(
                        update(DealApprovalModel)
                        .where(
                            DealApprovalModel.id == key,
                            DealApprovalModel.approved_at.is_(None),
                        )
                        .values(
                            approver_id=_as_uuid(approver_id),
                            action=action.value,
                            comments=comments,
                            approved_at=now,
                        )
                        .returning(DealApprovalModel)
                    )
                    model = result.scalar_one_or_none()
                    if model is None:
                        raise ConcurrentModificationError(
                            f"Approval {approval_id} was already resolved"
                        )
                    if next_approval is not None:
                        session.add(_approval_model(next_approval))
                        await session.flush()
                    if status_change is not None:
                        await self._apply_status_change(
                            session, str(model.deal_id), status_change
                        )
            except IntegrityError as exc:
                raise ConcurrentModificationError(
                    f"Approval {approval_id} could not be advanced"
                ) from exc
            return _model_to_approval(model)

    # ── Conflicts ───────────────────────────────────────────────────────────

    @_translate_errors
    async def create_conflicts(
        self,
        deal_id: str,
        records: Sequence[DealConflictCreate],
        status_change: DealStatusChange | None = None,
    ) -> int:
        """Insert conflict records, skipping pairs already recorded.

        Args:
            deal_id: Deal the conflicts were detected for.
            records: Conflict rows to insert.
            status_change: Optional status transition for ``deal_id`` applied
                in the same transaction.

        Returns:
            Number of rows actually inserted.
        """
        inserted = 0
        async for session in self._session_factory():
            async with session.begin():
                for record in records:
                    deal_key = uuid.UUID(record.deal_id)
                    competing_key = uuid.UUID(record.competing_deal_id)
                    pair_low, pair_high = sorted((deal_key, competing_key))
                    stmt = (
                        pg_insert(DealConflictModel)
                        .values(
                            deal_id=deal_key,
                            competing_deal_id=competing_key,
                            pair_low=pair_low,
                            pair_high=pair_high,
                            conflict_type=record.conflict_type.value,
                            resolution_status=record.resolution_status.value,
                        )
                        .on_conflict_do_nothing(constraint="uq_deal_conflicts_pair")
                        .returning(DealConflictModel.id)
                    )
                    result = await session.execute(stmt)
                    if result.scalar_one_or_none() is not None:
                        inserted += 1
                if status_change is not None:
                    await self._apply_status_change(session, deal_id, status_change)
            return inserted

    @_translate_errors
    async def update_conflict(
        self,
        conflict_id: str,
        resolution_status: ResolutionStatus,
        assigned_to_staff: str | None = None,
    ) -> DealConflictRead | None:
        key = _as_uuid(conflict_id)
        if key is None:
            return None
        async for session in self._session_factory():
            async with session.begin():
                model = await session.get(DealConflictModel, key)
                if model is None:
                    return None
                model.resolution_status = resolution_status.value
                if assigned_to_staff is not None:
                    model.assigned_to_staff = _as_uuid(assigned_to_staff)
            await session.refresh(model)
            return _model_to_conflict(model)
