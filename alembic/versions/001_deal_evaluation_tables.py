"""Deal evaluation tables: reference data, pricing rules, deals, approvals, conflicts.

Revision ID: 001_deal_evaluation_tables
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_deal_evaluation_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True)


def _product_fk() -> sa.Column:
    return sa.Column(
        "product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False, index=True
    )


def upgrade() -> None:
    # ── Reference data ──────────────────────────────────────────────────
    op.create_table(
        "resellers",
        _id(),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, server_default=""),
        sa.Column("territory", sa.String(100), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "end_users",
        _id(),
        sa.Column("company_name", sa.String(300), nullable=False),
        sa.Column("contact_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("contact_email", sa.String(320), nullable=False, server_default=""),
        sa.Column("territory", sa.String(100), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "products",
        _id(),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("category", sa.String(100), nullable=False, server_default=""),
        sa.Column("list_price", sa.Float(), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "staff_users",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="staff"),
        _created_at(),
    )

    # ── Deals ───────────────────────────────────────────────────────────
    op.create_table(
        "deals",
        _id(),
        sa.Column("reseller_id", UUID(as_uuid=True), sa.ForeignKey("resellers.id"), nullable=False),
        sa.Column("end_user_id", UUID(as_uuid=True), sa.ForeignKey("end_users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("substatus", sa.String(40), nullable=True, server_default="submitted"),
        sa.Column("total_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_deals_status_created", "deals", ["status", "created_at"])
    op.create_index("ix_deals_reseller_created", "deals", ["reseller_id", "created_at"])

    op.create_table(
        "deal_products",
        _id(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.UniqueConstraint("deal_id", "product_id", name="uq_deal_products_deal_product"),
        sa.CheckConstraint("quantity > 0", name="ck_deal_products_quantity_positive"),
        sa.CheckConstraint("price > 0", name="ck_deal_products_price_positive"),
    )

    op.create_table(
        "deal_status_history",
        _id(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("old_substatus", sa.String(40), nullable=True),
        sa.Column("new_substatus", sa.String(40), nullable=True),
        sa.Column("changed_by", UUID(as_uuid=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
    )

    # ── Pricing rules ───────────────────────────────────────────────────
    op.create_table(
        "territory_pricing",
        _id(),
        _product_fk(),
        sa.Column("territory", sa.String(100), nullable=False),
        sa.Column("price_multiplier", sa.Float(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_table(
        "product_pricing_tiers",
        _id(),
        _product_fk(),
        sa.Column("tier_name", sa.String(100), nullable=False),
        sa.Column("reseller_tier", sa.String(20), nullable=False),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_table(
        "volume_discounts",
        _id(),
        _product_fk(),
        sa.Column("min_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_quantity", sa.Integer(), nullable=True),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Float(), nullable=False),
        sa.Column("reseller_tier", sa.String(20), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_table(
        "promotional_pricing",
        _id(),
        _product_fk(),
        sa.Column("promotion_name", sa.String(200), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Float(), nullable=False),
        sa.Column("min_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_quantity", sa.Integer(), nullable=True),
        sa.Column("reseller_tier", sa.String(20), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_table(
        "deal_registration_pricing",
        _id(),
        _product_fk(),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("min_deal_value", sa.Float(), nullable=True),
        sa.Column("max_deal_value", sa.Float(), nullable=True),
        sa.Column("reseller_tier", sa.String(20), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_table(
        "product_availability",
        _id(),
        _product_fk(),
        sa.Column("reseller_id", UUID(as_uuid=True), sa.ForeignKey("resellers.id"), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("reseller_tier", sa.String(20), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("restriction_reason", sa.Text(), nullable=True),
        _created_at(),
    )

    # ── Rules & workflows ───────────────────────────────────────────────
    op.create_table(
        "eligibility_rules",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rule_type", sa.String(50), nullable=False, index=True),
        sa.Column("conditions", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "approval_workflows",
        _id(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("conditions", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("steps", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "deal_approvals",
        _id(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "workflow_id",
            UUID(as_uuid=True),
            sa.ForeignKey("approval_workflows.id"),
            nullable=False,
        ),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("approver_id", UUID(as_uuid=True), sa.ForeignKey("staff_users.id"), nullable=True),
        sa.Column("action", sa.String(30), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    # At most one unresolved approval row per deal
    op.create_index(
        "uq_deal_approvals_one_unresolved",
        "deal_approvals",
        ["deal_id"],
        unique=True,
        postgresql_where=sa.text("approved_at IS NULL"),
    )

    # ── Conflicts ───────────────────────────────────────────────────────
    op.create_table(
        "deal_conflicts",
        _id(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "competing_deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pair_low", UUID(as_uuid=True), nullable=False),
        sa.Column("pair_high", UUID(as_uuid=True), nullable=False),
        sa.Column("conflict_type", sa.String(40), nullable=False),
        sa.Column("resolution_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "assigned_to_staff", UUID(as_uuid=True), sa.ForeignKey("staff_users.id"), nullable=True
        ),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("pair_low", "pair_high", name="uq_deal_conflicts_pair"),
        sa.CheckConstraint("deal_id <> competing_deal_id", name="ck_deal_conflicts_distinct"),
    )


def downgrade() -> None:
    op.drop_table("deal_conflicts")
    op.drop_index("uq_deal_approvals_one_unresolved", table_name="deal_approvals")
    op.drop_table("deal_approvals")
    op.drop_table("approval_workflows")
    op.drop_table("eligibility_rules")
    op.drop_table("product_availability")
    op.drop_table("deal_registration_pricing")
    op.drop_table("promotional_pricing")
    op.drop_table("volume_discounts")
    op.drop_table("product_pricing_tiers")
    op.drop_table("territory_pricing")
    op.drop_table("deal_status_history")
    op.drop_table("deal_products")
    op.drop_index("ix_deals_reseller_created", table_name="deals")
    op.drop_index("ix_deals_status_created", table_name="deals")
    op.drop_table("deals")
    op.drop_table("staff_users")
    op.drop_table("products")
    op.drop_table("end_users")
    op.drop_table("resellers")
