"""initial marketplace schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True)


def upgrade() -> None:
    op.create_table(
        "user_profiles",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("roles", postgresql.JSONB(), nullable=False),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "creator_profiles",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "solutions",
        _id(),
        sa.Column("creator_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("creator_profiles.id"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.Text(), nullable=False, server_default="DRAFT"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("bom", postgresql.JSONB(), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_solutions_status_submitted", "solutions", ["status", "submitted_at"])

    op.create_table(
        "solution_reviews",
        _id(),
        sa.Column("solution_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("solutions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reviewer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("decision", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("from_status", sa.Text(), nullable=False),
        sa.Column("to_status", sa.Text(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("completeness", sa.Integer(), nullable=True),
        sa.Column("innovation", sa.Integer(), nullable=True),
        sa.Column("market_potential", sa.Integer(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("decision_notes", sa.Text(), nullable=True),
        sa.Column("suggestions", postgresql.JSONB(), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_solution_reviews_solution_status", "solution_reviews", ["solution_id", "status"])

    op.create_table(
        "solution_bom_items",
        _id(),
        sa.Column("solution_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("solutions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit", sa.Text(), nullable=False, server_default="个"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("supplier", sa.Text(), nullable=True),
        sa.Column("part_number", sa.Text(), nullable=True),
        sa.Column("manufacturer", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("position", sa.Text(), nullable=True),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("specifications", postgresql.JSONB(), nullable=True),
        sa.Column("product_id", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_solution_bom_items_solution_sort", "solution_bom_items", ["solution_id", "sort_order"])

    op.create_table(
        "solution_assets",
        _id(),
        sa.Column("solution_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("solutions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "orders",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False, server_default="CNY"),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "order_solutions",
        _id(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("solution_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("solutions.id"), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("order_id", "solution_id", name="uq_order_solutions_order_solution"),
    )

    op.create_table(
        "payment_transactions",
        _id(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False, server_default="CNY"),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("external_id", sa.Text(), nullable=False, unique=True),
        sa.Column("external_transaction_id", sa.Text(), nullable=True),
        sa.Column("external_status", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])

    op.create_table(
        "payment_events",
        _id(),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payment_transactions.id"), nullable=True),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "revenue_shares",
        _id(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("solution_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("solutions.id"), nullable=False),
        sa.Column("creator_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("creator_profiles.id"), nullable=False),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payment_transactions.id"), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("creator_revenue", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("order_id", "solution_id", name="uq_revenue_shares_order_solution"),
    )


def downgrade() -> None:
    op.drop_table("revenue_shares")
    op.drop_table("payment_events")
    op.drop_index("ix_payment_transactions_status", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    op.drop_table("order_solutions")
    op.drop_table("orders")
    op.drop_table("solution_assets")
    op.drop_index("ix_solution_bom_items_solution_sort", table_name="solution_bom_items")
    op.drop_table("solution_bom_items")
    op.drop_index("ix_solution_reviews_solution_status", table_name="solution_reviews")
    op.drop_table("solution_reviews")
    op.drop_index("ix_solutions_status_submitted", table_name="solutions")
    op.drop_table("solutions")
    op.drop_table("creator_profiles")
    op.drop_table("user_profiles")
