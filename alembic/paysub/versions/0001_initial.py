"""initial billing schema

Revision ID: 0001_paysub
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_paysub"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscription_plan",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="BRL"),
        sa.Column("frequency", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("frequency_type", sa.String(length=16), nullable=False, server_default="months"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("gateway_plan_id", sa.String(length=64), nullable=True),
        sa.Column("active_jobs_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("featured_jobs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_advanced_dashboard", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("plan_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("features", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_subscription_plan_status", "subscription_plan", ["status"])

    op.create_table(
        "payment",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payment_method", sa.String(length=64), nullable=False),
        sa.Column("payment_type", sa.String(length=32), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )
    op.create_index("ix_payment_account_id", "payment", ["account_id"])
    op.create_index("ix_payment_status", "payment", ["status"])
    op.create_index("ix_payment_payment_type", "payment", ["payment_type"])

    op.create_table(
        "subscription",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method_id", sa.String(length=64), nullable=True),
        sa.Column("frequency", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("frequency_type", sa.String(length=16), nullable=False, server_default="months"),
        sa.Column("auto_recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_exempted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("exemption_reason", sa.String(length=500), nullable=True),
        sa.Column("exempted_by", sa.String(length=100), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plan.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )
    op.create_index("ix_subscription_account_id", "subscription", ["account_id"])
    op.create_index("ix_subscription_plan_id", "subscription", ["plan_id"])
    op.create_index("ix_subscription_status", "subscription", ["status"])


def downgrade() -> None:
    op.drop_index("ix_subscription_status", table_name="subscription")
    op.drop_index("ix_subscription_plan_id", table_name="subscription")
    op.drop_index("ix_subscription_account_id", table_name="subscription")
    op.drop_table("subscription")
    op.drop_index("ix_payment_payment_type", table_name="payment")
    op.drop_index("ix_payment_status", table_name="payment")
    op.drop_index("ix_payment_account_id", table_name="payment")
    op.drop_table("payment")
    op.drop_index("ix_subscription_plan_status", table_name="subscription_plan")
    op.drop_table("subscription_plan")
