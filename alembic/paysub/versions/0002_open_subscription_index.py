"""one open subscription per account, plus listing indexes

Revision ID: 0002_open_subscription_index
Revises: 0001_paysub
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_open_subscription_index"
down_revision = "0001_paysub"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "uq_subscription_account_open",
        "subscription",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'authorized', 'active', 'paused')"),
    )
    op.create_index(
        "ix_payment_account_id_created_at",
        "payment",
        ["account_id", "created_at"],
    )
    op.create_index(
        "ix_subscription_status_end_date",
        "subscription",
        ["status", "end_date"],
    )


def downgrade() -> None:
    op.drop_index("ix_subscription_status_end_date", table_name="subscription")
    op.drop_index("ix_payment_account_id_created_at", table_name="payment")
    op.drop_index("uq_subscription_account_open", table_name="subscription")
