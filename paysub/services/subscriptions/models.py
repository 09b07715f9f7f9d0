"""Subscription and plan persistence models.

The partial unique index `uq_subscription_account_open` is the storage-level
guarantee that an account has at most one open subscription.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from paysub.common.db import Base, JSONType, utcnow

OPEN_STATUS_PREDICATE = text("status IN ('pending', 'authorized', 'active', 'paused')")


class SubscriptionPlan(Base):
    """Catalogue entry; read-only for the core, written by the seed script."""

    __tablename__ = "subscription_plan"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    description: Mapped[str] = mapped_column(String(500), default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    frequency_type: Mapped[str] = mapped_column(String(16), default="months")
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)
    gateway_plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    active_jobs_limit: Mapped[int] = mapped_column(Integer, default=0)
    featured_jobs: Mapped[int] = mapped_column(Integer, default=0)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    has_advanced_dashboard: Mapped[bool] = mapped_column(Boolean, default=False)
    plan_level: Mapped[int] = mapped_column(Integer, default=1)
    features: Mapped[list] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class Subscription(Base):
    """Recurring subscription of one account to one plan."""

    __tablename__ = "subscription"
    __table_args__ = (
        Index(
            "uq_subscription_account_open",
            "account_id",
            unique=True,
            postgresql_where=OPEN_STATUS_PREDICATE,
            sqlite_where=OPEN_STATUS_PREDICATE,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    external_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("subscription_plan.id"), index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    frequency_type: Mapped[str] = mapped_column(String(16), default="months")
    auto_recurring: Mapped[bool] = mapped_column(Boolean, default=True)
    is_exempted: Mapped[bool] = mapped_column(Boolean, default=False)
    exemption_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    exempted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
