"""Subscription, plan and entitlement schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from paysub.common.db import as_utc
from paysub.common.state_machine import SubscriptionStatus
from paysub.services.gateway.schemas import PayerInfo


class FrequencyType(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class Exemption(BaseModel):
    """Administrative grant of a subscription without charging."""

    is_exempted: bool = False
    reason: str | None = None
    granted_by: str | None = None
    end_date: datetime | None = None


class SubscriptionCreateRequest(BaseModel):
    account_id: int | None = None
    plan_id: int | None = None
    payment_method_id: str | None = None
    auto_recurring: bool = True
    payer: PayerInfo | None = None
    card_token: str | None = None
    exemption: Exemption | None = None
    metadata: dict[str, Any] | None = None


class SubscriptionCancelRequest(BaseModel):
    reason: str | None = None


class SubscriptionRecord(BaseModel):
    id: str
    external_id: str | None = None
    account_id: int
    plan_id: int
    status: SubscriptionStatus
    start_date: datetime | None = None
    end_date: datetime | None = None
    next_payment_date: datetime | None = None
    payment_method_id: str | None = None
    frequency: int
    frequency_type: str
    auto_recurring: bool
    is_exempted: bool = False
    exemption_reason: str | None = None
    exempted_by: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "SubscriptionRecord":
        return cls(
            id=row.id,
            external_id=row.external_id,
            account_id=row.account_id,
            plan_id=row.plan_id,
            status=row.status,
            start_date=as_utc(row.start_date),
            end_date=as_utc(row.end_date),
            next_payment_date=as_utc(row.next_payment_date),
            payment_method_id=row.payment_method_id,
            frequency=row.frequency,
            frequency_type=row.frequency_type,
            auto_recurring=row.auto_recurring,
            is_exempted=row.is_exempted,
            exemption_reason=row.exemption_reason,
            exempted_by=row.exempted_by,
            metadata=dict(row.details or {}),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


class SubscriptionPage(BaseModel):
    items: list[SubscriptionRecord]
    total: int
    page: int
    limit: int
    total_pages: int


class PlanRecord(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    description: str = ""
    amount: Decimal
    currency: str
    frequency: int
    frequency_type: str
    status: str
    gateway_plan_id: str | None = None
    active_jobs_limit: int = 0
    featured_jobs: int = 0
    is_featured: bool = False
    has_advanced_dashboard: bool = False
    plan_level: int = 1
    features: list[str] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Entitlements(BaseModel):
    """Feature limits an account currently holds through its open subscription."""

    account_id: int
    subscription_id: str
    subscription_status: SubscriptionStatus
    plan_id: int
    plan_name: str
    plan_level: int
    active_jobs_limit: int
    featured_jobs: int
    is_featured: bool
    has_advanced_dashboard: bool
    features: list[str]
