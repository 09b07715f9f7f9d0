"""Gateway request/result models and the strict response parsers.

Every gateway response goes through `parse_payment`, `parse_subscription` or
`parse_plan` right after it is received. They either return a fully typed
result (statuses already mapped) or raise `GatewayError`; no caller reads raw
gateway fields.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from paysub.common.errors import GatewayError
from paysub.common.state_machine import PaymentStatus, SubscriptionStatus
from paysub.services.gateway.status_mapper import map_payment_status, map_subscription_status


class PayerIdentification(BaseModel):
    type: str | None = None
    number: str | None = None


class PayerInfo(BaseModel):
    """Payer data forwarded to the gateway."""

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    identification: PayerIdentification | None = None


class GatewayPaymentRequest(BaseModel):
    account_id: int
    amount: Decimal
    currency: str
    description: str
    payment_method: str
    payment_type: str
    installments: int = 1
    payer: PayerInfo
    card_token: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewaySubscriptionRequest(BaseModel):
    account_id: int
    gateway_plan_id: str | None = None
    reason: str
    amount: Decimal
    currency: str
    frequency: int
    frequency_type: str
    payer_email: str
    card_token: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewayPayment(BaseModel):
    """Normalised view of one gateway payment."""

    external_id: str
    status: PaymentStatus
    raw_status: str
    status_detail: str = ""
    payment_method_id: str = ""
    payment_type_id: str = ""
    amount: Decimal
    currency: str | None = None
    installments: int = 1
    processing_mode: str = ""
    description: str = ""
    payer: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    transaction_details: dict[str, Any] = Field(default_factory=dict)
    point_of_interaction: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class GatewaySubscription(BaseModel):
    """Normalised view of one gateway preapproval (recurring subscription)."""

    external_id: str
    status: SubscriptionStatus
    raw_status: str
    gateway_plan_id: str | None = None
    payer_id: str | None = None
    card_id: str | None = None
    payment_method_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    next_payment_date: datetime | None = None
    auto_recurring: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewayPlan(BaseModel):
    external_id: str
    reason: str = ""
    status: str = ""
    amount: Decimal | None = None
    currency: str | None = None
    frequency: int | None = None
    frequency_type: str | None = None


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        if value is None or value == "":
            raise ValueError("id is required")
        return str(value)


class _RawPayment(_RawModel):
    id: str
    status: str
    status_detail: str | None = None
    payment_method_id: str | None = None
    payment_type_id: str | None = None
    transaction_amount: Decimal
    currency_id: str | None = None
    installments: int | None = None
    processing_mode: str | None = None
    description: str | None = None
    payer: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    transaction_details: dict[str, Any] | None = None
    point_of_interaction: dict[str, Any] | None = None
    date_created: datetime | None = None


class _RawAutoRecurring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    frequency: int | None = None
    frequency_type: str | None = None
    transaction_amount: Decimal | None = None
    currency_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class _RawSubscription(_RawModel):
    id: str
    status: str
    preapproval_plan_id: str | None = None
    payer_id: str | int | None = None
    card_id: str | int | None = None
    payment_method_id: str | None = None
    date_created: datetime | None = None
    next_payment_date: datetime | None = None
    auto_recurring: _RawAutoRecurring | None = None
    metadata: dict[str, Any] | None = None


class _RawPlan(_RawModel):
    id: str
    reason: str | None = None
    status: str | None = None
    auto_recurring: _RawAutoRecurring | None = None


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_payment(body: Any, *, operation: str, external_id: str | None = None) -> GatewayPayment:
    try:
        raw = _RawPayment.model_validate(body)
    except ValidationError as exc:
        raise GatewayError(
            "malformed gateway payment response", operation=operation, external_id=external_id, body=body
        ) from exc
    return GatewayPayment(
        external_id=raw.id,
        status=map_payment_status(raw.status),
        raw_status=raw.status,
        status_detail=raw.status_detail or "",
        payment_method_id=raw.payment_method_id or "",
        payment_type_id=raw.payment_type_id or "",
        amount=raw.transaction_amount,
        currency=raw.currency_id,
        installments=raw.installments or 1,
        processing_mode=raw.processing_mode or "",
        description=raw.description or "",
        payer=raw.payer or {},
        metadata=raw.metadata or {},
        transaction_details=raw.transaction_details or {},
        point_of_interaction=raw.point_of_interaction or {},
        created_at=raw.date_created,
    )


def parse_subscription(body: Any, *, operation: str, external_id: str | None = None) -> GatewaySubscription:
    try:
        raw = _RawSubscription.model_validate(body)
    except ValidationError as exc:
        raise GatewayError(
            "malformed gateway subscription response", operation=operation, external_id=external_id, body=body
        ) from exc
    recurring = raw.auto_recurring
    return GatewaySubscription(
        external_id=raw.id,
        status=map_subscription_status(raw.status),
        raw_status=raw.status,
        gateway_plan_id=raw.preapproval_plan_id,
        payer_id=_as_str(raw.payer_id),
        card_id=_as_str(raw.card_id),
        payment_method_id=raw.payment_method_id,
        start_date=(recurring.start_date if recurring and recurring.start_date else raw.date_created),
        end_date=recurring.end_date if recurring else None,
        next_payment_date=raw.next_payment_date,
        auto_recurring=bool(recurring and recurring.frequency_type),
        metadata=raw.metadata or {},
    )


def parse_plan(body: Any, *, operation: str, external_id: str | None = None) -> GatewayPlan:
    try:
        raw = _RawPlan.model_validate(body)
    except ValidationError as exc:
        raise GatewayError(
            "malformed gateway plan response", operation=operation, external_id=external_id, body=body
        ) from exc
    recurring = raw.auto_recurring
    return GatewayPlan(
        external_id=raw.id,
        reason=raw.reason or "",
        status=raw.status or "",
        amount=recurring.transaction_amount if recurring else None,
        currency=recurring.currency_id if recurring else None,
        frequency=recurring.frequency if recurring else None,
        frequency_type=recurring.frequency_type if recurring else None,
    )
