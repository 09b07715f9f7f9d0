"""Payment request/response schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from paysub.common.db import as_utc
from paysub.common.state_machine import PaymentStatus
from paysub.services.gateway.schemas import PayerInfo


class PaymentType(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    PIX = "pix"
    BOLETO = "boleto"
    WALLET = "wallet"
    SUBSCRIPTION = "subscription"


CARD_PAYMENT_TYPES = {PaymentType.CREDIT_CARD, PaymentType.DEBIT_CARD}


class PaymentCreateRequest(BaseModel):
    """Body of `POST /payments`.

    Everything is optional here; the service reports all missing or invalid
    fields together in one `ValidationError`.
    """

    account_id: int | None = None
    amount: Decimal | None = None
    currency: str | None = None
    description: str | None = None
    payment_method: str | None = None
    payment_type: str | None = None
    payer: PayerInfo | None = None
    card_token: str | None = None
    installments: int | None = None
    metadata: dict[str, Any] | None = None


class PaymentCancelRequest(BaseModel):
    reason: str | None = None


class PaymentRefundRequest(BaseModel):
    amount: Decimal | None = None
    reason: str | None = None


class PaymentRecord(BaseModel):
    """Stored payment as seen by services and callers."""

    id: str
    external_id: str | None = None
    account_id: int
    amount: Decimal
    currency: str
    description: str
    status: PaymentStatus
    payment_method: str
    payment_type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "PaymentRecord":
        return cls(
            id=row.id,
            external_id=row.external_id,
            account_id=row.account_id,
            amount=row.amount,
            currency=row.currency,
            description=row.description,
            status=row.status,
            payment_method=row.payment_method,
            payment_type=row.payment_type,
            metadata=dict(row.details or {}),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


class PaymentPage(BaseModel):
    items: list[PaymentRecord]
    total: int
    page: int
    limit: int
    total_pages: int
