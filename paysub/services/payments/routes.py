"""HTTP routes for one-time payments."""

from fastapi import APIRouter, Depends, Header, Request

from paysub.common.auth import Caller, Capability
from paysub.common.errors import ConflictError
from paysub.services.api.deps import Container, get_container, require
from paysub.services.payments.schemas import (
    PaymentCancelRequest,
    PaymentCreateRequest,
    PaymentPage,
    PaymentRecord,
    PaymentRefundRequest,
)

router = APIRouter(prefix="/payments", tags=["payments"])

LIST_FILTERS = ("account_id", "status", "payment_type", "start_date", "end_date", "page", "limit")


@router.post("", status_code=201, response_model=PaymentRecord)
async def create_payment(
    req: PaymentCreateRequest,
    container: Container = Depends(get_container),
    caller: Caller = Depends(require(Capability.PAYMENTS_WRITE)),
    idempotency_key: str | None = Header(default=None),
):
    """Charge through the gateway; the row exists only if the gateway accepted."""

    metadata = dict(req.metadata or {})
    if caller.caller_id:
        metadata.setdefault("created_by", caller.caller_id)
    return await container.payments.create_payment(
        account_id=req.account_id,
        amount=req.amount,
        currency=req.currency,
        description=req.description,
        payment_method=req.payment_method,
        payment_type=req.payment_type,
        payer=req.payer,
        card_token=req.card_token,
        installments=req.installments,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )


@router.get("", response_model=PaymentPage)
async def list_payments(
    request: Request,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.PAYMENTS_READ)),
):
    filters = {name: request.query_params.get(name) for name in LIST_FILTERS}
    return await container.payments.list_payments(filters)


@router.get("/{payment_id}", response_model=PaymentRecord)
async def get_payment(
    payment_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.PAYMENTS_READ)),
):
    return await container.payments.get_payment(payment_id)


@router.post("/{payment_id}/cancel", response_model=PaymentRecord)
async def cancel_payment(
    payment_id: str,
    req: PaymentCancelRequest | None = None,
    container: Container = Depends(get_container),
    caller: Caller = Depends(require(Capability.PAYMENTS_WRITE)),
):
    reason = req.reason if req else None
    return await container.payments.cancel_payment(payment_id, reason=reason, actor_id=caller.caller_id)


@router.post("/{payment_id}/refund", response_model=PaymentRecord)
async def refund_payment(
    payment_id: str,
    req: PaymentRefundRequest | None = None,
    container: Container = Depends(get_container),
    caller: Caller = Depends(require(Capability.PAYMENTS_REFUND)),
):
    req = req or PaymentRefundRequest()
    return await container.payments.refund_payment(
        payment_id, amount=req.amount, reason=req.reason, actor_id=caller.caller_id
    )


@router.post("/{payment_id}/sync", response_model=PaymentRecord)
async def sync_payment(
    payment_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.BILLING_ADMIN)),
):
    """Admin reconcile: pull the gateway's current view of this payment."""

    record = await container.payments.get_payment(payment_id)
    if not record.external_id:
        raise ConflictError(f"payment {payment_id} has no gateway reference")
    return await container.payments.reconcile(record.external_id)
