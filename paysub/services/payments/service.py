"""Payment lifecycle: create, cancel, refund and reconcile.

Every operation follows the same order: validate, check the status graph,
call the gateway, then persist. A gateway failure leaves the local row as it
was. `reconcile` is the single path for gateway-originated truth and is
shared by webhooks and the admin `/sync` route.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as SchemaError

from paysub.common.db import utcnow
from paysub.common.errors import ConflictError, ConstraintViolation, StaleWrite, ValidationError
from paysub.common.logging import logger, resource_id_ctx
from paysub.common.metrics import payment_transitions_total, payments_created_total, reconcile_conflicts_total
from paysub.common.pagination import (
    datetime_filter,
    enum_filter,
    normalise_page,
    positive_int_filter,
    total_pages,
)
from paysub.common.state_machine import PaymentStatus, is_reachable, validate_transition
from paysub.common.validation import (
    check_amount,
    check_payer,
    check_positive_int,
    check_text,
    raise_if_errors,
)
from paysub.services.gateway.base import GatewayClient
from paysub.services.gateway.schemas import GatewayPayment, GatewayPaymentRequest, PayerInfo
from paysub.services.payments.repository import PaymentFilters, PaymentRepository
from paysub.services.payments.schemas import CARD_PAYMENT_TYPES, PaymentPage, PaymentRecord, PaymentType

CANCELLABLE_STATUSES = {PaymentStatus.PENDING, PaymentStatus.IN_PROCESS}
DEFAULT_CANCELLATION_REASON = "Cancelled by user"
MAX_INSTALLMENTS = 12


class PaymentService:
    """Owns the payment status graph on top of the gateway and the store."""

    def __init__(self, repository: PaymentRepository, gateway: GatewayClient, default_currency: str = "BRL") -> None:
        self.repository = repository
        self.gateway = gateway
        self.default_currency = default_currency

    def _validate_create(
        self,
        account_id: Any,
        amount: Any,
        currency: Any,
        description: Any,
        payment_method: Any,
        payment_type: Any,
        payer: PayerInfo | None,
        card_token: Any,
        installments: Any,
    ) -> tuple[Decimal, str, PaymentType, int]:
        errors: dict[str, str] = {}
        check_positive_int(errors, "account_id", account_id)
        quantised = check_amount(errors, "amount", amount)
        code = currency if currency is not None else self.default_currency
        currency_code = code.strip().upper() if isinstance(code, str) else ""
        if len(currency_code) != 3 or not currency_code.isalpha():
            errors["currency"] = "must be a three letter ISO-4217 code"
        check_text(errors, "description", description)
        check_text(errors, "payment_method", payment_method)
        kind = None
        if not payment_type:
            errors["payment_type"] = "is required"
        else:
            try:
                kind = PaymentType(str(payment_type).strip().lower())
            except ValueError:
                errors["payment_type"] = "must be one of " + ", ".join(item.value for item in PaymentType)
        check_payer(errors, payer)
        if installments is None:
            installments = 1
        if isinstance(installments, bool) or not isinstance(installments, int) or not 1 <= installments <= MAX_INSTALLMENTS:
            errors["installments"] = f"must be between 1 and {MAX_INSTALLMENTS}"
        if kind in CARD_PAYMENT_TYPES and not card_token:
            errors["card_token"] = "is required for card payments"
        raise_if_errors(errors, "invalid payment request")
        return quantised, currency_code, kind, installments

    async def create_payment(
        self,
        account_id: int,
        amount: Decimal,
        currency: str | None,
        description: str,
        payment_method: str,
        payment_type: str,
        payer: PayerInfo | Mapping[str, Any] | None,
        card_token: str | None = None,
        installments: int | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentRecord:
        """Charge through the gateway and persist only what it accepted."""

        if isinstance(payer, Mapping):
            try:
                payer = PayerInfo.model_validate(payer)
            except SchemaError as exc:
                raise ValidationError("invalid payer", details={"fields": {"payer": "malformed payer object"}}) from exc
        quantised, currency_code, kind, installments = self._validate_create(
            account_id, amount, currency, description, payment_method, payment_type, payer, card_token, installments
        )
        request = GatewayPaymentRequest(
            account_id=account_id,
            amount=quantised,
            currency=currency_code,
            description=description.strip(),
            payment_method=payment_method.strip(),
            payment_type=kind.value,
            installments=installments,
            payer=payer,
            card_token=card_token,
            metadata=metadata or {},
        )
        result = await self.gateway.create_payment(request, idempotency_key or str(uuid4()))

        stored_metadata = {
            **(metadata or {}),
            "status_detail": result.status_detail,
            "payment_details": {
                "installments": result.installments,
                "processing_mode": result.processing_mode,
                "transaction_details": result.transaction_details,
                "point_of_interaction": result.point_of_interaction,
            },
        }
        try:
            record = await self.repository.create(
                external_id=result.external_id,
                account_id=account_id,
                amount=result.amount.quantize(Decimal("0.01")),
                currency=(result.currency or currency_code).upper(),
                description=request.description,
                status=result.status,
                payment_method=result.payment_method_id or request.payment_method,
                payment_type=kind.value,
                metadata=stored_metadata,
            )
        except ConstraintViolation:
            # Same gateway payment already stored (idempotent replay).
            logger.info("payment_create_replayed external_id=%s", result.external_id)
            return await self.repository.get_by_external_id(result.external_id)

        resource_id_ctx.set(record.id)
        payments_created_total.labels(payment_type=kind.value, status=record.status.value).inc()
        logger.info(
            "payment_created id=%s external_id=%s status=%s amount=%s",
            record.id,
            record.external_id,
            record.status.value,
            record.amount,
        )
        return record

    async def get_payment(self, payment_id: str) -> PaymentRecord:
        return await self.repository.get(payment_id)

    async def get_payment_by_external_id(self, external_id: str) -> PaymentRecord:
        return await self.repository.get_by_external_id(external_id)

    async def list_payments(self, filters: Mapping[str, Any] | None = None) -> PaymentPage:
        """Filtered, paginated listing. Unparseable filter values are ignored."""

        raw = dict(filters or {})
        page, limit = normalise_page(raw.get("page"), raw.get("limit"))
        payment_type = enum_filter(PaymentType, raw.get("payment_type"))
        parsed = PaymentFilters(
            account_id=positive_int_filter(raw.get("account_id")),
            status=enum_filter(PaymentStatus, raw.get("status")),
            payment_type=payment_type.value if payment_type else None,
            start_date=datetime_filter(raw.get("start_date")),
            end_date=datetime_filter(raw.get("end_date")),
        )
        items, total = await self.repository.list(parsed, page, limit)
        return PaymentPage(items=items, total=total, page=page, limit=limit, total_pages=total_pages(total, limit))

    async def _apply(
        self,
        record: PaymentRecord,
        new_status: PaymentStatus,
        metadata_patch: dict[str, Any],
        source: str,
        converge: bool = False,
    ) -> PaymentRecord:
        """Guarded write from `record.status` to `new_status`.

        With `converge`, losing the race to a writer that already reached
        `new_status` (a webhook for the same change) is not a conflict: the
        metadata patch is merged onto the row as it now stands.
        """

        try:
            updated = await self.repository.update(
                record.id, expected_status=record.status, status=new_status, metadata_patch=metadata_patch
            )
        except StaleWrite as exc:
            if not converge:
                raise ConflictError(f"payment {record.id} was modified concurrently") from exc
            return await self._converge(record, new_status, metadata_patch, exc)
        if new_status != record.status:
            payment_transitions_total.labels(
                from_status=record.status.value, to_status=new_status.value, source=source
            ).inc()
            logger.info(
                "payment_transition id=%s from=%s to=%s source=%s",
                record.id,
                record.status.value,
                new_status.value,
                source,
            )
        return updated

    async def _converge(
        self, record: PaymentRecord, new_status: PaymentStatus, metadata_patch: dict[str, Any], cause: StaleWrite
    ) -> PaymentRecord:
        current = await self.repository.get(record.id)
        if current.status != new_status:
            raise ConflictError(f"payment {record.id} was modified concurrently") from cause
        logger.info("payment_change_converged id=%s status=%s", record.id, new_status.value)
        try:
            return await self.repository.update(record.id, expected_status=new_status, metadata_patch=metadata_patch)
        except StaleWrite as exc:
            raise ConflictError(f"payment {record.id} was modified concurrently") from exc

    async def cancel_payment(
        self, payment_id: str, reason: str | None = None, actor_id: str | None = None
    ) -> PaymentRecord:
        record = await self.repository.get(payment_id)
        resource_id_ctx.set(record.id)
        if record.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"payment in status {record.status.value} cannot be cancelled")
        validate_transition(record.status, PaymentStatus.CANCELLED)
        await self.gateway.cancel_payment(record.external_id)
        return await self._apply(
            record,
            PaymentStatus.CANCELLED,
            {
                "cancellation_reason": reason or DEFAULT_CANCELLATION_REASON,
                "cancelled_at": utcnow().isoformat(),
                "cancelled_by": actor_id,
            },
            source="api",
            converge=True,
        )

    async def refund_payment(
        self,
        payment_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> PaymentRecord:
        record = await self.repository.get(payment_id)
        resource_id_ctx.set(record.id)
        if record.status != PaymentStatus.APPROVED:
            raise ConflictError(f"payment in status {record.status.value} cannot be refunded")
        if amount is not None:
            errors: dict[str, str] = {}
            amount = check_amount(errors, "amount", amount)
            if amount is not None and amount > record.amount:
                errors["amount"] = "must not exceed the payment amount"
            raise_if_errors(errors, "invalid refund amount")
        validate_transition(record.status, PaymentStatus.REFUNDED)
        await self.gateway.refund_payment(record.external_id, amount)
        return await self._apply(
            record,
            PaymentStatus.REFUNDED,
            {
                "refund_amount": str(amount if amount is not None else record.amount),
                "refund_reason": reason,
                "refunded_at": utcnow().isoformat(),
                "refunded_by": actor_id,
            },
            source="api",
            converge=True,
        )

    async def reconcile(self, external_id: str) -> PaymentRecord:
        """Align the stored payment with the gateway's current view.

        Forward moves (one or several graph steps) are applied. A move the
        graph cannot reach is refused and annotated under
        `metadata.reconcile_conflict`. Losing a write race re-reads the row
        once and tries again.
        """

        if not external_id:
            raise ValidationError("external id is required")
        result = await self.gateway.get_payment(external_id)
        try:
            return await self._reconcile_with(result)
        except ConflictError:
            logger.info("payment_reconcile_retry external_id=%s", external_id)
            return await self._reconcile_with(result)

    async def _reconcile_with(self, result: GatewayPayment) -> PaymentRecord:
        record = await self.repository.get_by_external_id(result.external_id)
        resource_id_ctx.set(record.id)
        now = utcnow().isoformat()
        if result.status == record.status:
            return await self._apply(record, record.status, {"last_update": now}, source="reconcile")
        if is_reachable(record.status, result.status):
            patch = {
                "last_update": now,
                "status_detail": result.status_detail,
                "transaction_details": result.transaction_details,
            }
            return await self._apply(record, result.status, patch, source="reconcile")

        logger.warning(
            "payment_reconcile_refused id=%s stored=%s gateway=%s",
            record.id,
            record.status.value,
            result.status.value,
        )
        reconcile_conflicts_total.labels(resource="payment").inc()
        patch = {
            "last_update": now,
            "reconcile_conflict": {
                "gateway_status": result.status.value,
                "raw_status": result.raw_status,
                "observed_at": now,
            },
        }
        return await self._apply(record, record.status, patch, source="reconcile")
