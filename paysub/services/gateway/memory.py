"""Deterministic in-process gateway.

Selected with `GATEWAY_BACKEND=memory` for local runs and used by the test
suite. It keeps gateway-native records (same field names the REST API
returns) and runs them through the same strict parsers as the HTTP client.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Any

from paysub.common.errors import GatewayError
from paysub.services.gateway.schemas import (
    GatewayPayment,
    GatewayPaymentRequest,
    GatewayPlan,
    GatewaySubscription,
    GatewaySubscriptionRequest,
    parse_payment,
    parse_plan,
    parse_subscription,
)

_FREQUENCY_DAYS = {"days": 1, "months": 30, "years": 365}


class InMemoryGateway:
    """Fake gateway with a call log and per-operation failure injection."""

    def __init__(self, payment_status_on_create: str = "pending", subscription_status_on_create: str = "authorized"):
        self.payment_status_on_create = payment_status_on_create
        self.subscription_status_on_create = subscription_status_on_create
        self.payments: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.plans: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False
        self._failures: dict[str, GatewayError] = {}
        self._idempotency: dict[str, str] = {}
        self._ids = count(1_000_001)

    # -- test helpers -------------------------------------------------

    def fail(self, operation: str, status_code: int | None = 503, message: str = "injected failure") -> None:
        """Make every later call to `operation` raise until `clear_failures`."""

        self._failures[operation] = GatewayError(message, operation=operation, status_code=status_code)

    def clear_failures(self) -> None:
        self._failures.clear()

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def set_payment_status(self, external_id: str, status: str, status_detail: str | None = None) -> None:
        record = self.payments[external_id]
        record["status"] = status
        record["status_detail"] = status_detail or status

    def set_subscription_status(self, external_id: str, status: str) -> None:
        self.subscriptions[external_id]["status"] = status

    def add_plan(self, gateway_plan_id: str, reason: str = "plan", amount: Decimal = Decimal("49.99")) -> None:
        self.plans[gateway_plan_id] = {
            "id": gateway_plan_id,
            "reason": reason,
            "status": "active",
            "auto_recurring": {
                "frequency": 1,
                "frequency_type": "months",
                "transaction_amount": str(amount),
                "currency_id": "BRL",
            },
        }

    # -- internals ----------------------------------------------------

    def _enter(self, operation: str, external_id: str | None = None) -> None:
        self.calls.append((operation, external_id))
        failure = self._failures.get(operation)
        if failure is not None:
            raise GatewayError(
                failure.message,
                operation=operation,
                external_id=external_id,
                status_code=failure.status_code,
            )

    @staticmethod
    def _missing(operation: str, external_id: str) -> GatewayError:
        return GatewayError("resource not found", operation=operation, external_id=external_id, status_code=404)

    def _payment(self, operation: str, external_id: str) -> dict[str, Any]:
        record = self.payments.get(external_id)
        if record is None:
            raise self._missing(operation, external_id)
        return record

    def _subscription(self, operation: str, external_id: str) -> dict[str, Any]:
        record = self.subscriptions.get(external_id)
        if record is None:
            raise self._missing(operation, external_id)
        return record

    # -- payments -----------------------------------------------------

    async def create_payment(self, request: GatewayPaymentRequest, idempotency_key: str) -> GatewayPayment:
        self._enter("create_payment")
        if idempotency_key in self._idempotency:
            return parse_payment(self.payments[self._idempotency[idempotency_key]], operation="create_payment")
        external_id = str(next(self._ids))
        now = datetime.now(timezone.utc)
        record: dict[str, Any] = {
            "id": int(external_id),
            "status": self.payment_status_on_create,
            "status_detail": "pending_waiting_payment"
            if self.payment_status_on_create == "pending"
            else self.payment_status_on_create,
            "payment_method_id": "pix" if request.payment_type == "pix" else request.payment_method,
            "payment_type_id": request.payment_type,
            "transaction_amount": str(request.amount),
            "currency_id": request.currency,
            "installments": request.installments,
            "processing_mode": "aggregator",
            "description": request.description,
            "payer": request.payer.model_dump(exclude_none=True),
            "metadata": {"account_id": request.account_id, **request.metadata},
            "transaction_details": {"total_paid_amount": str(request.amount)},
            "point_of_interaction": {"type": "PIX"} if request.payment_type == "pix" else {},
            "date_created": now.isoformat(),
        }
        self.payments[external_id] = record
        self._idempotency[idempotency_key] = external_id
        return parse_payment(record, operation="create_payment")

    async def get_payment(self, external_id: str) -> GatewayPayment:
        self._enter("get_payment", external_id)
        return parse_payment(self._payment("get_payment", external_id), operation="get_payment", external_id=external_id)

    async def cancel_payment(self, external_id: str) -> GatewayPayment:
        self._enter("cancel_payment", external_id)
        record = self._payment("cancel_payment", external_id)
        record["status"] = "cancelled"
        record["status_detail"] = "by_collector"
        return parse_payment(record, operation="cancel_payment", external_id=external_id)

    async def refund_payment(self, external_id: str, amount: Decimal | None = None) -> GatewayPayment:
        self._enter("refund_payment", external_id)
        record = self._payment("refund_payment", external_id)
        record["status"] = "refunded"
        record["status_detail"] = "refunded"
        record.setdefault("refunds", []).append(str(amount if amount is not None else record["transaction_amount"]))
        return parse_payment(record, operation="refund_payment", external_id=external_id)

    # -- subscriptions ------------------------------------------------

    async def create_subscription(
        self, request: GatewaySubscriptionRequest, idempotency_key: str
    ) -> GatewaySubscription:
        self._enter("create_subscription")
        if idempotency_key in self._idempotency:
            existing = self.subscriptions[self._idempotency[idempotency_key]]
            return parse_subscription(existing, operation="create_subscription")
        external_id = f"pre_{next(self._ids)}"
        start = request.start_date or datetime.now(timezone.utc)
        period = timedelta(days=_FREQUENCY_DAYS.get(request.frequency_type, 30) * request.frequency)
        record: dict[str, Any] = {
            "id": external_id,
            "status": self.subscription_status_on_create,
            "preapproval_plan_id": request.gateway_plan_id,
            "payer_id": 555000 + request.account_id,
            "card_id": "card_1" if request.card_token else None,
            "payment_method_id": "credit_card",
            "date_created": start.isoformat(),
            "next_payment_date": (start + period).isoformat(),
            "auto_recurring": {
                "frequency": request.frequency,
                "frequency_type": request.frequency_type,
                "transaction_amount": str(request.amount),
                "currency_id": request.currency,
                "start_date": start.isoformat(),
                "end_date": request.end_date.isoformat() if request.end_date else None,
            },
            "metadata": {"account_id": request.account_id, **request.metadata},
        }
        self.subscriptions[external_id] = record
        self._idempotency[idempotency_key] = external_id
        return parse_subscription(record, operation="create_subscription")

    async def get_subscription(self, external_id: str) -> GatewaySubscription:
        self._enter("get_subscription", external_id)
        record = self._subscription("get_subscription", external_id)
        return parse_subscription(record, operation="get_subscription", external_id=external_id)

    async def _set_subscription(self, operation: str, external_id: str, status: str) -> GatewaySubscription:
        self._enter(operation, external_id)
        record = self._subscription(operation, external_id)
        record["status"] = status
        return parse_subscription(record, operation=operation, external_id=external_id)

    async def cancel_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._set_subscription("cancel_subscription", external_id, "cancelled")

    async def pause_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._set_subscription("pause_subscription", external_id, "paused")

    async def reactivate_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._set_subscription("reactivate_subscription", external_id, "authorized")

    async def get_plan(self, gateway_plan_id: str) -> GatewayPlan:
        self._enter("get_plan", gateway_plan_id)
        record = self.plans.get(gateway_plan_id)
        if record is None:
            raise self._missing("get_plan", gateway_plan_id)
        return parse_plan(record, operation="get_plan", external_id=gateway_plan_id)

    async def aclose(self) -> None:
        self.closed = True
