"""Mercado Pago compatible REST client.

No retries happen here: a failed call raises `GatewayError` and the caller
decides. Webhook redelivery and `/sync` are the recovery paths.
"""

import time
from decimal import Decimal
from typing import Any

import httpx

from paysub.common.config import CommonSettings
from paysub.common.errors import GatewayError
from paysub.common.logging import logger
from paysub.common.metrics import gateway_latency_seconds, gateway_requests_total
from paysub.common.tracing import get_tracer
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

CARD_PAYMENT_TYPES = {"credit_card", "debit_card"}


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


class HttpGatewayClient:
    """Gateway client over `httpx.AsyncClient` with bearer auth."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        notification_url: str | None = None,
        back_url: str | None = None,
        statement_descriptor: str = "PAYSUB",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.notification_url = notification_url
        self.back_url = back_url
        self.statement_descriptor = statement_descriptor
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, config: CommonSettings) -> "HttpGatewayClient":
        return cls(
            base_url=config.gateway_base_url,
            access_token=config.gateway_access_token,
            timeout_seconds=config.gateway_timeout_seconds,
            notification_url=config.gateway_notification_url,
            back_url=config.gateway_back_url,
            statement_descriptor=config.gateway_statement_descriptor,
        )

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        external_id: str | None = None,
        json: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Transport failures, timeouts, non-2xx answers and undecodable bodies
        all become `GatewayError`.
        """

        headers = {"X-Idempotency-Key": idempotency_key} if idempotency_key else None
        start = time.perf_counter()
        outcome = "error"
        with get_tracer().start_as_current_span(f"gateway.{operation}") as span:
            span.set_attribute("gateway.operation", operation)
            if external_id:
                span.set_attribute("gateway.external_id", external_id)
            try:
                try:
                    response = await self.client.request(method, path, json=json, headers=headers)
                except httpx.TimeoutException as exc:
                    outcome = "timeout"
                    raise GatewayError("gateway timeout", operation=operation, external_id=external_id) from exc
                except httpx.HTTPError as exc:
                    raise GatewayError(
                        f"gateway transport error: {exc}", operation=operation, external_id=external_id
                    ) from exc

                span.set_attribute("http.status_code", response.status_code)
                if response.status_code >= 400:
                    outcome = "rejected"
                    body = response.text
                    logger.warning(
                        "gateway_rejected operation=%s external_id=%s status_code=%s body=%s",
                        operation,
                        external_id,
                        response.status_code,
                        body[:500],
                    )
                    raise GatewayError(
                        "gateway rejected request",
                        operation=operation,
                        external_id=external_id,
                        status_code=response.status_code,
                        body=body,
                    )
                try:
                    payload = response.json()
                except ValueError as exc:
                    outcome = "malformed"
                    raise GatewayError(
                        "gateway returned non-JSON body",
                        operation=operation,
                        external_id=external_id,
                        status_code=response.status_code,
                        body=response.text,
                    ) from exc
                outcome = "ok"
                return payload
            finally:
                gateway_requests_total.labels(operation=operation, outcome=outcome).inc()
                gateway_latency_seconds.labels(operation=operation).observe(time.perf_counter() - start)

    def _payment_body(self, request: GatewayPaymentRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "transaction_amount": float(request.amount),
            "description": request.description,
            "payment_method_id": "pix" if request.payment_type == "pix" else request.payment_method,
            "installments": request.installments,
            "payer": request.payer.model_dump(exclude_none=True),
            "external_reference": f"account_{request.account_id}",
            "metadata": {"account_id": request.account_id, **request.metadata},
            "statement_descriptor": self.statement_descriptor,
            "additional_info": {
                "items": [
                    {
                        "id": "1",
                        "title": request.description,
                        "quantity": 1,
                        "unit_price": float(request.amount),
                    }
                ]
            },
        }
        if request.payment_type in CARD_PAYMENT_TYPES:
            body["token"] = request.card_token
        if self.notification_url:
            body["notification_url"] = self.notification_url
        if self.back_url:
            body["callback_url"] = self.back_url
        return body

    async def create_payment(self, request: GatewayPaymentRequest, idempotency_key: str) -> GatewayPayment:
        payload = await self._request(
            "create_payment", "POST", "/v1/payments", json=self._payment_body(request), idempotency_key=idempotency_key
        )
        return parse_payment(payload, operation="create_payment")

    async def get_payment(self, external_id: str) -> GatewayPayment:
        payload = await self._request("get_payment", "GET", f"/v1/payments/{external_id}", external_id=external_id)
        return parse_payment(payload, operation="get_payment", external_id=external_id)

    async def cancel_payment(self, external_id: str) -> GatewayPayment:
        payload = await self._request(
            "cancel_payment",
            "PUT",
            f"/v1/payments/{external_id}",
            external_id=external_id,
            json={"status": "cancelled"},
        )
        return parse_payment(payload, operation="cancel_payment", external_id=external_id)

    async def refund_payment(self, external_id: str, amount: Decimal | None = None) -> GatewayPayment:
        """Refund fully or partially, then re-read the payment for its new status."""

        body = {"amount": float(amount)} if amount is not None else {}
        await self._request(
            "refund_payment",
            "POST",
            f"/v1/payments/{external_id}/refunds",
            external_id=external_id,
            json=body,
            idempotency_key=f"refund-{external_id}-{amount if amount is not None else 'full'}",
        )
        return await self.get_payment(external_id)

    async def create_subscription(
        self, request: GatewaySubscriptionRequest, idempotency_key: str
    ) -> GatewaySubscription:
        body: dict[str, Any] = {
            "reason": request.reason,
            "payer_email": request.payer_email,
            "external_reference": f"account_{request.account_id}",
            "auto_recurring": {
                "frequency": request.frequency,
                "frequency_type": request.frequency_type.lower(),
                "transaction_amount": float(request.amount),
                "currency_id": request.currency,
                "start_date": _iso(request.start_date),
                "end_date": _iso(request.end_date),
            },
            "metadata": {"account_id": request.account_id, **request.metadata},
            "status": "authorized",
        }
        if request.gateway_plan_id:
            body["preapproval_plan_id"] = request.gateway_plan_id
        if request.card_token:
            body["card_token_id"] = request.card_token
        if self.back_url:
            body["back_url"] = self.back_url
        payload = await self._request(
            "create_subscription", "POST", "/preapproval", json=body, idempotency_key=idempotency_key
        )
        return parse_subscription(payload, operation="create_subscription")

    async def get_subscription(self, external_id: str) -> GatewaySubscription:
        payload = await self._request(
            "get_subscription", "GET", f"/preapproval/{external_id}", external_id=external_id
        )
        return parse_subscription(payload, operation="get_subscription", external_id=external_id)

    async def _update_subscription_status(self, operation: str, external_id: str, status: str) -> GatewaySubscription:
        payload = await self._request(
            operation, "PUT", f"/preapproval/{external_id}", external_id=external_id, json={"status": status}
        )
        return parse_subscription(payload, operation=operation, external_id=external_id)

    async def cancel_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._update_subscription_status("cancel_subscription", external_id, "cancelled")

    async def pause_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._update_subscription_status("pause_subscription", external_id, "paused")

    async def reactivate_subscription(self, external_id: str) -> GatewaySubscription:
        return await self._update_subscription_status("reactivate_subscription", external_id, "authorized")

    async def get_plan(self, gateway_plan_id: str) -> GatewayPlan:
        payload = await self._request(
            "get_plan", "GET", f"/preapproval_plan/{gateway_plan_id}", external_id=gateway_plan_id
        )
        return parse_plan(payload, operation="get_plan", external_id=gateway_plan_id)

    async def aclose(self) -> None:
        await self.client.aclose()
