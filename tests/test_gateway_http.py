"""HTTP gateway client against `httpx.MockTransport`."""

import json
from decimal import Decimal

import httpx
import pytest

from paysub.common.errors import GatewayError
from paysub.common.state_machine import PaymentStatus, SubscriptionStatus
from paysub.services.gateway.http import HttpGatewayClient
from paysub.services.gateway.schemas import (
    GatewayPaymentRequest,
    GatewaySubscriptionRequest,
    PayerInfo,
    parse_subscription,
)

PAYMENT = {
    "id": 1234567,
    "status": "approved",
    "status_detail": "accredited",
    "payment_method_id": "pix",
    "payment_type_id": "bank_transfer",
    "transaction_amount": 100.0,
    "currency_id": "BRL",
    "installments": 1,
    "date_created": "2026-10-19T10:00:00.000-03:00",
}


def _client(handler, **kwargs):
    return HttpGatewayClient(
        base_url="https://gateway.test/",
        access_token="TEST-token",
        notification_url="https://billing.test/payments/webhook",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _payment_request(**overrides):
    fields = dict(
        account_id=7,
        amount=Decimal("100.00"),
        currency="BRL",
        description="Job posting boost",
        payment_method="pix",
        payment_type="pix",
        payer=PayerInfo(email="buyer@example.com"),
    )
    fields.update(overrides)
    return GatewayPaymentRequest(**fields)


@pytest.mark.asyncio
async def test_create_payment_sends_auth_and_idempotency_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(201, json=PAYMENT)

    client = _client(handler)
    result = await client.create_payment(_payment_request(), "key-1")
    await client.aclose()

    request = seen["request"]
    body = json.loads(request.content)
    assert request.method == "POST"
    assert request.url.path == "/v1/payments"
    assert request.headers["Authorization"] == "Bearer TEST-token"
    assert request.headers["X-Idempotency-Key"] == "key-1"
    assert body["payment_method_id"] == "pix"
    assert body["notification_url"] == "https://billing.test/payments/webhook"
    assert "token" not in body
    assert result.external_id == "1234567"
    assert result.status is PaymentStatus.APPROVED
    assert result.amount == Decimal("100.0")


@pytest.mark.asyncio
async def test_card_payment_forwards_token():
    captured = []

    def handler(request):
        captured.append(json.loads(request.content))
        return httpx.Response(201, json=dict(PAYMENT, payment_method_id="visa"))

    client = _client(handler)
    await client.create_payment(
        _payment_request(payment_type="credit_card", payment_method="visa", card_token="tok_1", installments=3),
        "key-2",
    )

    assert captured[0]["token"] == "tok_1"
    assert captured[0]["installments"] == 3


@pytest.mark.asyncio
async def test_not_found_is_flagged():
    client = _client(lambda request: httpx.Response(404, json={"message": "not found"}))

    with pytest.raises(GatewayError) as excinfo:
        await client.get_payment("999")

    assert excinfo.value.status_code == 404
    assert excinfo.value.not_found
    assert excinfo.value.external_id == "999"


@pytest.mark.asyncio
async def test_server_error_is_gateway_error():
    client = _client(lambda request: httpx.Response(500, text="upstream down"))

    with pytest.raises(GatewayError) as excinfo:
        await client.cancel_payment("1234567")

    assert not excinfo.value.not_found
    assert excinfo.value.body == "upstream down"


@pytest.mark.asyncio
async def test_timeout_is_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = _client(handler)

    with pytest.raises(GatewayError) as excinfo:
        await client.get_payment("1234567")
    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_non_json_body_is_gateway_error():
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(GatewayError):
        await client.get_payment("1234567")


@pytest.mark.asyncio
async def test_response_missing_required_fields_is_gateway_error():
    client = _client(lambda request: httpx.Response(200, json={"status": "approved"}))

    with pytest.raises(GatewayError):
        await client.get_payment("1234567")


@pytest.mark.asyncio
async def test_refund_rereads_payment():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        if request.method == "POST":
            return httpx.Response(201, json={"id": 1, "amount": 40.0})
        return httpx.Response(200, json=dict(PAYMENT, status="refunded"))

    client = _client(handler)
    result = await client.refund_payment("1234567", Decimal("40.00"))

    assert paths == [("POST", "/v1/payments/1234567/refunds"), ("GET", "/v1/payments/1234567")]
    assert result.status is PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_subscription_lifecycle_calls():
    calls = []
    preapproval = {
        "id": "pre_1",
        "status": "authorized",
        "preapproval_plan_id": "plan_9",
        "payer_id": 99,
        "next_payment_date": "2026-11-19T10:00:00Z",
        "auto_recurring": {"frequency": 1, "frequency_type": "months", "transaction_amount": 49.99},
    }

    def handler(request):
        body = json.loads(request.content) if request.content else {}
        calls.append((request.method, request.url.path, body.get("status")))
        return httpx.Response(200, json=dict(preapproval, status=body.get("status", "authorized")))

    client = _client(handler)
    created = await client.create_subscription(
        GatewaySubscriptionRequest(
            account_id=42,
            gateway_plan_id="plan_9",
            reason="Inicial subscription",
            amount=Decimal("49.99"),
            currency="BRL",
            frequency=1,
            frequency_type="months",
            payer_email="buyer@example.com",
        ),
        "key-3",
    )
    paused = await client.pause_subscription("pre_1")
    cancelled = await client.cancel_subscription("pre_1")

    assert created.status is SubscriptionStatus.ACTIVE
    assert created.payer_id == "99"
    assert paused.status is SubscriptionStatus.PAUSED
    assert cancelled.status is SubscriptionStatus.CANCELLED
    assert calls == [
        ("POST", "/preapproval", "authorized"),
        ("PUT", "/preapproval/pre_1", "paused"),
        ("PUT", "/preapproval/pre_1", "cancelled"),
    ]


def test_parse_subscription_without_recurring_block():
    result = parse_subscription({"id": "pre_2", "status": "finished"}, operation="get_subscription")

    assert result.status is SubscriptionStatus.ENDED
    assert result.auto_recurring is False
    assert result.end_date is None
