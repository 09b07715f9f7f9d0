"""Webhook authentication, parsing and reconcile dispatch."""

import json
import os
from decimal import Decimal

import pytest

from paysub.common.errors import AuthenticationError, ValidationError
from paysub.common.state_machine import PaymentStatus, SubscriptionStatus
from paysub.services.webhooks.service import parse_event, sign, verify_signature

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]


def _body(action, resource_id):
    return json.dumps({"action": action, "type": action.split(".")[0], "data": {"id": resource_id}}).encode()


async def _pending_payment(payment_service, payer):
    return await payment_service.create_payment(
        account_id=7,
        amount=Decimal("100.00"),
        currency="BRL",
        description="Job posting boost",
        payment_method="pix",
        payment_type="pix",
        payer=payer,
    )


def test_signature_accepts_prefixed_and_bare_hex():
    body = b'{"action":"payment.updated"}'
    digest = sign(body, "s3cret")

    assert verify_signature(body, digest, "s3cret")
    assert verify_signature(body, f"sha256={digest.upper()}", "s3cret")
    assert not verify_signature(body, digest, "other")
    assert not verify_signature(body + b" ", digest, "s3cret")
    assert not verify_signature(body, None, "s3cret")


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"[1, 2]",
        b'{"data": {"id": "1"}}',
        b'{"action": "payment.updated"}',
        b'{"action": "payment.updated", "data": {"id": ""}}',
    ],
)
def test_parse_event_rejects_malformed_bodies(raw):
    with pytest.raises(ValidationError):
        parse_event(raw)


def test_parse_event_normalises_numeric_ids():
    event = parse_event(b'{"action": "payment.updated", "data": {"id": 1000001}}')
    assert event.resource_id == "1000001"


@pytest.mark.asyncio
async def test_bad_signature_rejected_before_reconcile(webhook_processor, gateway):
    body = _body("payment.updated", "1000001")

    with pytest.raises(AuthenticationError):
        await webhook_processor.handle(body, "0" * 64)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_malformed_body_with_valid_signature(webhook_processor):
    body = b"{broken"
    with pytest.raises(ValidationError):
        await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))


@pytest.mark.asyncio
async def test_duplicate_payment_updates_converge(webhook_processor, payment_service, gateway, payer):
    """Two identical deliveries leave one APPROVED row."""

    record = await _pending_payment(payment_service, payer)
    gateway.set_payment_status(record.external_id, "approved", "accredited")
    body = _body("payment.updated", record.external_id)

    first = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))
    second = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert first.http_status == second.http_status == 200
    assert first.body() == {"status": "processed", "action": "payment.updated"}
    page = await payment_service.list_payments({"account_id": 7})
    assert page.total == 1
    assert page.items[0].status is PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_out_of_order_delivery_keeps_later_status(webhook_processor, payment_service, gateway, payer):
    record = await _pending_payment(payment_service, payer)
    gateway.set_payment_status(record.external_id, "approved")
    body = _body("payment.updated", record.external_id)
    await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    gateway.set_payment_status(record.external_id, "in_process")
    result = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert result.http_status == 200
    stored = await payment_service.get_payment(record.id)
    assert stored.status is PaymentStatus.APPROVED
    assert stored.metadata["reconcile_conflict"]["gateway_status"] == "in_process"


@pytest.mark.asyncio
async def test_subscription_action_reconciles_preapproval(
    webhook_processor, subscription_service, gateway, plans, payer
):
    record = await subscription_service.create_subscription(
        account_id=42,
        plan_id=plans["basic"].id,
        payment_method_id="credit_card",
        auto_recurring=True,
        payer=payer,
        card_token="tok_visa",
    )
    gateway.set_subscription_status(record.external_id, "cancelled")
    body = _body("subscription_preapproval.updated", record.external_id)

    result = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert result.outcome == "processed"
    stored = await subscription_service.get_subscription(record.id)
    assert stored.status is SubscriptionStatus.CANCELLED


@pytest.mark.asyncio
async def test_unrelated_action_is_ignored(webhook_processor, gateway):
    body = _body("merchant_order.updated", "abc")

    result = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert result.outcome == "ignored"
    assert result.http_status == 200
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_unknown_resource_asks_for_redelivery(webhook_processor):
    body = _body("payment.updated", "424242")

    result = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert result.outcome == "failed"
    assert result.http_status == 500
    assert result.body()["error"] == "gateway_error"


@pytest.mark.asyncio
async def test_gateway_payment_without_local_row_fails(webhook_processor, payment_service, gateway, payer):
    """Gateway knows the payment but nothing local references it."""

    record = await _pending_payment(payment_service, payer)
    gateway.payments["555"] = dict(gateway.payments[record.external_id], id=555)
    body = _body("payment.created", "555")

    result = await webhook_processor.handle(body, sign(body, WEBHOOK_SECRET))

    assert result.http_status == 500
    assert result.body()["error"] == "not_found"
