"""Subscription lifecycle, exemptions and the one-open-subscription rule."""

import inspect
from datetime import datetime, timedelta, timezone

import pytest

from paysub.common.db import utcnow
from paysub.common.errors import ConflictError, NotFoundError, ValidationError
from paysub.common.state_machine import SubscriptionStatus
from paysub.services.subscriptions.repository import SubscriptionRepository
from paysub.services.subscriptions.schemas import SubscriptionRecord


async def _subscribe(service, plan, payer, account_id=42, **overrides):
    fields = dict(
        account_id=account_id,
        plan_id=plan.id,
        payment_method_id="credit_card",
        auto_recurring=True,
        payer=payer,
        card_token="tok_visa",
    )
    fields.update(overrides)
    return await service.create_subscription(**fields)


def _exemption(**overrides):
    exemption = {
        "is_exempted": True,
        "reason": "partner agreement",
        "granted_by": "admin-1",
        "end_date": utcnow() + timedelta(days=30),
    }
    exemption.update(overrides)
    return exemption


@pytest.mark.asyncio
async def test_create_subscription_through_gateway(subscription_service, gateway, plans, payer):
    record = await _subscribe(subscription_service, plans["basic"], payer)

    assert record.status is SubscriptionStatus.ACTIVE
    assert record.external_id.startswith("pre_")
    assert record.plan_id == plans["basic"].id
    assert record.next_payment_date is not None
    assert record.metadata["gateway_status"] == "authorized"
    assert record.metadata["card_id"] == "card_1"
    assert gateway.call_count("create_subscription") == 1


@pytest.mark.asyncio
async def test_second_open_subscription_conflicts_before_gateway(subscription_service, gateway, plans, payer):
    """Account 42 already ACTIVE: no new preapproval is created."""

    await _subscribe(subscription_service, plans["basic"], payer)

    with pytest.raises(ConflictError) as excinfo:
        await _subscribe(subscription_service, plans["premium"], payer)

    assert excinfo.value.details["status"] == "active"
    assert gateway.call_count("create_subscription") == 1


@pytest.mark.asyncio
async def test_missing_payment_data_rejected(subscription_service, gateway, plans):
    with pytest.raises(ValidationError) as excinfo:
        await _subscribe(subscription_service, plans["basic"], payer=None, payment_method_id=None)

    assert set(excinfo.value.details["fields"]) == {"payment_method_id", "payer.email"}
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_exemption_needs_reason_and_grantor(subscription_service, gateway, plans):
    with pytest.raises(ValidationError) as excinfo:
        await _subscribe(
            subscription_service,
            plans["basic"],
            payer=None,
            payment_method_id=None,
            exemption=_exemption(reason=" ", granted_by=None, end_date=utcnow() - timedelta(days=1)),
        )

    assert set(excinfo.value.details["fields"]) == {
        "exemption.reason",
        "exemption.granted_by",
        "exemption.end_date",
    }
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_exempted_subscription_skips_gateway(subscription_service, gateway, plans):
    record = await _subscribe(
        subscription_service, plans["premium"], payer=None, payment_method_id=None, exemption=_exemption()
    )

    assert record.status is SubscriptionStatus.ACTIVE
    assert record.is_exempted
    assert record.external_id is None
    assert record.exemption_reason == "partner agreement"
    assert record.exempted_by == "admin-1"
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_inactive_plan_is_not_found(subscription_service, gateway, plans, payer):
    with pytest.raises(NotFoundError):
        await _subscribe(subscription_service, plans["retired"], payer)
    assert gateway.call_count("create_subscription") == 0


@pytest.mark.asyncio
async def test_plan_missing_at_gateway_is_not_found(subscription_service, gateway, plans, payer):
    del gateway.plans["gw-plan-destaque"]

    with pytest.raises(NotFoundError):
        await _subscribe(subscription_service, plans["premium"], payer)
    assert gateway.call_count("create_subscription") == 0


@pytest.mark.asyncio
async def test_pause_reactivate_cancel(subscription_service, gateway, plans, payer):
    record = await _subscribe(subscription_service, plans["basic"], payer)

    paused = await subscription_service.pause_subscription(record.id)
    assert paused.status is SubscriptionStatus.PAUSED
    assert gateway.subscriptions[record.external_id]["status"] == "paused"

    with pytest.raises(ConflictError):
        await subscription_service.pause_subscription(record.id)

    active = await subscription_service.reactivate_subscription(record.id)
    assert active.status is SubscriptionStatus.ACTIVE
    assert gateway.subscriptions[record.external_id]["status"] == "authorized"

    cancelled = await subscription_service.cancel_subscription(record.id, reason="too expensive", actor_id="u-1")
    assert cancelled.status is SubscriptionStatus.CANCELLED
    assert cancelled.end_date is not None
    assert cancelled.metadata["cancellation_reason"] == "too expensive"
    assert gateway.subscriptions[record.external_id]["status"] == "cancelled"

    with pytest.raises(ConflictError):
        await subscription_service.cancel_subscription(record.id)


@pytest.mark.asyncio
async def test_cancelled_subscription_frees_the_account(subscription_service, plans, payer):
    first = await _subscribe(subscription_service, plans["basic"], payer)
    await subscription_service.cancel_subscription(first.id)

    second = await _subscribe(subscription_service, plans["premium"], payer)

    assert (await subscription_service.get_open_subscription(42)).id == second.id


@pytest.mark.asyncio
async def test_exempted_cancel_does_not_call_gateway(subscription_service, gateway, plans):
    record = await _subscribe(
        subscription_service, plans["basic"], payer=None, payment_method_id=None, exemption=_exemption()
    )

    cancelled = await subscription_service.cancel_subscription(record.id)

    assert cancelled.status is SubscriptionStatus.CANCELLED
    assert gateway.call_count("cancel_subscription") == 0


@pytest.mark.asyncio
async def test_lost_insert_race_cancels_gateway_subscription(
    subscription_service, gateway, plans, payer, monkeypatch
):
    """The partial unique index rejects the second row; the orphan is cancelled."""

    await _subscribe(subscription_service, plans["basic"], payer)

    async def no_open_subscription(account_id):
        return None

    monkeypatch.setattr(subscription_service.repository, "get_open_for_account", no_open_subscription)

    with pytest.raises(ConflictError):
        await _subscribe(subscription_service, plans["premium"], payer)

    orphan_id = gateway.calls[-1][1]
    assert gateway.call_count("create_subscription") == 2
    assert gateway.call_count("cancel_subscription") == 1
    assert gateway.subscriptions[orphan_id]["status"] == "cancelled"
    page = await subscription_service.list_subscriptions({"account_id": 42})
    assert page.total == 1


@pytest.mark.asyncio
async def test_entitlements_follow_open_plan(subscription_service, plans, payer):
    await _subscribe(subscription_service, plans["premium"], payer)

    entitlements = await subscription_service.get_entitlements(42)

    assert entitlements.plan_name == "Destaque"
    assert entitlements.active_jobs_limit == 999
    assert entitlements.featured_jobs == 1
    assert entitlements.has_advanced_dashboard
    assert entitlements.subscription_status is SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_entitlements_without_subscription(subscription_service, plans):
    with pytest.raises(NotFoundError):
        await subscription_service.get_entitlements(404)


@pytest.mark.asyncio
async def test_end_elapsed_subscriptions(subscription_service, plans, payer):
    exempted = await _subscribe(
        subscription_service, plans["basic"], payer=None, payment_method_id=None, exemption=_exemption()
    )
    open_ended = await _subscribe(subscription_service, plans["basic"], payer, account_id=43)

    ended = await subscription_service.end_elapsed_subscriptions(now=utcnow() + timedelta(days=31))

    assert [record.id for record in ended] == [exempted.id]
    assert ended[0].status is SubscriptionStatus.ENDED
    assert (await subscription_service.get_subscription(open_ended.id)).status is SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_reconcile_applies_gateway_pause(subscription_service, gateway, plans, payer):
    record = await _subscribe(subscription_service, plans["basic"], payer)
    gateway.set_subscription_status(record.external_id, "paused")

    updated = await subscription_service.reconcile(record.external_id)

    assert updated.status is SubscriptionStatus.PAUSED
    assert updated.metadata["gateway_status"] == "paused"


@pytest.mark.asyncio
async def test_reconcile_refuses_reopening_cancelled(subscription_service, gateway, plans, payer):
    record = await _subscribe(subscription_service, plans["basic"], payer)
    await subscription_service.cancel_subscription(record.id)
    gateway.set_subscription_status(record.external_id, "authorized")

    updated = await subscription_service.reconcile(record.external_id)

    assert updated.status is SubscriptionStatus.CANCELLED
    assert updated.metadata["reconcile_conflict"]["gateway_status"] == "active"


@pytest.mark.asyncio
async def test_list_plans_hides_inactive(subscription_service, plans):
    names = [plan.name for plan in await subscription_service.list_plans()]
    assert names == ["Inicial", "Destaque"]


@pytest.mark.asyncio
async def test_exemption_end_date_without_offset_is_utc(subscription_service, plans):
    record = await _subscribe(
        subscription_service,
        plans["basic"],
        payer=None,
        payment_method_id=None,
        exemption=_exemption(end_date="2099-01-01T00:00:00"),
    )

    assert record.end_date == datetime(2099, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_pause_converges_when_webhook_lands_first(subscription_service, gateway, plans, payer, monkeypatch):
    record = await _subscribe(subscription_service, plans["basic"], payer)
    gateway_pause = gateway.pause_subscription

    async def pause_then_notify(external_id):
        result = await gateway_pause(external_id)
        await subscription_service.reconcile(external_id)
        return result

    monkeypatch.setattr(gateway, "pause_subscription", pause_then_notify)

    paused = await subscription_service.pause_subscription(record.id)

    assert paused.status is SubscriptionStatus.PAUSED
    assert "paused_at" in paused.metadata
    assert paused.metadata["gateway_status"] == "paused"


@pytest.mark.asyncio
async def test_cancel_converges_when_webhook_lands_first(subscription_service, gateway, plans, payer, monkeypatch):
    record = await _subscribe(subscription_service, plans["basic"], payer)
    gateway_cancel = gateway.cancel_subscription

    async def cancel_then_notify(external_id):
        result = await gateway_cancel(external_id)
        await subscription_service.reconcile(external_id)
        return result

    monkeypatch.setattr(gateway, "cancel_subscription", cancel_then_notify)

    cancelled = await subscription_service.cancel_subscription(record.id, reason="closing shop")

    assert cancelled.status is SubscriptionStatus.CANCELLED
    assert cancelled.metadata["cancellation_reason"] == "closing shop"
    assert cancelled.end_date is not None


@pytest.mark.asyncio
async def test_reconciled_cancellation_sets_end_date(subscription_service, gateway, plans, payer):
    record = await _subscribe(subscription_service, plans["basic"], payer)
    gateway.set_subscription_status(record.external_id, "cancelled")

    updated = await subscription_service.reconcile(record.external_id)

    assert updated.status is SubscriptionStatus.CANCELLED
    assert updated.end_date is not None


def test_repository_annotations_use_builtin_list():
    """Methods declared after `list` must not pick the method up as their annotation."""

    hints = inspect.get_annotations(SubscriptionRepository.list_elapsed)

    assert hints["return"] == list[SubscriptionRecord]
