"""HTTP routes for subscriptions, plans and account entitlements."""

from fastapi import APIRouter, Depends, Request

from paysub.common.auth import Caller, Capability
from paysub.common.errors import AuthorizationError, ConflictError
from paysub.services.api.deps import Container, get_container, require
from paysub.services.subscriptions.schemas import (
    Entitlements,
    PlanRecord,
    SubscriptionCancelRequest,
    SubscriptionCreateRequest,
    SubscriptionPage,
    SubscriptionRecord,
)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
accounts_router = APIRouter(prefix="/accounts", tags=["accounts"])
plans_router = APIRouter(prefix="/plans", tags=["plans"])

LIST_FILTERS = ("account_id", "status", "plan_id", "start_date", "end_date", "page", "limit")


@router.post("", status_code=201, response_model=SubscriptionRecord)
async def create_subscription(
    req: SubscriptionCreateRequest,
    container: Container = Depends(get_container),
    caller: Caller = Depends(require(Capability.SUBSCRIPTIONS_WRITE)),
):
    exemption = req.exemption
    if exemption is not None and exemption.is_exempted:
        if not caller.can(Capability.SUBSCRIPTIONS_EXEMPT):
            raise AuthorizationError(f"missing capability {Capability.SUBSCRIPTIONS_EXEMPT.value}")
        if not exemption.granted_by and caller.caller_id:
            exemption = exemption.model_copy(update={"granted_by": caller.caller_id})
    return await container.subscriptions.create_subscription(
        account_id=req.account_id,
        plan_id=req.plan_id,
        payment_method_id=req.payment_method_id,
        auto_recurring=req.auto_recurring,
        payer=req.payer,
        card_token=req.card_token,
        exemption=exemption,
        metadata=req.metadata,
    )


@router.get("", response_model=SubscriptionPage)
async def list_subscriptions(
    request: Request,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_READ)),
):
    filters = {name: request.query_params.get(name) for name in LIST_FILTERS}
    return await container.subscriptions.list_subscriptions(filters)


@router.post("/end-elapsed", response_model=list[SubscriptionRecord])
async def end_elapsed_subscriptions(
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.BILLING_ADMIN)),
):
    """Close ACTIVE/PAUSED subscriptions whose term is over."""

    return await container.subscriptions.end_elapsed_subscriptions()


@router.get("/{subscription_id}", response_model=SubscriptionRecord)
async def get_subscription(
    subscription_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_READ)),
):
    return await container.subscriptions.get_subscription(subscription_id)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionRecord)
async def cancel_subscription(
    subscription_id: str,
    req: SubscriptionCancelRequest | None = None,
    container: Container = Depends(get_container),
    caller: Caller = Depends(require(Capability.SUBSCRIPTIONS_WRITE)),
):
    reason = req.reason if req else None
    return await container.subscriptions.cancel_subscription(
        subscription_id, reason=reason, actor_id=caller.caller_id
    )


@router.post("/{subscription_id}/pause", response_model=SubscriptionRecord)
async def pause_subscription(
    subscription_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_WRITE)),
):
    return await container.subscriptions.pause_subscription(subscription_id)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionRecord)
async def reactivate_subscription(
    subscription_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_WRITE)),
):
    return await container.subscriptions.reactivate_subscription(subscription_id)


@router.post("/{subscription_id}/sync", response_model=SubscriptionRecord)
async def sync_subscription(
    subscription_id: str,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.BILLING_ADMIN)),
):
    record = await container.subscriptions.get_subscription(subscription_id)
    if not record.external_id:
        raise ConflictError(f"subscription {subscription_id} has no gateway reference")
    return await container.subscriptions.reconcile(record.external_id)


@accounts_router.get("/{account_id}/subscription", response_model=SubscriptionRecord)
async def get_account_subscription(
    account_id: int,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_READ)),
):
    return await container.subscriptions.get_open_subscription(account_id)


@accounts_router.get("/{account_id}/entitlements", response_model=Entitlements)
async def get_account_entitlements(
    account_id: int,
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_READ)),
):
    return await container.subscriptions.get_entitlements(account_id)


@plans_router.get("", response_model=list[PlanRecord])
async def list_plans(
    container: Container = Depends(get_container),
    _: Caller = Depends(require(Capability.SUBSCRIPTIONS_READ)),
):
    return await container.subscriptions.list_plans()
