"""Subscription lifecycle on top of the gateway and the store.

An account holds at most one open subscription (pending, authorized, active
or paused). The service checks this before calling the gateway; the partial
unique index catches the concurrent case at insert time.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as SchemaError

from paysub.common.db import as_utc, utcnow
from paysub.common.errors import (
    ConflictError,
    ConstraintViolation,
    GatewayError,
    NotFoundError,
    StaleWrite,
    ValidationError,
)
from paysub.common.logging import account_id_ctx, logger, resource_id_ctx
from paysub.common.metrics import reconcile_conflicts_total, subscription_transitions_total
from paysub.common.pagination import (
    datetime_filter,
    enum_filter,
    normalise_page,
    positive_int_filter,
    total_pages,
)
from paysub.common.state_machine import SubscriptionStatus, is_reachable, is_terminal, validate_transition
from paysub.common.validation import check_payer, check_positive_int, check_text, raise_if_errors
from paysub.services.gateway.base import GatewayClient
from paysub.services.gateway.schemas import GatewaySubscription, GatewaySubscriptionRequest, PayerInfo
from paysub.services.subscriptions.repository import (
    OPEN_SUBSCRIPTION_INDEX,
    SubscriptionFilters,
    SubscriptionPlanRepository,
    SubscriptionRepository,
)
from paysub.services.subscriptions.schemas import (
    Entitlements,
    Exemption,
    PlanRecord,
    SubscriptionPage,
    SubscriptionRecord,
)

PAUSABLE_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.AUTHORIZED}
DEFAULT_CANCELLATION_REASON = "Cancelled by user"


class SubscriptionService:
    def __init__(
        self,
        repository: SubscriptionRepository,
        plans: SubscriptionPlanRepository,
        gateway: GatewayClient,
    ) -> None:
        self.repository = repository
        self.plans = plans
        self.gateway = gateway

    # -- creation -----------------------------------------------------

    def _validate_create(
        self,
        account_id: Any,
        plan_id: Any,
        payment_method_id: Any,
        payer: PayerInfo | None,
        exemption: Exemption | None,
    ) -> None:
        errors: dict[str, str] = {}
        exempted = bool(exemption and exemption.is_exempted)
        check_positive_int(errors, "account_id", account_id)
        check_positive_int(errors, "plan_id", plan_id)
        if exempted:
            if not (exemption.reason or "").strip():
                errors["exemption.reason"] = "is required for exempted subscriptions"
            if not (exemption.granted_by or "").strip():
                errors["exemption.granted_by"] = "is required for exempted subscriptions"
            if exemption.end_date is not None and exemption.end_date <= utcnow():
                errors["exemption.end_date"] = "must be in the future"
        else:
            check_text(errors, "payment_method_id", payment_method_id)
        check_payer(errors, payer, require_email=not exempted)
        raise_if_errors(errors, "invalid subscription request")

    async def _require_plan(self, plan_id: int, check_gateway: bool) -> PlanRecord:
        plan = await self.plans.get(plan_id)
        if not plan.is_active:
            raise NotFoundError(f"plan {plan_id} is not available")
        if check_gateway and plan.gateway_plan_id:
            try:
                await self.gateway.get_plan(plan.gateway_plan_id)
            except GatewayError as exc:
                if exc.not_found:
                    raise NotFoundError(f"plan {plan_id} is not available at the gateway") from exc
                raise
        return plan

    async def _require_no_open_subscription(self, account_id: int) -> None:
        existing = await self.repository.get_open_for_account(account_id)
        if existing is not None:
            raise ConflictError(
                f"account {account_id} already has an open subscription",
                details={"subscription_id": existing.id, "status": existing.status.value},
            )

    async def create_subscription(
        self,
        account_id: int,
        plan_id: int,
        payment_method_id: str | None,
        auto_recurring: bool,
        payer: PayerInfo | Mapping[str, Any] | None,
        card_token: str | None = None,
        exemption: Exemption | Mapping[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> SubscriptionRecord:
        try:
            if isinstance(payer, Mapping):
                payer = PayerInfo.model_validate(payer)
            if isinstance(exemption, Mapping):
                exemption = Exemption.model_validate(exemption)
        except SchemaError as exc:
            raise ValidationError("invalid subscription request", details={"fields": {"body": str(exc)}}) from exc
        if exemption is not None and exemption.end_date is not None:
            # Offset-less timestamps are taken as UTC.
            exemption = exemption.model_copy(update={"end_date": as_utc(exemption.end_date)})
        self._validate_create(account_id, plan_id, payment_method_id, payer, exemption)
        exempted = bool(exemption and exemption.is_exempted)
        account_id_ctx.set(str(account_id))

        plan = await self._require_plan(plan_id, check_gateway=not exempted)
        await self._require_no_open_subscription(account_id)

        if exempted:
            return await self._create_exempted(account_id, plan, exemption, metadata)

        request = GatewaySubscriptionRequest(
            account_id=account_id,
            gateway_plan_id=plan.gateway_plan_id,
            reason=f"{plan.name} subscription",
            amount=plan.amount,
            currency=plan.currency,
            frequency=plan.frequency,
            frequency_type=plan.frequency_type,
            payer_email=payer.email,
            card_token=card_token,
            start_date=utcnow(),
            metadata={"plan_id": plan.id, **(metadata or {})},
        )
        result = await self.gateway.create_subscription(request, idempotency_key or str(uuid4()))
        stored_metadata = {
            **(metadata or {}),
            "payer_id": result.payer_id,
            "card_id": result.card_id,
            "gateway_plan_id": result.gateway_plan_id,
            "gateway_status": result.raw_status,
        }
        try:
            record = await self.repository.create(
                external_id=result.external_id,
                account_id=account_id,
                plan_id=plan.id,
                status=result.status,
                frequency=plan.frequency,
                frequency_type=plan.frequency_type,
                auto_recurring=auto_recurring,
                start_date=result.start_date or utcnow(),
                end_date=result.end_date,
                next_payment_date=result.next_payment_date,
                payment_method_id=result.payment_method_id or payment_method_id,
                metadata=stored_metadata,
            )
        except ConstraintViolation as exc:
            if exc.constraint != OPEN_SUBSCRIPTION_INDEX:
                raise
            await self._compensate(result.external_id)
            raise ConflictError(f"account {account_id} already has an open subscription") from exc

        resource_id_ctx.set(record.id)
        logger.info(
            "subscription_created id=%s external_id=%s plan_id=%s status=%s",
            record.id,
            record.external_id,
            plan.id,
            record.status.value,
        )
        return record

    async def _create_exempted(
        self, account_id: int, plan: PlanRecord, exemption: Exemption, metadata: dict[str, Any] | None
    ) -> SubscriptionRecord:
        try:
            record = await self.repository.create(
                account_id=account_id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE,
                frequency=plan.frequency,
                frequency_type=plan.frequency_type,
                auto_recurring=False,
                start_date=utcnow(),
                end_date=exemption.end_date,
                is_exempted=True,
                exemption_reason=exemption.reason.strip(),
                exempted_by=exemption.granted_by.strip(),
                metadata=metadata or {},
            )
        except ConstraintViolation as exc:
            raise ConflictError(f"account {account_id} already has an open subscription") from exc
        resource_id_ctx.set(record.id)
        logger.info(
            "subscription_exempted id=%s plan_id=%s granted_by=%s",
            record.id,
            plan.id,
            record.exempted_by,
        )
        return record

    async def _compensate(self, external_id: str) -> None:
        """Cancel a gateway subscription whose local row lost the race."""

        try:
            await self.gateway.cancel_subscription(external_id)
            logger.warning("subscription_compensated external_id=%s", external_id)
        except GatewayError as exc:
            logger.error("subscription_compensation_failed external_id=%s error=%s", external_id, exc)

    # -- reads --------------------------------------------------------

    async def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        return await self.repository.get(subscription_id)

    async def get_subscription_by_external_id(self, external_id: str) -> SubscriptionRecord:
        return await self.repository.get_by_external_id(external_id)

    async def list_subscriptions(self, filters: Mapping[str, Any] | None = None) -> SubscriptionPage:
        raw = dict(filters or {})
        page, limit = normalise_page(raw.get("page"), raw.get("limit"))
        parsed = SubscriptionFilters(
            account_id=positive_int_filter(raw.get("account_id")),
            status=enum_filter(SubscriptionStatus, raw.get("status")),
            plan_id=positive_int_filter(raw.get("plan_id")),
            start_date=datetime_filter(raw.get("start_date")),
            end_date=datetime_filter(raw.get("end_date")),
        )
        items, total = await self.repository.list(parsed, page, limit)
        return SubscriptionPage(items=items, total=total, page=page, limit=limit, total_pages=total_pages(total, limit))

    async def list_plans(self) -> list[PlanRecord]:
        return await self.plans.list(active_only=True)

    async def get_open_subscription(self, account_id: int) -> SubscriptionRecord:
        record = await self.repository.get_open_for_account(account_id)
        if record is None:
            raise NotFoundError(f"account {account_id} has no open subscription")
        return record

    async def get_entitlements(self, account_id: int) -> Entitlements:
        """Feature limits granted by the account's open subscription."""

        subscription = await self.get_open_subscription(account_id)
        plan = await self.plans.get(subscription.plan_id)
        return Entitlements(
            account_id=account_id,
            subscription_id=subscription.id,
            subscription_status=subscription.status,
            plan_id=plan.id,
            plan_name=plan.name,
            plan_level=plan.plan_level,
            active_jobs_limit=plan.active_jobs_limit,
            featured_jobs=plan.featured_jobs,
            is_featured=plan.is_featured,
            has_advanced_dashboard=plan.has_advanced_dashboard,
            features=plan.features,
        )

    # -- state changes ------------------------------------------------

    async def _apply(
        self,
        record: SubscriptionRecord,
        new_status: SubscriptionStatus,
        metadata_patch: dict[str, Any],
        source: str,
        converge: bool = False,
        **dates: datetime | None,
    ) -> SubscriptionRecord:
        try:
            updated = await self.repository.update(
                record.id,
                expected_status=record.status,
                status=new_status,
                metadata_patch=metadata_patch,
                **dates,
            )
        except StaleWrite as exc:
            if not converge:
                raise ConflictError(f"subscription {record.id} was modified concurrently") from exc
            return await self._converge(record, new_status, metadata_patch, exc, **dates)
        except ConstraintViolation as exc:
            raise ConflictError(f"account {record.account_id} already has an open subscription") from exc
        if new_status != record.status:
            subscription_transitions_total.labels(
                from_status=record.status.value, to_status=new_status.value, source=source
            ).inc()
            logger.info(
                "subscription_transition id=%s from=%s to=%s source=%s",
                record.id,
                record.status.value,
                new_status.value,
                source,
            )
        return updated

    async def _converge(
        self,
        record: SubscriptionRecord,
        new_status: SubscriptionStatus,
        metadata_patch: dict[str, Any],
        cause: StaleWrite,
        **dates: datetime | None,
    ) -> SubscriptionRecord:
        """A webhook already moved the row to `new_status`; merge our details onto it."""

        current = await self.repository.get(record.id)
        if current.status != new_status:
            raise ConflictError(f"subscription {record.id} was modified concurrently") from cause
        logger.info("subscription_change_converged id=%s status=%s", record.id, new_status.value)
        try:
            return await self.repository.update(
                record.id, expected_status=new_status, metadata_patch=metadata_patch, **dates
            )
        except StaleWrite as exc:
            raise ConflictError(f"subscription {record.id} was modified concurrently") from exc

    async def _load_for_change(self, subscription_id: str) -> SubscriptionRecord:
        record = await self.repository.get(subscription_id)
        resource_id_ctx.set(record.id)
        account_id_ctx.set(str(record.account_id))
        return record

    def _uses_gateway(self, record: SubscriptionRecord) -> bool:
        return not record.is_exempted and bool(record.external_id)

    async def cancel_subscription(
        self, subscription_id: str, reason: str | None = None, actor_id: str | None = None
    ) -> SubscriptionRecord:
        record = await self._load_for_change(subscription_id)
        if is_terminal(record.status):
            raise ConflictError(f"subscription in status {record.status.value} cannot be cancelled")
        validate_transition(record.status, SubscriptionStatus.CANCELLED)
        if self._uses_gateway(record):
            await self.gateway.cancel_subscription(record.external_id)
        now = utcnow()
        return await self._apply(
            record,
            SubscriptionStatus.CANCELLED,
            {
                "cancellation_reason": reason or DEFAULT_CANCELLATION_REASON,
                "cancelled_at": now.isoformat(),
                "cancelled_by": actor_id,
            },
            source="api",
            converge=True,
            end_date=now,
        )

    async def pause_subscription(self, subscription_id: str) -> SubscriptionRecord:
        record = await self._load_for_change(subscription_id)
        if record.status not in PAUSABLE_STATUSES:
            raise ConflictError(f"subscription in status {record.status.value} cannot be paused")
        validate_transition(record.status, SubscriptionStatus.PAUSED)
        if self._uses_gateway(record):
            await self.gateway.pause_subscription(record.external_id)
        return await self._apply(
            record, SubscriptionStatus.PAUSED, {"paused_at": utcnow().isoformat()}, source="api", converge=True
        )

    async def reactivate_subscription(self, subscription_id: str) -> SubscriptionRecord:
        record = await self._load_for_change(subscription_id)
        if record.status != SubscriptionStatus.PAUSED:
            raise ConflictError(f"subscription in status {record.status.value} cannot be reactivated")
        validate_transition(record.status, SubscriptionStatus.ACTIVE)
        if self._uses_gateway(record):
            await self.gateway.reactivate_subscription(record.external_id)
        return await self._apply(
            record, SubscriptionStatus.ACTIVE, {"reactivated_at": utcnow().isoformat()}, source="api", converge=True
        )

    async def end_elapsed_subscriptions(self, now: datetime | None = None) -> list[SubscriptionRecord]:
        """Move ACTIVE/PAUSED rows past their `end_date` to ENDED."""

        now = now or utcnow()
        ended = []
        for record in await self.repository.list_elapsed(now):
            try:
                ended.append(
                    await self._apply(record, SubscriptionStatus.ENDED, {"ended_at": now.isoformat()}, source="sweep")
                )
            except ConflictError:
                logger.info("subscription_end_skipped id=%s", record.id)
        return ended

    # -- reconciliation -----------------------------------------------

    async def reconcile(self, external_id: str) -> SubscriptionRecord:
        """Align the stored subscription with the gateway preapproval.

        Same rules as payments: equal status refreshes bookkeeping only,
        reachable status is applied, anything else is refused and annotated.
        `next_payment_date` is refreshed in every case.
        """

        if not external_id:
            raise ValidationError("external id is required")
        result = await self.gateway.get_subscription(external_id)
        try:
            return await self._reconcile_with(result)
        except ConflictError:
            logger.info("subscription_reconcile_retry external_id=%s", external_id)
            return await self._reconcile_with(result)

    async def _reconcile_with(self, result: GatewaySubscription) -> SubscriptionRecord:
        record = await self.repository.get_by_external_id(result.external_id)
        resource_id_ctx.set(record.id)
        now = utcnow().isoformat()
        patch: dict[str, Any] = {"last_update": now}
        target = record.status
        if result.status != record.status:
            if is_reachable(record.status, result.status):
                target = result.status
                patch["gateway_status"] = result.raw_status
            else:
                logger.warning(
                    "subscription_reconcile_refused id=%s stored=%s gateway=%s",
                    record.id,
                    record.status.value,
                    result.status.value,
                )
                reconcile_conflicts_total.labels(resource="subscription").inc()
                patch["reconcile_conflict"] = {
                    "gateway_status": result.status.value,
                    "raw_status": result.raw_status,
                    "observed_at": now,
                }
        dates: dict[str, datetime | None] = {}
        if not is_terminal(record.status):
            dates["next_payment_date"] = result.next_payment_date
            if is_terminal(target):
                dates["end_date"] = utcnow()
        return await self._apply(record, target, patch, source="reconcile", **dates)
