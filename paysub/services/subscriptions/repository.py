"""Subscription and plan persistence.

Same contract as the payment repository: `NotFoundError` for missing rows,
`ConstraintViolation` for rejected inserts, `StaleWrite` when a
status-guarded update loses a race.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from paysub.common.cache import Cache, NullCache
from paysub.common.db import utcnow
from paysub.common.errors import ConstraintViolation, NotFoundError, StaleWrite
from paysub.common.state_machine import OPEN_SUBSCRIPTION_STATUSES, SubscriptionStatus
from paysub.services.subscriptions.models import Subscription, SubscriptionPlan
from paysub.services.subscriptions.schemas import PlanRecord, SubscriptionRecord

OPEN_SUBSCRIPTION_INDEX = "uq_subscription_account_open"
_UNSET: Any = object()


@dataclass
class SubscriptionFilters:
    account_id: int | None = None
    status: SubscriptionStatus | None = None
    plan_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def _cache_key(subscription_id: str) -> str:
    return f"subscription:{subscription_id}"


def _violated_constraint(exc: IntegrityError) -> str:
    message = str(exc.orig)
    # Postgres names the index; SQLite names the indexed column.
    if OPEN_SUBSCRIPTION_INDEX in message or "subscription.account_id" in message:
        return OPEN_SUBSCRIPTION_INDEX
    if "external_id" in message:
        return "subscription_external_id_key"
    return "unknown"


class SubscriptionRepository:
    def __init__(self, session_factory, cache: Cache | None = None) -> None:
        self.session_factory = session_factory
        self.cache = cache if cache is not None else NullCache()

    async def get(self, subscription_id: str) -> SubscriptionRecord:
        cached = await self.cache.get(_cache_key(subscription_id))
        if cached is not None:
            return SubscriptionRecord.model_validate(cached)
        async with self.session_factory() as db:
            row = await db.get(Subscription, subscription_id)
        if row is None:
            raise NotFoundError(f"subscription {subscription_id} not found")
        record = SubscriptionRecord.from_row(row)
        await self.cache.set(_cache_key(subscription_id), record.model_dump(mode="json"))
        return record

    async def get_by_external_id(self, external_id: str) -> SubscriptionRecord:
        async with self.session_factory() as db:
            row = (
                await db.execute(select(Subscription).where(Subscription.external_id == external_id))
            ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"subscription with external id {external_id} not found")
        return SubscriptionRecord.from_row(row)

    async def get_open_for_account(self, account_id: int) -> SubscriptionRecord | None:
        open_statuses = [status.value for status in OPEN_SUBSCRIPTION_STATUSES]
        async with self.session_factory() as db:
            row = (
                await db.execute(
                    select(Subscription)
                    .where(Subscription.account_id == account_id, Subscription.status.in_(open_statuses))
                    .order_by(Subscription.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
        return SubscriptionRecord.from_row(row) if row is not None else None

    async def list_elapsed(self, now: datetime) -> list[SubscriptionRecord]:
        """ACTIVE or PAUSED rows whose `end_date` is already in the past."""

        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    select(Subscription).where(
                        Subscription.status.in_([SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value]),
                        Subscription.end_date.is_not(None),
                        Subscription.end_date <= now,
                    )
                )
            ).scalars()
            return [SubscriptionRecord.from_row(row) for row in rows]

    async def list(
        self, filters: SubscriptionFilters, page: int, limit: int
    ) -> tuple[list[SubscriptionRecord], int]:
        conditions = []
        if filters.account_id is not None:
            conditions.append(Subscription.account_id == filters.account_id)
        if filters.status is not None:
            conditions.append(Subscription.status == filters.status.value)
        if filters.plan_id is not None:
            conditions.append(Subscription.plan_id == filters.plan_id)
        if filters.start_date is not None:
            conditions.append(Subscription.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Subscription.created_at <= filters.end_date)

        async with self.session_factory() as db:
            total = (
                await db.execute(select(func.count()).select_from(Subscription).where(*conditions))
            ).scalar_one()
            rows = (
                await db.execute(
                    select(Subscription)
                    .where(*conditions)
                    .order_by(Subscription.created_at.desc(), Subscription.id)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars()
            return [SubscriptionRecord.from_row(row) for row in rows], total

    async def create(
        self,
        *,
        account_id: int,
        plan_id: int,
        status: SubscriptionStatus,
        frequency: int,
        frequency_type: str,
        auto_recurring: bool,
        external_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        next_payment_date: datetime | None = None,
        payment_method_id: str | None = None,
        is_exempted: bool = False,
        exemption_reason: str | None = None,
        exempted_by: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SubscriptionRecord:
        row = Subscription(
            external_id=external_id,
            account_id=account_id,
            plan_id=plan_id,
            status=status.value,
            start_date=start_date,
            end_date=end_date,
            next_payment_date=next_payment_date,
            payment_method_id=payment_method_id,
            frequency=frequency,
            frequency_type=frequency_type,
            auto_recurring=auto_recurring,
            is_exempted=is_exempted,
            exemption_reason=exemption_reason,
            exempted_by=exempted_by,
            details=metadata or {},
        )
        async with self.session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise ConstraintViolation(
                    f"subscription insert rejected: {exc.orig}", constraint=_violated_constraint(exc)
                ) from exc
            await db.refresh(row)
        return SubscriptionRecord.from_row(row)

    async def update(
        self,
        subscription_id: str,
        *,
        expected_status: SubscriptionStatus,
        status: SubscriptionStatus | None = None,
        metadata_patch: dict[str, Any] | None = None,
        end_date: datetime | None = _UNSET,
        next_payment_date: datetime | None = _UNSET,
    ) -> SubscriptionRecord:
        """Guarded write; only the given date fields are touched."""

        try:
            async with self.session_factory() as db:
                row = await db.get(Subscription, subscription_id)
                if row is None:
                    raise NotFoundError(f"subscription {subscription_id} not found")
                if row.status != expected_status.value:
                    raise StaleWrite(f"subscription {subscription_id} is {row.status}, expected {expected_status.value}")
                values: dict[str, Any] = {
                    "status": (status or expected_status).value,
                    "details": {**(row.details or {}), **(metadata_patch or {})},
                    "updated_at": utcnow(),
                }
                if end_date is not _UNSET:
                    values["end_date"] = end_date
                if next_payment_date is not _UNSET:
                    values["next_payment_date"] = next_payment_date
                try:
                    result = await db.execute(
                        update(Subscription)
                        .where(Subscription.id == subscription_id, Subscription.status == expected_status.value)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                except IntegrityError as exc:
                    await db.rollback()
                    raise ConstraintViolation(
                        f"subscription update rejected: {exc.orig}", constraint=_violated_constraint(exc)
                    ) from exc
                if result.rowcount != 1:
                    await db.rollback()
                    raise StaleWrite(
                        f"subscription {subscription_id} changed concurrently (expected {expected_status.value})"
                    )
                await db.commit()
                await db.refresh(row)
                return SubscriptionRecord.from_row(row)
        finally:
            await self.cache.delete(_cache_key(subscription_id))


class SubscriptionPlanRepository:
    """Plans are small and rarely change; no cache."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def get(self, plan_id: int) -> PlanRecord:
        async with self.session_factory() as db:
            row = await db.get(SubscriptionPlan, plan_id)
        if row is None:
            raise NotFoundError(f"plan {plan_id} not found")
        return PlanRecord.model_validate(row)

    async def list(self, active_only: bool = True) -> list[PlanRecord]:
        query = select(SubscriptionPlan).order_by(SubscriptionPlan.plan_level, SubscriptionPlan.id)
        if active_only:
            query = query.where(SubscriptionPlan.status == "active")
        async with self.session_factory() as db:
            rows = (await db.execute(query)).scalars()
            return [PlanRecord.model_validate(row) for row in rows]

    async def upsert(self, name: str, amount: Decimal, **fields: Any) -> PlanRecord:
        """Insert or update a plan by its unique name."""

        async with self.session_factory() as db:
            row = (await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == name))).scalar_one_or_none()
            if row is None:
                row = SubscriptionPlan(name=name, amount=amount, **fields)
                db.add(row)
            else:
                row.amount = amount
                for key, value in fields.items():
                    setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return PlanRecord.model_validate(row)
