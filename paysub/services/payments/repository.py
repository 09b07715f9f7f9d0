"""Payment persistence with a read-through cache keyed by local id.

Writes that change status are guarded by the expected current status. A
guard that matches no row raises `StaleWrite`; a unique-constraint failure
raises `ConstraintViolation`. Callers translate both.
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
from paysub.common.state_machine import PaymentStatus
from paysub.services.payments.models import Payment
from paysub.services.payments.schemas import PaymentRecord


@dataclass
class PaymentFilters:
    account_id: int | None = None
    status: PaymentStatus | None = None
    payment_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def _cache_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


class PaymentRepository:
    def __init__(self, session_factory, cache: Cache | None = None) -> None:
        self.session_factory = session_factory
        self.cache = cache if cache is not None else NullCache()

    async def get(self, payment_id: str) -> PaymentRecord:
        cached = await self.cache.get(_cache_key(payment_id))
        if cached is not None:
            return PaymentRecord.model_validate(cached)
        async with self.session_factory() as db:
            row = await db.get(Payment, payment_id)
        if row is None:
            raise NotFoundError(f"payment {payment_id} not found")
        record = PaymentRecord.from_row(row)
        await self.cache.set(_cache_key(payment_id), record.model_dump(mode="json"))
        return record

    async def get_by_external_id(self, external_id: str) -> PaymentRecord:
        async with self.session_factory() as db:
            row = (await db.execute(select(Payment).where(Payment.external_id == external_id))).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"payment with external id {external_id} not found")
        return PaymentRecord.from_row(row)

    async def list(self, filters: PaymentFilters, page: int, limit: int) -> tuple[list[PaymentRecord], int]:
        conditions = []
        if filters.account_id is not None:
            conditions.append(Payment.account_id == filters.account_id)
        if filters.status is not None:
            conditions.append(Payment.status == filters.status.value)
        if filters.payment_type is not None:
            conditions.append(Payment.payment_type == filters.payment_type)
        if filters.start_date is not None:
            conditions.append(Payment.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Payment.created_at <= filters.end_date)

        async with self.session_factory() as db:
            total = (await db.execute(select(func.count()).select_from(Payment).where(*conditions))).scalar_one()
            rows = (
                await db.execute(
                    select(Payment)
                    .where(*conditions)
                    .order_by(Payment.created_at.desc(), Payment.id)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars()
            return [PaymentRecord.from_row(row) for row in rows], total

    async def create(
        self,
        *,
        external_id: str,
        account_id: int,
        amount: Decimal,
        currency: str,
        description: str,
        status: PaymentStatus,
        payment_method: str,
        payment_type: str,
        metadata: dict[str, Any],
    ) -> PaymentRecord:
        row = Payment(
            external_id=external_id,
            account_id=account_id,
            amount=amount,
            currency=currency,
            description=description,
            status=status.value,
            payment_method=payment_method,
            payment_type=payment_type,
            details=metadata,
        )
        async with self.session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise ConstraintViolation(f"payment insert rejected: {exc.orig}", constraint="payment") from exc
            await db.refresh(row)
        return PaymentRecord.from_row(row)

    async def update(
        self,
        payment_id: str,
        *,
        expected_status: PaymentStatus,
        status: PaymentStatus | None = None,
        metadata_patch: dict[str, Any] | None = None,
    ) -> PaymentRecord:
        """Guarded write of status and/or merged metadata.

        The row must still be in `expected_status` when the UPDATE runs.
        """

        try:
            return await self._guarded_update(payment_id, expected_status, status, metadata_patch)
        finally:
            await self.cache.delete(_cache_key(payment_id))

    async def _guarded_update(self, payment_id, expected_status, status, metadata_patch) -> PaymentRecord:
        async with self.session_factory() as db:
            row = await db.get(Payment, payment_id)
            if row is None:
                raise NotFoundError(f"payment {payment_id} not found")
            if row.status != expected_status.value:
                raise StaleWrite(
                    f"payment {payment_id} is {row.status}, expected {expected_status.value}"
                )
            merged = {**(row.details or {}), **(metadata_patch or {})}
            new_status = (status or expected_status).value
            result = await db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == expected_status.value)
                .values(status=new_status, details=merged, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise StaleWrite(f"payment {payment_id} changed concurrently (expected {expected_status.value})")
            await db.commit()
            await db.refresh(row)
            return PaymentRecord.from_row(row)
