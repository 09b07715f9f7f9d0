"""Read-through cache backends and repository invalidation."""

from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from paysub.common.cache import MemoryCache, NullCache, RedisCache
from paysub.common.state_machine import PaymentStatus
from paysub.services.payments.repository import PaymentRepository
from paysub.services.subscriptions.repository import SubscriptionRepository


class _DownRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")


@pytest.mark.asyncio
async def test_memory_cache_evicts_least_recently_used():
    cache = MemoryCache(max_entries=2, ttl_seconds=60)
    await cache.set("a", {"v": 1})
    await cache.set("b", {"v": 2})
    await cache.get("a")
    await cache.set("c", {"v": 3})

    assert await cache.get("b") is None
    assert await cache.get("a") == {"v": 1}
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_memory_cache_expires_entries():
    clock = [1000.0]
    cache = MemoryCache(max_entries=8, ttl_seconds=5, timer=lambda: clock[0])
    await cache.set("k", {"v": 1})

    clock[0] += 6

    assert await cache.get("k") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_null_cache_never_hits():
    cache = NullCache()
    await cache.set("k", {"v": 1})
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_redis_outage_degrades_to_miss():
    cache = RedisCache(_DownRedis(), ttl_seconds=30)

    assert await cache.get("payment:1") is None
    await cache.set("payment:1", {"id": "1"})
    await cache.delete("payment:1")


@pytest.mark.asyncio
async def test_payment_writes_invalidate_cached_record(payment_service, gateway, cache, payer):
    record = await payment_service.create_payment(
        account_id=7,
        amount=Decimal("25.00"),
        currency="BRL",
        description="Highlight",
        payment_method="pix",
        payment_type="pix",
        payer=payer,
    )
    await payment_service.get_payment(record.id)
    assert await cache.get(f"payment:{record.id}") is not None

    gateway.set_payment_status(record.external_id, "approved")
    await payment_service.reconcile(record.external_id)

    assert await cache.get(f"payment:{record.id}") is None
    assert (await payment_service.get_payment(record.id)).status is PaymentStatus.APPROVED


def test_repositories_keep_an_empty_memory_cache():
    """An empty cache has length zero but must still be used."""

    cache = MemoryCache(max_entries=8, ttl_seconds=60)

    assert len(cache) == 0
    assert PaymentRepository(None, cache).cache is cache
    assert SubscriptionRepository(None, cache).cache is cache
    assert isinstance(PaymentRepository(None).cache, NullCache)
