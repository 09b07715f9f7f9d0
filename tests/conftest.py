"""Shared fixtures: per-test SQLite store, in-memory gateway, wired services.

Environment variables must be set before any `paysub` import because
settings are loaded at import time.
"""

import os
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./paysub-test.db")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ["GATEWAY_BACKEND"] = "memory"
os.environ["TRACING_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"

import pytest
import pytest_asyncio

from paysub.common.cache import MemoryCache
from paysub.common.db import Base, build_engine, build_session_factory
from paysub.services.gateway.memory import InMemoryGateway
from paysub.services.payments import models as payment_models  # noqa: F401
from paysub.services.payments.repository import PaymentRepository
from paysub.services.payments.service import PaymentService
from paysub.services.subscriptions import models as subscription_models  # noqa: F401
from paysub.services.subscriptions.repository import SubscriptionPlanRepository, SubscriptionRepository
from paysub.services.subscriptions.service import SubscriptionService
from paysub.services.webhooks.service import WebhookProcessor

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
API_KEY = os.environ["API_KEY"]


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'paysub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def cache():
    return MemoryCache(max_entries=64, ttl_seconds=60)


@pytest_asyncio.fixture
async def plans(session_factory, gateway):
    """Three plans: a local one, one mirrored at the gateway, and an inactive one."""

    repo = SubscriptionPlanRepository(session_factory)
    basic = await repo.upsert(
        "Inicial",
        Decimal("49.99"),
        active_jobs_limit=3,
        plan_level=1,
        features=["3 active job postings"],
    )
    gateway.add_plan("gw-plan-destaque", reason="Destaque", amount=Decimal("199.99"))
    premium = await repo.upsert(
        "Destaque",
        Decimal("199.99"),
        gateway_plan_id="gw-plan-destaque",
        active_jobs_limit=999,
        featured_jobs=1,
        has_advanced_dashboard=True,
        plan_level=4,
        features=["unlimited job postings", "advanced dashboard"],
    )
    retired = await repo.upsert("Legado", Decimal("29.99"), status="inactive", plan_level=0)
    return {"basic": basic, "premium": premium, "retired": retired}


@pytest.fixture
def payment_service(session_factory, gateway, cache):
    return PaymentService(PaymentRepository(session_factory, cache), gateway)


@pytest.fixture
def subscription_service(session_factory, gateway, cache):
    return SubscriptionService(
        SubscriptionRepository(session_factory, cache), SubscriptionPlanRepository(session_factory), gateway
    )


@pytest.fixture
def webhook_processor(payment_service, subscription_service):
    return WebhookProcessor(payment_service, subscription_service, WEBHOOK_SECRET)


@pytest.fixture
def payer():
    return {"email": "buyer@example.com", "identification": {"type": "CPF", "number": "12345678909"}}
