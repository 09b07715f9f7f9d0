"""Billing API entrypoint.

One FastAPI app serves payments, subscriptions, plans, account entitlements
and gateway webhooks. `create_app` accepts prebuilt collaborators so tests
can run it against SQLite and the in-memory gateway.
"""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from paysub.common.cache import Cache, build_cache
from paysub.common.config import CommonSettings, settings
from paysub.common.db import build_engine, build_session_factory, check_database
from paysub.common.errors import InternalError, PaySubError
from paysub.common.logging import configure_logging, logger, trace_id_ctx
from paysub.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from paysub.common.startup import log_startup_config
from paysub.common.tracing import instrument_app, setup_tracing
from paysub.services.api.deps import Container
from paysub.services.gateway.base import GatewayClient
from paysub.services.gateway.factory import build_gateway
from paysub.services.payments.repository import PaymentRepository
from paysub.services.payments.routes import router as payments_router
from paysub.services.payments.service import PaymentService
from paysub.services.subscriptions.repository import SubscriptionPlanRepository, SubscriptionRepository
from paysub.services.subscriptions.routes import accounts_router, plans_router
from paysub.services.subscriptions.routes import router as subscriptions_router
from paysub.services.subscriptions.service import SubscriptionService
from paysub.services.webhooks.routes import router as webhooks_router
from paysub.services.webhooks.service import WebhookProcessor

STARTUP_FIELDS = [
    "log_level",
    "database_url",
    "gateway_backend",
    "gateway_base_url",
    "gateway_access_token",
    "gateway_timeout_seconds",
    "gateway_notification_url",
    "webhook_secret",
    "cache_backend",
    "redis_url",
    "tracing_enabled",
]


def build_container(
    config: CommonSettings,
    *,
    session_factory=None,
    gateway: GatewayClient | None = None,
    cache: Cache | None = None,
) -> Container:
    """Wire repositories, services and the webhook processor."""

    engine = None
    if session_factory is None:
        engine = build_engine(config.database_url)
        session_factory = build_session_factory(engine)
    gateway = gateway or build_gateway(config)
    cache = cache or build_cache(config)

    payments = PaymentService(
        PaymentRepository(session_factory, cache), gateway, default_currency=config.default_currency
    )
    subscriptions = SubscriptionService(
        SubscriptionRepository(session_factory, cache), SubscriptionPlanRepository(session_factory), gateway
    )
    return Container(
        config=config,
        session_factory=session_factory,
        gateway=gateway,
        cache=cache,
        payments=payments,
        subscriptions=subscriptions,
        webhooks=WebhookProcessor(payments, subscriptions, config.webhook_secret),
        engine=engine,
    )


def _error_response(exc: PaySubError) -> JSONResponse:
    body = {"error": {"code": exc.code, "message": exc.public_message()}}
    if exc.details and not isinstance(exc, InternalError):
        body["error"]["details"] = exc.details
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(body))


def create_app(
    config: CommonSettings = settings,
    *,
    session_factory=None,
    gateway: GatewayClient | None = None,
    cache: Cache | None = None,
) -> FastAPI:
    container = build_container(config, session_factory=session_factory, gateway=gateway, cache=cache)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Release gateway, cache and database pool on shutdown."""

        yield
        await container.gateway.aclose()
        await container.cache.close()
        if container.engine is not None:
            await container.engine.dispose()

    app = FastAPI(title="PaySub Billing API", lifespan=lifespan)
    app.state.container = container
    instrument_app(app, config)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency; bind the correlation id."""

        trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            http_request_duration_seconds.labels(service=config.service_name, route=route, method=method).observe(
                max(0.0, perf_counter() - start)
            )
            http_requests_total.labels(
                service=config.service_name, route=route, method=method, status_code=str(status_code)
            ).inc()

    @app.exception_handler(PaySubError)
    async def handle_domain_error(_: Request, exc: PaySubError):
        if exc.http_status >= 500:
            logger.error("request_failed code=%s error=%s", exc.code, exc)
        else:
            logger.info("request_rejected code=%s error=%s", exc.code, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        fields = {".".join(str(part) for part in err.get("loc", ())): err.get("msg", "") for err in exc.errors()}
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "validation_error", "message": "invalid request", "details": {"fields": fields}}},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(_: Request, exc: Exception):
        logger.exception("unhandled_error error=%s", exc)
        return _error_response(InternalError())

    app.include_router(webhooks_router)
    app.include_router(payments_router)
    app.include_router(subscriptions_router)
    app.include_router(accounts_router)
    app.include_router(plans_router)

    @app.get("/health")
    async def health():
        """Readiness probe; reports whether the store answers."""

        database_ok = await check_database(container.session_factory)
        return JSONResponse(status_code=200 if database_ok else 503, content={"ok": database_ok, "database": database_ok})

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    return app


configure_logging()
setup_tracing(settings)
log_startup_config(settings, STARTUP_FIELDS)
app = create_app(settings)
