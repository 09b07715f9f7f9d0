"""Request-scoped dependencies: service container, API key and capabilities."""

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from paysub.common.auth import Caller, Capability, parse_capabilities
from paysub.common.cache import Cache
from paysub.common.config import CommonSettings
from paysub.common.errors import AuthenticationError, AuthorizationError
from paysub.services.gateway.base import GatewayClient
from paysub.services.payments.service import PaymentService
from paysub.services.subscriptions.service import SubscriptionService
from paysub.services.webhooks.service import WebhookProcessor


@dataclass
class Container:
    """Everything the routes need, built once per app."""

    config: CommonSettings
    session_factory: Any
    gateway: GatewayClient
    cache: Cache
    payments: PaymentService
    subscriptions: SubscriptionService
    webhooks: WebhookProcessor
    engine: AsyncEngine | None = None


def get_container(request: Request) -> Container:
    return request.app.state.container


def enforce_api_key(x_api_key: str | None, config: CommonSettings) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != config.api_key:
        raise AuthenticationError("invalid API key")


def get_caller(
    container: Container = Depends(get_container),
    x_api_key: str | None = Header(default=None),
    x_caller_id: str | None = Header(default=None),
    x_caller_capabilities: str | None = Header(default=None),
) -> Caller:
    enforce_api_key(x_api_key, container.config)
    return Caller(caller_id=x_caller_id, capabilities=parse_capabilities(x_caller_capabilities))


def require(capability: Capability):
    """Dependency factory: the caller must hold `capability`."""

    def dependency(caller: Caller = Depends(get_caller)) -> Caller:
        if not caller.can(capability):
            raise AuthorizationError(f"missing capability {capability.value}")
        return caller

    return dependency
