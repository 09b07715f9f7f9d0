"""Settings validation and startup logging."""

import logging

import pytest
from pydantic import ValidationError

from paysub.common.config import CommonSettings
from paysub.common.startup import log_startup_config
from paysub.services.gateway.factory import build_gateway
from paysub.services.gateway.http import HttpGatewayClient
from paysub.services.gateway.memory import InMemoryGateway


def test_http_backend_requires_access_token():
    """A missing gateway credential fails at load time, not per request."""

    with pytest.raises(ValidationError):
        CommonSettings(gateway_backend="http", gateway_access_token="  ")


def test_blank_webhook_secret_rejected():
    with pytest.raises(ValidationError):
        CommonSettings(webhook_secret="")


@pytest.mark.asyncio
async def test_gateway_factory_follows_backend():
    memory = build_gateway(CommonSettings(gateway_backend="memory"))
    http = build_gateway(CommonSettings(gateway_backend="http", gateway_access_token="APP_USR-1"))

    assert isinstance(memory, InMemoryGateway)
    assert isinstance(http, HttpGatewayClient)
    await http.aclose()


def test_startup_log_redacts_secrets(caplog):
    config = CommonSettings(gateway_backend="http", gateway_access_token="APP_USR-secret")

    with caplog.at_level(logging.INFO, logger="paysub"):
        log_startup_config(config, ["gateway_access_token", "webhook_secret", "gateway_base_url", "redis_url"])

    assert "APP_USR-secret" not in caplog.text
    assert "<redacted>" in caplog.text
    assert "https://api.mercadopago.com" in caplog.text
