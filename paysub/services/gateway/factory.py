"""Pick the gateway implementation from configuration."""

from paysub.common.config import CommonSettings
from paysub.common.logging import logger
from paysub.services.gateway.base import GatewayClient
from paysub.services.gateway.http import HttpGatewayClient
from paysub.services.gateway.memory import InMemoryGateway


def build_gateway(config: CommonSettings) -> GatewayClient:
    if config.gateway_backend == "memory":
        logger.warning("gateway_backend=memory: no real charges will be made")
        return InMemoryGateway()
    return HttpGatewayClient.from_settings(config)
