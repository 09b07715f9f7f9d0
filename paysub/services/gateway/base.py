"""Gateway port used by the payment and subscription services."""

from decimal import Decimal
from typing import Protocol

from paysub.services.gateway.schemas import (
    GatewayPayment,
    GatewayPaymentRequest,
    GatewayPlan,
    GatewaySubscription,
    GatewaySubscriptionRequest,
)


class GatewayClient(Protocol):
    """Operations the core needs from the external payment gateway.

    Every method either returns a normalised result or raises `GatewayError`.
    """

    async def create_payment(self, request: GatewayPaymentRequest, idempotency_key: str) -> GatewayPayment: ...

    async def get_payment(self, external_id: str) -> GatewayPayment: ...

    async def cancel_payment(self, external_id: str) -> GatewayPayment: ...

    async def refund_payment(self, external_id: str, amount: Decimal | None = None) -> GatewayPayment: ...

    async def create_subscription(
        self, request: GatewaySubscriptionRequest, idempotency_key: str
    ) -> GatewaySubscription: ...

    async def get_subscription(self, external_id: str) -> GatewaySubscription: ...

    async def cancel_subscription(self, external_id: str) -> GatewaySubscription: ...

    async def pause_subscription(self, external_id: str) -> GatewaySubscription: ...

    async def reactivate_subscription(self, external_id: str) -> GatewaySubscription: ...

    async def get_plan(self, gateway_plan_id: str) -> GatewayPlan: ...

    async def aclose(self) -> None: ...
