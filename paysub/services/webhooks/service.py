"""Inbound gateway notifications.

A notification only says "resource X changed". The processor authenticates
it, then re-fetches X through the owning service's `reconcile`, so duplicate
and out-of-order deliveries converge on the same stored state without any
event-id bookkeeping.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from paysub.common.db import utcnow
from paysub.common.errors import AuthenticationError, PaySubError, ValidationError
from paysub.common.logging import logger, resource_id_ctx
from paysub.common.metrics import webhooks_received_total
from paysub.common.tracing import get_tracer
from paysub.services.payments.service import PaymentService
from paysub.services.subscriptions.service import SubscriptionService

PAYMENT_ACTIONS = frozenset({"payment.created", "payment.updated"})
SUBSCRIPTION_ACTIONS = frozenset(
    {
        "subscription_preapproval.created",
        "subscription_preapproval.updated",
        "preapproval.created",
        "preapproval.updated",
    }
)
SIGNATURE_PREFIX = "sha256="


@dataclass
class WebhookEvent:
    action: str
    resource_id: str
    payload: dict[str, Any]
    received_at: datetime = field(default_factory=utcnow)


@dataclass
class WebhookResult:
    outcome: str
    http_status: int
    action: str | None = None
    resource_id: str | None = None
    error: str | None = None

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.outcome}
        if self.action:
            body["action"] = self.action
        if self.error:
            body["error"] = self.error
        return body


def sign(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body; the value senders put in `X-Signature`."""

    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    candidate = signature.strip()
    if candidate.lower().startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX) :]
    return hmac.compare_digest(sign(raw_body, secret), candidate.lower())


def parse_event(raw_body: bytes) -> WebhookEvent:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("webhook body must be a JSON object")
    action = payload.get("action")
    data = payload.get("data")
    resource_id = data.get("id") if isinstance(data, dict) else None
    if not isinstance(action, str) or not action.strip():
        raise ValidationError("webhook action is missing", details={"fields": {"action": "is required"}})
    if resource_id is None or isinstance(resource_id, (bool, dict, list)) or str(resource_id).strip() == "":
        raise ValidationError("webhook resource id is missing", details={"fields": {"data.id": "is required"}})
    return WebhookEvent(action=action.strip(), resource_id=str(resource_id).strip(), payload=payload)


class WebhookProcessor:
    def __init__(self, payments: PaymentService, subscriptions: SubscriptionService, secret: str) -> None:
        self.payments = payments
        self.subscriptions = subscriptions
        self.secret = secret

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        """Authenticate, parse and dispatch one notification.

        Bad signatures raise `AuthenticationError` before the body is parsed,
        malformed bodies raise `ValidationError`. Reconciliation failures are
        returned as a 500 result so the gateway redelivers.
        """

        if not verify_signature(raw_body, signature, self.secret):
            webhooks_received_total.labels(action="unknown", outcome="unauthenticated").inc()
            logger.warning("webhook_signature_rejected bytes=%s", len(raw_body))
            raise AuthenticationError("invalid webhook signature")
        try:
            event = parse_event(raw_body)
        except ValidationError:
            webhooks_received_total.labels(action="unknown", outcome="malformed").inc()
            raise

        resource_id_ctx.set(event.resource_id)
        if event.action in PAYMENT_ACTIONS:
            reconcile = self.payments.reconcile
        elif event.action in SUBSCRIPTION_ACTIONS:
            reconcile = self.subscriptions.reconcile
        else:
            webhooks_received_total.labels(action=event.action, outcome="ignored").inc()
            logger.info("webhook_ignored action=%s resource_id=%s", event.action, event.resource_id)
            return WebhookResult("ignored", 200, event.action, event.resource_id)

        with get_tracer().start_as_current_span("webhook.reconcile") as span:
            span.set_attribute("webhook.action", event.action)
            span.set_attribute("webhook.resource_id", event.resource_id)
            try:
                await reconcile(event.resource_id)
            except Exception as exc:
                webhooks_received_total.labels(action=event.action, outcome="failed").inc()
                logger.error(
                    "webhook_reconcile_failed action=%s resource_id=%s error=%s",
                    event.action,
                    event.resource_id,
                    exc,
                )
                code = exc.code if isinstance(exc, PaySubError) else "internal_error"
                return WebhookResult("failed", 500, event.action, event.resource_id, error=code)

        webhooks_received_total.labels(action=event.action, outcome="processed").inc()
        logger.info("webhook_processed action=%s resource_id=%s", event.action, event.resource_id)
        return WebhookResult("processed", 200, event.action, event.resource_id)
