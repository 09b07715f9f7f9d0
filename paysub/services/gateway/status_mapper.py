"""Gateway-native status strings -> internal status enums.

Both functions are total: any string (including empty) yields a valid enum
member. Unrecognised values fall back to PENDING and are logged as a warning
so new gateway statuses show up in logs instead of disappearing.
"""

from paysub.common.logging import logger
from paysub.common.state_machine import PaymentStatus, SubscriptionStatus

PAYMENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "approved": PaymentStatus.APPROVED,
    "authorized": PaymentStatus.AUTHORIZED,
    "in_process": PaymentStatus.IN_PROCESS,
    "in_mediation": PaymentStatus.IN_MEDIATION,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.CHARGED_BACK,
}

# The gateway reports a live preapproval as "authorized"; locally that is ACTIVE.
SUBSCRIPTION_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "pending": SubscriptionStatus.PENDING,
    "authorized": SubscriptionStatus.ACTIVE,
    "active": SubscriptionStatus.ACTIVE,
    "paused": SubscriptionStatus.PAUSED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "ended": SubscriptionStatus.ENDED,
    "finished": SubscriptionStatus.ENDED,
    "payment_failed": SubscriptionStatus.PAYMENT_FAILED,
}

DEFAULT_PAYMENT_STATUS = PaymentStatus.PENDING
DEFAULT_SUBSCRIPTION_STATUS = SubscriptionStatus.PENDING


def _normalise(raw: object) -> str:
    return str(raw).strip().lower() if raw is not None else ""


def map_payment_status(gateway_status: object) -> PaymentStatus:
    key = _normalise(gateway_status)
    status = PAYMENT_STATUS_MAP.get(key)
    if status is None:
        logger.warning("unknown gateway payment status=%r defaulting to %s", gateway_status, DEFAULT_PAYMENT_STATUS.value)
        return DEFAULT_PAYMENT_STATUS
    return status


def map_subscription_status(gateway_status: object) -> SubscriptionStatus:
    key = _normalise(gateway_status)
    status = SUBSCRIPTION_STATUS_MAP.get(key)
    if status is None:
        logger.warning(
            "unknown gateway subscription status=%r defaulting to %s",
            gateway_status,
            DEFAULT_SUBSCRIPTION_STATUS.value,
        )
        return DEFAULT_SUBSCRIPTION_STATUS
    return status
