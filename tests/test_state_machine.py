"""Unit tests for payment and subscription status-graph guardrails."""

import pytest

from paysub.common.errors import ConflictError
from paysub.common.state_machine import (
    OPEN_SUBSCRIPTION_STATUSES,
    PaymentStatus,
    SubscriptionStatus,
    is_reachable,
    is_terminal,
    validate_transition,
)


def test_valid_payment_transition():
    """A legal single step passes silently."""

    validate_transition(PaymentStatus.PENDING, PaymentStatus.APPROVED)
    validate_transition(PaymentStatus.APPROVED, PaymentStatus.REFUNDED)


def test_invalid_payment_transition():
    """Refunding a payment that never settled is rejected."""

    with pytest.raises(ConflictError):
        validate_transition(PaymentStatus.PENDING, PaymentStatus.REFUNDED)


def test_terminal_payment_statuses_have_no_exits():
    for status in (
        PaymentStatus.REJECTED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
        PaymentStatus.CHARGED_BACK,
    ):
        assert is_terminal(status)
        with pytest.raises(ConflictError):
            validate_transition(status, PaymentStatus.APPROVED)


def test_subscription_exits_available_from_every_open_status():
    for status in OPEN_SUBSCRIPTION_STATUSES:
        validate_transition(status, SubscriptionStatus.CANCELLED)
        validate_transition(status, SubscriptionStatus.PAYMENT_FAILED)


def test_subscription_cannot_skip_back_to_pending():
    with pytest.raises(ConflictError):
        validate_transition(SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING)


def test_reachability_spans_several_steps():
    """PENDING -> IN_PROCESS -> APPROVED -> REFUNDED is one forward path."""

    assert is_reachable(PaymentStatus.PENDING, PaymentStatus.REFUNDED)
    assert is_reachable(SubscriptionStatus.PENDING, SubscriptionStatus.ENDED)


def test_reachability_refuses_backward_moves():
    assert not is_reachable(PaymentStatus.APPROVED, PaymentStatus.PENDING)
    assert not is_reachable(PaymentStatus.REFUNDED, PaymentStatus.APPROVED)
    assert not is_reachable(SubscriptionStatus.CANCELLED, SubscriptionStatus.ACTIVE)
