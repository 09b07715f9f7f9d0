"""Input checks and listing helpers."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from paysub.common.auth import Caller, Capability, parse_capabilities
from paysub.common.errors import ValidationError
from paysub.common.pagination import datetime_filter, enum_filter, normalise_page, positive_int_filter, total_pages
from paysub.common.state_machine import PaymentStatus
from paysub.common.validation import check_amount, check_payer, is_email, raise_if_errors
from paysub.services.gateway.schemas import PayerIdentification, PayerInfo


@pytest.mark.parametrize(
    "value, expected",
    [("10", Decimal("10.00")), ("0.1", Decimal("0.10")), (Decimal("99.99"), Decimal("99.99"))],
)
def test_amount_is_quantised(value, expected):
    errors = {}
    assert check_amount(errors, "amount", value) == expected
    assert errors == {}


@pytest.mark.parametrize("value", [None, "abc", "0", "-5", "1.001", "NaN"])
def test_bad_amounts(value):
    errors = {}
    assert check_amount(errors, "amount", value) is None
    assert "amount" in errors


def test_email_shape():
    assert is_email("a@b.co")
    assert not is_email("a@b")
    assert not is_email("a b@c.de")
    assert not is_email(None)


def test_payer_identification_needs_both_parts():
    errors = {}
    check_payer(errors, PayerInfo(email="a@b.co", identification=PayerIdentification(number="123")))
    assert errors == {"payer.identification.type": "is required when identification is given"}


def test_payer_optional_when_email_not_required():
    errors = {}
    check_payer(errors, None, require_email=False)
    assert errors == {}


def test_raise_if_errors_carries_fields():
    raise_if_errors({}, "fine")
    with pytest.raises(ValidationError) as excinfo:
        raise_if_errors({"amount": "is required"}, "invalid")
    assert excinfo.value.details == {"fields": {"amount": "is required"}}


def test_page_and_limit_are_clamped():
    assert normalise_page(None, None) == (1, 10)
    assert normalise_page("0", "-3") == (1, 10)
    assert normalise_page("3", "500") == (3, 100)
    assert total_pages(0, 10) == 0
    assert total_pages(21, 10) == 3


def test_unparseable_filters_are_dropped():
    assert positive_int_filter("x") is None
    assert positive_int_filter("-1") is None
    assert positive_int_filter(" 12 ") == 12
    assert enum_filter(PaymentStatus, "Approved") is PaymentStatus.APPROVED
    assert enum_filter(PaymentStatus, "settled") is None
    assert datetime_filter("yesterday") is None
    assert datetime_filter("2026-10-19T12:00:00Z") == datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
    assert datetime_filter("2026-10-19") == datetime(2026, 10, 19, tzinfo=timezone.utc)


def test_capabilities_parse_and_admin_implies_all():
    granted = parse_capabilities("payments:read, bogus ,billing:admin")
    assert granted == frozenset({Capability.PAYMENTS_READ, Capability.BILLING_ADMIN})
    assert Caller(capabilities=granted).can(Capability.SUBSCRIPTIONS_EXEMPT)
    assert not Caller(capabilities=parse_capabilities("payments:read")).can(Capability.PAYMENTS_WRITE)
    assert parse_capabilities(None) == frozenset()
