"""Input checks shared by the payment and subscription services.

Checks append to a `{field: message}` dict so one request reports every
problem at once; the caller raises `ValidationError` if anything was added.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from paysub.common.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CENT = Decimal("0.01")


def is_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))


def check_positive_int(errors: dict[str, str], field: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors[field] = "must be a positive integer"


def check_text(errors: dict[str, str], field: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        errors[field] = "is required"


def check_amount(errors: dict[str, str], field: str, value: Any) -> Decimal | None:
    """Positive, at most two decimal places. Returns the quantised amount."""

    if value is None:
        errors[field] = "is required"
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        errors[field] = "must be a decimal number"
        return None
    if not amount.is_finite() or amount <= 0:
        errors[field] = "must be greater than zero"
        return None
    if amount != amount.quantize(CENT):
        errors[field] = "must have at most two decimal places"
        return None
    return amount.quantize(CENT)


def check_payer(errors: dict[str, str], payer: Any, *, require_email: bool = True) -> None:
    if payer is None:
        if require_email:
            errors["payer.email"] = "is required"
        return
    email = getattr(payer, "email", None)
    if email is None or email == "":
        if require_email:
            errors["payer.email"] = "is required"
    elif not is_email(email):
        errors["payer.email"] = "must be a valid email address"
    identification = getattr(payer, "identification", None)
    if identification is not None:
        if not getattr(identification, "type", None):
            errors["payer.identification.type"] = "is required when identification is given"
        if not getattr(identification, "number", None):
            errors["payer.identification.number"] = "is required when identification is given"


def raise_if_errors(errors: dict[str, str], message: str) -> None:
    if errors:
        raise ValidationError(message, details={"fields": errors})
