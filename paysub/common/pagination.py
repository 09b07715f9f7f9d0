"""Listing helpers shared by payment and subscription queries.

Filter values arrive as raw query strings. A value that does not parse is
dropped rather than rejected; page and limit are clamped into range.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

E = TypeVar("E", bound=Enum)


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def normalise_page(page: Any, limit: Any) -> tuple[int, int]:
    page_number = _to_int(page)
    page_size = _to_int(limit)
    if page_number is None or page_number < 1:
        page_number = DEFAULT_PAGE
    if page_size is None or page_size < 1:
        page_size = DEFAULT_LIMIT
    return page_number, min(page_size, MAX_LIMIT)


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def positive_int_filter(value: Any) -> int | None:
    number = _to_int(value)
    return number if number is not None and number > 0 else None


def enum_filter(enum_cls: type[E], value: Any) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def datetime_filter(value: Any) -> datetime | None:
    """Accept datetimes or ISO-8601 strings (date-only allowed)."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
