"""Capability-based authorization for the HTTP boundary.

Callers arrive already authenticated by the upstream edge; it forwards the
caller's capabilities in `X-Caller-Capabilities`. This module only decides.
"""

from dataclasses import dataclass, field
from enum import Enum


class Capability(str, Enum):
    PAYMENTS_READ = "payments:read"
    PAYMENTS_WRITE = "payments:write"
    PAYMENTS_REFUND = "payments:refund"
    SUBSCRIPTIONS_READ = "subscriptions:read"
    SUBSCRIPTIONS_WRITE = "subscriptions:write"
    SUBSCRIPTIONS_EXEMPT = "subscriptions:exempt"
    BILLING_ADMIN = "billing:admin"


def parse_capabilities(raw: str | None) -> frozenset[Capability]:
    """Parse a comma separated header value; unknown names are dropped."""

    known = {cap.value: cap for cap in Capability}
    if not raw:
        return frozenset()
    return frozenset(known[item.strip()] for item in raw.split(",") if item.strip() in known)


def authorize(required: Capability, granted: frozenset[Capability] | set[Capability]) -> bool:
    """Single authorization predicate. `billing:admin` implies everything."""

    return required in granted or Capability.BILLING_ADMIN in granted


@dataclass(frozen=True)
class Caller:
    caller_id: str | None = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def can(self, required: Capability) -> bool:
        return authorize(required, self.capabilities)
