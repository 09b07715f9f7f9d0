"""Error taxonomy shared by repositories, services and the HTTP boundary.

Every error carries the HTTP status and a user-safe message so the boundary
can map it without inspecting message text. `details` is only ever populated
with data that is safe to return to the caller (field-level validation
messages, ids).
"""

from typing import Any


class PaySubError(Exception):
    """Base class for all domain errors."""

    http_status = 500
    code = "internal_error"
    safe_message = "internal error"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.safe_message)
        self.message = message or self.safe_message
        self.details = details or {}

    def public_message(self) -> str:
        return self.message


class ValidationError(PaySubError):
    """Malformed or missing input. Raised before any network call."""

    http_status = 400
    code = "validation_error"
    safe_message = "invalid request"


class NotFoundError(PaySubError):
    http_status = 404
    code = "not_found"
    safe_message = "resource not found"


class ConflictError(PaySubError):
    """Illegal state transition or duplicate open subscription."""

    http_status = 409
    code = "conflict"
    safe_message = "request conflicts with current state"


class AuthenticationError(PaySubError):
    http_status = 401
    code = "authentication_failed"
    safe_message = "authentication failed"


class AuthorizationError(PaySubError):
    http_status = 403
    code = "forbidden"
    safe_message = "missing capability"


class GatewayError(PaySubError):
    """External payment gateway failure (transport, timeout or rejection).

    The raw gateway body is kept on the exception for logs only; the public
    message never includes it.
    """

    http_status = 502
    code = "gateway_error"
    safe_message = "payment gateway request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        operation: str,
        external_id: str | None = None,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, details={"operation": operation})
        self.operation = operation
        self.external_id = external_id
        self.status_code = status_code
        self.body = body

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    def public_message(self) -> str:
        return self.safe_message

    def __str__(self) -> str:
        return (
            f"{self.message} operation={self.operation} external_id={self.external_id} "
            f"status_code={self.status_code}"
        )


class InternalError(PaySubError):
    """Unclassified failure. Never exposes its message to callers."""

    def public_message(self) -> str:
        return self.safe_message


class ConstraintViolation(InternalError):
    """A storage-level uniqueness constraint rejected a write."""

    def __init__(self, message: str | None = None, *, constraint: str | None = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class StaleWrite(InternalError):
    """A status-guarded update matched no row (concurrent writer won)."""
