"""
Base exception hierarchy for application errors.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Invalid input or payload
    ├── NotFoundError - Expected record is missing
    ├── ConflictError - State conflicts (terminal states, stale rows)
    └── ExternalServiceError - Payment provider / network failures

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError(
        f"Appointment {appointment_id} not found",
        error_code="APPOINTMENT_NOT_FOUND",
        details={"appointment_id": str(appointment_id)},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code, defaults to the class default
        details: Extra context (ids, amounts) for logs and API responses
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary for an API response.

        Example:
            {
                "error": "Subscription not found",
                "error_code": "SUBSCRIPTION_NOT_FOUND",
                "details": {"subscription_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input fails validation.

    Used by the webhook boundary when a provider payload lacks the fields
    needed to build a typed command, and by services for bad arguments.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a record that must exist cannot be found."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current state.

    Use for:
    - Transitions out of terminal states
    - Optimistic locking failures (stale version)
    - Locks held by another worker

    HTTP 409 Conflict is the matching status.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a call to an external service fails.

    Log the original error, never expose it verbatim to clients.
    HTTP 502 or 503 are the matching statuses.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
