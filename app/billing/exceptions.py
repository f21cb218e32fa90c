"""
Billing exceptions.

Exception Hierarchy:
    BillingError (base for the billing domain)
    ├── PaymentNotFoundError - Payment lookup failures
    ├── SubscriptionNotFoundError - Subscription lookup failures
    ├── InvalidEventPayload - Provider payload cannot become a typed command
    ├── RecognitionError - Revenue recognition cannot proceed
    │   └── NoSessionsRemaining - Package has no session left to consume
    └── StripeError - Base for all Stripe errors (also an ExternalServiceError)
        ├── StripeInvalidRequestError - Invalid request / signature (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        └── StripeAPIUnavailableError - API unavailable (transient, retry)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock held elsewhere (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from billing.exceptions import InvalidEventPayload

    raise InvalidEventPayload(
        "invoice.paid without subscription metadata",
        details={"invoice_id": invoice_id},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


class BillingError(BaseApplicationError):
    """Base exception for billing domain errors."""

    default_error_code: str = "BILLING_ERROR"


class PaymentNotFoundError(BillingError):
    """Raised when a Payment cannot be found."""

    default_error_code: str = "PAYMENT_NOT_FOUND"


class SubscriptionNotFoundError(BillingError):
    """Raised when a Subscription cannot be found."""

    default_error_code: str = "SUBSCRIPTION_NOT_FOUND"


class InvalidEventPayload(BillingError):
    """
    Raised by event classification when a payload lacks required fields.

    Permanent: replaying the same payload fails the same way.
    """

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"


class RecognitionError(BillingError):
    """
    Raised when revenue cannot be recognized for an appointment.

    Surfaced to the caller of the session-outcome action so the UI can
    retry.
    """

    default_error_code: str = "RECOGNITION_FAILED"


class NoSessionsRemaining(RecognitionError):
    """Raised when a package session is consumed from an exhausted period."""

    default_error_code: str = "NO_SESSIONS_REMAINING"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(BillingError, ExternalServiceError):
    """
    Base exception for Stripe errors.

    Attributes:
        stripe_code: Stripe's error code, when known
        is_retryable: True for transient failures worth retrying
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters, unknown resource, or a webhook whose
    signature does not verify. Permanent.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe. Transient."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Network failure or Stripe server error. Transient."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Concurrency Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a row changed between read and write.

    Example:
        raise StaleRecordError(
            f"Subscription {pk} has been modified",
            details={"expected_version": 3, "current_version": 4},
        )
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock is held by another worker."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a status transition is not allowed from the current state.

    Example:
        raise InvalidStateTransitionError(
            "Cannot mark cancelled subscription as payment_failed",
            details={"current_state": "cancelled", "target_state": "payment_failed"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
