"""
Service layer primitives.

- ServiceResult: explicit result wrapper so callers (webhook dispatcher,
  batch schedulers, views) decide acknowledgement and retry behaviour from
  a value instead of from exception semantics.
- BaseService: logging and transaction helpers for service classes.

Pattern:
    - ServiceResult for expected outcomes (duplicate delivery, missing
      record, unknown event, business rule violations)
    - Exceptions for unexpected failures (database errors, bugs), which
      propagate to the nearest atomic boundary and roll it back

Usage:
    from core.services import BaseService, ServiceResult

    class InvoiceService(BaseService):
        @classmethod
        def issue(cls, payment) -> ServiceResult[Invoice]:
            if payment.status != PaymentStatus.COMPLETED:
                return ServiceResult.failure(
                    "Payment is not completed",
                    error_code="PAYMENT_NOT_COMPLETED",
                )
            with cls.atomic():
                invoice = Invoice.objects.create(payment=payment, ...)
            return ServiceResult.success(invoice)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Error message if failed
        error_code: Machine-readable error code
        errors: Field-level errors for validation failures
        retryable: Whether re-running the same operation may succeed
            (transient failure) or is pointless (permanent failure)

    Usage:
        return ServiceResult.success(payment)
        return ServiceResult.failure("Payment not found", "PAYMENT_NOT_FOUND")
        return ServiceResult.failure(
            "Stripe unavailable", "STRIPE_UNAVAILABLE", retryable=True
        )
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    retryable: bool = False

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success()."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result carrying ``data``."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        retryable: bool = False,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors (for validation failures)
            retryable: True when a later retry may succeed
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            retryable=retryable,
        )

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        error_code: str | None = None,
        retryable: bool = False,
    ) -> ServiceResult[T]:
        """
        Create a failed result from a caught exception.

        The error code defaults to the exception's own ``error_code`` when
        it is an application error, else to its upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=str(exc),
            error_code=code or exc.__class__.__name__.upper(),
            retryable=retryable,
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to a dict suitable for a DRF Response body."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for stateless service classes.

    Provides a per-class logger and an explicit transaction boundary.
    Subclasses expose @classmethod or @staticmethod operations only.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Run the enclosed block in a database transaction.

        Thin wrapper around ``transaction.atomic()`` that makes the
        boundary explicit in service code. Nested use creates savepoints.
        """
        with transaction.atomic():
            yield
