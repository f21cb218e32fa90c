"""
Stripe API adapter.

Every Stripe call the billing engine makes goes through StripeAdapter so
that timeouts, logging and error translation are uniform.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_WEBHOOK_TOLERANCE_SECONDS: Max signature age (default: 300)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Usage:
    from billing.adapters import StripeAdapter

    event = StripeAdapter.verify_webhook_signature(request.body, signature)
    customer_id = StripeAdapter.get_or_create_customer(user.email)
    intent = StripeAdapter.create_payment_intent(CreatePaymentIntentParams(...))
    sub = StripeAdapter.retrieve_subscription("sub_123")
    StripeAdapter.cancel_subscription("sub_123")
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any

import stripe
from django.conf import settings

from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class SubscriptionResult:
    """
    Result from Stripe Subscription operations.

    Attributes:
        id: Subscription ID (sub_xxx)
        status: Stripe status (active, past_due, canceled, ...)
        metadata: Checkout metadata attached at creation
        current_period_start / current_period_end: Billing period, if known
    """

    id: str
    status: str
    metadata: dict[str, str] = field(default_factory=dict)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a Stripe PaymentIntent.

    Attributes:
        amount_cents: Total charge in the smallest currency unit
        currency: ISO 4217 currency code
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach to the PaymentIntent
        customer_id: Optional Stripe Customer ID
    """

    amount_cents: int
    currency: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    customer_id: str | None = None
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class PaymentIntentResult:
    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CreateSubscriptionParams:
    """
    Parameters for a monthly package subscription.

    ``amount_cents`` is charged every period. The first invoice is left
    incomplete until the client confirms its payment.
    """

    customer_id: str
    amount_cents: int
    currency: str
    product_name: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    interval: str = "month"

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.customer_id:
            raise ValueError("customer_id is required")


@dataclass
class SubscriptionCheckoutResult:
    """
    A created subscription and the charge of its first invoice.

    Attributes:
        id: Subscription ID (sub_xxx)
        status: Stripe status, ``incomplete`` until the first payment
        invoice_id: First invoice ID (in_xxx)
        payment_reference: PaymentIntent of the first invoice, or
            ``invoice:<id>`` when the invoice has none
        client_secret: Secret for client-side confirmation
    """

    id: str
    status: str
    invoice_id: str | None
    payment_reference: str
    client_secret: str | None = None


class IdempotencyKeyGenerator:
    """
    Idempotency keys for Stripe create calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def _from_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are class methods - no instance state is maintained.
    Thread-safe for use from Celery workers.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Checkout
    # =========================================================================

    @classmethod
    def get_or_create_customer(
        cls,
        email: str,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        """
        Stripe Customer ID for an email, creating the customer if needed.

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe unreachable (retryable)
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {"operation": "get_or_create_customer"}

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            existing = stripe.Customer.list(email=email, limit=1)
            if existing.data:
                customer_id = existing.data[0].id
            else:
                customer_id = stripe.Customer.create(
                    email=email,
                    metadata=metadata or {},
                    idempotency_key=idempotency_key,
                ).id
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "customer_id": customer_id,
                    "created": not existing.data,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return customer_id
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

    @classmethod
    def create_payment_intent(cls, params: CreatePaymentIntentParams) -> PaymentIntentResult:
        """
        Create a PaymentIntent for a one-off session.

        Returns:
            PaymentIntentResult including the client_secret the client
            confirms the payment with

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe unreachable (retryable)
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=params.amount_cents,
                currency=params.currency,
                metadata=params.metadata,
                customer=params.customer_id,
                payment_method_types=params.payment_method_types,
                idempotency_key=params.idempotency_key,
            )
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "payment_intent_id": intent.id,
                    "status": intent.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return PaymentIntentResult(
                id=intent.id,
                status=intent.status,
                amount_cents=intent.amount,
                currency=intent.currency,
                client_secret=intent.client_secret,
                metadata=dict(intent.metadata or {}),
            )
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

    @classmethod
    def create_subscription(cls, params: CreateSubscriptionParams) -> SubscriptionCheckoutResult:
        """
        Create a recurring package subscription with an incomplete first
        invoice.

        The period price is created inline for the package. Metadata is set
        on the subscription so every later invoice can be attributed.

        Raises:
            StripeInvalidRequestError: Invalid parameters or unknown customer
            StripeAPIUnavailableError: Stripe unreachable (retryable)
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {
            "operation": "create_subscription",
            "customer_id": params.customer_id,
            "amount_cents": params.amount_cents,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            price = stripe.Price.create(
                unit_amount=params.amount_cents,
                currency=params.currency,
                recurring={"interval": params.interval},
                product_data={"name": params.product_name},
                idempotency_key=f"{params.idempotency_key}:price",
            )
            sub = stripe.Subscription.create(
                customer=params.customer_id,
                items=[{"price": price.id}],
                metadata=params.metadata,
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                expand=["latest_invoice.payment_intent"],
                idempotency_key=params.idempotency_key,
            )
            result = cls._to_checkout_result(sub)
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "subscription_id": result.id,
                    "invoice_id": result.invoice_id,
                    "status": result.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return result
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

    @staticmethod
    def _to_checkout_result(sub: Any) -> SubscriptionCheckoutResult:
        """
        The first invoice's charge, named the way invoice events name it so
        the pending payment and the later ``invoice.paid`` line up.
        """
        invoice = getattr(sub, "latest_invoice", None)
        invoice_id = invoice if isinstance(invoice, str) else getattr(invoice, "id", None)
        intent = getattr(invoice, "payment_intent", None)

        client_secret = None
        if isinstance(intent, str):
            reference = intent
        elif intent is not None:
            reference = intent.id
            client_secret = getattr(intent, "client_secret", None)
        else:
            reference = f"invoice:{invoice_id}"

        return SubscriptionCheckoutResult(
            id=sub.id,
            status=sub.status,
            invoice_id=invoice_id,
            payment_reference=reference,
            client_secret=client_secret,
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    @classmethod
    def retrieve_subscription(cls, subscription_id: str) -> SubscriptionResult:
        """
        Fetch a subscription, used when an invoice arrives without the
        subscription's metadata inlined.

        Raises:
            StripeInvalidRequestError: Subscription not found
            StripeAPIUnavailableError: Stripe unreachable (retryable)
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {
            "operation": "retrieve_subscription",
            "subscription_id": subscription_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            sub = stripe.Subscription.retrieve(subscription_id)
            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": sub.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return cls._to_subscription_result(sub)
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

    @classmethod
    def cancel_subscription(cls, subscription_id: str) -> SubscriptionResult:
        """
        Cancel a subscription immediately at Stripe.

        Raises:
            StripeInvalidRequestError: Unknown or already cancelled subscription
            StripeAPIUnavailableError: Stripe unreachable (retryable)
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {
            "operation": "cancel_subscription",
            "subscription_id": subscription_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            sub = stripe.Subscription.cancel(subscription_id)
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": sub.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return cls._to_subscription_result(sub)
        except Exception as e:
            cls._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

    @staticmethod
    def _to_subscription_result(sub: Any) -> SubscriptionResult:
        return SubscriptionResult(
            id=sub.id,
            status=sub.status,
            metadata=dict(sub.metadata or {}),
            current_period_start=_from_timestamp(getattr(sub, "current_period_start", None)),
            current_period_end=_from_timestamp(getattr(sub, "current_period_end", None)),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify a Stripe-Signature header and parse the event.

        Stripe signs ``{timestamp}.{raw body}`` with HMAC-SHA256 and sends
        it as the ``v1=`` component. Signatures whose timestamp is more than the
        configured tolerance away from now, in either direction, are rejected.

        Returns:
            The event as a plain dict

        Raises:
            StripeInvalidRequestError: Bad signature, timestamp outside the
                tolerance, or unparseable body
        """
        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook payload",
                stripe_code="invalid_payload",
                details={"error": str(e)},
            )
        cls._reject_future_timestamp(signature)
        return json.loads(payload)

    @staticmethod
    def _reject_future_timestamp(signature: str) -> None:
        """The SDK only bounds the age of a signature; bound its lead too."""
        tolerance = settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        for part in signature.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t" and value.isdigit() and int(value) > time.time() + tolerance:
                raise StripeInvalidRequestError(
                    "Webhook signature timestamp is in the future",
                    stripe_code="signature_verification_failed",
                    details={"timestamp": int(value), "tolerance": tolerance},
                )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions to billing exceptions.

        Raises:
            StripeInvalidRequestError: Invalid request or authentication (permanent)
            StripeRateLimitError: Rate limited (retryable)
            StripeAPIUnavailableError: Network or server error (retryable)
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(str(error), stripe_code=error.code)

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise StripeAPIUnavailableError(
            f"Unexpected Stripe error: {error}",
            stripe_code="unknown_error",
        )
