"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the executors that apply
classified billing commands to the ledgers.

Flow for one event:
    dispatch_webhook(event)
      -> registered handler
      -> classify_event(payload)            (billing.webhooks.commands)
      -> executor for the command type      (this module)
      -> ServiceResult[HandlerOutcome]

Every executor:
- re-reads and locks the rows it mutates
- detects duplicates by external reference before inserting anything
- returns APPLIED, DUPLICATE or IGNORED on success, or a failure with a
  ``retryable`` flag; it never raises for an expected outcome

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Callable

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from billing.exceptions import InvalidEventPayload, StripeError
from billing.models import Payment, Subscription, WebhookEvent
from billing.services.payments import PaymentService
from billing.services.renewal import RenewalService
from billing.services.revenue import DeferredRevenueService
from billing.services.subscriptions import SubscriptionService
from billing.state_machines import HandlerOutcome, PackageKind, PaymentKind, PaymentStatus
from billing.wallet.services import WalletService
from billing.webhooks.commands import (
    ActivateSubscription,
    CompleteSinglePayment,
    ExpireSubscription,
    FailSinglePayment,
    MarkSubscriptionPaymentFailed,
    RenewSubscription,
    classify_event,
)
from core.exceptions import NotFoundError
from core.services import ServiceResult
from practice.services import AppointmentService, PricingCatalog

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from billing.webhooks.commands import BillingCommand


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("invoice.paid")
        def handle_invoice_paid(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult[HandlerOutcome]:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged as IGNORED so Stripe stops
    delivering them.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Event Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
@register_handler("payment_intent.payment_failed")
@register_handler("invoice.paid")
@register_handler("invoice.payment_failed")
@register_handler("customer.subscription.deleted")
def handle_billing_event(webhook_event: WebhookEvent) -> ServiceResult[HandlerOutcome]:
    """
    Classify a billing event and run the executor for its command.

    Payload problems are permanent failures. A Stripe failure while
    fetching subscription metadata is retryable when Stripe says so.
    """
    log_context = {
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
        "payload_digest": webhook_event.payload_digest,
    }

    try:
        command = classify_event(webhook_event.payload)
    except InvalidEventPayload as exc:
        logger.error(
            "Webhook payload rejected",
            extra={**log_context, "error": exc.message, "details": exc.details},
        )
        return ServiceResult.from_exception(exc)
    except StripeError as exc:
        logger.warning(
            "Stripe lookup failed while classifying webhook",
            extra={**log_context, "error_code": exc.error_code},
        )
        return ServiceResult.from_exception(exc, retryable=exc.is_retryable)

    if command is None:
        logger.info("Webhook acknowledged without effect", extra=log_context)
        return ServiceResult.success(HandlerOutcome.IGNORED)

    executor = COMMAND_EXECUTORS[type(command)]
    try:
        with transaction.atomic():
            result = executor(command)
    except InvalidEventPayload as exc:
        logger.error(
            "Webhook command rejected",
            extra={**log_context, "error": exc.message, "details": exc.details},
        )
        return ServiceResult.from_exception(exc)

    logger.info(
        "Webhook command executed",
        extra={
            **log_context,
            "command": type(command).__name__,
            "success": result.success,
            "outcome": result.data if result.success else None,
            "error_code": result.error_code,
        },
    )
    return result


# =============================================================================
# Helpers
# =============================================================================


def _appointment_window(metadata: dict[str, Any]) -> tuple[datetime, datetime] | None:
    """Appointment time range embedded in checkout metadata, if any."""
    start_raw = metadata.get("appointment_start_time")
    if not start_raw:
        return None
    try:
        start = parse_datetime(str(start_raw))
        end = parse_datetime(str(metadata.get("appointment_end_time") or ""))
    except ValueError:
        start = end = None
    if start is None or end is None or end <= start:
        raise InvalidEventPayload(
            "Checkout metadata has an invalid appointment window",
            details={
                "appointment_start_time": start_raw,
                "appointment_end_time": metadata.get("appointment_end_time"),
            },
        )
    return start, end


def _lock_payment(external_reference: str) -> Payment | None:
    return (
        Payment.objects.select_for_update()
        .filter(external_reference=external_reference)
        .first()
    )


def _package_pricing(command: ActivateSubscription, payment: Payment) -> tuple[int, Decimal]:
    """
    Session price and discount the subscription renews at.

    Metadata wins; missing values come from the pricing catalog, and
    without a catalog entry the price is derived from the first charge.
    """
    price = command.session_price_cents
    discount = command.discount_percent
    if price is not None and discount is not None:
        return price, discount

    try:
        quote = PricingCatalog.package_quote(payment.provider_id, command.package_kind)
    except NotFoundError:
        sessions = PackageKind(command.package_kind).base_sessions
        derived = DeferredRevenueService.price_per_session(payment.base_amount_cents, sessions)
        return (price if price is not None else derived), (discount or Decimal("0"))

    return (
        price if price is not None else quote.session_price_cents,
        discount if discount is not None else quote.discount_percent,
    )


def _payment_not_found(external_reference: str) -> ServiceResult[HandlerOutcome]:
    # The checkout row may not be committed yet; retry later.
    logger.warning(
        "Payment not found for external reference",
        extra={"external_reference": external_reference},
    )
    return ServiceResult.failure(
        f"Payment not found for reference: {external_reference}",
        error_code="PAYMENT_NOT_FOUND",
        retryable=True,
    )


# =============================================================================
# Executors
# =============================================================================


def complete_single_payment(command: CompleteSinglePayment) -> ServiceResult[HandlerOutcome]:
    """
    Finalize a one-off session payment.

    Posts the platform fee, materializes the booked appointment, parks the
    base amount as deferred revenue, completes the payment and invoices it.
    """
    payment = _lock_payment(command.payment_reference)
    if payment is None:
        return _payment_not_found(command.payment_reference)
    if payment.status == PaymentStatus.COMPLETED:
        return ServiceResult.success(HandlerOutcome.DUPLICATE)

    PaymentService.post_platform_fee(payment)

    appointment = payment.appointment
    window = _appointment_window(payment.checkout_metadata or {})
    if appointment is None and window is not None:
        appointment = AppointmentService.create_pending(
            patient=payment.payer,
            psychologist_id=payment.provider_id,
            start_time=window[0],
            end_time=window[1],
        )

    DeferredRevenueService.open_entry(payment, sessions_total=1, appointment=appointment)

    payment.complete()
    payment.appointment = appointment
    payment.save()
    PaymentService.issue_invoice(payment)

    logger.info(
        "Single session payment completed",
        extra={
            "payment_id": str(payment.id),
            "external_reference": command.payment_reference,
            "appointment_id": str(appointment.id) if appointment else None,
        },
    )
    return ServiceResult.success(HandlerOutcome.APPLIED)


def fail_single_payment(command: FailSinglePayment) -> ServiceResult[HandlerOutcome]:
    """Mark a one-off payment failed. No ledger effect."""
    payment = _lock_payment(command.payment_reference)
    if payment is None:
        logger.info(
            "No payment for failed intent",
            extra={"external_reference": command.payment_reference},
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)
    if payment.status == PaymentStatus.FAILED:
        return ServiceResult.success(HandlerOutcome.DUPLICATE)
    if payment.status == PaymentStatus.COMPLETED:
        return ServiceResult.success(HandlerOutcome.IGNORED)

    payment.fail()
    payment.save()
    return ServiceResult.success(HandlerOutcome.APPLIED)


def activate_subscription(command: ActivateSubscription) -> ServiceResult[HandlerOutcome]:
    """
    First package invoice paid: create the subscription.

    When checkout booked a first appointment, it is created against the
    subscription and its session is consumed in the same insert.
    """
    payment = _lock_payment(command.payment_reference)
    if payment is None:
        return _payment_not_found(command.payment_reference)
    if (
        payment.status == PaymentStatus.COMPLETED
        or Subscription.objects.filter(external_reference=command.subscription_reference).exists()
    ):
        return ServiceResult.success(HandlerOutcome.DUPLICATE)

    if str(payment.provider_id) != command.provider_id:
        logger.warning(
            "Subscription metadata names a different psychologist than the payment",
            extra={
                "payment_id": str(payment.id),
                "payment_provider_id": str(payment.provider_id),
                "metadata_provider_id": command.provider_id,
            },
        )

    PaymentService.post_platform_fee(payment)

    session_price_cents, discount_percent = _package_pricing(command, payment)
    window = _appointment_window(payment.checkout_metadata or {})
    subscription = SubscriptionService.create_from_first_payment(
        payment=payment,
        package_kind=command.package_kind,
        session_price_cents=session_price_cents,
        discount_percent=discount_percent,
        external_reference=command.subscription_reference,
        invoice_reference=command.invoice_id,
        consume_first_session=window is not None,
    )

    appointment = None
    if window is not None:
        appointment = AppointmentService.create_pending(
            patient=payment.payer,
            psychologist_id=payment.provider_id,
            start_time=window[0],
            end_time=window[1],
            subscription=subscription,
            package_session_consumed=True,
        )

    DeferredRevenueService.open_entry(
        payment,
        sessions_total=subscription.base_sessions,
        subscription=subscription,
    )
    if payment.provider is not None:
        WalletService.get_or_create_provider_wallet(payment.provider)

    payment.complete()
    payment.subscription = subscription
    payment.appointment = appointment
    payment.save()
    PaymentService.issue_invoice(payment)

    return ServiceResult.success(HandlerOutcome.APPLIED)


def renew_subscription(command: RenewSubscription) -> ServiceResult[HandlerOutcome]:
    """
    Recurring invoice paid by Stripe's billing: roll into the next period.

    Ignored when the batch scheduler is the authoritative renewal path.
    """
    if RenewalService.is_enabled():
        logger.info(
            "Scheduler renewal mode active, ignoring provider renewal invoice",
            extra={
                "subscription_reference": command.subscription_reference,
                "invoice_id": command.invoice_id,
            },
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)

    subscription = Subscription.objects.filter(
        external_reference=command.subscription_reference
    ).first()
    if subscription is None:
        return ServiceResult.failure(
            f"Subscription not found: {command.subscription_reference}",
            error_code="SUBSCRIPTION_NOT_FOUND",
            retryable=True,
        )
    if Payment.objects.filter(external_reference=command.payment_reference).exists():
        return ServiceResult.success(HandlerOutcome.DUPLICATE)
    if subscription.is_terminal:
        logger.warning(
            "Renewal invoice paid for a terminated subscription",
            extra={
                "subscription_id": str(subscription.id),
                "status": subscription.status,
                "invoice_id": command.invoice_id,
            },
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)

    base = command.base_amount_cents
    if base is None:
        base = RenewalService.period_charge_cents(subscription)
    rate = command.fee_rate if command.fee_rate is not None else PaymentService.default_fee_rate()
    fee = command.platform_fee_cents
    if fee is None:
        fee = PaymentService.calculate_fee(base, rate)

    payment = Payment.objects.create(
        payer_id=subscription.client_id,
        provider_id=subscription.provider_id,
        subscription=subscription,
        kind=PaymentKind.SUBSCRIPTION_RENEWAL,
        status=PaymentStatus.COMPLETED,
        base_amount_cents=base,
        platform_fee_cents=fee,
        fee_rate=rate,
        total_amount_cents=base + fee,
        currency=subscription.currency,
        external_reference=command.payment_reference,
        description=f"Renewal {subscription.get_package_kind_display()}",
        completed_at=timezone.now(),
    )

    PaymentService.post_platform_fee(payment)
    DeferredRevenueService.open_entry(
        payment,
        sessions_total=subscription.base_sessions,
        subscription=subscription,
    )
    SubscriptionService.roll_into_next_period(
        subscription.id,
        payment=payment,
        invoice_reference=command.invoice_id,
    )
    PaymentService.issue_invoice(payment, renewal=True)

    return ServiceResult.success(HandlerOutcome.APPLIED)


def mark_subscription_payment_failed(
    command: MarkSubscriptionPaymentFailed,
) -> ServiceResult[HandlerOutcome]:
    """Dunning started. Terminal subscriptions stay terminal."""
    subscription = Subscription.objects.filter(
        external_reference=command.subscription_reference
    ).first()
    if subscription is None:
        logger.info(
            "Invoice payment failed for unknown subscription",
            extra={
                "subscription_reference": command.subscription_reference,
                "invoice_id": command.invoice_id,
            },
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)

    # A paid invoice outranks its failed attempts, and so does a later period.
    superseded = command.invoice_id == subscription.last_invoice_reference or (
        command.invoice_created is not None
        and command.invoice_created < subscription.current_period_start
    )
    if superseded:
        logger.info(
            "Ignoring payment failure of a superseded invoice",
            extra={
                "subscription_id": str(subscription.id),
                "invoice_id": command.invoice_id,
                "last_invoice_reference": subscription.last_invoice_reference,
            },
        )
        return ServiceResult.success(HandlerOutcome.IGNORED)

    outcome = SubscriptionService.mark_payment_failed(
        subscription.id,
        notes=f"Invoice {command.invoice_id} payment failed",
    )
    return ServiceResult.success(outcome)


def expire_subscription(command: ExpireSubscription) -> ServiceResult[HandlerOutcome]:
    subscription = Subscription.objects.filter(
        external_reference=command.subscription_reference
    ).first()
    if subscription is None:
        return ServiceResult.success(HandlerOutcome.IGNORED)

    outcome = SubscriptionService.expire(
        subscription.id,
        notes="Subscription deleted at Stripe",
    )
    return ServiceResult.success(outcome)


COMMAND_EXECUTORS: dict[type[BillingCommand], Callable[[Any], ServiceResult]] = {
    CompleteSinglePayment: complete_single_payment,
    FailSinglePayment: fail_single_payment,
    ActivateSubscription: activate_subscription,
    RenewSubscription: renew_subscription,
    MarkSubscriptionPaymentFailed: mark_subscription_payment_failed,
    ExpireSubscription: expire_subscription,
}
