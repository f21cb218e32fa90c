"""
Event classification: Stripe payloads to typed billing commands.

Stripe events carry loosely-typed objects and string metadata. This module
is the only place that reads them. Each supported event becomes one frozen
command with explicit fields; the ledger code never sees provider
vocabulary.

Metadata written by the checkout flow on package subscriptions:
    supabase_user_id      client user id
    psychologist_id       provider id
    package_type          package_4 | package_8
    session_price         per-session price, in cents
    discount_percentage   package discount, e.g. "10"
    base_amount           period charge before fee, in cents (optional)
    platform_fee          fee in cents (optional)
    platform_fee_rate     fee as a fraction, e.g. "0.05" (optional)

Usage:
    from billing.webhooks.commands import classify_event

    command = classify_event(webhook_event.payload)
    if command is None:
        ...  # acknowledged, nothing to do
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Union

from billing.adapters import StripeAdapter
from billing.exceptions import InvalidEventPayload
from billing.state_machines import PackageKind

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class CompleteSinglePayment:
    payment_reference: str


@dataclass(frozen=True)
class FailSinglePayment:
    payment_reference: str


@dataclass(frozen=True)
class ActivateSubscription:
    """
    First invoice of a package subscription was paid.

    Price fields are None when checkout did not record them; the handler
    then reads the pricing catalog.
    """

    subscription_reference: str
    payment_reference: str
    invoice_id: str
    client_id: str
    provider_id: str
    package_kind: str
    session_price_cents: int | None = None
    discount_percent: Decimal | None = None


@dataclass(frozen=True)
class RenewSubscription:
    """
    A recurring invoice was paid by the provider's own billing.

    Amounts are None when the subscription metadata does not carry them;
    the handler then prices the period from the subscription row.
    """

    subscription_reference: str
    payment_reference: str
    invoice_id: str
    base_amount_cents: int | None = None
    platform_fee_cents: int | None = None
    fee_rate: Decimal | None = None


@dataclass(frozen=True)
class MarkSubscriptionPaymentFailed:
    """
    An invoice of the subscription could not be charged.

    ``invoice_created`` dates the invoice so failures of invoices that a
    later payment already superseded can be told apart.
    """

    subscription_reference: str
    invoice_id: str
    invoice_created: datetime | None = None


@dataclass(frozen=True)
class ExpireSubscription:
    subscription_reference: str


BillingCommand = Union[
    CompleteSinglePayment,
    FailSinglePayment,
    ActivateSubscription,
    RenewSubscription,
    MarkSubscriptionPaymentFailed,
    ExpireSubscription,
]


# =============================================================================
# Payload Helpers
# =============================================================================


def _event_object(event: Mapping[str, Any]) -> dict[str, Any]:
    obj = (event.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise InvalidEventPayload(
            "Event has no data.object",
            details={"event_id": event.get("id"), "event_type": event.get("type")},
        )
    return obj


def _require(obj: Mapping[str, Any], key: str, event: Mapping[str, Any]) -> str:
    value = obj.get(key)
    if not value:
        raise InvalidEventPayload(
            f"{event.get('type')} object is missing '{key}'",
            details={"event_id": event.get("id"), "field": key},
        )
    return str(value)


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Subscription id from either the classic or the ``parent`` invoice shape."""
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if not subscription:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    return str(subscription) if subscription else None


def _invoice_payment_reference(invoice: Mapping[str, Any]) -> str:
    """
    The external reference the invoice's charge is recorded under.

    Invoices paid without a payment intent (e.g. fully covered by balance)
    fall back to the invoice id.
    """
    payment_intent = invoice.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    return str(payment_intent) if payment_intent else f"invoice:{invoice['id']}"


def _subscription_metadata(invoice: Mapping[str, Any], subscription_id: str) -> dict[str, str]:
    """
    Metadata set on the subscription at checkout.

    Newer payloads inline it on the invoice; otherwise it is fetched from
    Stripe. StripeError propagates so the handler can report it retryable.
    """
    for holder in (invoice, (invoice.get("parent") or {})):
        details = holder.get("subscription_details") or {}
        if details.get("metadata"):
            return dict(details["metadata"])

    logger.debug(
        "Invoice has no inline subscription metadata, fetching subscription",
        extra={"invoice_id": invoice.get("id"), "subscription_id": subscription_id},
    )
    return StripeAdapter.retrieve_subscription(subscription_id).metadata


def _optional_int(metadata: Mapping[str, str], key: str) -> int | None:
    raw = metadata.get(key)
    if raw in (None, ""):
        return None
    try:
        return int(Decimal(str(raw)))
    except (InvalidOperation, ValueError):
        raise InvalidEventPayload(
            f"Metadata '{key}' is not a number: {raw!r}",
            details={"field": key, "value": raw},
        )


def _optional_decimal(metadata: Mapping[str, str], key: str) -> Decimal | None:
    raw = metadata.get(key)
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise InvalidEventPayload(
            f"Metadata '{key}' is not a decimal: {raw!r}",
            details={"field": key, "value": raw},
        )


def _optional_timestamp(obj: Mapping[str, Any], key: str) -> datetime | None:
    raw = obj.get(key)
    if raw in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError):
        raise InvalidEventPayload(
            f"'{key}' is not a unix timestamp: {raw!r}",
            details={"field": key, "value": raw},
        )


# =============================================================================
# Classification
# =============================================================================


def classify_event(event: Mapping[str, Any]) -> BillingCommand | None:
    """
    Turn a verified Stripe event into a billing command.

    Returns None for events that are acknowledged without effect: unknown
    types, payment intents that belong to an invoice (those are handled
    through invoice events), and invoices outside a subscription or with
    an unhandled billing reason.

    Raises:
        InvalidEventPayload: A required field or metadata key is missing
            or malformed
        StripeError: Subscription metadata had to be fetched and Stripe
            failed
    """
    event_type = event.get("type")

    if event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        intent = _event_object(event)
        if intent.get("invoice"):
            return None
        reference = _require(intent, "id", event)
        if event_type == "payment_intent.succeeded":
            return CompleteSinglePayment(payment_reference=reference)
        return FailSinglePayment(payment_reference=reference)

    if event_type == "invoice.paid":
        return _classify_invoice_paid(event)

    if event_type == "invoice.payment_failed":
        invoice = _event_object(event)
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return None
        return MarkSubscriptionPaymentFailed(
            subscription_reference=subscription_id,
            invoice_id=_require(invoice, "id", event),
            invoice_created=_optional_timestamp(invoice, "created"),
        )

    if event_type == "customer.subscription.deleted":
        subscription = _event_object(event)
        return ExpireSubscription(subscription_reference=_require(subscription, "id", event))

    return None


def _classify_invoice_paid(event: Mapping[str, Any]) -> BillingCommand | None:
    invoice = _event_object(event)
    invoice_id = _require(invoice, "id", event)
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None

    billing_reason = invoice.get("billing_reason")
    if billing_reason not in ("subscription_create", "subscription_cycle"):
        logger.info(
            "Ignoring invoice with unhandled billing reason",
            extra={"invoice_id": invoice_id, "billing_reason": billing_reason},
        )
        return None

    metadata = _subscription_metadata(invoice, subscription_id)
    client_id = metadata.get("supabase_user_id")
    provider_id = metadata.get("psychologist_id")
    if not client_id or not provider_id:
        raise InvalidEventPayload(
            f"Subscription {subscription_id} is missing client or psychologist metadata",
            details={"subscription_id": subscription_id, "invoice_id": invoice_id},
        )

    payment_reference = _invoice_payment_reference(invoice)

    if billing_reason == "subscription_cycle":
        return RenewSubscription(
            subscription_reference=subscription_id,
            payment_reference=payment_reference,
            invoice_id=invoice_id,
            base_amount_cents=_optional_int(metadata, "base_amount"),
            platform_fee_cents=_optional_int(metadata, "platform_fee"),
            fee_rate=_optional_decimal(metadata, "platform_fee_rate"),
        )

    package_kind = metadata.get("package_type")
    if package_kind not in PackageKind.values:
        raise InvalidEventPayload(
            f"Unknown package type {package_kind!r} on subscription {subscription_id}",
            details={"subscription_id": subscription_id, "package_type": package_kind},
        )

    return ActivateSubscription(
        subscription_reference=subscription_id,
        payment_reference=payment_reference,
        invoice_id=invoice_id,
        client_id=client_id,
        provider_id=provider_id,
        package_kind=package_kind,
        session_price_cents=_optional_int(metadata, "session_price"),
        discount_percent=_optional_decimal(metadata, "discount_percentage"),
    )
