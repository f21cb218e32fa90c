"""
Stripe-shaped payload builders for webhook tests.

Usage:
    from billing.webhooks.tests.payloads import build_event, build_invoice

    payload = build_event("payment_intent.succeeded", {"id": "pi_123"})
"""

import uuid

from billing.state_machines import PaymentKind


def build_event(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    """A Stripe event envelope around ``obj``."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def subscription_metadata(payment, package_kind=PaymentKind.PACKAGE_4, **overrides) -> dict:
    """Metadata the checkout flow writes on a package subscription."""
    metadata = {
        "supabase_user_id": str(payment.payer_id),
        "psychologist_id": str(payment.provider_id),
        "package_type": package_kind,
        "session_price": "80000",
        "discount_percentage": "10",
    }
    metadata.update(overrides)
    return metadata


def build_invoice(
    *,
    invoice_id: str,
    subscription_id: str | None,
    billing_reason: str,
    payment_intent: str | None,
    metadata: dict | None = None,
    created: int | None = None,
) -> dict:
    invoice = {
        "id": invoice_id,
        "object": "invoice",
        "subscription": subscription_id,
        "billing_reason": billing_reason,
        "payment_intent": payment_intent,
    }
    if created is not None:
        invoice["created"] = created
    if metadata is not None:
        invoice["subscription_details"] = {"metadata": metadata}
    return invoice
