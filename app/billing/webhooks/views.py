"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the webhook signature
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Acknowledges with 200 {"received": true}

Only a missing or invalid signature is answered with 400. Everything
past verification is acknowledged, because Stripe treats non-2xx as
"retry", and internal failures are retried from the WebhookEvent table
instead.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import hashlib
import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.adapters import StripeAdapter
from billing.exceptions import StripeInvalidRequestError
from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)

RECEIVED = {"received": True}


def _rejected(reason: str) -> JsonResponse:
    return JsonResponse({"received": False, "error": reason}, status=400)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and queue Stripe webhook events.

    Security:
    - Signature verification prevents spoofed webhooks; signatures older
      than STRIPE_WEBHOOK_TOLERANCE_SECONDS are rejected
    - CSRF exemption required for external webhooks

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - A redelivered, already processed event is acknowledged without
      requeueing

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return _rejected("Missing signature")

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return _rejected("Invalid signature")

    payload_digest = hashlib.sha256(payload).hexdigest()
    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.error(
            "Verified webhook is missing id or type",
            extra={"payload_digest": payload_digest},
        )
        return JsonResponse(RECEIVED)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
            "payload_digest": payload_digest,
        },
    )

    try:
        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event_data,
                "payload_digest": payload_digest,
                "status": WebhookEventStatus.PENDING,
            },
        )
    except Exception:
        logger.exception(
            "Failed to store webhook event",
            extra={
                "stripe_event_id": stripe_event_id,
                "event_type": event_type,
                "payload_digest": payload_digest,
            },
        )
        return JsonResponse(RECEIVED)

    if not created and webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "Webhook already processed, returning success",
            extra={"stripe_event_id": stripe_event_id},
        )
        return JsonResponse(RECEIVED)

    try:
        from billing.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
        logger.info(
            "Webhook queued for processing",
            extra={
                "stripe_event_id": stripe_event_id,
                "webhook_event_id": str(webhook_event.id),
            },
        )
    except Exception as e:
        # Left PENDING; cleanup_stuck_webhooks resets it for retry.
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={
                "stripe_event_id": stripe_event_id,
                "webhook_event_id": str(webhook_event.id),
                "payload_digest": payload_digest,
            },
            exc_info=True,
        )

    return JsonResponse(RECEIVED)
