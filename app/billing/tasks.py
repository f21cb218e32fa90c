"""
Celery tasks for billing.

This module provides async tasks for:
- Processing Stripe webhook events
- Retrying failed webhook events
- Resetting stuck webhook events
- Renewing due subscriptions (scheduler renewal mode only)
- Expiring overdue client credits

Usage:
    from billing.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event_id))

    # Periodic tasks run via celery-beat (see CELERY_BEAT_SCHEDULE)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from billing.exceptions import LockAcquisitionError
from billing.locks import DistributedLock
from billing.models import WebhookEvent
from billing.services.credits import CreditService
from billing.services.renewal import RenewalService
from billing.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100
RENEWAL_LOCK_KEY = "billing:renewals"
RENEWAL_LOCK_TTL_SECONDS = 30 * 60


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a Stripe webhook event asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler inside one transaction, rolled back
       entirely when the handler reports failure
    5. Marks as processed or failed

    Failures are logged with event type, external reference and payload
    digest so the event can be replayed by hand.

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from billing.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return {
            "status": "already_processed",
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event.mark_processing()
    webhook_event.save()

    log_context = {
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
        "external_reference": webhook_event.get_object_id(),
        "payload_digest": webhook_event.payload_digest,
        "retry_count": webhook_event.retry_count,
    }

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
            if not result.success:
                transaction.set_rollback(True)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()

        logger.exception(
            "Webhook processing failed with exception",
            extra={**log_context, "error": error_msg},
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info(
            "Webhook processed successfully",
            extra={**log_context, "outcome": result.data},
        )
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "outcome": result.data,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg, permanent=not result.retryable)
    webhook_event.save()
    logger.error(
        f"Webhook handler failed: {error_msg}",
        extra={
            **log_context,
            "error": error_msg,
            "error_code": result.error_code,
            "retryable": result.retryable,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
        "error_code": result.error_code,
        "retryable": result.retryable,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to requeue failed webhook events.

    Events whose failure was permanent have used up their retry budget
    and are left for manual reconciliation.
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )
            continue
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks to FAILED so they are retried.

    Covers events left PROCESSING by a crashed worker and events left
    PENDING because queueing failed in the view.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.PROCESSING) | Q(status=WebhookEventStatus.PENDING),
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_status = webhook.status
        webhook.mark_failed(f"Stuck in {stuck_status} - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "stuck_status": stuck_status,
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )
    return {"reset_count": reset_count}


# =============================================================================
# Schedulers
# =============================================================================


@shared_task
def renew_due_subscriptions() -> dict:
    """
    Renew every due subscription.

    Does nothing unless SUBSCRIPTION_RENEWAL_MODE is "scheduler". A Redis
    lock keeps overlapping beat runs from working the same batch; its TTL
    is refreshed before each row.
    """
    if not RenewalService.is_enabled():
        logger.debug("Renewal scheduler disabled in provider renewal mode")
        return {"status": "disabled"}

    lock = DistributedLock(RENEWAL_LOCK_KEY, ttl=RENEWAL_LOCK_TTL_SECONDS, blocking=False)
    try:
        lock.acquire()
    except LockAcquisitionError:
        logger.info("Renewal run already in progress, skipping")
        return {"status": "locked"}

    try:
        results = RenewalService.renew_due_subscriptions(heartbeat=lock.extend)
    finally:
        lock.release()

    return {
        "status": "completed",
        "renewed": sum(1 for r in results if r.success and not r.skipped),
        "failed": sum(1 for r in results if not r.success),
        "results": [r.as_dict() for r in results],
    }


@shared_task
def expire_credits() -> dict:
    """Expire overdue client credits and reverse them from their wallets."""
    results = CreditService.expire_credits()
    return {
        "status": "completed",
        "expired": sum(1 for r in results if r.success and not r.skipped),
        "failed": sum(1 for r in results if not r.success),
        "results": [r.as_dict() for r in results],
    }
