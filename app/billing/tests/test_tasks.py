"""
Tests for billing Celery tasks.

Tasks are called directly (synchronously); Redis is mocked where a lock
is taken.

Tests cover:
- process_webhook_event status handling and failure classification
- retry_failed_webhooks / cleanup_stuck_webhooks
- renew_due_subscriptions mode switch and locking
- expire_credits
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from billing.locks import DistributedLock
from billing.models import Payment, WebhookEvent
from billing.state_machines import PaymentStatus, WebhookEventStatus
from billing.tasks import (
    RENEWAL_LOCK_TTL_SECONDS,
    cleanup_stuck_webhooks,
    expire_credits,
    process_webhook_event,
    renew_due_subscriptions,
    retry_failed_webhooks,
)
from billing.tests.factories import (
    ClientCreditFactory,
    PaymentFactory,
    PlatformWalletFactory,
    SubscriptionFactory,
    WebhookEventFactory,
)


def _intent_event(reference, event_type="payment_intent.succeeded", **kwargs):
    event_id = f"evt_{uuid.uuid4().hex[:12]}"
    return WebhookEventFactory(
        stripe_event_id=event_id,
        event_type=event_type,
        payload={"id": event_id, "type": event_type, "data": {"object": {"id": reference}}},
        **kwargs,
    )


# =============================================================================
# process_webhook_event
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_unknown_event_id(self):
        result = process_webhook_event(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_already_processed(self):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        event.refresh_from_db()
        assert event.retry_count == 0

    def test_completes_payment(self):
        payment = PaymentFactory(external_reference="pi_task")
        event = _intent_event("pi_task")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        assert result["outcome"] == "applied"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 1
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.COMPLETED

    def test_unhandled_event_type_acknowledged(self):
        event = WebhookEventFactory(event_type="customer.created")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        assert result["outcome"] == "ignored"

    def test_missing_payment_is_retryable(self, settings):
        settings.WEBHOOK_MAX_RETRIES = 5
        event = _intent_event("pi_not_yet_committed")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        assert result["error_code"] == "PAYMENT_NOT_FOUND"
        assert result["retryable"] is True
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.can_retry

    def test_malformed_payload_is_permanent(self, settings):
        settings.WEBHOOK_MAX_RETRIES = 5
        event = WebhookEventFactory(
            event_type="customer.subscription.deleted",
            payload={"id": "evt_bad", "type": "customer.subscription.deleted", "data": {}},
        )

        result = process_webhook_event(str(event.id))

        assert result["retryable"] is False
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.retry_count == 5
        assert not event.can_retry

    def test_exception_marks_failed_and_reraises(self, mocker):
        mocker.patch(
            "billing.webhooks.handlers.dispatch_webhook",
            side_effect=RuntimeError("database went away"),
        )
        event = _intent_event("pi_boom")

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert "database went away" in event.error_message

    def test_failed_event_can_be_reprocessed(self):
        event = _intent_event("pi_late")
        process_webhook_event(str(event.id))
        PaymentFactory(external_reference="pi_late")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.retry_count == 2


# =============================================================================
# Retry & Cleanup
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_requeues_retryable_events(self, mocker, settings):
        settings.WEBHOOK_MAX_RETRIES = 5
        delay = mocker.patch("billing.tasks.process_webhook_event.delay")
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        delay.assert_called_once_with(str(retryable.id))

    def test_queue_error_skips_event(self, mocker):
        mocker.patch(
            "billing.tasks.process_webhook_event.delay",
            side_effect=ConnectionError("broker down"),
        )
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)

        assert retry_failed_webhooks() == {"queued_count": 0}


@pytest.mark.django_db
class TestCleanupStuckWebhooks:
    def test_resets_old_processing_and_pending(self):
        old = timezone.now() - timedelta(hours=2)
        processing = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        pending = WebhookEventFactory(status=WebhookEventStatus.PENDING)
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk__in=[processing.pk, pending.pk]).update(updated_at=old)

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 2}
        processing.refresh_from_db()
        fresh.refresh_from_db()
        assert processing.status == WebhookEventStatus.FAILED
        assert "processing" in processing.error_message
        assert fresh.status == WebhookEventStatus.PROCESSING


# =============================================================================
# Schedulers
# =============================================================================


@pytest.mark.django_db
class TestRenewDueSubscriptionsTask:
    def test_disabled_in_provider_mode(self, provider_renewal_mode, mock_redis):
        SubscriptionFactory(next_billing_date=timezone.localdate())

        result = renew_due_subscriptions()

        assert result == {"status": "disabled"}
        assert not Payment.objects.exists()
        mock_redis.set.assert_not_called()

    def test_skips_when_locked(self, scheduler_renewal_mode, mock_redis):
        mock_redis.set.return_value = False
        SubscriptionFactory(next_billing_date=timezone.localdate())

        result = renew_due_subscriptions()

        assert result == {"status": "locked"}
        assert not Payment.objects.exists()

    def test_renews_and_releases_lock(self, scheduler_renewal_mode, mock_redis):
        subscription = SubscriptionFactory(next_billing_date=timezone.localdate())

        result = renew_due_subscriptions()

        assert result["status"] == "completed"
        assert result["renewed"] == 1
        assert result["failed"] == 0
        assert Payment.objects.filter(subscription=subscription).count() == 1
        scripts = [c.args[0] for c in mock_redis.eval.call_args_list]
        assert scripts == [DistributedLock.EXTEND_SCRIPT, DistributedLock.RELEASE_SCRIPT]

    def test_lock_extended_per_row(self, scheduler_renewal_mode, mock_redis):
        for _ in range(3):
            SubscriptionFactory(next_billing_date=timezone.localdate())

        renew_due_subscriptions()

        extends = [
            c for c in mock_redis.eval.call_args_list
            if c.args[0] == DistributedLock.EXTEND_SCRIPT
        ]
        assert len(extends) == 3
        assert all(c.args[-1] == RENEWAL_LOCK_TTL_SECONDS for c in extends)


@pytest.mark.django_db
class TestExpireCreditsTask:
    def test_expires_overdue(self):
        wallet = PlatformWalletFactory(allow_negative=True)
        ClientCreditFactory(wallet=wallet, expires_at=timezone.now() - timedelta(days=1))
        ClientCreditFactory(wallet=wallet)

        result = expire_credits()

        assert result["status"] == "completed"
        assert result["expired"] == 1
        assert result["failed"] == 0
