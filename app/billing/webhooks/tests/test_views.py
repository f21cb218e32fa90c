"""
Tests for the Stripe webhook endpoint.

Tests cover:
- Stripe signature verification
- Webhook event storage and idempotency
- Task queuing
- Acknowledgement when storage or queuing fails
"""

import hashlib
import json
from unittest.mock import patch

import pytest
from django.test import RequestFactory
from django.urls import reverse

from billing.exceptions import StripeInvalidRequestError
from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus
from billing.webhooks.tests.payloads import build_event
from billing.webhooks.views import stripe_webhook

VERIFY = "billing.webhooks.views.StripeAdapter.verify_webhook_signature"
DELAY = "billing.tasks.process_webhook_event.delay"


# =============================================================================
# Setup
# =============================================================================


@pytest.fixture
def rf():
    """Request factory for creating test requests."""
    return RequestFactory()


def make_webhook_request(rf, payload: dict, signature: str = "test_sig"):
    """Create a POST request to the webhook endpoint."""
    return rf.post(
        "/api/v1/billing/webhooks/stripe/",
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


def _deliver(rf, payload: dict):
    with patch(VERIFY, return_value=payload), patch(DELAY) as mock_delay:
        response = stripe_webhook(make_webhook_request(rf, payload))
    return response, mock_delay


# =============================================================================
# Signature Verification Tests
# =============================================================================


class TestStripeWebhookSignature:
    def test_missing_signature_returns_400(self, rf, db):
        request = rf.post(
            "/api/v1/billing/webhooks/stripe/",
            data=json.dumps({"id": "evt_test"}),
            content_type="application/json",
        )

        response = stripe_webhook(request)

        assert response.status_code == 400
        assert json.loads(response.content) == {
            "received": False,
            "error": "Missing signature",
        }

    def test_invalid_signature_returns_400(self, rf, db):
        with patch(VERIFY) as mock_verify:
            mock_verify.side_effect = StripeInvalidRequestError("No signatures found")

            response = stripe_webhook(
                make_webhook_request(rf, build_event("payment_intent.succeeded", {}), "bad")
            )

        assert response.status_code == 400
        assert json.loads(response.content) == {
            "received": False,
            "error": "Invalid signature",
        }
        assert WebhookEvent.objects.count() == 0

    def test_signature_and_raw_body_passed_to_verification(self, rf, db):
        payload = build_event("payment_intent.succeeded", {"id": "pi_1"})
        request = make_webhook_request(rf, payload, signature="t=1,v1=abc")

        with patch(VERIFY, return_value=payload) as mock_verify, patch(DELAY):
            stripe_webhook(request)

        mock_verify.assert_called_once_with(request.body, "t=1,v1=abc")

    def test_get_not_allowed(self, rf, db):
        response = stripe_webhook(rf.get("/api/v1/billing/webhooks/stripe/"))

        assert response.status_code == 405


# =============================================================================
# Event Storage Tests
# =============================================================================


class TestStripeWebhookEventCreation:
    def test_creates_pending_event_and_queues(self, rf, db):
        payload = build_event(
            "payment_intent.succeeded", {"id": "pi_123"}, event_id="evt_new_123"
        )

        response, mock_delay = _deliver(rf, payload)

        assert response.status_code == 200
        assert json.loads(response.content) == {"received": True}
        event = WebhookEvent.objects.get(stripe_event_id="evt_new_123")
        assert event.event_type == "payment_intent.succeeded"
        assert event.status == WebhookEventStatus.PENDING
        assert event.payload == payload
        assert event.payload_digest == hashlib.sha256(
            json.dumps(payload).encode()
        ).hexdigest()
        mock_delay.assert_called_once_with(str(event.id))

    def test_redelivery_reuses_event(self, rf, db):
        payload = build_event("payment_intent.succeeded", {"id": "pi_123"}, event_id="evt_dup")

        _deliver(rf, payload)
        response, mock_delay = _deliver(rf, payload)

        assert response.status_code == 200
        assert WebhookEvent.objects.filter(stripe_event_id="evt_dup").count() == 1
        mock_delay.assert_called_once()

    def test_processed_event_not_requeued(self, rf, processed_webhook_event):
        response, mock_delay = _deliver(rf, processed_webhook_event.payload)

        assert response.status_code == 200
        mock_delay.assert_not_called()

    def test_failed_event_requeued(self, rf, make_webhook_event):
        payload = build_event("payment_intent.succeeded", {"id": "pi_f"}, event_id="evt_f")
        failed = make_webhook_event(payload, status=WebhookEventStatus.FAILED)

        response, mock_delay = _deliver(rf, payload)

        assert response.status_code == 200
        mock_delay.assert_called_once_with(str(failed.id))

    def test_missing_id_acknowledged_without_storing(self, rf, db):
        payload = {"type": "payment_intent.succeeded", "data": {"object": {}}}

        response, mock_delay = _deliver(rf, payload)

        assert response.status_code == 200
        assert json.loads(response.content) == {"received": True}
        assert WebhookEvent.objects.count() == 0
        mock_delay.assert_not_called()


# =============================================================================
# Failure Handling Tests
# =============================================================================


class TestStripeWebhookFailures:
    def test_queue_failure_still_acknowledged(self, rf, db):
        payload = build_event("payment_intent.succeeded", {"id": "pi_q"}, event_id="evt_q")

        with patch(VERIFY, return_value=payload), patch(DELAY) as mock_delay:
            mock_delay.side_effect = ConnectionError("broker down")
            response = stripe_webhook(make_webhook_request(rf, payload))

        assert response.status_code == 200
        event = WebhookEvent.objects.get(stripe_event_id="evt_q")
        assert event.status == WebhookEventStatus.PENDING

    def test_storage_failure_still_acknowledged(self, rf, db):
        payload = build_event("payment_intent.succeeded", {"id": "pi_s"})

        storage = patch.object(
            WebhookEvent.objects, "get_or_create", side_effect=RuntimeError("db")
        )
        with patch(VERIFY, return_value=payload), patch(DELAY) as mock_delay, storage:
            response = stripe_webhook(make_webhook_request(rf, payload))

        assert response.status_code == 200
        mock_delay.assert_not_called()


class TestStripeWebhookRouting:
    def test_url_resolves(self, client, db):
        payload = build_event("customer.created", {"id": "cus_1"})

        with patch(VERIFY, return_value=payload), patch(DELAY):
            response = client.post(
                reverse("billing:stripe_webhook"),
                data=json.dumps(payload),
                content_type="application/json",
                HTTP_STRIPE_SIGNATURE="test_sig",
            )

        assert reverse("billing:stripe_webhook") == "/api/v1/billing/webhooks/stripe/"
        assert response.status_code == 200
