"""
WebhookEvent model: durable record of every verified Stripe event.

The unique stripe_event_id makes redelivery of the same event detectable.
payload_digest identifies the exact raw body for manual replay.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id="evt_123",
        defaults={
            "event_type": "invoice.paid",
            "payload": payload,
            "payload_digest": digest,
        },
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from billing.state_machines import WebhookEventStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for idempotent processing.

    Processing Flow:
        1. View verifies the signature and stores the event (PENDING)
        2. Celery task marks it PROCESSING and dispatches to a handler
        3. Handler result marks it PROCESSED or FAILED
        4. Periodic retry picks up FAILED events below the retry cap

    Fields:
        stripe_event_id: Stripe Event ID (evt_xxx)
        event_type: e.g. 'invoice.paid'
        payload: Parsed JSON body
        payload_digest: SHA-256 hex digest of the raw body
        status / processed_at / error_message / retry_count: Processing state
    """

    stripe_event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField()
    payload_digest = models.CharField(max_length=64, blank=True, default="")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["status", "retry_count"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < settings.WEBHOOK_MAX_RETRIES
        )

    # Callers save after each mark_* call.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str, *, permanent: bool = False) -> None:
        """A permanent failure uses up the retry budget so it is never requeued."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
        if permanent:
            self.retry_count = max(self.retry_count, settings.WEBHOOK_MAX_RETRIES)

    def get_object(self) -> dict:
        """The event's data.object, or an empty dict for malformed payloads."""
        try:
            obj = self.payload.get("data", {}).get("object", {})
        except AttributeError:
            return {}
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")
