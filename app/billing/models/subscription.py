"""
Subscription ledger models.

- Subscription: a client's recurring package with a psychologist, owner of
  the session-balance counters
- SubscriptionHistory: append-only audit trail of lifecycle events

Counter invariant, enforced by a check constraint:
    sessions_used + sessions_remaining == sessions_total

Usage:
    from billing.models import Subscription

    with transaction.atomic():
        sub = Subscription.objects.select_for_update().get(pk=pk)
        sub.consume_session()
        sub.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.exceptions import NoSessionsRemaining
from billing.state_machines import (
    PackageKind,
    SubscriptionEventType,
    SubscriptionStatus,
)
from billing.state_machines.states import TERMINAL_SUBSCRIPTION_STATUSES
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Subscription(UUIDPrimaryKeyMixin, BaseModel):
    """
    A client's recurring session package with a psychologist.

    Uses django-fsm for status management and a version counter for
    optimistic locking on top of row locks.

    State Flow:
        ACTIVE -> PAYMENT_FAILED (invoice payment failed)
        PAYMENT_FAILED -> ACTIVE (later invoice paid)
        ACTIVE / PAYMENT_FAILED -> EXPIRED (deleted at Stripe)
        ACTIVE / PAYMENT_FAILED -> CANCELLED
        EXPIRED and CANCELLED are terminal.

    Fields:
        client / provider: The two parties
        package_kind: package_4 or package_8
        base_sessions: Package size (4 or 8), the rollover base
        session_price_cents / discount_percent: Pricing captured at purchase
        base_amount_cents: Charge for one period, before platform fee
        sessions_total / used / remaining: Current period counters
        rollover_sessions: Sessions carried into the current period
        auto_renew: Whether the next period should be charged
        current_period_start / end, next_billing_date: Billing calendar
        external_reference: Stripe Subscription ID (sub_xxx)
        last_invoice_reference: Most recent Stripe invoice ID
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )
    provider = models.ForeignKey(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )

    # ==========================================================================
    # Package & Pricing
    # ==========================================================================

    package_kind = models.CharField(max_length=20, choices=PackageKind.choices)
    base_sessions = models.PositiveSmallIntegerField()
    session_price_cents = models.BigIntegerField(default=0)
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    base_amount_cents = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="mxn")

    # ==========================================================================
    # Session Counters
    # ==========================================================================

    sessions_total = models.PositiveIntegerField()
    sessions_used = models.PositiveIntegerField(default=0)
    sessions_remaining = models.PositiveIntegerField()
    rollover_sessions = models.PositiveIntegerField(default=0)

    # ==========================================================================
    # State & Billing Calendar
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.ACTIVE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )
    auto_renew = models.BooleanField(default=True)
    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField()
    next_billing_date = models.DateField(db_index=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    external_reference = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )
    last_invoice_reference = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["client", "status"]),
            models.Index(fields=["provider", "status"]),
            models.Index(fields=["status", "auto_renew", "next_billing_date"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(sessions_total=F("sessions_used") + F("sessions_remaining")),
                name="subscription_session_counters_balance",
            ),
            models.CheckConstraint(
                condition=Q(base_sessions__in=[4, 8]),
                name="subscription_base_sessions_valid",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Subscription({self.id}, {self.status}, "
            f"{self.sessions_used}/{self.sessions_total})"
        )

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version", "updated_at"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.PAYMENT_FAILED,
    )
    def mark_payment_failed(self):
        """Transition: ACTIVE -> PAYMENT_FAILED. Counters untouched."""

    @transition(
        field=status,
        source=SubscriptionStatus.PAYMENT_FAILED,
        target=SubscriptionStatus.ACTIVE,
    )
    def reactivate(self):
        """Transition: PAYMENT_FAILED -> ACTIVE, after a later invoice was paid."""

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.PAYMENT_FAILED],
        target=SubscriptionStatus.EXPIRED,
    )
    def expire(self):
        """Transition: ACTIVE/PAYMENT_FAILED -> EXPIRED (deleted at Stripe)."""
        self.auto_renew = False

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.PAYMENT_FAILED],
        target=SubscriptionStatus.CANCELLED,
    )
    def cancel(self):
        """Transition: ACTIVE/PAYMENT_FAILED -> CANCELLED."""
        self.auto_renew = False
        self.cancelled_at = timezone.now()

    # ==========================================================================
    # Counter Mutations
    # ==========================================================================

    def consume_session(self) -> None:
        """
        Move one session from remaining to used.

        Caller must hold the row lock and save afterwards.

        Raises:
            NoSessionsRemaining: Nothing left in the current period
        """
        if self.sessions_remaining <= 0:
            raise NoSessionsRemaining(
                f"Subscription {self.id} has no sessions remaining",
                details={
                    "subscription_id": str(self.id),
                    "sessions_total": self.sessions_total,
                    "sessions_used": self.sessions_used,
                },
            )
        self.sessions_used += 1
        self.sessions_remaining -= 1

    def start_period(
        self,
        *,
        sessions_total: int,
        rollover: int,
        period_start,
        period_end,
    ) -> None:
        """
        Reset counters for a new billing period.

        Caller must hold the row lock and save afterwards.
        """
        self.sessions_total = sessions_total
        self.sessions_used = 0
        self.sessions_remaining = sessions_total
        self.rollover_sessions = rollover
        self.current_period_start = period_start
        self.current_period_end = period_end
        self.next_billing_date = period_end.date()

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUBSCRIPTION_STATUSES


class SubscriptionHistory(UUIDPrimaryKeyMixin, BaseModel):
    """
    Append-only audit row for one subscription lifecycle event.

    Used by support for reconciliation, never to compute current state.
    PROTECT on the subscription forces history to be removed first when an
    account is deleted.
    """

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.PROTECT,
        related_name="history",
    )
    event_type = models.CharField(max_length=30, choices=SubscriptionEventType.choices)
    sessions_added = models.IntegerField(default=0)
    rollover_amount = models.IntegerField(default=0)
    amount_charged_cents = models.BigIntegerField(default=0)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "subscription history"
        indexes = [models.Index(fields=["subscription", "event_type"])]

    def __str__(self) -> str:
        return f"SubscriptionHistory({self.subscription_id}, {self.event_type})"
