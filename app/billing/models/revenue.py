"""
Deferred revenue models.

- DeferredRevenueEntry: unearned income from one payment, recognized one
  session at a time
- RevenueRecognition: per-appointment marker proving a session was
  recognized; its unique appointment makes recognition idempotent

Invariants, enforced by check constraints:
    deferred_amount_cents + recognized_amount_cents == total_amount_cents
    sessions_recognized <= sessions_total
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class DeferredRevenueEntry(UUIDPrimaryKeyMixin, BaseModel):
    """
    Deferred revenue opened by one qualifying payment.

    Single-session entries have sessions_total = 1 and are found by
    appointment. Package entries are found by subscription and consumed
    oldest first.

    Fields:
        provider: Psychologist who earns the revenue
        payment: Payment that funded it (one entry per payment)
        subscription / appointment: What it will be recognized against
        total_amount_cents: Base amount of the payment
        deferred_amount_cents: Not yet earned
        recognized_amount_cents: Earned so far, never decreases
        sessions_total / sessions_recognized: Unit counters
        price_per_session_cents: One recognition unit
    """

    provider = models.ForeignKey(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deferred_revenue_entries",
    )
    payment = models.OneToOneField(
        "billing.Payment",
        on_delete=models.PROTECT,
        related_name="deferred_revenue",
    )
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deferred_revenue_entries",
    )
    appointment = models.ForeignKey(
        "practice.Appointment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deferred_revenue_entries",
    )

    total_amount_cents = models.BigIntegerField()
    deferred_amount_cents = models.BigIntegerField()
    recognized_amount_cents = models.BigIntegerField(default=0)
    sessions_total = models.PositiveIntegerField(default=1)
    sessions_recognized = models.PositiveIntegerField(default=0)
    price_per_session_cents = models.BigIntegerField()

    class Meta:
        ordering = ["created_at"]
        verbose_name_plural = "deferred revenue entries"
        indexes = [
            models.Index(fields=["subscription", "created_at"]),
            models.Index(fields=["appointment"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    total_amount_cents=F("deferred_amount_cents")
                    + F("recognized_amount_cents")
                ),
                name="deferred_revenue_amounts_balance",
            ),
            models.CheckConstraint(
                condition=Q(sessions_recognized__lte=F("sessions_total")),
                name="deferred_revenue_sessions_bounded",
            ),
            models.CheckConstraint(
                condition=Q(deferred_amount_cents__gte=0)
                & Q(recognized_amount_cents__gte=0),
                name="deferred_revenue_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"DeferredRevenueEntry({self.id}, "
            f"{self.recognized_amount_cents}/{self.total_amount_cents})"
        )

    @property
    def has_unrecognized_sessions(self) -> bool:
        return (
            self.sessions_recognized < self.sessions_total
            and self.recognized_amount_cents < self.total_amount_cents
        )

    def next_unit_cents(self) -> int:
        """
        Amount the next recognition moves from deferred to recognized.

        One price_per_session, except the last session which takes whatever
        is still deferred so rounding never strands money.
        """
        if self.sessions_recognized + 1 >= self.sessions_total:
            return self.deferred_amount_cents
        return min(self.price_per_session_cents, self.deferred_amount_cents)


class RevenueRecognition(UUIDPrimaryKeyMixin, BaseModel):
    """Marker row: revenue for this appointment has been recognized."""

    appointment = models.OneToOneField(
        "practice.Appointment",
        on_delete=models.PROTECT,
        related_name="revenue_recognition",
    )
    entry = models.ForeignKey(
        DeferredRevenueEntry,
        on_delete=models.PROTECT,
        related_name="recognitions",
    )
    amount_cents = models.BigIntegerField()
    wallet_transaction = models.OneToOneField(
        "billing.WalletTransaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="recognition",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"RevenueRecognition({self.appointment_id}, {self.amount_cents})"
