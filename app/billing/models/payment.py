"""
Payment model: one attempted charge.

A Payment is created pending when checkout starts and is finalized exactly
once by the webhook processor. Renewal payments are created already
completed by whichever renewal path is authoritative.

Usage:
    from billing.models import Payment

    payment = Payment.objects.select_for_update().get(external_reference="pi_123")
    if payment.status == PaymentStatus.PENDING:
        payment.complete()
        payment.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines import PaymentKind, PaymentStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    One attempted charge and its provenance.

    State Flow:
        PENDING -> COMPLETED (charge succeeded / invoice paid)
        PENDING -> FAILED (charge failed)
        FAILED -> COMPLETED (customer retried the same intent)

    Fields:
        payer: Client charged
        provider: Psychologist the charge is for
        kind: single_session, package_4, package_8 or subscription_renewal
        base_amount_cents: Price of the sessions, the provider's revenue
        platform_fee_cents: Service fee charged on top of the base amount
        fee_rate: Fee as a fraction of the base amount (0.0500 = 5%)
        total_amount_cents: base + fee, what the client paid
        external_reference: Stripe payment identifier, unique, the
            idempotency key for every webhook touching this payment
        checkout_metadata: Checkout payload consumed verbatim when
            materializing the first appointment
        appointment / subscription: Rows this payment produced or renewed
        completed_at / failed_at: Finalization timestamps
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    provider = models.ForeignKey(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    appointment = models.ForeignKey(
        "practice.Appointment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    kind = models.CharField(max_length=30, choices=PaymentKind.choices)
    base_amount_cents = models.BigIntegerField()
    platform_fee_cents = models.BigIntegerField(default=0)
    fee_rate = models.DecimalField(max_digits=5, decimal_places=4, default=0)
    total_amount_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="mxn")

    # ==========================================================================
    # State & Provenance
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment (managed by FSM)",
    )
    external_reference = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe payment identifier (pi_xxx), idempotency key",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    checkout_metadata = models.JSONField(default=dict, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payer", "status"]),
            models.Index(fields=["provider", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    total_amount_cents=models.F("base_amount_cents")
                    + models.F("platform_fee_cents")
                ),
                name="payment_total_is_base_plus_fee",
            ),
            models.CheckConstraint(
                condition=models.Q(base_amount_cents__gte=0)
                & models.Q(platform_fee_cents__gte=0),
                name="payment_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.kind}, {self.status}, {self.total_amount_cents})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.FAILED],
        target=PaymentStatus.COMPLETED,
    )
    def complete(self):
        """
        Transition: PENDING | FAILED -> COMPLETED.

        A failed attempt can be followed by a successful one on the same
        payment intent, so FAILED is not terminal.
        """
        self.completed_at = timezone.now()

    @transition(field=status, source=PaymentStatus.PENDING, target=PaymentStatus.FAILED)
    def fail(self):
        """Transition: PENDING -> FAILED. No ledger effect."""
        self.failed_at = timezone.now()

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED
