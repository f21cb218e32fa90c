"""
ClientCredit model: promotional or refund value held by a client.

Credits are funded by a wallet (usually the platform wallet). When an
unused credit expires its value is reversed out of that wallet with a
credit_expired transaction.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines import CreditStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ClientCredit(UUIDPrimaryKeyMixin, BaseModel):
    """
    Credit a client can spend on sessions until it expires.

    State Flow:
        AVAILABLE -> USED
        AVAILABLE -> EXPIRED (expiry scheduler)
    """

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="credits",
    )
    wallet = models.ForeignKey(
        "billing.Wallet",
        on_delete=models.PROTECT,
        related_name="funded_credits",
        help_text="Wallet the credit's value was booked into",
    )
    amount_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="mxn")
    status = FSMField(
        default=CreditStatus.AVAILABLE,
        choices=CreditStatus.choices,
        db_index=True,
        protected=True,
    )
    source = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Why the credit was granted (promotion, refund, ...)",
    )
    expires_at = models.DateTimeField(db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["expires_at"]
        indexes = [models.Index(fields=["status", "expires_at"])]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="client_credit_amount_positive",
            )
        ]

    def __str__(self) -> str:
        return f"ClientCredit({self.id}, {self.amount_cents}, {self.status})"

    @transition(field=status, source=CreditStatus.AVAILABLE, target=CreditStatus.USED)
    def use(self):
        self.used_at = timezone.now()

    @transition(field=status, source=CreditStatus.AVAILABLE, target=CreditStatus.EXPIRED)
    def expire(self):
        self.expired_at = timezone.now()
