"""Invoice model: the client-facing record of one completed payment."""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Invoice(UUIDPrimaryKeyMixin, BaseModel):
    """
    One invoice per completed Payment.

    invoice_number is INV-<payment id> for first charges and
    INV-R-<payment id> for renewals; its uniqueness makes issuing
    idempotent.
    """

    payment = models.OneToOneField(
        "billing.Payment",
        on_delete=models.PROTECT,
        related_name="invoice",
    )
    invoice_number = models.CharField(max_length=64, unique=True)
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    provider = models.ForeignKey(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    amount_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="mxn")
    description = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.invoice_number
