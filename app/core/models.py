"""
Abstract base model shared by every ledger and collaborator table.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Invoice(UUIDPrimaryKeyMixin, BaseModel):
        invoice_number = models.CharField(max_length=64, unique=True)

Note:
    List mixins before BaseModel in the bases.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract model adding creation and modification timestamps.

    Fields:
        created_at: Set once on insert. Ledger rows are ordered by it.
        updated_at: Refreshed on every save.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
