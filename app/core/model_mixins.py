"""
Reusable model mixins.

Usage:
    from core.model_mixins import UUIDPrimaryKeyMixin
    from core.models import BaseModel

    class Payment(UUIDPrimaryKeyMixin, BaseModel):
        ...
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID primary key instead of an auto-increment integer.

    Payment, subscription and wallet ids leave the system in provider
    metadata and support tickets, so they must not be guessable or reveal
    row counts.

    Fields:
        id: UUIDField primary key, generated with uuid4
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
