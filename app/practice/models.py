"""
Practice models.

- Psychologist: the provider side of the marketplace
- PsychologistPricing: per-session price and package discounts
- PsychologistAvailability: weekly bookable windows
- Appointment: one scheduled session

Related files:
    - services.py: PricingCatalog and AppointmentService
    - billing/services/revenue.py: recognition reads appointments
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Psychologist(UUIDPrimaryKeyMixin, BaseModel):
    """
    A psychologist offering sessions on the marketplace.

    Fields:
        user: Login account (OneToOne)
        display_name: Name shown to clients
        is_active: Whether new bookings are accepted
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="psychologist",
    )
    display_name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["display_name"]

    def __str__(self) -> str:
        return self.display_name


class PsychologistPricing(BaseModel):
    """
    Pricing catalog entry for a psychologist.

    Package prices are derived: session_price * sessions * (1 - discount/100).

    Fields:
        session_price_cents: Price of one session
        package_4_discount_percent: Discount applied to the 4-session package
        package_8_discount_percent: Discount applied to the 8-session package
        currency: ISO 4217 code (lowercase)
    """

    psychologist = models.OneToOneField(
        Psychologist,
        on_delete=models.CASCADE,
        related_name="pricing",
        primary_key=True,
    )
    session_price_cents = models.PositiveBigIntegerField()
    package_4_discount_percent = models.DecimalField(
        max_digits=5, decimal_places=2, default=10
    )
    package_8_discount_percent = models.DecimalField(
        max_digits=5, decimal_places=2, default=20
    )
    currency = models.CharField(max_length=3, default="mxn")

    class Meta:
        verbose_name = "psychologist pricing"
        verbose_name_plural = "psychologist pricing"

    def __str__(self) -> str:
        return f"Pricing({self.psychologist_id}, {self.session_price_cents})"


class PsychologistAvailability(BaseModel):
    """A weekly availability window (0 = Monday)."""

    psychologist = models.ForeignKey(
        Psychologist,
        on_delete=models.CASCADE,
        related_name="availability",
    )
    day_of_week = models.PositiveSmallIntegerField()
    start_time = models.TimeField()
    end_time = models.TimeField()
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["day_of_week", "start_time"]
        verbose_name_plural = "psychologist availability"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(day_of_week__lte=6),
                name="availability_day_of_week_valid",
            ),
        ]


class AppointmentStatus(models.TextChoices):
    """
    Appointment lifecycle.

    COMPLETED and NO_SHOW are finalized outcomes; both recognize revenue
    because the client is charged regardless of attendance.
    """

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    COMPLETED = "completed", "Completed"
    NO_SHOW = "no_show", "No Show"
    CANCELLED = "cancelled", "Cancelled"


FINALIZED_APPOINTMENT_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)


class Appointment(UUIDPrimaryKeyMixin, BaseModel):
    """
    One scheduled session between a client and a psychologist.

    Fields:
        patient: Client attending the session
        psychologist: Psychologist giving the session
        subscription: Package the session belongs to, if any
        start_time / end_time: Scheduled window
        status: See AppointmentStatus
        modality: Delivery channel
        package_session_consumed: Whether the subscription counters were
            already decremented for this appointment
    """

    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="appointments",
    )
    psychologist = models.ForeignKey(
        Psychologist,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="appointments",
    )
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="appointments",
    )
    start_time = models.DateTimeField(db_index=True)
    end_time = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=AppointmentStatus.choices,
        default=AppointmentStatus.PENDING,
        db_index=True,
    )
    modality = models.CharField(max_length=30, default="video_call")
    package_session_consumed = models.BooleanField(default=False)

    class Meta:
        ordering = ["-start_time"]
        indexes = [
            models.Index(fields=["psychologist", "start_time"]),
            models.Index(fields=["patient", "start_time"]),
        ]

    def __str__(self) -> str:
        return f"Appointment({self.id}, {self.status})"

    @property
    def is_finalized(self) -> bool:
        return self.status in FINALIZED_APPOINTMENT_STATUSES
