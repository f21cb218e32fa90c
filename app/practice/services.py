"""
Collaborator services consumed by the billing engine.

- PricingCatalog: read-only price and discount lookup per psychologist
- AppointmentService: create / read / update appointment rows

Usage:
    from practice.services import AppointmentService, PricingCatalog

    quote = PricingCatalog.package_quote(psychologist_id, "package_4")
    appointment = AppointmentService.create_pending(
        patient=user,
        psychologist_id=psychologist_id,
        start_time=start,
        end_time=end,
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from billing.state_machines import PackageKind
from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService
from practice.models import (
    FINALIZED_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatus,
    PsychologistPricing,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageQuote:
    """Price of one package period for a psychologist."""

    session_price_cents: int
    discount_percent: Decimal
    sessions: int
    currency: str

    @property
    def base_amount_cents(self) -> int:
        gross = Decimal(self.session_price_cents * self.sessions)
        net = gross * (Decimal(100) - self.discount_percent) / Decimal(100)
        return int(net.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PricingCatalog(BaseService):
    """Read-only access to PsychologistPricing."""

    @staticmethod
    def get_pricing(psychologist_id: uuid.UUID) -> PsychologistPricing:
        try:
            return PsychologistPricing.objects.get(psychologist_id=psychologist_id)
        except PsychologistPricing.DoesNotExist:
            raise NotFoundError(
                f"No pricing for psychologist {psychologist_id}",
                error_code="PRICING_NOT_FOUND",
                details={"psychologist_id": str(psychologist_id)},
            )

    @classmethod
    def package_quote(cls, psychologist_id: uuid.UUID, package_kind: str) -> PackageQuote:
        """
        Quote one period of a package.

        Raises:
            ValidationError: Unknown package kind
            NotFoundError: Psychologist has no pricing
        """
        if package_kind not in PackageKind.values:
            raise ValidationError(
                f"Unknown package kind: {package_kind}",
                error_code="UNKNOWN_PACKAGE",
            )
        pricing = cls.get_pricing(psychologist_id)
        discount = (
            pricing.package_4_discount_percent
            if package_kind == PackageKind.PACKAGE_4
            else pricing.package_8_discount_percent
        )
        return PackageQuote(
            session_price_cents=pricing.session_price_cents,
            discount_percent=Decimal(discount),
            sessions=PackageKind(package_kind).base_sessions,
            currency=pricing.currency,
        )


class AppointmentService(BaseService):
    """Create, read and update appointments."""

    @staticmethod
    def get(appointment_id: uuid.UUID) -> Appointment:
        try:
            return Appointment.objects.get(id=appointment_id)
        except Appointment.DoesNotExist:
            raise NotFoundError(
                f"Appointment {appointment_id} not found",
                error_code="APPOINTMENT_NOT_FOUND",
                details={"appointment_id": str(appointment_id)},
            )

    @staticmethod
    def create_pending(
        *,
        patient,
        psychologist_id: uuid.UUID | None,
        start_time: datetime,
        end_time: datetime,
        subscription=None,
        package_session_consumed: bool = False,
    ) -> Appointment:
        """Materialize a pending video appointment."""
        return Appointment.objects.create(
            patient=patient,
            psychologist_id=psychologist_id,
            subscription=subscription,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING,
            package_session_consumed=package_session_consumed,
        )

    @classmethod
    def set_outcome(cls, appointment_id: uuid.UUID, attended: bool) -> Appointment:
        """
        Finalize a session as completed or no-show and commit it.

        Re-finalizing with the same outcome is a no-op. Cancelled
        appointments cannot be finalized.

        Raises:
            NotFoundError: Unknown appointment
            ValidationError: Appointment was cancelled
        """
        target = AppointmentStatus.COMPLETED if attended else AppointmentStatus.NO_SHOW

        with cls.atomic():
            appointment = (
                Appointment.objects.select_for_update().filter(id=appointment_id).first()
            )
            if appointment is None:
                raise NotFoundError(
                    f"Appointment {appointment_id} not found",
                    error_code="APPOINTMENT_NOT_FOUND",
                    details={"appointment_id": str(appointment_id)},
                )
            if appointment.status == AppointmentStatus.CANCELLED:
                raise ValidationError(
                    "Cannot record an outcome for a cancelled appointment",
                    error_code="APPOINTMENT_CANCELLED",
                    details={"appointment_id": str(appointment_id)},
                )
            if appointment.status != target:
                previous = appointment.status
                appointment.status = target
                appointment.save(update_fields=["status", "updated_at"])
                logger.info(
                    "Appointment outcome recorded",
                    extra={
                        "appointment_id": str(appointment_id),
                        "previous_status": previous,
                        "status": target,
                        "was_finalized": previous in FINALIZED_APPOINTMENT_STATUSES,
                    },
                )

        return appointment
