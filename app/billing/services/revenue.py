"""
Deferred revenue and revenue recognition.

Money from a qualifying payment is parked in a DeferredRevenueEntry and
moved to recognized one session at a time, as sessions are finalized
(completed or no-show). Each recognition credits the psychologist's wallet
with a session_revenue transaction.

Recognition is idempotent per appointment: a RevenueRecognition marker row
(unique on appointment) is written in the same transaction as the entry
update and the wallet posting.

Usage:
    from billing.services.revenue import RecognizeRevenue, RevenueRecognitionService

    result = RevenueRecognitionService.recognize(RecognizeRevenue(appointment_id))
    if result.success:
        result.data.outcome  # APPLIED or DUPLICATE
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.db.models import F

from billing.exceptions import RecognitionError
from billing.locks import lock_row
from billing.models import DeferredRevenueEntry, RevenueRecognition, Subscription
from billing.state_machines import HandlerOutcome, TransactionCategory
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams
from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from practice.models import Appointment
from practice.services import AppointmentService

if TYPE_CHECKING:
    import uuid

    from billing.models import Payment

logger = logging.getLogger(__name__)


# =============================================================================
# Commands & Results
# =============================================================================


@dataclass(frozen=True)
class RecognizeRevenue:
    """Recognize one session of revenue for a finalized appointment."""

    appointment_id: uuid.UUID


@dataclass(frozen=True)
class RecognitionResult:
    outcome: HandlerOutcome
    appointment_id: uuid.UUID
    amount_cents: int = 0
    entry_id: uuid.UUID | None = None
    wallet_transaction_id: uuid.UUID | None = None

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "appointment_id": str(self.appointment_id),
            "amount_cents": self.amount_cents,
            "entry_id": str(self.entry_id) if self.entry_id else None,
            "wallet_transaction_id": (
                str(self.wallet_transaction_id) if self.wallet_transaction_id else None
            ),
        }


# =============================================================================
# Deferred Revenue
# =============================================================================


class DeferredRevenueService(BaseService):
    """Open deferred revenue entries for qualifying payments."""

    @staticmethod
    def price_per_session(total_amount_cents: int, sessions_total: int) -> int:
        if sessions_total <= 0:
            raise ValueError("sessions_total must be positive")
        unit = Decimal(total_amount_cents) / Decimal(sessions_total)
        return int(unit.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @classmethod
    def open_entry(
        cls,
        payment: Payment,
        *,
        sessions_total: int = 1,
        subscription: Subscription | None = None,
        appointment: Appointment | None = None,
    ) -> DeferredRevenueEntry:
        """
        Park the payment's base amount as unearned revenue.

        One entry per payment; opening again returns the existing entry.
        """
        total = payment.base_amount_cents
        entry, created = DeferredRevenueEntry.objects.get_or_create(
            payment=payment,
            defaults={
                "provider_id": payment.provider_id,
                "subscription": subscription,
                "appointment": appointment,
                "total_amount_cents": total,
                "deferred_amount_cents": total,
                "recognized_amount_cents": 0,
                "sessions_total": sessions_total,
                "sessions_recognized": 0,
                "price_per_session_cents": cls.price_per_session(total, sessions_total),
            },
        )
        if created:
            logger.info(
                "Deferred revenue opened",
                extra={
                    "entry_id": str(entry.id),
                    "payment_id": str(payment.id),
                    "total_amount_cents": total,
                    "sessions_total": sessions_total,
                },
            )
        return entry


# =============================================================================
# Recognition
# =============================================================================


class RevenueRecognitionService(BaseService):
    """Move one session of revenue from deferred to recognized."""

    @classmethod
    def recognize(cls, command: RecognizeRevenue) -> ServiceResult[RecognitionResult]:
        """
        Recognize revenue for one finalized appointment.

        Package sessions draw from the subscription's oldest entry that
        still has unrecognized sessions. If the appointment has not yet
        consumed a package session, one is consumed here under the
        subscription row lock.

        Returns:
            success with APPLIED or DUPLICATE, or a failure carrying the
            error code (nothing is written on failure)
        """
        appointment_id = command.appointment_id
        try:
            with cls.atomic():
                result = cls._recognize(appointment_id)
        except BaseApplicationError as exc:
            logger.error(
                "Revenue recognition failed",
                extra={
                    "appointment_id": str(appointment_id),
                    "error_code": exc.error_code,
                    "error": exc.message,
                },
            )
            return ServiceResult.from_exception(exc)

        if result.outcome == HandlerOutcome.APPLIED:
            logger.info("Revenue recognized", extra=result.as_dict())
        return ServiceResult.success(result)

    @classmethod
    def _recognize(cls, appointment_id: uuid.UUID) -> RecognitionResult:
        appointment = lock_row(Appointment, appointment_id)

        if not appointment.is_finalized:
            raise RecognitionError(
                f"Appointment {appointment_id} is not finalized",
                error_code="APPOINTMENT_NOT_FINALIZED",
                details={"appointment_id": str(appointment_id), "status": appointment.status},
            )

        if RevenueRecognition.objects.filter(appointment_id=appointment_id).exists():
            return RecognitionResult(
                outcome=HandlerOutcome.DUPLICATE,
                appointment_id=appointment_id,
            )

        if appointment.subscription_id:
            entry = cls._package_entry(appointment)
        else:
            entry = (
                DeferredRevenueEntry.objects.select_for_update()
                .filter(appointment_id=appointment_id)
                .first()
            )

        if entry is None or not entry.has_unrecognized_sessions:
            raise RecognitionError(
                f"No deferred revenue left for appointment {appointment_id}",
                error_code="NO_DEFERRED_REVENUE",
                details={"appointment_id": str(appointment_id)},
            )

        provider = entry.provider or appointment.psychologist
        if provider is None:
            raise RecognitionError(
                f"No provider to credit for appointment {appointment_id}",
                error_code="NO_PROVIDER",
                details={"appointment_id": str(appointment_id), "entry_id": str(entry.id)},
            )

        amount = entry.next_unit_cents()
        entry.deferred_amount_cents -= amount
        entry.recognized_amount_cents += amount
        entry.sessions_recognized += 1
        entry.save(
            update_fields=[
                "deferred_amount_cents",
                "recognized_amount_cents",
                "sessions_recognized",
                "updated_at",
            ]
        )

        txn = None
        if amount > 0:
            wallet = WalletService.get_or_create_provider_wallet(provider)
            txn = WalletService.post_transaction(
                PostTransactionParams(
                    wallet_id=wallet.id,
                    amount_cents=amount,
                    category=TransactionCategory.SESSION_REVENUE,
                    idempotency_key=f"session_revenue:{appointment_id}",
                    payment_id=entry.payment_id,
                    provider_id=provider.id,
                    description=f"Session revenue for appointment {appointment_id}",
                )
            )

        RevenueRecognition.objects.create(
            appointment=appointment,
            entry=entry,
            amount_cents=amount,
            wallet_transaction=txn,
        )
        return RecognitionResult(
            outcome=HandlerOutcome.APPLIED,
            appointment_id=appointment_id,
            amount_cents=amount,
            entry_id=entry.id,
            wallet_transaction_id=txn.id if txn else None,
        )

    @staticmethod
    def _package_entry(appointment: Appointment) -> DeferredRevenueEntry | None:
        subscription = lock_row(Subscription, appointment.subscription_id)
        if not appointment.package_session_consumed:
            subscription.consume_session()
            subscription.save(update_fields=["sessions_used", "sessions_remaining"])
            appointment.package_session_consumed = True
            appointment.save(update_fields=["package_session_consumed", "updated_at"])

        return (
            DeferredRevenueEntry.objects.select_for_update()
            .filter(
                subscription=subscription,
                sessions_recognized__lt=F("sessions_total"),
            )
            .order_by("created_at", "id")
            .first()
        )


def record_session_outcome(
    appointment_id: uuid.UUID,
    attended: bool,
) -> ServiceResult[RecognitionResult]:
    """
    Finalize a session and recognize its revenue.

    The appointment status is committed first and stays committed even
    if recognition fails; recognition can be retried by calling again.

    Raises:
        NotFoundError: Unknown appointment
        ValidationError: Appointment was cancelled
    """
    appointment = AppointmentService.set_outcome(appointment_id, attended)
    result = RevenueRecognitionService.recognize(RecognizeRevenue(appointment.id))
    if not result.success:
        logger.warning(
            "Session outcome saved but revenue not recognized",
            extra={
                "appointment_id": str(appointment.id),
                "status": appointment.status,
                "error_code": result.error_code,
            },
        )
    return result


__all__ = [
    "DeferredRevenueService",
    "RecognitionResult",
    "RecognizeRevenue",
    "RevenueRecognitionService",
    "record_session_outcome",
]
