"""
Batch renewal of due subscriptions.

Only authoritative when SUBSCRIPTION_RENEWAL_MODE is "scheduler". In the
default "provider" mode Stripe's own recurring invoices renew
subscriptions and this path stays disabled, so a period is never charged
twice.

Each subscription renews in its own transaction; one failure is recorded
and the batch carries on.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from billing.locks import lock_row
from billing.models import Payment, Subscription
from billing.services.payments import PaymentService
from billing.services.revenue import DeferredRevenueService
from billing.services.subscriptions import SubscriptionService, period_bounds
from billing.state_machines import PaymentKind, PaymentStatus, RenewalMode, SubscriptionStatus
from core.services import BaseService

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass
class RenewalResult:
    """Per-subscription outcome of one scheduler run."""

    subscription_id: str
    success: bool
    amount_cents: int = 0
    sessions_total: int = 0
    rollover: int = 0
    skipped: bool = False
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class RenewalService(BaseService):
    """Scheduler-driven renewal."""

    @staticmethod
    def is_enabled() -> bool:
        return settings.SUBSCRIPTION_RENEWAL_MODE == RenewalMode.SCHEDULER

    @staticmethod
    def period_charge_cents(subscription: Subscription) -> int:
        """session_price x base_sessions, less the package discount, half up."""
        gross = Decimal(subscription.session_price_cents * subscription.base_sessions)
        net = gross * (Decimal(100) - Decimal(subscription.discount_percent)) / Decimal(100)
        return int(net.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def due_subscription_ids(today: date) -> list[uuid.UUID]:
        return list(
            Subscription.objects.filter(
                status=SubscriptionStatus.ACTIVE,
                auto_renew=True,
                next_billing_date__lte=today,
            )
            .order_by("next_billing_date", "id")
            .values_list("id", flat=True)
        )

    @classmethod
    def renew_subscription(cls, subscription_id: uuid.UUID, today: date) -> RenewalResult:
        """
        Charge and roll one subscription into its next period.

        The renewal payment is keyed renewal:<subscription>:<due date>, so
        re-running for the same due date is a no-op.
        """
        with cls.atomic():
            subscription = lock_row(Subscription, subscription_id)
            if not (
                subscription.status == SubscriptionStatus.ACTIVE
                and subscription.auto_renew
                and subscription.next_billing_date <= today
            ):
                return RenewalResult(str(subscription_id), success=True, skipped=True)

            reference = f"renewal:{subscription.id}:{subscription.next_billing_date.isoformat()}"
            if Payment.objects.filter(external_reference=reference).exists():
                return RenewalResult(str(subscription_id), success=True, skipped=True)

            base = cls.period_charge_cents(subscription)
            rate = PaymentService.default_fee_rate()
            fee = PaymentService.calculate_fee(base, rate)
            payment = Payment.objects.create(
                payer_id=subscription.client_id,
                provider_id=subscription.provider_id,
                subscription=subscription,
                kind=PaymentKind.SUBSCRIPTION_RENEWAL,
                status=PaymentStatus.COMPLETED,
                base_amount_cents=base,
                platform_fee_cents=fee,
                fee_rate=rate,
                total_amount_cents=base + fee,
                currency=subscription.currency,
                external_reference=reference,
                description=f"Renewal {subscription.get_package_kind_display()}",
                completed_at=timezone.now(),
            )

            PaymentService.post_platform_fee(payment)
            DeferredRevenueService.open_entry(
                payment,
                sessions_total=subscription.base_sessions,
                subscription=subscription,
            )
            period_start, period_end = period_bounds()
            subscription, allocation = SubscriptionService.roll_into_next_period(
                subscription.id,
                payment=payment,
                period_start=period_start,
                period_end=period_end,
            )
            PaymentService.issue_invoice(payment, renewal=True)

        return RenewalResult(
            subscription_id=str(subscription_id),
            success=True,
            amount_cents=payment.total_amount_cents,
            sessions_total=allocation.sessions_total,
            rollover=allocation.rollover,
        )

    @classmethod
    def renew_due_subscriptions(
        cls,
        today: date | None = None,
        heartbeat: Callable[[], object] | None = None,
    ) -> list[RenewalResult]:
        """
        Renew every due subscription, isolating failures per row.

        ``heartbeat`` runs before each row; the scheduler task uses it to
        keep its batch lock alive on long runs.
        """
        today = today or timezone.localdate()
        results: list[RenewalResult] = []

        for subscription_id in cls.due_subscription_ids(today):
            if heartbeat is not None:
                heartbeat()
            try:
                results.append(cls.renew_subscription(subscription_id, today))
            except Exception as exc:
                logger.error(
                    "Subscription renewal failed",
                    extra={"subscription_id": str(subscription_id), "error": str(exc)},
                    exc_info=True,
                )
                results.append(
                    RenewalResult(str(subscription_id), success=False, error=str(exc))
                )

        logger.info(
            "Renewal run complete",
            extra={
                "date": today.isoformat(),
                "renewed": sum(1 for r in results if r.success and not r.skipped),
                "failed": sum(1 for r in results if not r.success),
            },
        )
        return results
