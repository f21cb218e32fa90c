"""
Subscription ledger service.

Every mutation re-reads and locks the subscription row before changing it,
so counters and status always move from the freshest state. Status changes
follow the precedence rule: ACTIVE beats PAYMENT_FAILED, and EXPIRED /
CANCELLED are terminal.

Usage:
    from billing.services import SubscriptionService

    outcome = SubscriptionService.mark_payment_failed(subscription_id)
    # HandlerOutcome.APPLIED, DUPLICATE (already failed) or IGNORED (terminal)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone
from django_fsm import can_proceed

from billing.exceptions import InvalidStateTransitionError, SubscriptionNotFoundError
from billing.locks import check_version, lock_row
from billing.models import Subscription, SubscriptionHistory
from billing.services.rollover import PeriodAllocation, next_period_allocation
from billing.state_machines import (
    HandlerOutcome,
    PackageKind,
    SubscriptionEventType,
    SubscriptionStatus,
)
from core.exceptions import NotFoundError
from core.services import BaseService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from billing.models import Payment

logger = logging.getLogger(__name__)


def period_bounds(start: datetime | None = None) -> tuple[datetime, datetime]:
    """Start and end of a billing period beginning at ``start`` (default now)."""
    start = start or timezone.now()
    return start, start + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)


class SubscriptionService(BaseService):
    """Create, consume, renew and terminate subscriptions."""

    # =========================================================================
    # Lookups
    # =========================================================================

    @staticmethod
    def get_by_external_reference(external_reference: str) -> Subscription:
        """
        Raises:
            SubscriptionNotFoundError: No subscription carries the reference
        """
        subscription = Subscription.objects.filter(
            external_reference=external_reference
        ).first()
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"No subscription with external reference {external_reference}",
                details={"external_reference": external_reference},
            )
        return subscription

    @staticmethod
    def _lock(subscription_id: uuid.UUID, expected_version: int | None = None) -> Subscription:
        try:
            if expected_version is not None:
                return check_version(Subscription, subscription_id, expected_version)
            return lock_row(Subscription, subscription_id)
        except NotFoundError:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found",
                details={"subscription_id": str(subscription_id)},
            )

    @staticmethod
    def _record(
        subscription: Subscription,
        event_type: str,
        *,
        sessions_added: int = 0,
        rollover_amount: int = 0,
        amount_charged_cents: int = 0,
        notes: str = "",
    ) -> SubscriptionHistory:
        return SubscriptionHistory.objects.create(
            subscription=subscription,
            event_type=event_type,
            sessions_added=sessions_added,
            rollover_amount=rollover_amount,
            amount_charged_cents=amount_charged_cents,
            notes=notes,
        )

    # =========================================================================
    # Creation & Counters
    # =========================================================================

    @classmethod
    def create_from_first_payment(
        cls,
        *,
        payment: Payment,
        package_kind: str,
        session_price_cents: int,
        discount_percent: Decimal,
        external_reference: str | None,
        invoice_reference: str = "",
        consume_first_session: bool = False,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> Subscription:
        """
        Create the subscription paid for by ``payment``.

        With ``consume_first_session`` the first appointment's session is
        taken in the same insert, so counters are never observed unbalanced.
        """
        base_sessions = PackageKind(package_kind).base_sessions
        if period_start is None or period_end is None:
            period_start, period_end = period_bounds(period_start)
        used = 1 if consume_first_session else 0

        with cls.atomic():
            subscription = Subscription.objects.create(
                client_id=payment.payer_id,
                provider_id=payment.provider_id,
                package_kind=package_kind,
                base_sessions=base_sessions,
                session_price_cents=session_price_cents,
                discount_percent=discount_percent,
                base_amount_cents=payment.base_amount_cents,
                currency=payment.currency,
                sessions_total=base_sessions,
                sessions_used=used,
                sessions_remaining=base_sessions - used,
                current_period_start=period_start,
                current_period_end=period_end,
                next_billing_date=period_end.date(),
                external_reference=external_reference,
                last_invoice_reference=invoice_reference,
            )
            cls._record(
                subscription,
                SubscriptionEventType.CREATED,
                sessions_added=base_sessions,
                amount_charged_cents=payment.total_amount_cents,
                notes=f"Created from payment {payment.id}",
            )

        logger.info(
            "Subscription created",
            extra={
                "subscription_id": str(subscription.id),
                "payment_id": str(payment.id),
                "package_kind": package_kind,
                "sessions_total": base_sessions,
                "first_session_consumed": consume_first_session,
            },
        )
        return subscription

    @classmethod
    def consume_session(
        cls,
        subscription_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> Subscription:
        """
        Take one session from the current period.

        Raises:
            SubscriptionNotFoundError: Unknown subscription
            StaleRecordError: Row moved past ``expected_version``
            NoSessionsRemaining: Period exhausted
        """
        with cls.atomic():
            subscription = cls._lock(subscription_id, expected_version)
            subscription.consume_session()
            subscription.save(update_fields=["sessions_used", "sessions_remaining"])
        return subscription

    @classmethod
    def roll_into_next_period(
        cls,
        subscription_id: uuid.UUID,
        *,
        payment: Payment,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        invoice_reference: str = "",
    ) -> tuple[Subscription, PeriodAllocation]:
        """
        Start the next billing period after a successful renewal charge.

        Shared by the provider-native and scheduler renewal paths. A
        subscription in PAYMENT_FAILED is reactivated since it has now paid.

        Raises:
            SubscriptionNotFoundError: Unknown subscription
            InvalidStateTransitionError: Subscription is expired or cancelled
        """
        if period_start is None or period_end is None:
            period_start, period_end = period_bounds(period_start)

        with cls.atomic():
            subscription = cls._lock(subscription_id)
            if subscription.is_terminal:
                raise InvalidStateTransitionError(
                    f"Cannot renew {subscription.status} subscription",
                    details={
                        "subscription_id": str(subscription.id),
                        "current_state": subscription.status,
                    },
                )
            if subscription.status == SubscriptionStatus.PAYMENT_FAILED:
                subscription.reactivate()

            allocation = next_period_allocation(subscription)
            subscription.start_period(
                sessions_total=allocation.sessions_total,
                rollover=allocation.rollover,
                period_start=period_start,
                period_end=period_end,
            )
            if invoice_reference:
                subscription.last_invoice_reference = invoice_reference
            subscription.save()

            cls._record(
                subscription,
                SubscriptionEventType.RENEWAL,
                sessions_added=allocation.base_sessions,
                rollover_amount=allocation.rollover,
                amount_charged_cents=payment.total_amount_cents,
                notes=f"Renewed by payment {payment.id}",
            )

        logger.info(
            "Subscription rolled into next period",
            extra={
                "subscription_id": str(subscription.id),
                "payment_id": str(payment.id),
                "rollover": allocation.rollover,
                "sessions_total": allocation.sessions_total,
                "next_billing_date": subscription.next_billing_date.isoformat(),
            },
        )
        return subscription, allocation

    # =========================================================================
    # Status Transitions
    # =========================================================================

    @classmethod
    def _transition(
        cls,
        subscription_id: uuid.UUID,
        transition_name: str,
        target: str,
        event_type: str,
        notes: str = "",
    ) -> HandlerOutcome:
        """
        Apply one FSM transition under the row lock.

        Returns DUPLICATE when already in ``target`` and IGNORED when the
        current state does not allow the transition (terminal precedence).
        """
        with cls.atomic():
            subscription = cls._lock(subscription_id)
            if subscription.status == target:
                return HandlerOutcome.DUPLICATE

            method = getattr(subscription, transition_name)
            if not can_proceed(method):
                logger.info(
                    "Subscription transition ignored",
                    extra={
                        "subscription_id": str(subscription.id),
                        "current_state": subscription.status,
                        "transition": transition_name,
                    },
                )
                return HandlerOutcome.IGNORED

            previous = subscription.status
            method()
            subscription.save()
            cls._record(subscription, event_type, notes=notes)

        logger.info(
            "Subscription status changed",
            extra={
                "subscription_id": str(subscription_id),
                "previous_state": previous,
                "new_state": target,
            },
        )
        return HandlerOutcome.APPLIED

    @classmethod
    def mark_payment_failed(cls, subscription_id: uuid.UUID, notes: str = "") -> HandlerOutcome:
        """ACTIVE -> PAYMENT_FAILED. Ledgers are not touched."""
        return cls._transition(
            subscription_id,
            "mark_payment_failed",
            SubscriptionStatus.PAYMENT_FAILED,
            SubscriptionEventType.PAYMENT_FAILED,
            notes,
        )

    @classmethod
    def expire(cls, subscription_id: uuid.UUID, notes: str = "") -> HandlerOutcome:
        """Provider deleted the subscription: -> EXPIRED, auto_renew off."""
        return cls._transition(
            subscription_id,
            "expire",
            SubscriptionStatus.EXPIRED,
            SubscriptionEventType.EXPIRED,
            notes,
        )

    @classmethod
    def cancel(cls, subscription_id: uuid.UUID, notes: str = "") -> HandlerOutcome:
        return cls._transition(
            subscription_id,
            "cancel",
            SubscriptionStatus.CANCELLED,
            SubscriptionEventType.CANCELLED,
            notes,
        )
