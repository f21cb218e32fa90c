"""
Account deletion reconciliation.

Deleting a user is destructive and cannot be undone, so the service does
not try to be transactional as a whole. Each step runs in its own
transaction; a failing step is logged and recorded, and the remaining
steps still run.

Order:
    1. Cancel the user's live Stripe subscriptions (best effort)
    2. Settle money: move a psychologist's wallet balance to the platform
       wallet and deactivate it; expire the client's available credits
    3. Delete subscription history, then subscriptions
    4. Delete availability, pricing and the psychologist record
    5. Delete the profile, then the user

Payments, invoices, deferred revenue, wallet transactions and appointments
are kept for audit; their links to the deleted rows become NULL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from accounts.models import Profile
from billing.adapters import StripeAdapter
from billing.exceptions import StripeError
from billing.models import ClientCredit, Subscription, SubscriptionHistory, Wallet
from billing.services.credits import CreditService
from billing.state_machines import CreditStatus, TransactionCategory
from billing.state_machines.states import TERMINAL_SUBSCRIPTION_STATUSES
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams
from core.services import BaseService
from practice.models import Psychologist, PsychologistAvailability, PsychologistPricing

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass
class DeletionStep:
    name: str
    success: bool
    count: int = 0
    error: str | None = None


@dataclass
class AccountDeletionReport:
    """What happened to each part of a deleted account."""

    user_id: str
    steps: list[DeletionStep] = field(default_factory=list)
    cancelled_subscriptions: list[str] = field(default_factory=list)
    cancellation_errors: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{step.name}: {step.error}" for step in self.steps if not step.success]

    @property
    def user_deleted(self) -> bool:
        return any(step.name == "user" and step.success for step in self.steps)

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_deleted": self.user_deleted,
            "cancelled_subscriptions": self.cancelled_subscriptions,
            "cancellation_errors": self.cancellation_errors,
            "steps": [
                {
                    "name": step.name,
                    "success": step.success,
                    "count": step.count,
                    "error": step.error,
                }
                for step in self.steps
            ],
        }


class AccountDeletionService(BaseService):
    """Reconcile billing state, then delete a user's rows in FK order."""

    @classmethod
    def delete_account(cls, user) -> AccountDeletionReport:
        report = AccountDeletionReport(user_id=str(user.pk))
        psychologist = Psychologist.objects.filter(user=user).first()

        scope = Q(client=user)
        if psychologist is not None:
            scope |= Q(provider=psychologist)
        subscription_ids = list(Subscription.objects.filter(scope).values_list("id", flat=True))

        logger.info(
            "Account deletion started",
            extra={
                "user_id": report.user_id,
                "is_psychologist": psychologist is not None,
                "subscriptions": len(subscription_ids),
            },
        )

        cls._cancel_stripe_subscriptions(subscription_ids, report)

        if psychologist is not None:
            cls._run_step(report, "provider_wallet", lambda: cls._settle_provider_wallet(psychologist))
        cls._run_step(report, "client_credits", lambda: cls._expire_client_credits(user))

        cls._run_step(
            report,
            "subscription_history",
            lambda: SubscriptionHistory.objects.filter(
                subscription_id__in=subscription_ids
            ).delete()[0],
        )
        cls._run_step(
            report,
            "subscriptions",
            lambda: Subscription.objects.filter(id__in=subscription_ids).delete()[0],
        )

        if psychologist is not None:
            cls._run_step(
                report,
                "availability",
                lambda: PsychologistAvailability.objects.filter(
                    psychologist=psychologist
                ).delete()[0],
            )
            cls._run_step(
                report,
                "pricing",
                lambda: PsychologistPricing.objects.filter(psychologist=psychologist).delete()[0],
            )
            cls._run_step(
                report,
                "psychologist",
                lambda: Psychologist.objects.filter(pk=psychologist.pk).delete()[0],
            )

        cls._run_step(report, "profile", lambda: Profile.objects.filter(user=user).delete()[0])
        cls._run_step(report, "user", lambda: type(user).objects.filter(pk=user.pk).delete()[0])

        log = logger.warning if report.errors else logger.info
        log(
            "Account deletion finished",
            extra={
                "user_id": report.user_id,
                "user_deleted": report.user_deleted,
                "errors": report.errors,
            },
        )
        return report

    @staticmethod
    def _run_step(report: AccountDeletionReport, name: str, func: Callable[[], int]) -> None:
        try:
            with transaction.atomic():
                count = func()
        except Exception as exc:
            logger.error(
                "Account deletion step failed",
                extra={"user_id": report.user_id, "step": name, "error": str(exc)},
                exc_info=True,
            )
            report.steps.append(DeletionStep(name=name, success=False, error=str(exc)))
            return
        report.steps.append(DeletionStep(name=name, success=True, count=count))

    @staticmethod
    def _cancel_stripe_subscriptions(subscription_ids, report: AccountDeletionReport) -> None:
        live = Subscription.objects.filter(
            id__in=subscription_ids,
            external_reference__isnull=False,
        ).exclude(status__in=TERMINAL_SUBSCRIPTION_STATUSES)

        for subscription in live:
            try:
                StripeAdapter.cancel_subscription(subscription.external_reference)
            except StripeError as exc:
                logger.warning(
                    "Stripe subscription cancellation failed, continuing deletion",
                    extra={
                        "user_id": report.user_id,
                        "subscription_id": str(subscription.id),
                        "external_reference": subscription.external_reference,
                        "error_code": exc.error_code,
                    },
                )
                report.cancellation_errors.append(subscription.external_reference)
                continue
            report.cancelled_subscriptions.append(subscription.external_reference)

    @staticmethod
    def _settle_provider_wallet(psychologist: Psychologist) -> int:
        """Move the remaining balance to the platform wallet. Returns cents moved."""
        wallet = Wallet.objects.filter(provider=psychologist).first()
        if wallet is None:
            return 0

        balance = wallet.balance_cents
        if balance != 0:
            platform = WalletService.get_platform_wallet()
            WalletService.post_transactions(
                [
                    PostTransactionParams(
                        wallet_id=wallet.id,
                        amount_cents=-balance,
                        category=TransactionCategory.ACCOUNT_DELETED,
                        idempotency_key=f"account_deleted:{wallet.id}",
                        provider_id=psychologist.id,
                        description="Balance settled on account deletion",
                    ),
                    PostTransactionParams(
                        wallet_id=platform.id,
                        amount_cents=balance,
                        category=TransactionCategory.ACCOUNT_DELETED,
                        idempotency_key=f"account_deleted:platform:{wallet.id}",
                        provider_id=psychologist.id,
                        description=f"Balance received from deleted wallet {wallet.id}",
                    ),
                ]
            )

        Wallet.objects.filter(pk=wallet.pk).update(
            is_active=False,
            provider=None,
            updated_at=timezone.now(),
        )
        return balance

    @staticmethod
    def _expire_client_credits(user) -> int:
        now = timezone.now()
        expired = 0
        for credit_id in ClientCredit.objects.filter(
            client=user, status=CreditStatus.AVAILABLE
        ).values_list("id", flat=True):
            result = CreditService.expire_credit(credit_id, now, force=True)
            if not result.skipped:
                expired += 1
        return expired
