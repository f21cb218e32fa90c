"""
Client credit expiry.

An available credit past its expires_at is moved to EXPIRED and its value
is reversed out of the wallet that funded it with a credit_expired
transaction, in one transaction per credit.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from django.utils import timezone

from billing.locks import lock_row
from billing.models import ClientCredit
from billing.state_machines import CreditStatus, TransactionCategory
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams
from core.services import BaseService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class CreditExpiryResult:
    credit_id: str
    success: bool
    amount_cents: int = 0
    skipped: bool = False
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class CreditService(BaseService):
    """Credit lifecycle operations."""

    @classmethod
    def expire_credit(
        cls,
        credit_id: uuid.UUID,
        now: datetime,
        *,
        force: bool = False,
    ) -> CreditExpiryResult:
        """
        Expire one credit and reverse it from its funding wallet.

        ``force`` expires an available credit before its expiry date, used
        when the owning account is deleted.
        """
        with cls.atomic():
            credit = lock_row(ClientCredit, credit_id)
            due = force or credit.expires_at <= now
            if credit.status != CreditStatus.AVAILABLE or not due:
                return CreditExpiryResult(str(credit_id), success=True, skipped=True)

            credit.expire()
            credit.save(update_fields=["status", "expired_at", "updated_at"])
            WalletService.post_transaction(
                PostTransactionParams(
                    wallet_id=credit.wallet_id,
                    amount_cents=-credit.amount_cents,
                    category=TransactionCategory.CREDIT_EXPIRED,
                    idempotency_key=f"credit_expired:{credit.id}",
                    description=f"Expired credit {credit.id} ({credit.source or 'credit'})",
                )
            )

        return CreditExpiryResult(str(credit_id), success=True, amount_cents=credit.amount_cents)

    @classmethod
    def expire_credits(cls, now: datetime | None = None) -> list[CreditExpiryResult]:
        """Expire every overdue available credit, isolating failures per row."""
        now = now or timezone.now()
        credit_ids = list(
            ClientCredit.objects.filter(
                status=CreditStatus.AVAILABLE,
                expires_at__lte=now,
            ).values_list("id", flat=True)
        )

        results: list[CreditExpiryResult] = []
        for credit_id in credit_ids:
            try:
                results.append(cls.expire_credit(credit_id, now))
            except Exception as exc:
                logger.error(
                    "Credit expiry failed",
                    extra={"credit_id": str(credit_id), "error": str(exc)},
                    exc_info=True,
                )
                results.append(CreditExpiryResult(str(credit_id), success=False, error=str(exc)))

        logger.info(
            "Credit expiry run complete",
            extra={
                "expired": sum(1 for r in results if r.success and not r.skipped),
                "failed": sum(1 for r in results if not r.success),
            },
        )
        return results
