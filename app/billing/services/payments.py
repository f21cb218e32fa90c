"""
Payment service: checkout records, platform fees and invoices.

Usage:
    from billing.services import PaymentService

    payment = PaymentService.create_pending_payment(
        payer=user,
        provider=psychologist,
        kind=PaymentKind.SINGLE_SESSION,
        base_amount_cents=80000,
        external_reference="pi_123",
        checkout_metadata={
            "appointment_start_time": "2026-03-01T16:00:00Z",
            "appointment_end_time": "2026-03-01T16:50:00Z",
        },
    )
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings

from billing.exceptions import PaymentNotFoundError
from billing.models import Invoice, Payment
from billing.state_machines import PaymentKind, PaymentStatus, TransactionCategory
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams
from core.services import BaseService

if TYPE_CHECKING:
    from typing import Any

    from billing.wallet.models import WalletTransaction

logger = logging.getLogger(__name__)


class PaymentService(BaseService):
    """Payment records and the ledger effects of a completed charge."""

    @staticmethod
    def default_fee_rate() -> Decimal:
        """Configured platform fee as a fraction (5 -> 0.0500)."""
        return (Decimal(str(settings.PLATFORM_FEE_PERCENT)) / Decimal(100)).quantize(
            Decimal("0.0001")
        )

    @staticmethod
    def calculate_fee(base_amount_cents: int, fee_rate: Decimal) -> int:
        """Platform fee in cents, rounded half up."""
        fee = Decimal(base_amount_cents) * Decimal(fee_rate)
        return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @classmethod
    def create_pending_payment(
        cls,
        *,
        payer,
        provider,
        kind: str,
        base_amount_cents: int,
        external_reference: str | None,
        checkout_metadata: dict[str, Any] | None = None,
        description: str = "",
        fee_rate: Decimal | None = None,
        subscription=None,
    ) -> Payment:
        """
        Record a checkout initiation. The fee is added on top of the base.

        Re-initiating checkout with the same external reference returns the
        existing row.
        """
        if base_amount_cents < 0:
            raise ValueError("base_amount_cents must not be negative")
        rate = cls.default_fee_rate() if fee_rate is None else Decimal(fee_rate)
        fee = cls.calculate_fee(base_amount_cents, rate)

        if external_reference:
            existing = Payment.objects.filter(external_reference=external_reference).first()
            if existing is not None:
                return existing

        payment = Payment.objects.create(
            payer=payer,
            provider=provider,
            subscription=subscription,
            kind=kind,
            base_amount_cents=base_amount_cents,
            platform_fee_cents=fee,
            fee_rate=rate,
            total_amount_cents=base_amount_cents + fee,
            currency=settings.BILLING_CURRENCY,
            external_reference=external_reference,
            checkout_metadata=checkout_metadata or {},
            description=description or PaymentKind(kind).label,
        )
        logger.info(
            "Pending payment created",
            extra={
                "payment_id": str(payment.id),
                "kind": kind,
                "external_reference": external_reference,
                "total_amount_cents": payment.total_amount_cents,
            },
        )
        return payment

    @staticmethod
    def get_by_external_reference(external_reference: str, *, lock: bool = False) -> Payment:
        """
        Raises:
            PaymentNotFoundError: No payment carries the reference
        """
        queryset = Payment.objects.select_for_update() if lock else Payment.objects
        payment = queryset.filter(external_reference=external_reference).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"No payment with external reference {external_reference}",
                details={"external_reference": external_reference},
            )
        return payment

    @staticmethod
    def post_platform_fee(payment: Payment) -> WalletTransaction | None:
        """
        Credit the platform wallet with the payment's fee.

        Skipped for a zero fee. Keyed on the payment, so safe to repeat.
        """
        if payment.platform_fee_cents <= 0:
            return None
        platform = WalletService.get_platform_wallet()
        percent = (Decimal(payment.fee_rate) * 100).quantize(Decimal("1"))
        return WalletService.post_transaction(
            PostTransactionParams(
                wallet_id=platform.id,
                amount_cents=payment.platform_fee_cents,
                category=TransactionCategory.PLATFORM_FEE,
                idempotency_key=f"platform_fee:{payment.id}",
                payment_id=payment.id,
                provider_id=payment.provider_id,
                description=f"Platform fee ({percent}%) - {payment.description}",
            )
        )

    @staticmethod
    def issue_invoice(payment: Payment, *, renewal: bool = False) -> Invoice:
        """One invoice per completed payment; repeats return the original."""
        if payment.status != PaymentStatus.COMPLETED:
            raise ValueError(f"Payment {payment.id} is not completed")
        prefix = "INV-R" if renewal else "INV"
        invoice, created = Invoice.objects.get_or_create(
            payment=payment,
            defaults={
                "invoice_number": f"{prefix}-{payment.id}",
                "client_id": payment.payer_id,
                "provider_id": payment.provider_id,
                "amount_cents": payment.total_amount_cents,
                "currency": payment.currency,
                "description": payment.description,
            },
        )
        if created:
            logger.info(
                "Invoice issued",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "payment_id": str(payment.id),
                    "amount_cents": invoice.amount_cents,
                },
            )
        return invoice
