"""
DRF views for the billing app.

Endpoints:
    POST /api/v1/billing/appointments/<id>/outcome/ - Record a session outcome
    GET /api/v1/billing/wallets/me/ - Current psychologist's wallet
    POST /api/v1/billing/checkout/ - Start a checkout
    GET /api/v1/billing/subscriptions/me/ - Current client's subscriptions

The Stripe webhook endpoint lives in billing.webhooks.views.

Related files:
    - services/revenue.py: record_session_outcome
    - services/checkout.py: CheckoutService
    - serializers.py: Request/response serialization
    - urls.py: URL routing
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiExample, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.exceptions import StripeError
from billing.serializers import (
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    RecognitionResultSerializer,
    SessionOutcomeSerializer,
    SubscriptionSerializer,
    WalletSerializer,
)
from billing.services.checkout import CheckoutService
from billing.services.revenue import record_session_outcome
from billing.state_machines import PaymentKind
from billing.wallet.services import WalletService
from core.exceptions import NotFoundError, ValidationError
from practice.models import Appointment, Psychologist

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS_LIMIT = 20


class SessionOutcomeView(APIView):
    """
    API view for finalizing a session.

    POST: Mark the appointment completed (attended) or no-show, then
    recognize one session of revenue for the psychologist.

    URL: /api/v1/billing/appointments/<appointment_id>/outcome/

    Only the appointment's psychologist or staff may record the outcome.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Record session outcome",
        description=(
            "Finalize a session as completed or no-show. Both recognize revenue. "
            "The status change is saved even when recognition fails; calling "
            "again retries recognition."
        ),
        tags=["Billing"],
        request=SessionOutcomeSerializer,
        responses={
            200: RecognitionResultSerializer,
            403: OpenApiResponse(description="Not this appointment's psychologist"),
            404: OpenApiResponse(description="Appointment not found"),
            502: OpenApiResponse(
                description="Outcome saved but revenue could not be recognized",
                examples=[
                    OpenApiExample(
                        "Recognition failed",
                        value={
                            "detail": "Session saved, but billing could not be updated. Please retry.",
                            "error_code": "NO_DEFERRED_REVENUE",
                        },
                    ),
                ],
            ),
        },
    )
    def post(self, request, appointment_id):
        serializer = SessionOutcomeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment = (
            Appointment.objects.select_related("psychologist")
            .filter(id=appointment_id)
            .first()
        )
        if appointment is None:
            return Response(
                {"detail": "Appointment not found"},
                status=status.HTTP_404_NOT_FOUND,
            )
        is_owner = (
            appointment.psychologist is not None
            and appointment.psychologist.user_id == request.user.id
        )
        if not (is_owner or request.user.is_staff):
            return Response(
                {"detail": "You cannot record the outcome of this session"},
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            result = record_session_outcome(
                appointment.id,
                serializer.validated_data["attended"],
            )
        except NotFoundError as e:
            return Response({"detail": e.message}, status=status.HTTP_404_NOT_FOUND)
        except ValidationError as e:
            return Response(
                {"detail": e.message, "error_code": e.error_code},
                status=status.HTTP_400_BAD_REQUEST,
            )

        if not result.success:
            return Response(
                {
                    "detail": "Session saved, but billing could not be updated. Please retry.",
                    "error_code": result.error_code,
                },
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(result.data.as_dict())


class MyWalletView(APIView):
    """
    API view for the current psychologist's wallet.

    GET: Balance plus the most recent transactions

    URL: /api/v1/billing/wallets/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get my wallet",
        tags=["Billing"],
        responses={
            200: WalletSerializer,
            404: OpenApiResponse(description="User is not a psychologist"),
        },
    )
    def get(self, request):
        psychologist = Psychologist.objects.filter(user=request.user).first()
        if psychologist is None:
            return Response(
                {"detail": "Only psychologists have a wallet"},
                status=status.HTTP_404_NOT_FOUND,
            )

        wallet = WalletService.get_or_create_provider_wallet(psychologist)
        transactions = WalletService.get_transactions(wallet.id, limit=RECENT_TRANSACTIONS_LIMIT)
        serializer = WalletSerializer(
            wallet,
            context={"request": request, "recent_transactions": transactions},
        )
        return Response(serializer.data)


class CheckoutView(APIView):
    """
    API view for starting a checkout.

    POST: Price the purchase, record a pending payment and create the
    Stripe charge. The client confirms it with the returned secret; the
    payment completes when Stripe's webhook arrives.

    URL: /api/v1/billing/checkout/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Start checkout",
        description=(
            "Start paying for a single session or a monthly package. Optional "
            "appointment times book the first session once the payment succeeds."
        ),
        tags=["Billing"],
        request=CheckoutRequestSerializer,
        responses={
            201: CheckoutResponseSerializer,
            400: OpenApiResponse(description="Invalid request or nothing to charge"),
            404: OpenApiResponse(description="Psychologist or pricing not found"),
            502: OpenApiResponse(description="Stripe could not start the payment"),
        },
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        window = None
        if data.get("appointment_start_time"):
            window = (data["appointment_start_time"], data["appointment_end_time"])

        try:
            if data["payment_type"] == PaymentKind.SINGLE_SESSION:
                checkout = CheckoutService.start_single_session(
                    client=request.user,
                    psychologist_id=data["psychologist_id"],
                    appointment_window=window,
                )
            else:
                checkout = CheckoutService.start_package(
                    client=request.user,
                    psychologist_id=data["psychologist_id"],
                    package_kind=data["payment_type"],
                    appointment_window=window,
                )
        except NotFoundError as e:
            return Response(
                {"detail": e.message, "error_code": e.error_code},
                status=status.HTTP_404_NOT_FOUND,
            )
        except ValidationError as e:
            return Response(
                {"detail": e.message, "error_code": e.error_code},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except StripeError as e:
            logger.warning(
                "Checkout could not be started at Stripe",
                extra={
                    "user_id": str(request.user.id),
                    "error_code": e.error_code,
                    "stripe_code": e.stripe_code,
                },
            )
            return Response(
                {
                    "detail": "Payment could not be started. Please retry.",
                    "error_code": e.error_code,
                    "retryable": e.is_retryable,
                },
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(
            CheckoutResponseSerializer(checkout).data,
            status=status.HTTP_201_CREATED,
        )


class MySubscriptionsView(APIView):
    """
    API view for the current client's package subscriptions.

    GET: Status, session counters and billing period of each subscription

    URL: /api/v1/billing/subscriptions/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List my subscriptions",
        tags=["Billing"],
        responses={200: SubscriptionSerializer(many=True)},
    )
    def get(self, request):
        subscriptions = CheckoutService.subscriptions_for(request.user)
        return Response(SubscriptionSerializer(subscriptions, many=True).data)
