"""
Account views.

Endpoints:
    DELETE /api/v1/accounts/me/ - Permanently delete the current account

Related files:
    - billing/services/account_deletion.py: Reconciliation and ordered teardown
    - urls.py: URL routing
"""

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.services.account_deletion import AccountDeletionService

logger = logging.getLogger(__name__)


class AccountMeView(APIView):
    """
    API view for the current account.

    DELETE: Cancel live subscriptions, settle wallet money and delete the
    user with every dependent row.

    URL: /api/v1/accounts/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Delete my account",
        description=(
            "Permanently delete the current account. Live Stripe subscriptions "
            "are cancelled on a best-effort basis. Payments and invoices are kept "
            "for audit without a link to the account."
        ),
        tags=["Accounts"],
        responses={
            200: OpenApiResponse(description="Account deleted"),
            500: OpenApiResponse(description="The user row could not be deleted"),
        },
    )
    def delete(self, request):
        report = AccountDeletionService.delete_account(request.user)

        if not report.user_deleted:
            logger.error(
                "Account deletion left the user in place",
                extra={"user_id": report.user_id, "errors": report.errors},
            )
            return Response(
                {"detail": "Account could not be fully deleted", "report": report.as_dict()},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response({"detail": "Account deleted", "report": report.as_dict()})
