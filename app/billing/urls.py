"""
URL configuration for the billing app.

Routes:
    - POST /webhooks/stripe/ - Stripe webhook endpoint
    - POST /checkout/ - Start a single-session or package checkout
    - GET /subscriptions/me/ - Current client's subscriptions
    - POST /appointments/<id>/outcome/ - Record a session outcome
    - GET /wallets/me/ - Current psychologist's wallet

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing.views import CheckoutView, MySubscriptionsView, MyWalletView, SessionOutcomeView
from billing.webhooks.views import stripe_webhook

app_name = "billing"

urlpatterns = [
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    # Checkout
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("subscriptions/me/", MySubscriptionsView.as_view(), name="my_subscriptions"),
    # Sessions
    path(
        "appointments/<uuid:appointment_id>/outcome/",
        SessionOutcomeView.as_view(),
        name="session_outcome",
    ),
    # Wallets
    path("wallets/me/", MyWalletView.as_view(), name="my_wallet"),
]
