"""
URL configuration for the billing service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/accounts/              - Account endpoints
        me/                        - Delete the current account (DELETE)
    /api/v1/billing/               - Billing endpoints
        webhooks/stripe/           - Stripe webhook endpoint (POST)
        appointments/{id}/outcome/ - Record a session outcome (POST)
        wallets/me/                - Current psychologist's wallet (GET)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("accounts/", include("accounts.urls")),
    path("billing/", include("billing.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Billing Admin"
admin.site.site_title = "Billing Admin Portal"
admin.site.index_title = "Payments, subscriptions and ledgers"
