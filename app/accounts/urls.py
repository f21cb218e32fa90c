"""
URL configuration for the accounts app.

Routes:
    - DELETE /me/ - Delete the current account

All routes are prefixed with /api/v1/accounts/ when included in the main URLconf.
"""

from django.urls import path

from accounts.views import AccountMeView

app_name = "accounts"

urlpatterns = [
    path("me/", AccountMeView.as_view(), name="me"),
]
