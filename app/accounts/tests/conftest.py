"""
Pytest fixtures for account tests.
"""

import pytest
from rest_framework.test import APIClient

from accounts.tests.factories import UserFactory


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    """APIClient authenticated as ``user``."""
    api_client.force_authenticate(user=user)
    return api_client
