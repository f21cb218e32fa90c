"""
Practice app configuration.

Holds the marketplace collaborators the billing engine consumes as opaque
stores: psychologists, their pricing catalog and availability, and
appointments.
"""

from django.apps import AppConfig


class PracticeConfig(AppConfig):
    """Configuration for the practice application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "practice"
    verbose_name = "Practice"
