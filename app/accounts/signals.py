"""
Signal handlers for accounts.

Related files:
    - apps.py: Signal import in ready()
"""

import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_user_profile(sender, instance, created, **kwargs):
    """Create an empty client Profile for every new User."""
    if created:
        from accounts.models import Profile

        Profile.objects.get_or_create(user=instance)
        logger.debug("Profile created", extra={"user_id": instance.pk})
