"""
Celery configuration for the billing service.

Celery runs the billing background work:
- Webhook event processing, queued by the Stripe webhook view
- Periodic jobs (webhook retries, stuck-event cleanup, subscription
  renewals, credit expiry) scheduled by django_celery_beat

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    from billing.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
