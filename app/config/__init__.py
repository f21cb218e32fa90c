# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, ASGI/WSGI applications and the Celery app.
#
# Import Celery app to ensure it's loaded when Django starts, so that
# @shared_task functions in billing.tasks bind to it.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
