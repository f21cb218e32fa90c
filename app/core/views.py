"""
Infrastructure endpoints that sit outside the billing domain.
"""

from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Liveness and readiness check for load balancers and orchestration.

    The database is required. Redis backs locks and the Celery broker,
    but an unreachable cache only degrades the response.

    Returns:
        200 {"status": "healthy", ...} when the database answers,
        503 {"status": "unhealthy", ...} otherwise.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        from django.core.cache import cache

        cache.set("health_check", "ok", timeout=1)
        health_status["cache"] = (
            "connected" if cache.get("health_check") == "ok" else "disconnected"
        )
    except Exception:
        health_status["cache"] = "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
