"""Celery beat schedule configuration.

Periodic jobs live here; keeping the structure close to the Celery docs makes
copying snippets straightforward for new tasks.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE: dict = {}

if settings.reconcile.enabled:
    CELERY_BEAT_SCHEDULE["payments-reconcile-stale"] = {
        "task": "payments.reconcile_stale",
        "schedule": float(settings.reconcile.interval_seconds),
        "options": {"queue": "payments"},
    }
