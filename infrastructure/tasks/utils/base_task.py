"""Common base task for Celery jobs"""
from __future__ import annotations

from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)

# Identifiers safe to copy into task logs; everything else in kwargs stays out.
_LOGGED_KWARGS = ("order_code", "batch_size", "stale_after_seconds")


def _loggable(kwargs: dict | None) -> dict:
    return {k: kwargs[k] for k in _LOGGED_KWARGS if kwargs and k in kwargs}


class BaseTask(Task):
    """Structured success/failure/retry logging for every fulfillment task."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
            **_loggable(kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **_loggable(kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name, **_loggable(kwargs))
        super().on_success(retval, task_id, args, kwargs)
