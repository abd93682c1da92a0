"""
Celery tasks for payment compensation: reconciling stale gateway sessions.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta

from celery import shared_task

from application.services.payment_service import PaymentApplicationService
from core.config import settings
from core.logging_config import get_logger
from ..utils.base_task import BaseTask


logger = get_logger(__name__)


async def _reconcile(stale_after_seconds: int, batch_size: int) -> dict:
    # Imported lazily so the worker only builds engines when the task runs
    from infrastructure.adapters.notification_port import CeleryNotificationAdapter
    from infrastructure.database import Database
    from infrastructure.external.payments import build_gateways
    from infrastructure.unit_of_work import uow_factory_for

    database = Database(settings.database.url, echo=settings.database.echo)
    service = PaymentApplicationService(
        uow_factory_for(database.session_factory),
        build_gateways(),
        notifier=CeleryNotificationAdapter(),
    )
    try:
        summary = await service.reconcile_stale(
            stale_after=timedelta(seconds=stale_after_seconds),
            batch_size=batch_size,
        )
        return summary.model_dump()
    finally:
        await service.aclose()
        await database.dispose()


@shared_task(name="payments.reconcile_stale", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def task_reconcile_stale(self, stale_after_seconds: int | None = None, batch_size: int | None = None):
    """Query gateways for transactions stuck in `initiated` and settle them."""
    if not settings.reconcile.enabled:
        logger.info("payment_reconcile_disabled")
        return {"examined": 0, "settled": 0, "still_pending": 0, "errors": 0}
    try:
        # use asyncio.run per-task for isolation
        return asyncio.run(
            _reconcile(
                stale_after_seconds or settings.reconcile.stale_after_seconds,
                batch_size or settings.reconcile.batch_size,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("payment_reconcile_task_failed", error=str(exc))
        raise self.retry(exc=exc)
