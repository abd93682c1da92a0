"""Celery application for fulfillment background work.

Two workloads share the app: buyer notifications (fire-and-forget, latency
sensitive) and payment reconciliation (periodic, slow gateway round-trips).
They get separate queues so a stuck gateway never delays notifications.
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

NOTIFICATIONS_QUEUE = "notifications"
PAYMENTS_QUEUE = "payments"


celery_app = Celery("shelfgate")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Callers never wait on results; reconciliation writes its outcome to the ledger.
    task_ignore_result=True,
    # Ack after the task body runs so a lost worker re-delivers reconciliation.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue=NOTIFICATIONS_QUEUE,
    task_queues=(Queue(NOTIFICATIONS_QUEUE), Queue(PAYMENTS_QUEUE)),
    task_routes={
        "notifications.*": {"queue": NOTIFICATIONS_QUEUE},
        "payments.*": {"queue": PAYMENTS_QUEUE},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = TASK_PACKAGES

# Local runs have no broker: execute tasks in-process.
if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=bool(sender.conf.task_always_eager),
        queues=[q.name for q in sender.conf.task_queues],
    )
