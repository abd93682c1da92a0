"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by infrastructure adapters to schedule tasks."""

    def send_payment_confirmation(
        self,
        *,
        order_code: str,
        buyer_id: str,
        amount: str,
        currency: str,
        payment_method: str,
        payment_status: str,
    ) -> None:
        self.enqueue(
            "notifications.payment_confirmed",
            kwargs={
                "order_code": order_code,
                "buyer_id": buyer_id,
                "amount": amount,
                "currency": currency,
                "payment_method": payment_method,
                "payment_status": payment_status,
            },
        )

    def send_grants_ready(self, *, order_code: str, buyer_id: str, product_ids: list[str]) -> None:
        self.enqueue(
            "notifications.grants_issued",
            kwargs={"order_code": order_code, "buyer_id": buyer_id, "product_ids": product_ids},
        )

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        if celery_app.conf.task_always_eager and task_name in celery_app.tasks:
            # send_task bypasses eager mode; run registered tasks in-process instead
            celery_app.tasks[task_name].apply(args=args or (), kwargs=kwargs or {})
            return
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
