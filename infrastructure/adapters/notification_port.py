"""Infrastructure adapter that implements the application NotificationPort
by scheduling Celery tasks through the TaskDispatcher facade.
"""
from __future__ import annotations

from typing import Optional

from application.ports.notification import NotificationPort
from core.logging_config import get_logger
from domain.entitlement.events import GrantsIssued
from domain.order.events import PaymentConfirmed
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)


class CeleryNotificationAdapter(NotificationPort):
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None):
        self.dispatcher = dispatcher or TaskDispatcher()

    def payment_confirmed(self, event: PaymentConfirmed) -> None:
        try:
            self.dispatcher.send_payment_confirmation(
                order_code=event.order_code,
                buyer_id=event.buyer_id,
                amount=str(event.amount),
                currency=event.currency,
                payment_method=event.payment_method,
                payment_status=event.payment_status,
            )
        except Exception as exc:  # 通知失败不影响已提交的支付
            logger.warning("notification_enqueue_failed", kind="payment_confirmed", order_code=event.order_code, error=str(exc))

    def grants_issued(self, event: GrantsIssued) -> None:
        try:
            self.dispatcher.send_grants_ready(
                order_code=event.order_code,
                buyer_id=event.buyer_id,
                product_ids=list(event.product_ids),
            )
        except Exception as exc:
            logger.warning("notification_enqueue_failed", kind="grants_issued", order_code=event.order_code, error=str(exc))
