"""Buyer notification tasks (payment receipt, ebook ready)."""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    bind=True,
    base=BaseTask,
    name="notifications.payment_confirmed",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_payment_confirmation(
    self,
    order_code: str,
    buyer_id: str,
    amount: str,
    currency: str,
    payment_method: str,
    payment_status: str,
) -> None:
    """Tell the buyer their payment was received.

    Delivery channel (SMS/email) is owned by the messaging service; this task
    records the hand-off.
    """
    logger.info(
        "send_payment_confirmation",
        order_code=order_code,
        buyer_id=buyer_id,
        amount=amount,
        currency=currency,
        payment_method=payment_method,
        payment_status=payment_status,
    )


@shared_task(
    bind=True,
    base=BaseTask,
    name="notifications.grants_issued",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_grants_ready(self, order_code: str, buyer_id: str, product_ids: list[str]) -> None:
    """Tell the buyer their ebooks are ready to read."""
    logger.info("send_grants_ready", order_code=order_code, buyer_id=buyer_id, product_ids=product_ids)
