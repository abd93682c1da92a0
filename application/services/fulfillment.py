"""
支付迁移与授权签发的共用编排

支付状态迁移与电子书授权签发必须落在同一个工作单元内：
迁移提交成功则授权一并存在，迁移回滚则授权也不存在。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, List, Optional

from core.config import settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.entitlement.entity import AccessGrant
from domain.entitlement.events import GrantsIssued
from domain.entitlement.service import EntitlementIssuer
from domain.order.entity import Order, PaymentStatus
from domain.order.events import PaymentConfirmed
from domain.order.service import OrderLedger
from application.ports.notification import NotificationPort


logger = get_logger(__name__)


def build_ledger(uow: AbstractUnitOfWork) -> OrderLedger:
    return OrderLedger(
        uow.order_repository,
        code_prefix=settings.orders.code_prefix,
        code_length=settings.orders.code_length,
        max_code_attempts=settings.orders.max_code_attempts,
    )


def build_issuer(uow: AbstractUnitOfWork) -> EntitlementIssuer:
    return EntitlementIssuer(
        uow.grant_repository,
        lifetime=timedelta(days=settings.entitlement.lifetime_days),
    )


@dataclass
class TransitionResult:
    order: Order
    grants: List[AccessGrant] = field(default_factory=list)
    events: List[Any] = field(default_factory=list)


async def transition_and_entitle(
    uow: AbstractUnitOfWork,
    order_id: int,
    path: Iterable[PaymentStatus],
    meta: Optional[dict[str, Any]] = None,
) -> TransitionResult:
    """依次执行支付迁移，随后（若条件满足）为数字商品签发授权"""
    ledger = build_ledger(uow)
    issuer = build_issuer(uow)

    order: Optional[Order] = None
    for target in path:
        order = await ledger.transition_payment(order_id, target, meta)
    if order is None:
        order = await ledger.get(order_id)

    grants = await issuer.issue_for_order(order)
    return TransitionResult(
        order=order,
        grants=grants,
        events=ledger.get_domain_events() + issuer.get_domain_events(),
    )


def dispatch_events(notifier: Optional[NotificationPort], events: Iterable[Any]) -> None:
    """事务提交后投递通知；通知失败只记录日志"""
    for event in events:
        logger.info("domain_event", event_type=type(event).__name__, event_id=getattr(event, "event_id", None))
        if notifier is None:
            continue
        try:
            if isinstance(event, PaymentConfirmed):
                notifier.payment_confirmed(event)
            elif isinstance(event, GrantsIssued):
                notifier.grants_issued(event)
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                event_type=type(event).__name__,
                error=str(exc),
            )
