"""
订单领域服务 - 订单台账（Order Ledger）

负责订单创建与两条状态轴的迁移。所有迁移都是以当前状态为条件的
compare-and-set，失败时不会留下部分写入。
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from .entity import (
    Order,
    PaymentStatus,
    FulfillmentStatus,
    generate_order_code,
)
from .events import PaymentConfirmed
from .repository import OrderRepository
from domain.common.exceptions import (
    BusinessException,
    InvalidStateTransitionException,
    OrderNotFoundException,
)
from shared.codes import BusinessCode


class OrderLedger:
    """
    订单台账 - 编排订单的持久化与状态机

    职责：
    1. 生成唯一订单号并保存订单
    2. 支付状态迁移（含支付成功后的自动确认）
    3. 履约状态迁移（只进不退，可取消）
    4. 产生领域事件
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        *,
        code_prefix: str = "ORD-",
        code_length: int = 6,
        max_code_attempts: int = 5,
    ):
        self.order_repository = order_repository
        self.code_prefix = code_prefix
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self.events: List = []  # 领域事件收集

    async def record(self, order: Order) -> Order:
        """保存新订单；订单号冲突时换号重试"""
        for _ in range(self.max_code_attempts):
            order.order_code = generate_order_code(self.code_prefix, self.code_length)
            created = await self.order_repository.create(order)
            if created is not None:
                return created
        raise BusinessException(
            code=BusinessCode.SYSTEM_ERROR,
            message="Could not allocate a unique order code",
            error_type="OrderCodeExhausted",
        )

    async def get(self, order_id: int) -> Order:
        order = await self.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    async def get_by_code(self, order_code: str) -> Order:
        order = await self.order_repository.get_by_code(order_code)
        if order is None:
            raise OrderNotFoundException(order_code=order_code)
        return order

    async def transition_payment(
        self,
        order_id: int,
        target: PaymentStatus,
        meta: Optional[dict[str, Any]] = None,
    ) -> Order:
        meta = meta or {}
        order = await self.get(order_id)
        order.ensure_payment_transition(target)

        now = datetime.now(timezone.utc)
        paid_at = now if target == PaymentStatus.PAID else None
        reference = meta.get("correlation_id") if target == PaymentStatus.PAID else None
        swapped = await self.order_repository.compare_and_set_payment_status(
            order.id,
            order.payment_status,
            target,
            paid_at=paid_at,
            payment_reference=reference,
        )
        if not swapped:
            # 并发下被其他请求抢先迁移；以最新状态报告冲突
            latest = await self.get(order_id)
            raise InvalidStateTransitionException("payment", latest.payment_status.value, target.value)

        order.payment_status = target
        order.updated_at = now
        if paid_at is not None:
            order.paid_at = paid_at
            order.payment_reference = reference

        if target == PaymentStatus.PAID and order.fulfillment_status == FulfillmentStatus.PENDING:
            confirmed = await self.order_repository.compare_and_set_fulfillment_status(
                order.id, FulfillmentStatus.PENDING, FulfillmentStatus.CONFIRMED
            )
            if confirmed:
                order.fulfillment_status = FulfillmentStatus.CONFIRMED

        if order.entitlement_ready and target in (PaymentStatus.PAID, PaymentStatus.PROCESSING):
            self.events.append(
                PaymentConfirmed(
                    order_id=order.id,
                    order_code=order.order_code,
                    buyer_id=order.buyer_id,
                    amount=order.total,
                    currency=order.currency,
                    payment_method=order.payment_method.value,
                    payment_status=target.value,
                )
            )
        return order

    async def transition_fulfillment(self, order_id: int, target: FulfillmentStatus) -> Order:
        order = await self.get(order_id)
        order.ensure_fulfillment_transition(target)
        swapped = await self.order_repository.compare_and_set_fulfillment_status(
            order.id, order.fulfillment_status, target
        )
        if not swapped:
            latest = await self.get(order_id)
            raise InvalidStateTransitionException("fulfillment", latest.fulfillment_status.value, target.value)
        order.fulfillment_status = target
        order.updated_at = datetime.now(timezone.utc)
        return order

    def get_domain_events(self) -> List:
        """获取并清空领域事件"""
        events = self.events[:]
        self.events.clear()
        return events
