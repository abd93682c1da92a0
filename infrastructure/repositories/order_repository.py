"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from domain.order.entity import (
    Order,
    OrderLine,
    ShippingAddress,
    PaymentStatus,
    FulfillmentStatus,
    PaymentMethod,
    ProductKind,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel, OrderLineModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_code=model.order_code,
            buyer_id=model.buyer_id,
            lines=[
                OrderLine(
                    id=line.id,
                    product_id=line.product_id,
                    title=line.title,
                    kind=ProductKind(line.kind),
                    quantity=line.quantity,
                    unit_price=Decimal(str(line.unit_price)),
                    content_key=line.content_key,
                )
                for line in model.lines
            ],
            payment_method=PaymentMethod(model.payment_method),
            subtotal=Decimal(str(model.subtotal)),
            discount=Decimal(str(model.discount)),
            total=Decimal(str(model.total)),
            currency=model.currency,
            payment_status=PaymentStatus(model.payment_status),
            fulfillment_status=FulfillmentStatus(model.fulfillment_status),
            shipping_address=ShippingAddress.from_dict(model.shipping_address),
            payment_reference=model.payment_reference,
            notes=model.notes,
            paid_at=model.paid_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            order_code=entity.order_code,
            buyer_id=entity.buyer_id,
            payment_method=entity.payment_method.value,
            payment_status=entity.payment_status.value,
            fulfillment_status=entity.fulfillment_status.value,
            subtotal=entity.subtotal,
            discount=entity.discount,
            total=entity.total,
            currency=entity.currency,
            shipping_address=entity.shipping_address.to_dict() if entity.shipping_address else None,
            payment_reference=entity.payment_reference,
            notes=entity.notes,
            paid_at=entity.paid_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            extra_metadata=entity.metadata,
            lines=[
                OrderLineModel(
                    position=position,
                    product_id=line.product_id,
                    title=line.title,
                    kind=line.kind.value,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    content_key=line.content_key,
                )
                for position, line in enumerate(entity.lines)
            ],
        )

    async def create(self, order: Order) -> Optional[Order]:
        """创建订单；订单号冲突时回滚保存点并返回 None"""
        db_order = self._to_model(order)
        try:
            async with self.session.begin_nested():
                self.session.add(db_order)
                await self.session.flush()
        except IntegrityError:
            logger.warning("order_code_conflict", order_code=order.order_code)
            return None
        logger.info(
            "order_created",
            order_id=db_order.id,
            order_code=db_order.order_code,
            buyer_id=db_order.buyer_id,
            total=str(db_order.total),
        )
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_code == order_code)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def list_by_buyer(self, buyer_id: str, skip: int = 0, limit: int = 20) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.buyer_id == buyer_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_buyer(self, buyer_id: str) -> int:
        result = await self.session.execute(
            select(func.count(OrderModel.id)).where(OrderModel.buyer_id == buyer_id)
        )
        return result.scalar_one()

    def _filtered(self, query, payment_status, fulfillment_status):
        if payment_status:
            query = query.where(OrderModel.payment_status == payment_status.value)
        if fulfillment_status:
            query = query.where(OrderModel.fulfillment_status == fulfillment_status.value)
        return query

    async def list_all(
        self,
        skip: int = 0,
        limit: int = 20,
        payment_status: Optional[PaymentStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
    ) -> List[Order]:
        query = self._filtered(select(OrderModel), payment_status, fulfillment_status)
        query = query.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_all(
        self,
        payment_status: Optional[PaymentStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
    ) -> int:
        query = self._filtered(select(func.count(OrderModel.id)), payment_status, fulfillment_status)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def compare_and_set_payment_status(
        self,
        order_id: int,
        expected: PaymentStatus,
        target: PaymentStatus,
        *,
        paid_at: Optional[datetime] = None,
        payment_reference: Optional[str] = None,
    ) -> bool:
        values = {"payment_status": target.value, "updated_at": datetime.now(timezone.utc)}
        if paid_at is not None:
            values["paid_at"] = paid_at
        if payment_reference is not None:
            values["payment_reference"] = payment_reference
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.payment_status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "order_payment_status_changed",
                order_id=order_id,
                from_status=expected.value,
                to_status=target.value,
            )
            return True
        return False

    async def compare_and_set_fulfillment_status(
        self,
        order_id: int,
        expected: FulfillmentStatus,
        target: FulfillmentStatus,
    ) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.fulfillment_status == expected.value)
            .values(fulfillment_status=target.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "order_fulfillment_status_changed",
                order_id=order_id,
                from_status=expected.value,
                to_status=target.value,
            )
            return True
        return False
