"""
订单应用服务（application/services）- 编排商品目录、订单台账与支付初始化
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

from application.dto import (
    OrderCreateDTO,
    OrderResponseDTO,
    PrincipalDTO,
)
from application.ports.catalog import CatalogPort
from application.ports.notification import NotificationPort
from application.services.fulfillment import (
    build_ledger,
    dispatch_events,
    transition_and_entitle,
)
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidLineItemException,
    OrderNotFoundException,
    UnsupportedPaymentMethodException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import (
    FulfillmentStatus,
    Order,
    OrderLine,
    PaymentMethod,
    PaymentStatus,
    ProductKind,
)

if TYPE_CHECKING:  # pragma: no cover
    from application.services.payment_service import PaymentApplicationService


logger = get_logger(__name__)


def parse_payment_method(value: str) -> PaymentMethod:
    try:
        return PaymentMethod((value or "").strip().lower())
    except ValueError:
        raise UnsupportedPaymentMethodException(value) from None


class OrderApplicationService:
    """订单应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        catalog: CatalogPort,
        *,
        payments: Optional["PaymentApplicationService"] = None,
        notifier: Optional[NotificationPort] = None,
    ):
        self._uow_factory = uow_factory
        self._catalog = catalog
        self._payments = payments
        self._notifier = notifier

    async def _build_lines(self, data: OrderCreateDTO) -> List[OrderLine]:
        """合并重复商品并从商品目录快照价格"""
        merged: dict[str, int] = {}
        for item in data.items:
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

        lines: List[OrderLine] = []
        for product_id, quantity in merged.items():
            product = await self._catalog.get_product(product_id)
            if product is None:
                raise InvalidLineItemException(product_id, "product not found")
            if not product.is_purchasable:
                raise InvalidLineItemException(product_id, "product is not purchasable")
            lines.append(
                OrderLine(
                    product_id=product.product_id,
                    title=product.title,
                    kind=ProductKind.DIGITAL if product.is_digital else ProductKind.PHYSICAL,
                    quantity=quantity,
                    unit_price=Decimal(product.price),
                    content_key=product.content_key,
                )
            )
        return lines

    async def create_order(self, buyer: PrincipalDTO, data: OrderCreateDTO) -> OrderResponseDTO:
        """下单：校验商品、冻结金额并保存；货到付款订单立即受理"""
        method = parse_payment_method(data.payment_method)
        # 商品目录调用在事务之外完成
        lines = await self._build_lines(data)

        order = Order.place(
            order_code="",
            buyer_id=buyer.account_id,
            lines=lines,
            payment_method=method,
            currency=settings.orders.currency,
            discount=data.discount,
            shipping_address=data.shipping_address.to_domain() if data.shipping_address else None,
            notes=data.notes,
        )

        async with self._uow_factory() as uow:
            ledger = build_ledger(uow)
            order = await ledger.record(order)

        logger.info(
            "order_placed",
            order_id=order.id,
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            payment_method=method.value,
            total=str(order.total),
            digital_items=len(order.digital_lines),
        )

        if order.is_cash_on_delivery and self._payments is not None:
            await self._payments.initiate(order.order_code, buyer)
            return await self.get_order(order.id, buyer)
        return OrderResponseDTO.from_entity(order)

    @staticmethod
    def _ensure_visible(order: Order, principal: PrincipalDTO) -> None:
        # 非本人且非管理员：按不存在处理，不暴露订单是否存在
        if not principal.is_admin and order.buyer_id != principal.account_id:
            raise OrderNotFoundException(order.id)

    async def get_order(self, order_id: int, principal: PrincipalDTO) -> OrderResponseDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await build_ledger(uow).get(order_id)
        self._ensure_visible(order, principal)
        return OrderResponseDTO.from_entity(order)

    async def get_order_by_code(self, order_code: str, principal: PrincipalDTO) -> OrderResponseDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await build_ledger(uow).get_by_code(order_code)
        self._ensure_visible(order, principal)
        return OrderResponseDTO.from_entity(order)

    async def list_my_orders(
        self, principal: PrincipalDTO, page: int = 1, size: int = 20
    ) -> Tuple[List[OrderResponseDTO], int]:
        skip = (page - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_buyer(principal.account_id, skip=skip, limit=size)
            total = await uow.order_repository.count_by_buyer(principal.account_id)
        return [OrderResponseDTO.from_entity(o) for o in orders], total

    async def list_all_orders(
        self,
        page: int = 1,
        size: int = 20,
        payment_status: Optional[PaymentStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
    ) -> Tuple[List[OrderResponseDTO], int]:
        skip = (page - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_all(
                skip=skip,
                limit=size,
                payment_status=payment_status,
                fulfillment_status=fulfillment_status,
            )
            total = await uow.order_repository.count_all(
                payment_status=payment_status,
                fulfillment_status=fulfillment_status,
            )
        return [OrderResponseDTO.from_entity(o) for o in orders], total

    async def update_fulfillment_status(
        self, order_id: int, status: FulfillmentStatus, operator: PrincipalDTO
    ) -> OrderResponseDTO:
        async with self._uow_factory() as uow:
            order = await build_ledger(uow).transition_fulfillment(order_id, status)
        logger.info(
            "fulfillment_status_changed",
            order_id=order_id,
            order_code=order.order_code,
            status=status.value,
            operator=operator.account_id,
        )
        return OrderResponseDTO.from_entity(order)

    async def update_payment_status(
        self,
        order_id: int,
        status: PaymentStatus,
        operator: PrincipalDTO,
        reference: Optional[str] = None,
    ) -> OrderResponseDTO:
        """管理员人工迁移支付状态；达到可发放条件时同一事务内签发授权"""
        if status == PaymentStatus.REFUNDED and self._payments is not None:
            # 退款需要同时撤销授权
            return await self._payments.refund(order_id, operator)
        meta = {"correlation_id": reference or f"manual:{operator.account_id}", "operator": operator.account_id}
        async with self._uow_factory() as uow:
            result = await transition_and_entitle(uow, order_id, [status], meta)
        logger.info(
            "payment_status_changed",
            order_id=order_id,
            order_code=result.order.order_code,
            status=status.value,
            operator=operator.account_id,
            grants_issued=len(result.grants),
        )
        dispatch_events(self._notifier, result.events)
        return OrderResponseDTO.from_entity(result.order)
