"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Order, PaymentStatus, FulfillmentStatus


class OrderRepository(ABC):
    """订单仓储抽象接口

    状态迁移只通过 compare-and-set 完成：以当前状态为条件的单条 UPDATE，
    返回是否命中，调用方据此判断是否赢得了并发竞争。
    """

    @abstractmethod
    async def create(self, order: Order) -> Optional[Order]:
        """创建订单及其订单行；订单号冲突时返回 None"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_code(self, order_code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_by_buyer(self, buyer_id: str, skip: int = 0, limit: int = 20) -> List[Order]:
        pass

    @abstractmethod
    async def count_by_buyer(self, buyer_id: str) -> int:
        pass

    @abstractmethod
    async def list_all(
        self,
        skip: int = 0,
        limit: int = 20,
        payment_status: Optional[PaymentStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_all(
        self,
        payment_status: Optional[PaymentStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
    ) -> int:
        pass

    @abstractmethod
    async def compare_and_set_payment_status(
        self,
        order_id: int,
        expected: PaymentStatus,
        target: PaymentStatus,
        *,
        paid_at: Optional[datetime] = None,
        payment_reference: Optional[str] = None,
    ) -> bool:
        """仅当当前支付状态为 expected 时更新为 target"""
        pass

    @abstractmethod
    async def compare_and_set_fulfillment_status(
        self,
        order_id: int,
        expected: FulfillmentStatus,
        target: FulfillmentStatus,
    ) -> bool:
        """仅当当前履约状态为 expected 时更新为 target"""
        pass
