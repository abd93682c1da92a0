"""
支付流水仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from .entity import PaymentTransaction, TransactionStatus


class PaymentTransactionRepository(ABC):
    """支付流水仓储抽象接口"""

    @abstractmethod
    async def add(self, txn: PaymentTransaction) -> Optional[PaymentTransaction]:
        """新增流水；(provider, correlation_id) 已存在时返回 None"""
        pass

    @abstractmethod
    async def get(self, provider: str, correlation_id: str) -> Optional[PaymentTransaction]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[PaymentTransaction]:
        pass

    @abstractmethod
    async def list_stale_initiated(self, before: datetime, limit: int = 100) -> List[PaymentTransaction]:
        """创建时间早于 before 且仍为 initiated 的流水"""
        pass

    @abstractmethod
    async def settle(
        self,
        txn_id: int,
        status: TransactionStatus,
        *,
        outcome: str,
        amount: Optional[Decimal] = None,
        raw_payload: Optional[dict] = None,
    ) -> bool:
        """initiated -> verified/failed 的 compare-and-set，返回是否由本次调用完成"""
        pass
