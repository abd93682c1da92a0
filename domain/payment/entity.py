"""
支付流水领域实体

每次向网关发起支付都会产生一条流水，以 (provider, correlation_id) 唯一标识。
流水只能从 initiated 迁移到终态 verified/failed 一次，终态结果被缓存，
重复的回调/Webhook 直接返回缓存结果而不再修改订单。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class TransactionStatus(str, Enum):
    """支付流水状态"""
    INITIATED = "initiated"
    VERIFIED = "verified"
    FAILED = "failed"


TERMINAL_TRANSACTION_STATUSES = frozenset({TransactionStatus.VERIFIED, TransactionStatus.FAILED})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentTransaction:
    id: Optional[int]
    order_id: int
    provider: str
    correlation_id: str
    status: TransactionStatus = TransactionStatus.INITIATED
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    # 终态时订单的支付状态（paid/failed），供重复校验直接返回
    outcome: Optional[str] = None
    raw_payload: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.settled_at = _ensure_utc(self.settled_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSACTION_STATUSES
