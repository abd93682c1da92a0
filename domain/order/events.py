"""
订单领域事件 - 记录重要的业务事件
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class PaymentConfirmed:
    """支付确认事件（网关已支付，或货到付款已受理）"""
    order_id: int
    order_code: str
    buyer_id: str
    amount: Decimal
    currency: str
    payment_method: str
    payment_status: str
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentRefunded:
    """退款事件"""
    order_id: int
    order_code: str
    buyer_id: str
    revoked_grants: int
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
