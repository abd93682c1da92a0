"""
授权领域事件
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class GrantsIssued:
    """订单的电子书访问授权已签发"""
    order_id: int
    order_code: str
    buyer_id: str
    product_ids: list[str]
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class GrantRevoked:
    grant_id: int
    buyer_id: str
    revoked_by: str
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
