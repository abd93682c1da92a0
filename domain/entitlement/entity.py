"""
电子书访问授权（Access Grant）领域实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class AccessGrant:
    """
    访问授权

    业务规则：
    1. 首次成功访问时绑定设备指纹与网络来源，绑定后不可迁移
    2. 只有撤销后重新签发才会得到新的（未绑定）授权
    3. 过期在访问时判定，不做物理删除
    """

    id: Optional[int]
    token: str
    buyer_id: str
    product_id: str
    order_id: int
    issued_at: datetime
    expires_at: datetime
    issue_seq: int = 0
    content_key: Optional[str] = None
    bound_fingerprint: Optional[str] = None
    bound_origin: Optional[str] = None
    bound_at: Optional[datetime] = None
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    last_access_at: Optional[datetime] = None
    access_count: int = 0

    def __post_init__(self) -> None:
        self.issued_at = _ensure_utc(self.issued_at)
        self.expires_at = _ensure_utc(self.expires_at)
        self.bound_at = _ensure_utc(self.bound_at)
        self.revoked_at = _ensure_utc(self.revoked_at)
        self.last_access_at = _ensure_utc(self.last_access_at)

    @property
    def is_bound(self) -> bool:
        return self.bound_fingerprint is not None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))


@dataclass(frozen=True)
class AccessDecision:
    """校验通过的结果"""
    grant: AccessGrant
    remaining: timedelta
    first_use: bool = False
