"""
访问授权仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import AccessGrant


class AccessGrantRepository(ABC):
    """访问授权仓储抽象接口"""

    @abstractmethod
    async def add_if_absent(self, grant: AccessGrant) -> Optional[AccessGrant]:
        """按 (order_id, product_id, issue_seq) 唯一插入；已存在时返回 None"""
        pass

    @abstractmethod
    async def get_by_id(self, grant_id: int) -> Optional[AccessGrant]:
        pass

    @abstractmethod
    async def get_by_token(self, token: str) -> Optional[AccessGrant]:
        pass

    @abstractmethod
    async def exists_for(self, order_id: int, product_id: str) -> bool:
        pass

    @abstractmethod
    async def list_by_buyer(self, buyer_id: str, include_revoked: bool = False) -> List[AccessGrant]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[AccessGrant]:
        pass

    @abstractmethod
    async def max_issue_seq(self, order_id: int, product_id: str) -> int:
        pass

    @abstractmethod
    async def bind(self, grant_id: int, fingerprint: str, origin: str, at: datetime) -> bool:
        """仅当尚未绑定时写入绑定信息（首用者胜出）"""
        pass

    @abstractmethod
    async def record_access(self, grant_id: int, at: datetime) -> bool:
        """原子地刷新最近访问时间并累加访问次数"""
        pass

    @abstractmethod
    async def revoke(self, grant_id: int, revoked_by: str, at: datetime) -> bool:
        """未撤销 -> 已撤销；已撤销时返回 False"""
        pass

    @abstractmethod
    async def revoke_for_order(self, order_id: int, revoked_by: str, at: datetime) -> int:
        pass
