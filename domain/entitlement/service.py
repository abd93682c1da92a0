"""
授权领域服务 - 签发（Entitlement Issuer）与访问校验（Access Validator）
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .entity import AccessGrant, AccessDecision
from .events import GrantsIssued, GrantRevoked
from .origin_policy import OriginPolicy
from .repository import AccessGrantRepository
from domain.order.entity import Order
from domain.common.exceptions import (
    InvalidTokenException,
    GrantRevokedException,
    GrantExpiredException,
    DeviceMismatchException,
    IdentityMismatchException,
    InvalidStateTransitionException,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_grant_token() -> str:
    return secrets.token_hex(32)


class EntitlementIssuer:
    """
    授权签发服务

    每个 (订单, 数字商品) 只签发一次；重复触发（Webhook 与跳转回调竞争）
    由存储层唯一约束兜底，视为正常的空操作。
    """

    def __init__(
        self,
        grant_repository: AccessGrantRepository,
        *,
        lifetime: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.grant_repository = grant_repository
        self.lifetime = lifetime
        self.clock = clock
        self.events: List = []

    def _new_grant(self, order: Order, product_id: str, content_key: Optional[str], issue_seq: int) -> AccessGrant:
        now = self.clock()
        return AccessGrant(
            id=None,
            token=new_grant_token(),
            buyer_id=order.buyer_id,
            product_id=product_id,
            order_id=order.id,
            issue_seq=issue_seq,
            content_key=content_key,
            issued_at=now,
            expires_at=now + self.lifetime,
        )

    async def issue_for_order(self, order: Order) -> List[AccessGrant]:
        """为订单中的数字商品签发未绑定授权，返回本次新建的授权"""
        if not order.entitlement_ready:
            return []
        created: List[AccessGrant] = []
        seen: set[str] = set()
        for line in order.digital_lines:
            if line.product_id in seen:
                continue
            seen.add(line.product_id)
            if await self.grant_repository.exists_for(order.id, line.product_id):
                continue
            grant = await self.grant_repository.add_if_absent(
                self._new_grant(order, line.product_id, line.content_key, issue_seq=0)
            )
            if grant is not None:
                created.append(grant)
        if created:
            self.events.append(
                GrantsIssued(
                    order_id=order.id,
                    order_code=order.order_code,
                    buyer_id=order.buyer_id,
                    product_ids=[g.product_id for g in created],
                )
            )
        return created

    async def revoke(self, grant: AccessGrant, revoked_by: str) -> bool:
        """逻辑删除；已撤销时返回 False（幂等）"""
        changed = await self.grant_repository.revoke(grant.id, revoked_by, self.clock())
        if changed:
            self.events.append(GrantRevoked(grant_id=grant.id, buyer_id=grant.buyer_id, revoked_by=revoked_by))
        return changed

    async def reissue(self, grant: AccessGrant, order: Order, issued_by: str) -> AccessGrant:
        """撤销旧授权并签发新的未绑定授权（唯一能改变绑定的途径）"""
        # 已退款或未结清的订单不再补发
        if not order.entitlement_ready:
            raise InvalidStateTransitionException("entitlement", order.payment_status.value, "reissue")
        await self.revoke(grant, issued_by)
        seq = await self.grant_repository.max_issue_seq(grant.order_id, grant.product_id) + 1
        while True:
            fresh = await self.grant_repository.add_if_absent(
                self._new_grant(order, grant.product_id, grant.content_key, issue_seq=seq)
            )
            if fresh is not None:
                return fresh
            seq += 1

    def get_domain_events(self) -> List:
        events = self.events[:]
        self.events.clear()
        return events


class AccessValidator:
    """
    访问校验

    UNBOUND -> BOUND -> {通过, 拒绝}；REVOKED/EXPIRED 为判定出的终态。
    校验顺序：令牌存在 -> 调用方身份 -> 未撤销 -> 未过期 -> 绑定/匹配 -> 记录访问。
    """

    def __init__(
        self,
        grant_repository: AccessGrantRepository,
        origin_policy: OriginPolicy,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.grant_repository = grant_repository
        self.origin_policy = origin_policy
        self.clock = clock

    async def validate(
        self,
        token: str,
        fingerprint: str,
        origin: str,
        *,
        account_id: Optional[str] = None,
    ) -> AccessDecision:
        """account_id 为已登录调用方；匿名访问时为 None，仅凭令牌与设备判定"""
        grant = await self.grant_repository.get_by_token(token) if token else None
        if grant is None:
            raise InvalidTokenException()
        if account_id is not None and account_id != grant.buyer_id:
            raise IdentityMismatchException(details={"grant_id": grant.id})
        if grant.revoked:
            raise GrantRevokedException(details={"grant_id": grant.id})
        now = self.clock()
        if grant.is_expired(now):
            raise GrantExpiredException(details={"grant_id": grant.id})

        first_use = False
        if not grant.is_bound:
            if await self.grant_repository.bind(grant.id, fingerprint, origin, now):
                first_use = True
                grant.bound_fingerprint = fingerprint
                grant.bound_origin = origin
                grant.bound_at = now
            else:
                # 另一台设备抢先绑定，按其绑定结果判定
                grant = await self.grant_repository.get_by_id(grant.id)
                if grant is None:
                    raise InvalidTokenException()

        if not first_use:
            if grant.bound_fingerprint != fingerprint or not self.origin_policy.matches(
                grant.bound_origin or "", origin
            ):
                raise DeviceMismatchException(details={"grant_id": grant.id})

        await self.grant_repository.record_access(grant.id, now)
        grant.last_access_at = now
        grant.access_count += 1
        return AccessDecision(grant=grant, remaining=grant.remaining(now), first_use=first_use)
