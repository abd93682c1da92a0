"""
安全交付网关（Secure Delivery Gate）

凭授权令牌交付电子书内容：先经访问校验，再从内容存储流式读取。
任何校验失败对外都是同一个 AccessDenied，具体原因只写日志。
"""
from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from application.dto import GrantResponseDTO, PrincipalDTO
from application.ports.content_storage import ContentInfo, ContentStoragePort
from core.logging_config import get_logger
from domain.common.exceptions import (
    AccessDeniedException,
    AccessViolation,
    GrantNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.entitlement.entity import AccessDecision, AccessGrant
from domain.entitlement.origin_policy import (
    ClientCharacteristics,
    OriginPolicy,
    compute_fingerprint,
)
from domain.entitlement.service import AccessValidator


logger = get_logger(__name__)

# (pdf 字节, 水印文本) -> 加水印后的 pdf 字节
Watermarker = Callable[[bytes, str], bytes]


@dataclass
class DeliveredContent:
    decision: AccessDecision
    filename: str
    media_type: str
    body: AsyncIterator[bytes]
    size: Optional[int] = None


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


def _content_key(grant: AccessGrant) -> str:
    return grant.content_key or grant.product_id


class DeliveryGate:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        storage: ContentStoragePort,
        origin_policy: OriginPolicy,
        *,
        watermarker: Optional[Watermarker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._uow_factory = uow_factory
        self._storage = storage
        self._origin_policy = origin_policy
        self._watermarker = watermarker
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def authorize(
        self,
        token: str,
        client: ClientCharacteristics,
        origin: str,
        *,
        account_id: Optional[str] = None,
    ) -> AccessDecision:
        decision, _ = await self._admit(token, client, origin, account_id=account_id, stat_content=False)
        return decision

    async def _admit(
        self,
        token: str,
        client: ClientCharacteristics,
        origin: str,
        *,
        account_id: Optional[str],
        stat_content: bool,
    ) -> tuple[AccessDecision, Optional[ContentInfo]]:
        fingerprint = compute_fingerprint(client, origin, self._origin_policy)
        info = None
        try:
            async with self._uow_factory() as uow:
                validator = AccessValidator(uow.grant_repository, self._origin_policy, clock=self._clock)
                decision = await validator.validate(token, fingerprint, origin, account_id=account_id)
                if stat_content:
                    # 内容缺失时绑定与访问计数随事务一并回滚
                    info = await self._storage.stat(_content_key(decision.grant))
        except AccessViolation as exc:
            logger.warning(
                "access_denied",
                reason=exc.reason,
                origin=origin,
                **(exc.details or {}),
            )
            raise AccessDeniedException() from None

        grant = decision.grant
        logger.info(
            "access_granted",
            grant_id=grant.id,
            first_use=decision.first_use,
            product_id=grant.product_id,
            access_count=grant.access_count,
            remaining_days=decision.remaining.days,
        )
        return decision, info

    async def serve(
        self,
        token: str,
        client: ClientCharacteristics,
        origin: str,
        *,
        account_id: Optional[str] = None,
    ) -> DeliveredContent:
        decision, info = await self._admit(token, client, origin, account_id=account_id, stat_content=True)
        grant = decision.grant
        key = _content_key(grant)
        media_type = info.content_type or mimetypes.guess_type(key)[0] or "application/octet-stream"
        filename = key.rsplit("/", 1)[-1]

        if self._watermarker is not None and media_type == "application/pdf":
            async with self._uow_factory(readonly=True) as uow:
                order = await uow.order_repository.get_by_id(grant.order_id)
            order_ref = order.order_code if order else str(grant.order_id)
            data = await self._storage.read(key)
            stamp = f"{grant.buyer_id} | Order {order_ref} | {self._clock():%Y-%m-%d}"
            marked = await asyncio.to_thread(self._watermarker, data, stamp)
            return DeliveredContent(
                decision=decision,
                filename=filename,
                media_type=media_type,
                body=_single_chunk(marked),
                size=len(marked),
            )

        return DeliveredContent(
            decision=decision,
            filename=filename,
            media_type=media_type,
            body=self._storage.open_stream(key),
            size=info.size,
        )

    async def revoke(self, grant_id: int, requester: PrincipalDTO) -> GrantResponseDTO:
        """授权所属买家或管理员可撤销；重复撤销无副作用"""
        async with self._uow_factory() as uow:
            grant = await uow.grant_repository.get_by_id(grant_id)
            # 非本人按不存在处理
            if grant is None or (not requester.is_admin and grant.buyer_id != requester.account_id):
                raise GrantNotFoundException(grant_id)
            changed = await uow.grant_repository.revoke(grant.id, requester.account_id, self._clock())
            grant = await uow.grant_repository.get_by_id(grant_id)
        logger.info("grant_revoke_requested", grant_id=grant_id, revoked_by=requester.account_id, changed=changed)
        return GrantResponseDTO.from_entity(grant, include_token=False)
