"""
授权应用服务 - 买家查看授权，管理员撤销并重新签发
"""
from __future__ import annotations

from typing import Callable, List, Optional

from application.dto import GrantResponseDTO, PrincipalDTO
from application.ports.notification import NotificationPort
from application.services.fulfillment import build_issuer, build_ledger, dispatch_events
from core.logging_config import get_logger
from domain.common.exceptions import GrantNotFoundException, PermissionDeniedException
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class EntitlementApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        notifier: Optional[NotificationPort] = None,
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier

    async def list_my_grants(
        self, principal: PrincipalDTO, include_revoked: bool = False
    ) -> List[GrantResponseDTO]:
        async with self._uow_factory(readonly=True) as uow:
            grants = await uow.grant_repository.list_by_buyer(principal.account_id, include_revoked=include_revoked)
        return [GrantResponseDTO.from_entity(g) for g in grants]

    async def reissue(self, grant_id: int, operator: PrincipalDTO) -> GrantResponseDTO:
        """撤销旧授权并签发新的未绑定授权（换设备的唯一途径）"""
        if not operator.is_admin:
            raise PermissionDeniedException("Only administrators can reissue access grants")
        async with self._uow_factory() as uow:
            grant = await uow.grant_repository.get_by_id(grant_id)
            if grant is None:
                raise GrantNotFoundException(grant_id)
            order = await build_ledger(uow).get(grant.order_id)
            issuer = build_issuer(uow)
            fresh = await issuer.reissue(grant, order, operator.account_id)
            events = issuer.get_domain_events()
        logger.info(
            "grant_reissued",
            old_grant_id=grant_id,
            new_grant_id=fresh.id,
            issue_seq=fresh.issue_seq,
            operator=operator.account_id,
        )
        dispatch_events(self._notifier, events)
        # 新令牌由管理员转交买家
        return GrantResponseDTO.from_entity(fresh)
