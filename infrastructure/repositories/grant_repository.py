"""
访问授权仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from domain.entitlement.entity import AccessGrant
from domain.entitlement.repository import AccessGrantRepository
from infrastructure.models.entitlement import AccessGrantModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyAccessGrantRepository(AccessGrantRepository):
    """访问授权仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AccessGrantModel) -> AccessGrant:
        return AccessGrant(
            id=model.id,
            token=model.token,
            buyer_id=model.buyer_id,
            product_id=model.product_id,
            order_id=model.order_id,
            issue_seq=model.issue_seq,
            content_key=model.content_key,
            bound_fingerprint=model.bound_fingerprint,
            bound_origin=model.bound_origin,
            bound_at=model.bound_at,
            issued_at=model.issued_at,
            expires_at=model.expires_at,
            revoked=bool(model.revoked),
            revoked_at=model.revoked_at,
            revoked_by=model.revoked_by,
            last_access_at=model.last_access_at,
            access_count=model.access_count or 0,
        )

    def _to_model(self, entity: AccessGrant) -> AccessGrantModel:
        return AccessGrantModel(
            token=entity.token,
            buyer_id=entity.buyer_id,
            product_id=entity.product_id,
            order_id=entity.order_id,
            issue_seq=entity.issue_seq,
            content_key=entity.content_key,
            issued_at=entity.issued_at,
            expires_at=entity.expires_at,
            revoked=entity.revoked,
            access_count=entity.access_count,
        )

    async def add_if_absent(self, grant: AccessGrant) -> Optional[AccessGrant]:
        db_grant = self._to_model(grant)
        try:
            async with self.session.begin_nested():
                self.session.add(db_grant)
                await self.session.flush()
        except IntegrityError:
            # 重复触发签发属于预期竞争，不视为错误
            logger.info(
                "grant_issue_duplicate_ignored",
                order_id=grant.order_id,
                product_id=grant.product_id,
                issue_seq=grant.issue_seq,
            )
            return None
        logger.info(
            "grant_issued",
            grant_id=db_grant.id,
            order_id=db_grant.order_id,
            product_id=db_grant.product_id,
            buyer_id=db_grant.buyer_id,
            issue_seq=db_grant.issue_seq,
        )
        return self._to_entity(db_grant)

    async def get_by_id(self, grant_id: int) -> Optional[AccessGrant]:
        result = await self.session.execute(
            select(AccessGrantModel)
            .where(AccessGrantModel.id == grant_id)
            .execution_options(populate_existing=True)
        )
        db_grant = result.scalar_one_or_none()
        return self._to_entity(db_grant) if db_grant else None

    async def get_by_token(self, token: str) -> Optional[AccessGrant]:
        result = await self.session.execute(
            select(AccessGrantModel)
            .where(AccessGrantModel.token == token)
            .execution_options(populate_existing=True)
        )
        db_grant = result.scalar_one_or_none()
        return self._to_entity(db_grant) if db_grant else None

    async def exists_for(self, order_id: int, product_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(AccessGrantModel.id)).where(
                AccessGrantModel.order_id == order_id,
                AccessGrantModel.product_id == product_id,
            )
        )
        return result.scalar_one() > 0

    async def list_by_buyer(self, buyer_id: str, include_revoked: bool = False) -> List[AccessGrant]:
        query = select(AccessGrantModel).where(AccessGrantModel.buyer_id == buyer_id)
        if not include_revoked:
            query = query.where(AccessGrantModel.revoked == False)  # noqa: E712
        result = await self.session.execute(
            query.order_by(AccessGrantModel.issued_at.desc(), AccessGrantModel.id.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_order(self, order_id: int) -> List[AccessGrant]:
        result = await self.session.execute(
            select(AccessGrantModel)
            .where(AccessGrantModel.order_id == order_id)
            .order_by(AccessGrantModel.id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def max_issue_seq(self, order_id: int, product_id: str) -> int:
        result = await self.session.execute(
            select(func.max(AccessGrantModel.issue_seq)).where(
                AccessGrantModel.order_id == order_id,
                AccessGrantModel.product_id == product_id,
            )
        )
        value = result.scalar_one_or_none()
        return value if value is not None else -1

    async def bind(self, grant_id: int, fingerprint: str, origin: str, at: datetime) -> bool:
        result = await self.session.execute(
            update(AccessGrantModel)
            .where(
                AccessGrantModel.id == grant_id,
                AccessGrantModel.bound_fingerprint.is_(None),
            )
            .values(bound_fingerprint=fingerprint, bound_origin=origin, bound_at=at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("grant_bound", grant_id=grant_id, origin=origin)
            return True
        return False

    async def record_access(self, grant_id: int, at: datetime) -> bool:
        result = await self.session.execute(
            update(AccessGrantModel)
            .where(AccessGrantModel.id == grant_id)
            .values(access_count=AccessGrantModel.access_count + 1, last_access_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke(self, grant_id: int, revoked_by: str, at: datetime) -> bool:
        result = await self.session.execute(
            update(AccessGrantModel)
            .where(AccessGrantModel.id == grant_id, AccessGrantModel.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=at, revoked_by=revoked_by)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.warning("grant_revoked", grant_id=grant_id, revoked_by=revoked_by)
            return True
        return False

    async def revoke_for_order(self, order_id: int, revoked_by: str, at: datetime) -> int:
        result = await self.session.execute(
            update(AccessGrantModel)
            .where(AccessGrantModel.order_id == order_id, AccessGrantModel.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=at, revoked_by=revoked_by)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.warning("order_grants_revoked", order_id=order_id, count=count, revoked_by=revoked_by)
        return count
