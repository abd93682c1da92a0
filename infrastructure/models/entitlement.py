"""
电子书访问授权数据库模型
"""
from sqlalchemy import (
    Boolean, Column, Integer, String, DateTime,
    Index, ForeignKey, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class AccessGrantModel(Base):
    __tablename__ = "access_grants"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, index=True, nullable=False, comment="不可猜测的访问令牌")
    buyer_id = Column(String(64), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    issue_seq = Column(Integer, nullable=False, default=0, comment="0 为首次签发，重签递增")
    content_key = Column(String(500), nullable=True)

    # 绑定信息：首次访问前为空
    bound_fingerprint = Column(String(64), nullable=True)
    bound_origin = Column(String(64), nullable=True)
    bound_at = Column(DateTime(timezone=True), nullable=True)

    issued_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(64), nullable=True)

    last_access_at = Column(DateTime(timezone=True), nullable=True)
    access_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "issue_seq", name="uq_access_grants_order_product_seq"),
        Index("ix_access_grants_buyer_revoked", "buyer_id", "revoked"),
    )

    def __repr__(self):
        return (
            f"<AccessGrantModel(id={self.id}, buyer_id='{self.buyer_id}', product_id='{self.product_id}', "
            f"bound={self.bound_fingerprint is not None}, revoked={self.revoked})>"
        )
