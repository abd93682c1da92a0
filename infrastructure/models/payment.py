"""
支付流水数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, JSON,
    Index, ForeignKey, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class PaymentTransactionModel(Base):
    """
    支付流水

    (provider, correlation_id) 唯一：同一网关流水只会被记录一次，
    重复的 Webhook/回调据此命中同一行。
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    provider = Column(String(32), nullable=False, comment="支付方式")
    correlation_id = Column(String(200), nullable=False, comment="网关侧支付ID")
    status = Column(String(20), nullable=False, default="initiated", index=True, comment="initiated/verified/failed")
    amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="网关上报金额")
    currency = Column(String(3), nullable=True)
    outcome = Column(String(20), nullable=True, comment="终态时订单支付状态缓存")
    raw_payload = Column(JSON, nullable=True, comment="回调原文快照（审计）")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    settled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "correlation_id", name="uq_payment_transactions_provider_correlation"),
        Index("ix_payment_transactions_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, provider='{self.provider}', "
            f"correlation_id='{self.correlation_id}', status='{self.status}')>"
        )
