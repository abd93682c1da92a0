"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(32), unique=True, index=True, nullable=False, comment="对外订单号 ORD-XXXXXX")
    buyer_id = Column(String(64), nullable=False, index=True, comment="买家账号ID")

    payment_method = Column(String(32), nullable=False, comment="bkash/nagad/stripe/cash_on_delivery")
    payment_status = Column(String(20), nullable=False, default="pending", index=True, comment="支付状态")
    fulfillment_status = Column(String(20), nullable=False, default="pending", index=True, comment="履约状态")

    # 金额在创建时冻结
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="商品小计")
    discount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="优惠金额")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    currency = Column(String(3), nullable=False, default="BDT", comment="货币代码 ISO-4217")

    shipping_address = Column(JSON, nullable=True, comment="收货地址")
    payment_reference = Column(String(200), nullable=True, comment="完成支付的网关流水号")
    notes = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    lines = relationship(
        "OrderLineModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderLineModel.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_code='{self.order_code}', "
            f"payment_status='{self.payment_status}', fulfillment_status='{self.fulfillment_status}')>"
        )


class OrderLineModel(Base):
    """订单行：价格与标题为下单时快照"""
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    kind = Column(String(16), nullable=False, comment="physical/digital")
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    content_key = Column(String(500), nullable=True, comment="数字内容在存储中的 key")

    order = relationship("OrderModel", back_populates="lines")

    def __repr__(self):
        return f"<OrderLineModel(order_id={self.order_id}, product_id='{self.product_id}', qty={self.quantity})>"
