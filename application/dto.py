"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, Field, field_validator, model_serializer, ConfigDict
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal

from domain.order.entity import (
    Order,
    FulfillmentStatus,
    PaymentStatus,
    ShippingAddress,
)
from domain.entitlement.entity import AccessGrant


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class OrderItemDTO(DTOBase):
    """下单商品行"""
    product_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(1, ge=1, le=1000, description="购买数量")


class ShippingAddressDTO(DTOBase):
    """收货地址"""
    recipient: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=6, max_length=20)
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: str = Field("BD", min_length=2, max_length=2)

    def to_domain(self) -> ShippingAddress:
        return ShippingAddress(**self.model_dump())


class OrderCreateDTO(DTOBase):
    """下单DTO"""
    items: list[OrderItemDTO] = Field(..., min_length=1, description="商品行，重复商品会合并")
    payment_method: str = Field(..., description="bkash / nagad / stripe / cash_on_delivery")
    shipping_address: Optional[ShippingAddressDTO] = None
    discount: Decimal = Field(Decimal("0"), ge=0, description="外部优惠计算结果")
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("payment_method")
    @classmethod
    def _normalize_method(cls, v: str) -> str:
        return (v or "").strip().lower()


class OrderLineDTO(DTOBase):
    product_id: str
    title: str
    kind: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponseDTO(DTOBase):
    """订单响应DTO"""
    id: int
    order_code: str
    buyer_id: str
    lines: list[OrderLineDTO]
    payment_method: str
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    payment_status: str
    fulfillment_status: str
    shipping_address: Optional[dict] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponseDTO":
        return cls(
            id=order.id,
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            lines=[
                OrderLineDTO(
                    product_id=line.product_id,
                    title=line.title,
                    kind=line.kind.value,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
                for line in order.lines
            ],
            payment_method=order.payment_method.value,
            subtotal=order.subtotal,
            discount=order.discount,
            total=order.total,
            currency=order.currency,
            payment_status=order.payment_status.value,
            fulfillment_status=order.fulfillment_status.value,
            shipping_address=order.shipping_address.to_dict() if order.shipping_address else None,
            payment_reference=order.payment_reference,
            notes=order.notes,
            paid_at=order.paid_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class FulfillmentStatusUpdateDTO(DTOBase):
    """管理员推进履约状态"""
    status: FulfillmentStatus


class PaymentStatusUpdateDTO(DTOBase):
    """管理员人工调整支付状态（如线下对账）"""
    status: PaymentStatus
    reference: Optional[str] = Field(None, max_length=128)


class GrantResponseDTO(DTOBase):
    """授权响应DTO；令牌只返回给授权所属买家"""
    id: int
    token: Optional[str] = None
    buyer_id: str
    product_id: str
    order_id: int
    issue_seq: int
    issued_at: datetime
    expires_at: datetime
    bound: bool
    bound_at: Optional[datetime] = None
    revoked: bool
    revoked_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None
    access_count: int = 0

    @classmethod
    def from_entity(cls, grant: AccessGrant, *, include_token: bool = True) -> "GrantResponseDTO":
        return cls(
            id=grant.id,
            token=grant.token if include_token else None,
            buyer_id=grant.buyer_id,
            product_id=grant.product_id,
            order_id=grant.order_id,
            issue_seq=grant.issue_seq,
            issued_at=grant.issued_at,
            expires_at=grant.expires_at,
            bound=grant.is_bound,
            bound_at=grant.bound_at,
            revoked=grant.revoked,
            revoked_at=grant.revoked_at,
            last_access_at=grant.last_access_at,
            access_count=grant.access_count,
        )


class PrincipalDTO(DTOBase):
    """当前请求的调用者（来自外部认证服务签发的 JWT）"""
    account_id: str
    is_admin: bool = False

    model_config = ConfigDict(frozen=True)
