"""
订单领域实体 - 订单聚合根

订单维护两条相互独立的状态轴：支付状态与履约状态。
"""
from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import (
    DomainValidationException,
    InvalidShippingAddressException,
    InvalidStateTransitionException,
)


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class FulfillmentStatus(str, Enum):
    """履约状态枚举"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    BKASH = "bkash"
    NAGAD = "nagad"
    STRIPE = "stripe"
    CASH_ON_DELIVERY = "cash_on_delivery"


class ProductKind(str, Enum):
    PHYSICAL = "physical"
    DIGITAL = "digital"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# 正向履约顺序；允许向前跳跃，不允许回退
FULFILLMENT_FLOW: tuple[FulfillmentStatus, ...] = (
    FulfillmentStatus.PENDING,
    FulfillmentStatus.CONFIRMED,
    FulfillmentStatus.PROCESSING,
    FulfillmentStatus.SHIPPED,
    FulfillmentStatus.DELIVERED,
)
TERMINAL_FULFILLMENT = frozenset({FulfillmentStatus.DELIVERED, FulfillmentStatus.CANCELLED})

ORDER_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_code(prefix: str = "ORD-", length: int = 6) -> str:
    """生成对外展示的订单号，如 ORD-7KQ2ZD"""
    return prefix + "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(length))


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class ShippingAddress:
    """收货地址（值对象）"""
    recipient: str
    phone: str
    line1: str
    city: str
    line2: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "BD"

    def validate(self) -> None:
        for name in ("recipient", "phone", "line1", "city"):
            if not (getattr(self, name) or "").strip():
                raise InvalidShippingAddressException(f"Shipping address field '{name}' is required")

    def to_dict(self) -> dict:
        return {
            "recipient": self.recipient,
            "phone": self.phone,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ShippingAddress"]:
        if not data:
            return None
        return cls(
            recipient=data.get("recipient", ""),
            phone=data.get("phone", ""),
            line1=data.get("line1", ""),
            line2=data.get("line2"),
            city=data.get("city", ""),
            postal_code=data.get("postal_code"),
            country=data.get("country") or "BD",
        )


@dataclass
class OrderLine:
    """订单行：单价在下单时快照，之后不再读取商品目录"""
    product_id: str
    title: str
    kind: ProductKind
    quantity: int
    unit_price: Decimal
    id: Optional[int] = None
    content_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise DomainValidationException("Quantity must be positive", field="quantity")
        if self.unit_price < 0:
            raise DomainValidationException("Unit price cannot be negative", field="unit_price")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def is_digital(self) -> bool:
        return self.kind == ProductKind.DIGITAL


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 订单号、买家、订单行、金额在创建后不可变
    2. 支付状态只能沿 PAYMENT_TRANSITIONS 迁移
    3. 履约状态只能向前推进，取消可从任意非终态进入
    4. 未支付的订单不能标记为已送达（货到付款除外）
    """

    id: Optional[int]
    order_code: str
    buyer_id: str
    lines: list[OrderLine]
    payment_method: PaymentMethod
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.PENDING
    shipping_address: Optional[ShippingAddress] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)

    @classmethod
    def place(
        cls,
        *,
        order_code: str,
        buyer_id: str,
        lines: list[OrderLine],
        payment_method: PaymentMethod,
        currency: str,
        discount: Decimal = Decimal("0"),
        shipping_address: Optional[ShippingAddress] = None,
        notes: Optional[str] = None,
    ) -> "Order":
        """工厂方法：校验订单行与地址，冻结金额"""
        if not lines:
            raise DomainValidationException("Order must contain at least one item", field="items")
        if discount < 0:
            raise DomainValidationException("Discount cannot be negative", field="discount")
        if any(not line.is_digital for line in lines):
            if shipping_address is None:
                raise InvalidShippingAddressException()
            shipping_address.validate()

        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        total = max(subtotal - discount, Decimal("0"))
        now = datetime.now(timezone.utc)
        return cls(
            id=None,
            order_code=order_code,
            buyer_id=buyer_id,
            lines=list(lines),
            payment_method=payment_method,
            subtotal=subtotal,
            discount=discount,
            total=total,
            currency=currency,
            shipping_address=shipping_address,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

    @property
    def digital_lines(self) -> list[OrderLine]:
        return [line for line in self.lines if line.is_digital]

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.payment_method == PaymentMethod.CASH_ON_DELIVERY

    @property
    def entitlement_ready(self) -> bool:
        """支付轴是否已达到发放电子书授权的条件"""
        if self.payment_status == PaymentStatus.PAID:
            return True
        return self.is_cash_on_delivery and self.payment_status == PaymentStatus.PROCESSING

    def ensure_payment_transition(self, target: PaymentStatus) -> None:
        if target not in PAYMENT_TRANSITIONS[self.payment_status]:
            raise InvalidStateTransitionException("payment", self.payment_status.value, target.value)

    def ensure_fulfillment_transition(self, target: FulfillmentStatus) -> None:
        current = self.fulfillment_status
        if current in TERMINAL_FULFILLMENT or target == current:
            raise InvalidStateTransitionException("fulfillment", current.value, target.value)
        if target == FulfillmentStatus.CANCELLED:
            return
        if FULFILLMENT_FLOW.index(target) < FULFILLMENT_FLOW.index(current):
            raise InvalidStateTransitionException("fulfillment", current.value, target.value)
        if (
            target == FulfillmentStatus.DELIVERED
            and self.payment_status != PaymentStatus.PAID
            and not self.is_cash_on_delivery
        ):
            raise InvalidStateTransitionException("fulfillment", current.value, target.value)
