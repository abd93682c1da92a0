from .entity import (
    Order,
    OrderLine,
    ShippingAddress,
    PaymentStatus,
    FulfillmentStatus,
    PaymentMethod,
    ProductKind,
)
from .repository import OrderRepository

__all__ = [
    "Order",
    "OrderLine",
    "ShippingAddress",
    "PaymentStatus",
    "FulfillmentStatus",
    "PaymentMethod",
    "ProductKind",
    "OrderRepository",
]
