"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderLineModel
from .payment import PaymentTransactionModel
from .entitlement import AccessGrantModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderLineModel",
    "PaymentTransactionModel",
    "AccessGrantModel",
]
