"""
Registry of payment gateway clients, keyed by payment method.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings
from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import UnsupportedPaymentMethodException
from domain.order.entity import PaymentMethod

from .base import BasePaymentClient
from .bkash_client import BkashClient
from .cod_client import CashOnDeliveryClient
from .nagad_client import NagadClient
from .stripe_client import StripeClient


GATEWAY_REGISTRY: dict[PaymentMethod, type[BasePaymentClient]] = {
    PaymentMethod.BKASH: BkashClient,
    PaymentMethod.NAGAD: NagadClient,
    PaymentMethod.STRIPE: StripeClient,
    PaymentMethod.CASH_ON_DELIVERY: CashOnDeliveryClient,
}


def get_payment_gateway(method: PaymentMethod | str, settings: Optional[PaymentSettings] = None) -> PaymentGateway:
    try:
        key = PaymentMethod(method)
    except ValueError:
        raise UnsupportedPaymentMethodException(str(method)) from None
    return GATEWAY_REGISTRY[key](settings)


def build_gateways(settings: Optional[PaymentSettings] = None) -> dict[PaymentMethod, PaymentGateway]:
    """One client per method; credentials are checked lazily on first use."""
    return {method: cls(settings) for method, cls in GATEWAY_REGISTRY.items()}


__all__ = [
    "GATEWAY_REGISTRY",
    "BkashClient",
    "NagadClient",
    "StripeClient",
    "CashOnDeliveryClient",
    "get_payment_gateway",
    "build_gateways",
]
