"""
Cash-on-delivery (offline variant): no external call, no callbacks.
"""
from __future__ import annotations

from typing import Any, Mapping

from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order, PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient


class CashOnDeliveryClient(BasePaymentClient):
    provider = "cash_on_delivery"

    async def initiate(self, order: Order) -> InitiateResult:
        self._log("payment_offline_initiated", order_code=order.order_code)
        return InitiateResult(
            order_code=order.order_code,
            provider=self.provider,
            payment_status=PaymentStatus.PROCESSING.value,
            correlation_id=f"cod:{order.order_code}",
            immediate=True,
        )

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict:
        # 线下支付没有任何网关回调，收到即视为伪造
        raise self._reject("Cash on delivery does not accept gateway callbacks")

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        return GatewayVerdict(provider=self.provider, correlation_id=correlation_id, status="pending")
