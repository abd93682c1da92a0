"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    `verify` authenticates the inbound payload (signature or server-side
    query) and reports a verdict; it never touches persistence.
    """

    provider: str

    async def initiate(self, order: Order) -> InitiateResult: ...

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict: ...

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict: ...

    async def aclose(self) -> None: ...
