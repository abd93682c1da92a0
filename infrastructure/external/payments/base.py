"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

T = TypeVar("T")


def header_value(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup over plain dicts and Starlette Headers."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class BasePaymentClient:
    provider: str = "base"

    def __init__(self, settings: Optional[PaymentSettings] = None) -> None:
        self.settings = settings or payment_settings
        self._timeouts_cfg = self.settings.timeouts.model_dump()
        self._retry_cfg = {"max": self.settings.retry.max, "base": self.settings.retry.base_backoff}
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """HTTP call with bounded retry; transport failures become PaymentRecoverableError."""

        async def _call() -> httpx.Response:
            async with self.client() as http:
                return await http.request(method, url, **kwargs)

        try:
            resp = await self._retry(_call)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            self._log("payment_gateway_unreachable", url=url, error=str(exc))
            raise PaymentRecoverableError(f"{self.provider} unreachable: {exc}", provider=self.provider) from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise PaymentRecoverableError(
                f"{self.provider} responded {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"{self.provider} returned a non-JSON body",
                provider=self.provider,
                provider_code=str(resp.status_code),
            ) from exc
        if resp.status_code >= 400:
            raise PaymentProviderError(
                f"{self.provider} rejected the request",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"response": data},
            )
        return data

    # Default implementations raise to force override where needed
    async def initiate(self, order: Order) -> InitiateResult:
        raise NotImplementedError

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict:
        raise NotImplementedError

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> str:
        """Provider status -> paid/failed/pending; unknown statuses stay pending."""
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status or "", "pending")

    def _require(self, value: Optional[str], name: str) -> str:
        if not value:
            raise PaymentProviderError(f"{name} not configured", provider=self.provider)
        return value

    def _reject(self, message: str, **details: Any) -> PaymentSignatureError:
        self._log("payment_payload_rejected", reason=message, **details)
        return PaymentSignatureError(message, provider=self.provider, details=details or None)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
