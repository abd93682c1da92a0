"""
Stripe Checkout Session adapter using the official stripe-python SDK.

Notes on SDK usage:
- Hosted checkout: `stripe.checkout.Session.create` returns a URL the buyer is
  redirected to; the session id is our correlation id.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
- The success redirect carries `?session_id=...`, which is confirmed by
  retrieving the session server-side.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Mapping, Optional

import stripe

from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order
from infrastructure.external.payments.base import BasePaymentClient, header_value
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)


ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def _configure(self) -> None:
        # Module-level key for compatibility across SDK variants
        stripe.api_key = self._require(self.settings.stripe.secret_key, "PAYMENT__STRIPE__SECRET_KEY")

    @staticmethod
    def _exponent(currency: str) -> int:
        return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2

    @classmethod
    def _to_minor(cls, amount: Decimal, currency: str) -> int:
        # Stripe expects amounts in the smallest currency unit
        return int((amount * (Decimal(10) ** cls._exponent(currency))).to_integral_value())

    @classmethod
    def _from_minor(cls, amount: Optional[int], currency: str) -> Optional[Decimal]:
        if amount is None:
            return None
        return Decimal(int(amount)) / (Decimal(10) ** cls._exponent(currency))

    async def _sdk(self, fn, *args, **kwargs):
        """Run a blocking SDK call off the event loop and map SDK errors."""
        self._configure()
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                str(exc), provider=self.provider, provider_code=getattr(exc, "code", None)
            ) from exc

    async def initiate(self, order: Order) -> InitiateResult:
        currency = order.currency.lower()
        success_url = self.settings.callback_url(self.provider, "success") + "?session_id={CHECKOUT_SESSION_ID}"
        cancel_url = self.settings.callback_url(self.provider, "cancel") + "?session_id={CHECKOUT_SESSION_ID}"
        session = await self._sdk(
            stripe.checkout.Session.create,
            mode="payment",
            client_reference_id=order.order_code,
            metadata={"order_code": order.order_code},
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": self._to_minor(order.total, order.currency),
                        "product_data": {"name": f"Order {order.order_code}"},
                    },
                    "quantity": 1,
                }
            ],
            success_url=success_url,
            cancel_url=cancel_url,
        )
        self._log("payment_create_response", order_code=order.order_code, correlation_id=session["id"])
        return InitiateResult(
            order_code=order.order_code,
            provider=self.provider,
            payment_status=order.payment_status.value,
            correlation_id=str(session["id"]),
            redirect_url=session.get("url"),
        )

    def _session_status(self, session: Mapping[str, Any]) -> str:
        if session.get("status") == "expired":
            return "failed"
        return self._map_status(session.get("payment_status"))

    def _verdict(self, session: Mapping[str, Any], status: str, raw: dict[str, Any]) -> GatewayVerdict:
        currency = (session.get("currency") or "").upper()
        metadata = session.get("metadata") or {}
        return GatewayVerdict(
            provider=self.provider,
            correlation_id=str(session["id"]),
            status=status,
            order_code=session.get("client_reference_id") or metadata.get("order_code"),
            amount=self._from_minor(session.get("amount_total"), currency or "USD"),
            currency=currency or None,
            raw=raw,
        )

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict:
        sig = header_value(headers, "Stripe-Signature")
        if sig:
            secret = self.settings.stripe.webhook_secret
            if not secret:
                raise self._reject("Missing PAYMENT__STRIPE__WEBHOOK_SECRET")
            try:
                event = stripe.Webhook.construct_event(
                    payload=body,
                    sig_header=sig,
                    secret=secret,
                    tolerance=self.settings.webhook.tolerance_seconds,
                )
            except (stripe.SignatureVerificationError, ValueError) as exc:
                raise self._reject("Invalid Stripe signature") from exc

            event_type = str(event["type"])
            session = event["data"]["object"]
            raw = {"event_id": event.get("id"), "type": event_type}
            if not event_type.startswith("checkout.session."):
                return GatewayVerdict(
                    provider=self.provider,
                    correlation_id=str(session.get("id") or event.get("id")),
                    status="pending",
                    raw=raw,
                )
            status = self._map_status(event_type)
            if event_type == "checkout.session.completed":
                # 异步支付方式在 completed 时可能仍为 unpaid
                status = self._session_status(session)
            return self._verdict(session, status, raw)

        session_id = params.get("session_id")
        if not session_id:
            raise self._reject("Missing Stripe-Signature header or session_id")
        session = await self._sdk(stripe.checkout.Session.retrieve, str(session_id))
        return self._verdict(session, self._session_status(session), {"source": "redirect"})

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        session = await self._sdk(stripe.checkout.Session.retrieve, correlation_id)
        return self._verdict(session, self._session_status(session), {"source": "reconcile"})
