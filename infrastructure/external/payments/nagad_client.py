"""
Nagad checkout adapter (gateway-webhook variant).

- initiate: signed `check-out/initialize` request; the buyer is redirected to
  the returned `callBackUrl`.
- verify (webhook): HMAC-SHA256 of the raw body with the merchant key, sent in
  the configured signature header; compared in constant time.
- verify (redirect): `?payment_ref_id=...` is confirmed server-side through
  `verify/payment/{ref}`.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from typing import Any, Mapping

from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order
from infrastructure.external.payments.base import BasePaymentClient, header_value, to_decimal
from infrastructure.external.payments.exceptions import PaymentProviderError

# ISO-4217 numeric code used by Nagad
CURRENCY_CODES = {"BDT": "050"}


class NagadClient(BasePaymentClient):
    provider = "nagad"

    @property
    def _cfg(self):
        return self.settings.nagad

    def sign(self, body: bytes) -> str:
        key = self._require(self._cfg.merchant_key, "PAYMENT__NAGAD__MERCHANT_KEY")
        return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()

    async def initiate(self, order: Order) -> InitiateResult:
        merchant_id = self._require(self._cfg.merchant_id, "PAYMENT__NAGAD__MERCHANT_ID")
        payload = {
            "merchantId": merchant_id,
            "orderId": order.order_code,
            "datetime": datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S"),
            "challenge": secrets.token_hex(16),
            "amount": f"{order.total:.2f}",
            "currencyCode": CURRENCY_CODES.get(order.currency.upper(), order.currency),
            "callbackURL": self.settings.callback_url(self.provider, "return"),
        }
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        data = await self._request_json(
            "POST",
            f"{self._cfg.base_url}/check-out/initialize/{merchant_id}/{order.order_code}",
            content=body,
            headers={"Content-Type": "application/json", self._cfg.signature_header: self.sign(body)},
        )
        if data.get("reasonCode") != "0000" or not data.get("paymentReferenceId"):
            raise PaymentProviderError(
                data.get("reason") or "Nagad checkout initialize failed",
                provider=self.provider,
                provider_code=data.get("reasonCode"),
            )
        self._log(
            "payment_create_response",
            order_code=order.order_code,
            correlation_id=data["paymentReferenceId"],
        )
        return InitiateResult(
            order_code=order.order_code,
            provider=self.provider,
            payment_status=order.payment_status.value,
            correlation_id=data["paymentReferenceId"],
            redirect_url=data.get("callBackUrl"),
        )

    def _verdict(self, data: Mapping[str, Any], *, source: str) -> GatewayVerdict:
        ref = data.get("paymentRefId") or data.get("payment_ref_id") or data.get("paymentReferenceId")
        if not ref:
            raise self._reject("Missing payment reference in Nagad payload")
        return GatewayVerdict(
            provider=self.provider,
            correlation_id=str(ref),
            status=self._map_status(data.get("status")),
            order_code=data.get("orderId") or data.get("order_id"),
            amount=to_decimal(data.get("amount")),
            currency="BDT" if data.get("currencyCode", "050") == "050" else None,
            raw={
                "source": source,
                "status": data.get("status"),
                "issuerPaymentRefNo": data.get("issuerPaymentRefNo"),
            },
        )

    async def _query(self, payment_ref_id: str) -> dict[str, Any]:
        return await self._request_json("GET", f"{self._cfg.base_url}/verify/payment/{payment_ref_id}")

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict:
        signature = header_value(headers, self._cfg.signature_header)
        if body:
            if not signature:
                raise self._reject("Missing Nagad signature header")
            if not hmac.compare_digest(self.sign(body), signature.strip().lower()):
                raise self._reject("Invalid Nagad signature")
            try:
                payload = json.loads(body)
            except ValueError as exc:
                raise self._reject("Malformed Nagad webhook body") from exc
            if not isinstance(payload, dict):
                raise self._reject("Malformed Nagad webhook body")
            return self._verdict(payload, source="webhook")

        ref = params.get("payment_ref_id") or params.get("paymentRefId")
        if not ref:
            raise self._reject("Missing payment_ref_id")
        data = await self._query(str(ref))
        return self._verdict({"paymentRefId": ref, **data}, source="query")

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        data = await self._query(correlation_id)
        return self._verdict({"paymentRefId": correlation_id, **data}, source="reconcile")
