"""
bKash tokenized checkout adapter (gateway-redirect variant).

Flow:
- initiate: grant token -> `payment/create` -> redirect the buyer to `bkashURL`.
- verify: bKash redirects back with `?paymentID=...&status=success|failure|cancel`.
  The query string is unsigned, so it is never trusted on its own: a success
  redirect is confirmed by `payment/execute`, anything else by `payment/status`.
- reconcile: `payment/status` for a stale paymentID.
"""
from __future__ import annotations

from typing import Any, Mapping

from application.dtos.payments import GatewayVerdict, InitiateResult
from domain.order.entity import Order
from infrastructure.external.payments.base import BasePaymentClient, to_decimal
from infrastructure.external.payments.exceptions import PaymentProviderError


class BkashClient(BasePaymentClient):
    provider = "bkash"

    @property
    def _cfg(self):
        return self.settings.bkash

    async def _grant_token(self) -> str:
        cfg = self._cfg
        data = await self._request_json(
            "POST",
            f"{cfg.base_url}/tokenized/checkout/token/grant",
            json={
                "app_key": self._require(cfg.app_key, "PAYMENT__BKASH__APP_KEY"),
                "app_secret": self._require(cfg.app_secret, "PAYMENT__BKASH__APP_SECRET"),
            },
            headers={
                "username": self._require(cfg.username, "PAYMENT__BKASH__USERNAME"),
                "password": self._require(cfg.password, "PAYMENT__BKASH__PASSWORD"),
            },
        )
        token = data.get("id_token")
        if not token:
            raise PaymentProviderError(
                data.get("statusMessage") or "bKash token grant failed",
                provider=self.provider,
                provider_code=data.get("statusCode"),
            )
        return token

    async def _call(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        token = await self._grant_token()
        return await self._request_json(
            "POST",
            f"{self._cfg.base_url}/tokenized/checkout/{path}",
            json=payload,
            headers={"Authorization": token, "X-APP-Key": self._cfg.app_key or ""},
        )

    async def initiate(self, order: Order) -> InitiateResult:
        data = await self._call(
            "create",
            {
                "mode": "0011",
                "payerReference": order.buyer_id,
                "callbackURL": self.settings.callback_url(self.provider, "return"),
                "amount": f"{order.total:.2f}",
                "currency": order.currency,
                "intent": "sale",
                "merchantInvoiceNumber": order.order_code,
            },
        )
        if data.get("statusCode") != "0000" or not data.get("paymentID"):
            raise PaymentProviderError(
                data.get("statusMessage") or "bKash payment create failed",
                provider=self.provider,
                provider_code=data.get("statusCode"),
            )
        self._log("payment_create_response", order_code=order.order_code, correlation_id=data["paymentID"])
        return InitiateResult(
            order_code=order.order_code,
            provider=self.provider,
            payment_status=order.payment_status.value,
            correlation_id=data["paymentID"],
            redirect_url=data.get("bkashURL"),
        )

    async def _execute(self, payment_id: str) -> dict[str, Any]:
        data = await self._call("execute", {"paymentID": payment_id})
        if not data.get("transactionStatus"):
            # 已执行过等情况：以查询结果为准
            return await self._query(payment_id)
        return data

    async def _query(self, payment_id: str) -> dict[str, Any]:
        return await self._call("payment/status", {"paymentID": payment_id})

    def _verdict(self, payment_id: str, data: dict[str, Any]) -> GatewayVerdict:
        returned_id = data.get("paymentID")
        if returned_id and returned_id != payment_id:
            raise self._reject("paymentID mismatch in bKash response", correlation_id=payment_id)
        return GatewayVerdict(
            provider=self.provider,
            correlation_id=payment_id,
            status=self._map_status(data.get("transactionStatus")),
            order_code=data.get("merchantInvoiceNumber"),
            amount=to_decimal(data.get("amount")),
            currency=data.get("currency"),
            raw={
                "trxID": data.get("trxID"),
                "transactionStatus": data.get("transactionStatus"),
                "statusCode": data.get("statusCode"),
            },
        )

    async def verify(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        params: Mapping[str, Any],
    ) -> GatewayVerdict:
        payment_id = params.get("paymentID") or params.get("payment_id")
        if not payment_id:
            raise self._reject("Missing paymentID")
        redirect_status = (params.get("status") or "").lower()
        if redirect_status == "success":
            data = await self._execute(payment_id)
        else:
            data = await self._query(payment_id)
        return self._verdict(payment_id, data)

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        return self._verdict(correlation_id, await self._query(correlation_id))
