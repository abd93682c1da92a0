"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.

Every inbound confirmation (webhook, redirect callback, reconciliation)
converges on `_apply_verdict`, which is idempotent per
(provider, correlation_id): the transaction row is claimed with a
compare-and-set and only the claimant touches the order.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from application.dto import OrderResponseDTO, PrincipalDTO
from application.dtos.payments import (
    GatewayVerdict,
    InitiateResult,
    ReconcileSummary,
    VerificationOutcome,
)
from application.ports.notification import NotificationPort
from application.ports.payment_gateway import PaymentGateway
from application.services.fulfillment import (
    build_ledger,
    dispatch_events,
    transition_and_entitle,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    DoubleCreditRefusedException,
    OrderNotFoundException,
    PaymentAlreadySettledException,
    TamperedPayloadException,
    UnsupportedPaymentMethodException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, PaymentMethod, PaymentStatus
from domain.order.events import PaymentRefunded
from domain.payment.entity import PaymentTransaction, TransactionStatus


logger = get_logger(__name__)

_CENT = Decimal("0.01")


def _same_amount(reported: Optional[Decimal], expected: Decimal) -> bool:
    if reported is None:
        return False
    return Decimal(reported).quantize(_CENT) == Decimal(expected).quantize(_CENT)


def _payment_path(current: PaymentStatus, verdict: str) -> list[PaymentStatus]:
    """从当前状态到网关结论所需的迁移序列（经由 processing）"""
    if verdict == "paid":
        if current in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return [PaymentStatus.PROCESSING, PaymentStatus.PAID]
        if current == PaymentStatus.PROCESSING:
            return [PaymentStatus.PAID]
        return []
    if current == PaymentStatus.PENDING:
        return [PaymentStatus.PROCESSING, PaymentStatus.FAILED]
    if current == PaymentStatus.PROCESSING:
        return [PaymentStatus.FAILED]
    # failed 保持 failed；已支付订单不因某次失败尝试而降级
    return []


class PaymentApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateways: Mapping[PaymentMethod, PaymentGateway],
        *,
        notifier: Optional[NotificationPort] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateways = dict(gateways)
        self._notifier = notifier

    def gateway_for(self, method: PaymentMethod | str) -> PaymentGateway:
        try:
            key = PaymentMethod(method)
        except ValueError:
            raise UnsupportedPaymentMethodException(str(method)) from None
        gateway = self._gateways.get(key)
        if gateway is None:
            raise UnsupportedPaymentMethodException(key.value)
        return gateway

    # ------------------------------------------------------------------
    # initiate
    # ------------------------------------------------------------------

    async def initiate(self, order_code: str, requester: PrincipalDTO) -> InitiateResult:
        async with self._uow_factory(readonly=True) as uow:
            order = await build_ledger(uow).get_by_code(order_code)
        if not requester.is_admin and order.buyer_id != requester.account_id:
            raise OrderNotFoundException(order_code=order_code)
        if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            raise PaymentAlreadySettledException(order.order_code, order.payment_status.value)

        gateway = self.gateway_for(order.payment_method)
        if order.is_cash_on_delivery:
            return await self._accept_offline(order, gateway)

        logger.info(
            "payment_initiate_request",
            order_code=order.order_code,
            provider=gateway.provider,
            amount=str(order.total),
        )
        # 网关调用不持有数据库事务；失败时订单保持原状，可安全重试
        result = await gateway.initiate(order)

        async with self._uow_factory() as uow:
            recorded = await uow.payment_transaction_repository.add(
                PaymentTransaction(
                    id=None,
                    order_id=order.id,
                    provider=gateway.provider,
                    correlation_id=result.correlation_id,
                    amount=order.total,
                    currency=order.currency,
                    raw_payload={"redirect_url": result.redirect_url},
                )
            )
        logger.info(
            "payment_initiated",
            order_code=order.order_code,
            provider=gateway.provider,
            correlation_id=result.correlation_id,
            recorded=recorded is not None,
        )
        return result

    async def _accept_offline(self, order: Order, gateway: PaymentGateway) -> InitiateResult:
        """货到付款：无外部调用，支付进入 processing 并签发授权"""
        result = await gateway.initiate(order)
        async with self._uow_factory() as uow:
            current = await build_ledger(uow).get(order.id)
            path = [PaymentStatus.PROCESSING] if current.payment_status in (
                PaymentStatus.PENDING, PaymentStatus.FAILED
            ) else []
            outcome = await transition_and_entitle(
                uow, order.id, path, {"correlation_id": result.correlation_id}
            )
        logger.info(
            "payment_offline_accepted",
            order_code=order.order_code,
            payment_status=outcome.order.payment_status.value,
            grants_issued=len(outcome.grants),
        )
        dispatch_events(self._notifier, outcome.events)
        return result.model_copy(update={"payment_status": outcome.order.payment_status.value})

    # ------------------------------------------------------------------
    # verify / reconcile
    # ------------------------------------------------------------------

    async def verify(
        self,
        method: PaymentMethod | str,
        headers: Mapping[str, Any],
        body: bytes = b"",
        params: Optional[Mapping[str, Any]] = None,
    ) -> VerificationOutcome:
        gateway = self.gateway_for(method)
        # 签名校验与网关查询均在打开写事务之前完成
        verdict = await gateway.verify(headers, body, params or {})
        logger.info(
            "payment_verdict_received",
            provider=verdict.provider,
            correlation_id=verdict.correlation_id,
            order_code=verdict.order_code,
            status=verdict.status,
        )
        return await self._apply_verdict(verdict)

    async def _resolve_order(self, verdict: GatewayVerdict) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            txn = await uow.payment_transaction_repository.get(verdict.provider, verdict.correlation_id)
            order: Optional[Order] = None
            if txn is not None:
                order = await uow.order_repository.get_by_id(txn.order_id)
            elif verdict.order_code:
                order = await uow.order_repository.get_by_code(verdict.order_code)
        if order is None:
            raise TamperedPayloadException(
                "Unknown payment reference",
                provider=verdict.provider,
                details={"correlation_id": verdict.correlation_id},
            )
        if verdict.order_code and verdict.order_code != order.order_code:
            raise TamperedPayloadException(
                "Payment reference does not belong to this order",
                provider=verdict.provider,
                details={"correlation_id": verdict.correlation_id},
            )
        if verdict.status == "paid":
            if not _same_amount(verdict.amount, order.total):
                logger.warning(
                    "payment_amount_mismatch",
                    provider=verdict.provider,
                    order_code=order.order_code,
                    expected=str(order.total),
                    reported=str(verdict.amount),
                )
                raise TamperedPayloadException(
                    "Reported amount does not match the order total",
                    provider=verdict.provider,
                    details={"order_code": order.order_code},
                )
            if verdict.currency and verdict.currency != order.currency.upper():
                raise TamperedPayloadException(
                    "Reported currency does not match the order",
                    provider=verdict.provider,
                    details={"order_code": order.order_code},
                )
        return order

    async def _apply_verdict(self, verdict: GatewayVerdict) -> VerificationOutcome:
        if verdict.status == "pending":
            # 网关尚未结算，不写入任何状态
            return VerificationOutcome(
                order_code=verdict.order_code,
                status="pending",
                correlation_id=verdict.correlation_id,
            )

        order = await self._resolve_order(verdict)
        refused = False
        events: list = []

        async with self._uow_factory() as uow:
            txns = uow.payment_transaction_repository
            txn = await txns.get(verdict.provider, verdict.correlation_id)
            if txn is None:
                txn = await txns.add(
                    PaymentTransaction(
                        id=None,
                        order_id=order.id,
                        provider=verdict.provider,
                        correlation_id=verdict.correlation_id,
                        amount=verdict.amount,
                        currency=verdict.currency,
                    )
                )
                if txn is None:
                    txn = await txns.get(verdict.provider, verdict.correlation_id)

            if txn.is_terminal:
                logger.info(
                    "payment_verify_duplicate",
                    provider=verdict.provider,
                    correlation_id=verdict.correlation_id,
                    outcome=txn.outcome,
                )
                return VerificationOutcome(
                    order_code=order.order_code,
                    status=txn.outcome or txn.status.value,
                    duplicate=True,
                    correlation_id=verdict.correlation_id,
                )

            current = await build_ledger(uow).get(order.id)
            already_settled = current.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED)
            if verdict.status == "paid" and already_settled and current.payment_reference != verdict.correlation_id:
                refused = True
                target_txn_status, outcome = TransactionStatus.FAILED, "refused"
            elif verdict.status == "paid":
                target_txn_status, outcome = TransactionStatus.VERIFIED, PaymentStatus.PAID.value
            else:
                target_txn_status, outcome = TransactionStatus.FAILED, PaymentStatus.FAILED.value

            claimed = await txns.settle(
                txn.id,
                target_txn_status,
                outcome=outcome,
                amount=verdict.amount,
                raw_payload=verdict.raw,
            )
            if not claimed:
                # 并发重复回调：另一请求已完成结算
                latest = await txns.get(verdict.provider, verdict.correlation_id)
                return VerificationOutcome(
                    order_code=order.order_code,
                    status=(latest.outcome if latest else None) or outcome,
                    duplicate=True,
                    correlation_id=verdict.correlation_id,
                )

            if refused:
                final_status = current.payment_status.value
            else:
                result = await transition_and_entitle(
                    uow,
                    order.id,
                    _payment_path(current.payment_status, verdict.status),
                    {"correlation_id": verdict.correlation_id},
                )
                events = result.events
                final_status = result.order.payment_status.value
                logger.info(
                    "payment_verified",
                    provider=verdict.provider,
                    correlation_id=verdict.correlation_id,
                    order_code=order.order_code,
                    payment_status=final_status,
                    grants_issued=len(result.grants),
                )

        if refused:
            logger.error(
                "double_credit_refused",
                provider=verdict.provider,
                correlation_id=verdict.correlation_id,
                order_code=order.order_code,
                winning_reference=current.payment_reference,
            )
            raise DoubleCreditRefusedException(order.order_code, verdict.correlation_id)

        dispatch_events(self._notifier, events)
        return VerificationOutcome(
            order_code=order.order_code,
            status=final_status,
            duplicate=False,
            correlation_id=verdict.correlation_id,
        )

    async def reconcile_stale(
        self,
        *,
        stale_after: timedelta,
        batch_size: int = 50,
        now: Optional[datetime] = None,
    ) -> ReconcileSummary:
        """向网关查询长时间停留在 initiated 的流水，并走同一幂等路径"""
        cutoff = (now or datetime.now(timezone.utc)) - stale_after
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_transaction_repository.list_stale_initiated(cutoff, limit=batch_size)
            orders = {t.order_id: await uow.order_repository.get_by_id(t.order_id) for t in stale}

        summary = ReconcileSummary(examined=len(stale))
        for txn in stale:
            order = orders.get(txn.order_id)
            if order is None:
                summary.errors += 1
                continue
            try:
                gateway = self.gateway_for(txn.provider)
                verdict = await gateway.reconcile(txn.correlation_id, order)
                if verdict.status == "pending":
                    summary.still_pending += 1
                    continue
                await self._apply_verdict(verdict)
                summary.settled += 1
            except BusinessException as exc:
                summary.errors += 1
                logger.warning(
                    "payment_reconcile_failed",
                    provider=txn.provider,
                    correlation_id=txn.correlation_id,
                    error_type=exc.error_type,
                    error=exc.message,
                )
        logger.info("payment_reconcile_finished", **summary.model_dump())
        return summary

    # ------------------------------------------------------------------
    # refund
    # ------------------------------------------------------------------

    async def refund(self, order_id: int, operator: PrincipalDTO) -> OrderResponseDTO:
        """记录退款（资金退回由网关后台完成）并逻辑撤销该订单的全部授权"""
        now = datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            ledger = build_ledger(uow)
            order = await ledger.transition_payment(
                order_id, PaymentStatus.REFUNDED, {"operator": operator.account_id}
            )
            revoked = await uow.grant_repository.revoke_for_order(order.id, operator.account_id, now)
        event = PaymentRefunded(
            order_id=order.id,
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            revoked_grants=revoked,
        )
        logger.info(
            "payment_refunded",
            order_code=order.order_code,
            operator=operator.account_id,
            revoked_grants=revoked,
        )
        dispatch_events(self._notifier, [event])
        return OrderResponseDTO.from_entity(order)

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        for gateway in self._gateways.values():
            close = getattr(gateway, "aclose", None)
            if callable(close):
                await close()
