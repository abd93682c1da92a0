import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.services.entitlement_service import EntitlementApplicationService
from application.services.payment_service import PaymentApplicationService
from domain.common.exceptions import (
    DoubleCreditRefusedException,
    InvalidStateTransitionException,
    OrderNotFoundException,
    PaymentAlreadySettledException,
    TamperedPayloadException,
    UnsupportedPaymentMethodException,
)
from domain.order.entity import FulfillmentStatus, PaymentMethod, PaymentStatus
from domain.payment.entity import TransactionStatus
from support import FakeGateway, digital, physical


@pytest.fixture
def gateway():
    return FakeGateway("stripe")


@pytest.fixture
def service(uow_factory, gateway, notifier):
    return PaymentApplicationService(uow_factory, {PaymentMethod.STRIPE: gateway}, notifier=notifier)


async def _snapshot(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id(order_id)
        grants = await uow.grant_repository.list_by_order(order_id)
        txns = await uow.payment_transaction_repository.list_by_order(order_id)
    return order, grants, txns


@pytest.mark.asyncio
async def test_initiate_records_transaction(service, gateway, place_order, buyer, uow_factory):
    order = await place_order()

    result = await service.initiate(order.order_code, buyer)

    assert result.redirect_url == f"https://pay.example/{order.order_code}"
    assert result.immediate is False
    stored, grants, txns = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PENDING
    assert grants == []
    assert [(t.provider, t.correlation_id, t.status) for t in txns] == [
        ("stripe", result.correlation_id, TransactionStatus.INITIATED)
    ]


@pytest.mark.asyncio
async def test_initiate_guards(service, place_order, buyer, other_buyer):
    order = await place_order()
    with pytest.raises(OrderNotFoundException):
        await service.initiate(order.order_code, other_buyer)

    bkash_order = await place_order(method=PaymentMethod.BKASH)
    with pytest.raises(UnsupportedPaymentMethodException):
        await service.initiate(bkash_order.order_code, buyer)

    with pytest.raises(UnsupportedPaymentMethodException):
        await service.verify("paypal", {}, b"")


@pytest.mark.asyncio
async def test_confirmed_payment_issues_one_grant_per_digital_line(service, gateway, place_order, uow_factory, notifier):
    order = await place_order(products=(digital("ebook-1"), digital("ebook-2", "5.00"), physical()))
    gateway.respond_with(gateway.verdict(order))

    outcome = await service.verify("stripe", {"Stripe-Signature": "t=1,v1=x"}, b"{}")

    assert outcome.status == "paid"
    assert outcome.duplicate is False
    stored, grants, txns = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.fulfillment_status == FulfillmentStatus.CONFIRMED
    assert sorted(g.product_id for g in grants) == ["ebook-1", "ebook-2"]
    assert all(g.buyer_id == order.buyer_id and not g.is_bound for g in grants)
    assert len({g.token for g in grants}) == 2
    assert [t.status for t in txns] == [TransactionStatus.VERIFIED]
    assert len(notifier.confirmed) == 1
    assert notifier.issued[0].order_code == order.order_code


@pytest.mark.asyncio
async def test_repeated_confirmation_is_a_no_op(service, gateway, place_order, buyer, uow_factory, notifier):
    order = await place_order()
    await service.initiate(order.order_code, buyer)
    gateway.respond_with(gateway.verdict(order))

    first = await service.verify("stripe", {}, b"{}")
    second = await service.verify("stripe", {}, b"", {"session_id": "x"})

    assert (first.status, first.duplicate) == ("paid", False)
    assert (second.status, second.duplicate) == ("paid", True)
    _, grants, txns = await _snapshot(uow_factory, order.id)
    assert len(grants) == 1
    assert len(txns) == 1
    assert len(notifier.confirmed) == 1
    assert len(notifier.issued) == 1


@pytest.mark.asyncio
async def test_concurrent_confirmations_settle_once(service, gateway, place_order, buyer, uow_factory, notifier):
    order = await place_order()
    await service.initiate(order.order_code, buyer)
    gateway.respond_with(gateway.verdict(order))

    results = await asyncio.gather(
        service.verify("stripe", {}, b"{}"),
        service.verify("stripe", {}, b"", {"session_id": "x"}),
    )

    assert sorted(r.duplicate for r in results) == [False, True]
    assert {r.status for r in results} == {"paid"}
    stored, grants, _ = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert len(grants) == 1
    assert len(notifier.issued) == 1


@pytest.mark.asyncio
async def test_amount_mismatch_is_rejected(service, gateway, place_order, uow_factory):
    order = await place_order()
    gateway.respond_with(gateway.verdict(order, amount=Decimal("1.00")))

    with pytest.raises(TamperedPayloadException):
        await service.verify("stripe", {}, b"{}")

    stored, grants, _ = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PENDING
    assert grants == []


@pytest.mark.asyncio
async def test_reference_for_another_order_is_rejected(service, gateway, place_order, buyer):
    order = await place_order()
    other = await place_order()
    await service.initiate(order.order_code, buyer)
    forged = gateway.verdict(other, correlation_id=gateway.correlation_for(order.order_code))
    gateway.respond_with(forged)

    with pytest.raises(TamperedPayloadException):
        await service.verify("stripe", {}, b"{}")


@pytest.mark.asyncio
async def test_unknown_reference_is_rejected(service, gateway, place_order):
    order = await place_order()
    verdict = gateway.verdict(order).model_copy(update={"order_code": None})
    gateway.respond_with(verdict)

    with pytest.raises(TamperedPayloadException):
        await service.verify("stripe", {}, b"{}")


@pytest.mark.asyncio
async def test_second_successful_payment_is_refused(service, gateway, place_order, uow_factory):
    order = await place_order()
    gateway.respond_with(gateway.verdict(order, correlation_id="cs_first"))
    await service.verify("stripe", {}, b"{}")

    gateway.respond_with(gateway.verdict(order, correlation_id="cs_second"))
    with pytest.raises(DoubleCreditRefusedException):
        await service.verify("stripe", {}, b"{}")

    stored, grants, txns = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.payment_reference == "cs_first"
    assert len(grants) == 1
    refused = next(t for t in txns if t.correlation_id == "cs_second")
    assert (refused.status, refused.outcome) == (TransactionStatus.FAILED, "refused")


@pytest.mark.asyncio
async def test_failed_attempt_then_successful_retry(service, gateway, place_order, uow_factory):
    order = await place_order()
    gateway.respond_with(gateway.verdict(order, status="failed", correlation_id="cs_declined"))
    failed = await service.verify("stripe", {}, b"{}")
    assert failed.status == "failed"

    stored, grants, _ = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.FAILED
    assert grants == []

    gateway.respond_with(gateway.verdict(order, correlation_id="cs_retry"))
    paid = await service.verify("stripe", {}, b"{}")
    assert paid.status == "paid"
    stored, grants, _ = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert len(grants) == 1


@pytest.mark.asyncio
async def test_pending_verdict_changes_nothing(service, gateway, place_order, uow_factory):
    order = await place_order()
    gateway.respond_with(gateway.verdict(order, status="pending"))

    outcome = await service.verify("stripe", {}, b"{}")

    assert outcome.status == "pending"
    stored, _, txns = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.PENDING
    assert txns == []


@pytest.mark.asyncio
async def test_initiate_refused_once_paid(service, gateway, place_order, buyer):
    order = await place_order()
    gateway.respond_with(gateway.verdict(order))
    await service.verify("stripe", {}, b"{}")

    with pytest.raises(PaymentAlreadySettledException):
        await service.initiate(order.order_code, buyer)


@pytest.mark.asyncio
async def test_reconcile_settles_stale_transactions(service, gateway, place_order, buyer, uow_factory):
    settled_order = await place_order()
    pending_order = await place_order()
    await service.initiate(settled_order.order_code, buyer)
    await service.initiate(pending_order.order_code, buyer)
    gateway.respond_with(
        gateway.verdict(settled_order),
        gateway.verdict(pending_order, status="pending"),
    )

    later = datetime.now(timezone.utc) + timedelta(hours=1)
    summary = await service.reconcile_stale(stale_after=timedelta(minutes=15), now=later)

    assert summary.examined == 2
    assert summary.settled == 1
    assert summary.still_pending == 1
    assert summary.errors == 0
    stored, grants, _ = await _snapshot(uow_factory, settled_order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert len(grants) == 1

    # 未到期的流水不参与对账
    fresh = await service.reconcile_stale(stale_after=timedelta(minutes=15))
    assert fresh.examined == 0


@pytest.mark.asyncio
async def test_refund_revokes_grants(service, gateway, place_order, admin, uow_factory, notifier):
    order = await place_order(products=(digital("ebook-1"), digital("ebook-2", "5.00")))
    gateway.respond_with(gateway.verdict(order))
    await service.verify("stripe", {}, b"{}")

    refunded = await service.refund(order.id, admin)

    assert refunded.payment_status == "refunded"
    stored, grants, _ = await _snapshot(uow_factory, order.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert len(grants) == 2
    assert all(g.revoked and g.revoked_by == admin.account_id for g in grants)

    with pytest.raises(InvalidStateTransitionException):
        await service.refund(order.id, admin)

    # 已退款订单不能靠补发恢复访问
    reissuer = EntitlementApplicationService(uow_factory)
    with pytest.raises(InvalidStateTransitionException):
        await reissuer.reissue(grants[0].id, admin)
    _, after, _ = await _snapshot(uow_factory, order.id)
    assert sorted(g.id for g in after) == sorted(g.id for g in grants)
    assert all(g.revoked for g in after)


@pytest.mark.asyncio
async def test_refund_requires_paid_order(service, place_order, admin):
    order = await place_order()
    with pytest.raises(InvalidStateTransitionException):
        await service.refund(order.id, admin)
