import pytest

from application.services.fulfillment import build_ledger
from domain.common.exceptions import (
    BusinessException,
    InvalidShippingAddressException,
    InvalidStateTransitionException,
    OrderNotFoundException,
)
from domain.order.entity import FulfillmentStatus, Order, OrderLine, PaymentMethod, PaymentStatus, ProductKind
from domain.order.events import PaymentConfirmed
from support import digital, physical


@pytest.mark.asyncio
async def test_record_assigns_unique_code(place_order):
    first = await place_order()
    second = await place_order()

    assert first.id is not None
    assert first.order_code.startswith("ORD-")
    assert len(first.order_code) == len("ORD-") + 6
    assert first.order_code != second.order_code
    assert first.payment_status == PaymentStatus.PENDING
    assert first.fulfillment_status == FulfillmentStatus.PENDING


@pytest.mark.asyncio
async def test_record_retries_on_code_collision(monkeypatch, uow_factory, place_order):
    existing = await place_order()
    codes = iter([existing.order_code, "ORD-FRESH1"])
    monkeypatch.setattr("domain.order.service.generate_order_code", lambda prefix, length: next(codes))

    line = OrderLine(product_id="ebook-1", title="Book", kind=ProductKind.DIGITAL, quantity=1, unit_price=existing.total)
    order = Order.place(order_code="", buyer_id="buyer-9", lines=[line], payment_method=PaymentMethod.BKASH, currency="BDT")
    async with uow_factory() as uow:
        saved = await build_ledger(uow).record(order)

    assert saved.order_code == "ORD-FRESH1"


@pytest.mark.asyncio
async def test_record_gives_up_after_max_attempts(monkeypatch, uow_factory, place_order):
    existing = await place_order()
    monkeypatch.setattr("domain.order.service.generate_order_code", lambda prefix, length: existing.order_code)

    line = OrderLine(product_id="ebook-1", title="Book", kind=ProductKind.DIGITAL, quantity=1, unit_price=existing.total)
    order = Order.place(order_code="", buyer_id="buyer-9", lines=[line], payment_method=PaymentMethod.BKASH, currency="BDT")
    with pytest.raises(BusinessException) as exc_info:
        async with uow_factory() as uow:
            await build_ledger(uow).record(order)
    assert exc_info.value.error_type == "OrderCodeExhausted"


def test_place_freezes_totals():
    lines = [
        OrderLine(product_id="a", title="A", kind=ProductKind.DIGITAL, quantity=2, unit_price=digital().price),
        OrderLine(product_id="b", title="B", kind=ProductKind.DIGITAL, quantity=1, unit_price=digital("b", "5.50").price),
    ]
    order = Order.place(
        order_code="ORD-X", buyer_id="u", lines=lines, payment_method=PaymentMethod.STRIPE,
        currency="BDT", discount=digital().price,
    )
    assert str(order.subtotal) == "25.50"
    assert str(order.total) == "15.50"


def test_physical_line_requires_address():
    p = physical()
    line = OrderLine(product_id=p.product_id, title=p.title, kind=ProductKind.PHYSICAL, quantity=1, unit_price=p.price)
    with pytest.raises(InvalidShippingAddressException):
        Order.place(order_code="ORD-X", buyer_id="u", lines=[line], payment_method=PaymentMethod.BKASH, currency="BDT")


@pytest.mark.asyncio
async def test_paid_transition_confirms_fulfillment_and_emits_event(uow_factory, place_order):
    order = await place_order()

    async with uow_factory() as uow:
        ledger = build_ledger(uow)
        await ledger.transition_payment(order.id, PaymentStatus.PROCESSING)
        paid = await ledger.transition_payment(order.id, PaymentStatus.PAID, {"correlation_id": "cs_1"})
        events = ledger.get_domain_events()

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.fulfillment_status == FulfillmentStatus.CONFIRMED
    assert paid.payment_reference == "cs_1"
    assert paid.paid_at is not None
    assert [type(e) for e in events] == [PaymentConfirmed]

    async with uow_factory(readonly=True) as uow:
        stored = await build_ledger(uow).get(order.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.fulfillment_status == FulfillmentStatus.CONFIRMED
    assert stored.payment_reference == "cs_1"


@pytest.mark.asyncio
async def test_payment_cannot_skip_processing(uow_factory, place_order):
    order = await place_order()

    with pytest.raises(InvalidStateTransitionException):
        async with uow_factory() as uow:
            await build_ledger(uow).transition_payment(order.id, PaymentStatus.PAID)

    async with uow_factory(readonly=True) as uow:
        stored = await build_ledger(uow).get(order.id)
    assert stored.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_failed_payment_can_be_retried(uow_factory, place_order):
    order = await place_order()

    async with uow_factory() as uow:
        ledger = build_ledger(uow)
        await ledger.transition_payment(order.id, PaymentStatus.PROCESSING)
        await ledger.transition_payment(order.id, PaymentStatus.FAILED)
        await ledger.transition_payment(order.id, PaymentStatus.PROCESSING)
        retried = await ledger.transition_payment(order.id, PaymentStatus.PAID, {"correlation_id": "retry"})

    assert retried.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_refunded_is_terminal(uow_factory, place_order):
    order = await place_order()
    async with uow_factory() as uow:
        ledger = build_ledger(uow)
        for target in (PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.REFUNDED):
            await ledger.transition_payment(order.id, target)

    for target in PaymentStatus:
        with pytest.raises(InvalidStateTransitionException):
            async with uow_factory() as uow:
                await build_ledger(uow).transition_payment(order.id, target)


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_expectation(uow_factory, place_order):
    order = await place_order()

    async with uow_factory() as uow:
        swapped = await uow.order_repository.compare_and_set_payment_status(
            order.id, PaymentStatus.PROCESSING, PaymentStatus.PAID
        )
    assert swapped is False

    async with uow_factory(readonly=True) as uow:
        stored = await uow.order_repository.get_by_id(order.id)
    assert stored.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_fulfillment_moves_forward_only(uow_factory, place_order):
    order = await place_order(method=PaymentMethod.CASH_ON_DELIVERY, products=(physical(),))

    async with uow_factory() as uow:
        ledger = build_ledger(uow)
        await ledger.transition_fulfillment(order.id, FulfillmentStatus.CONFIRMED)
        shipped = await ledger.transition_fulfillment(order.id, FulfillmentStatus.SHIPPED)
    assert shipped.fulfillment_status == FulfillmentStatus.SHIPPED

    with pytest.raises(InvalidStateTransitionException):
        async with uow_factory() as uow:
            await build_ledger(uow).transition_fulfillment(order.id, FulfillmentStatus.PROCESSING)

    # 货到付款订单未收款也可送达
    async with uow_factory() as uow:
        delivered = await build_ledger(uow).transition_fulfillment(order.id, FulfillmentStatus.DELIVERED)
    assert delivered.fulfillment_status == FulfillmentStatus.DELIVERED

    with pytest.raises(InvalidStateTransitionException):
        async with uow_factory() as uow:
            await build_ledger(uow).transition_fulfillment(order.id, FulfillmentStatus.CANCELLED)


@pytest.mark.asyncio
async def test_delivery_requires_payment_for_prepaid_orders(uow_factory, place_order):
    order = await place_order(method=PaymentMethod.BKASH, products=(physical(),))

    with pytest.raises(InvalidStateTransitionException):
        async with uow_factory() as uow:
            await build_ledger(uow).transition_fulfillment(order.id, FulfillmentStatus.DELIVERED)

    async with uow_factory() as uow:
        cancelled = await build_ledger(uow).transition_fulfillment(order.id, FulfillmentStatus.CANCELLED)
    assert cancelled.fulfillment_status == FulfillmentStatus.CANCELLED


@pytest.mark.asyncio
async def test_unknown_order(uow_factory):
    with pytest.raises(OrderNotFoundException):
        async with uow_factory(readonly=True) as uow:
            await build_ledger(uow).get(999)
    with pytest.raises(OrderNotFoundException):
        async with uow_factory(readonly=True) as uow:
            await build_ledger(uow).get_by_code("ORD-NOPE00")
