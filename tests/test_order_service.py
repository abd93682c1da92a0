from decimal import Decimal

import pytest

from application.dto import OrderCreateDTO, PrincipalDTO
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentApplicationService
from application.ports.catalog import ProductInfo
from domain.common.exceptions import (
    CatalogUnavailableException,
    InvalidLineItemException,
    InvalidShippingAddressException,
    InvalidStateTransitionException,
    OrderNotFoundException,
    UnsupportedPaymentMethodException,
)
from domain.order.entity import FulfillmentStatus, PaymentMethod, PaymentStatus
from infrastructure.external.payments import CashOnDeliveryClient
from support import FakeGateway


ADDRESS = {"recipient": "Rahim", "phone": "01700000000", "line1": "House 1, Road 2", "city": "Dhaka"}


@pytest.fixture
def payments(uow_factory, notifier):
    return PaymentApplicationService(
        uow_factory,
        {PaymentMethod.STRIPE: FakeGateway("stripe"), PaymentMethod.CASH_ON_DELIVERY: CashOnDeliveryClient()},
        notifier=notifier,
    )


@pytest.fixture
def service(uow_factory, catalog, payments, notifier):
    return OrderApplicationService(uow_factory, catalog, payments=payments, notifier=notifier)


async def _grants(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.grant_repository.list_by_order(order_id)


@pytest.mark.asyncio
async def test_create_order_snapshots_catalog_prices(service, buyer, catalog):
    dto = OrderCreateDTO(
        items=[
            {"product_id": "ebook-1", "quantity": 1},
            {"product_id": "ebook-2", "quantity": 2},
            {"product_id": "ebook-1", "quantity": 1},
        ],
        payment_method=" Stripe ",
    )
    order = await service.create_order(buyer, dto)

    assert order.buyer_id == buyer.account_id
    assert order.payment_method == "stripe"
    assert order.payment_status == "pending"
    assert order.currency == "BDT"
    # 重复商品合并为一行
    assert [(line.product_id, line.quantity) for line in order.lines] == [("ebook-1", 2), ("ebook-2", 2)]
    assert order.total == Decimal("51.00")

    # 之后的目录变价不影响已下订单
    catalog.products["ebook-1"] = ProductInfo("ebook-1", "Book", Decimal("99.00"), is_digital=True)
    again = await service.get_order(order.id, buyer)
    assert again.total == Decimal("51.00")


@pytest.mark.asyncio
async def test_discount_is_applied(service, buyer):
    order = await service.create_order(
        buyer,
        OrderCreateDTO(items=[{"product_id": "ebook-2"}], payment_method="stripe", discount=Decimal("5.50")),
    )
    assert order.subtotal == Decimal("15.50")
    assert order.total == Decimal("10.00")


@pytest.mark.asyncio
async def test_unknown_and_unpurchasable_products_are_rejected(service, buyer, catalog):
    with pytest.raises(InvalidLineItemException):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "missing"}], payment_method="stripe"))

    catalog.products["retired"] = ProductInfo("retired", "Old", Decimal("1"), is_digital=True, is_purchasable=False)
    with pytest.raises(InvalidLineItemException):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "retired"}], payment_method="stripe"))


@pytest.mark.asyncio
async def test_physical_items_need_shipping_address(service, buyer):
    with pytest.raises(InvalidShippingAddressException):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "print-1"}], payment_method="bkash"))

    order = await service.create_order(
        buyer,
        OrderCreateDTO(items=[{"product_id": "print-1"}], payment_method="bkash", shipping_address=ADDRESS),
    )
    assert order.shipping_address["city"] == "Dhaka"


@pytest.mark.asyncio
async def test_unsupported_payment_method(service, buyer):
    with pytest.raises(UnsupportedPaymentMethodException):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="paypal"))


@pytest.mark.asyncio
async def test_catalog_outage_does_not_create_order(uow_factory, buyer):
    class _DownCatalog:
        async def get_product(self, product_id):
            raise CatalogUnavailableException()

    service = OrderApplicationService(uow_factory, _DownCatalog())
    with pytest.raises(CatalogUnavailableException):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))

    _, total = await service.list_my_orders(buyer)
    assert total == 0


@pytest.mark.asyncio
async def test_cash_on_delivery_order_is_accepted_and_entitled(service, buyer, uow_factory, notifier):
    order = await service.create_order(
        buyer,
        OrderCreateDTO(
            items=[{"product_id": "ebook-1"}, {"product_id": "print-1"}],
            payment_method="cash_on_delivery",
            shipping_address=ADDRESS,
        ),
    )

    assert order.payment_status == PaymentStatus.PROCESSING.value
    assert order.fulfillment_status == FulfillmentStatus.PENDING.value
    grants = await _grants(uow_factory, order.id)
    assert [g.product_id for g in grants] == ["ebook-1"]
    assert grants[0].buyer_id == buyer.account_id
    assert not grants[0].is_bound
    assert len(notifier.confirmed) == 1
    assert notifier.issued[0].product_ids == ["ebook-1"]


@pytest.mark.asyncio
async def test_orders_are_private_to_their_buyer(service, buyer, other_buyer, admin):
    order = await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))

    with pytest.raises(OrderNotFoundException):
        await service.get_order(order.id, other_buyer)
    with pytest.raises(OrderNotFoundException):
        await service.get_order_by_code(order.order_code, other_buyer)

    assert (await service.get_order(order.id, admin)).id == order.id
    assert (await service.get_order_by_code(order.order_code, buyer)).id == order.id


@pytest.mark.asyncio
async def test_list_orders_paginates(service, buyer, other_buyer):
    for _ in range(3):
        await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))
    await service.create_order(other_buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))

    items, total = await service.list_my_orders(buyer, page=1, size=2)
    assert total == 3
    assert len(items) == 2
    assert all(o.buyer_id == buyer.account_id for o in items)

    items, total = await service.list_all_orders(page=1, size=10, payment_status=PaymentStatus.PENDING)
    assert total == 4


@pytest.mark.asyncio
async def test_manual_payment_update_issues_grants_once(service, buyer, admin, uow_factory):
    order = await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))

    processing = await service.update_payment_status(order.id, PaymentStatus.PROCESSING, admin)
    assert processing.payment_status == "processing"
    assert await _grants(uow_factory, order.id) == []

    paid = await service.update_payment_status(order.id, PaymentStatus.PAID, admin, reference="bank-slip-7")
    assert paid.payment_status == "paid"
    assert paid.fulfillment_status == "confirmed"
    assert paid.payment_reference == "bank-slip-7"
    assert len(await _grants(uow_factory, order.id)) == 1

    with pytest.raises(InvalidStateTransitionException):
        await service.update_payment_status(order.id, PaymentStatus.PAID, admin)
    assert len(await _grants(uow_factory, order.id)) == 1


@pytest.mark.asyncio
async def test_manual_refund_revokes_grants(service, buyer, admin, uow_factory):
    order = await service.create_order(buyer, OrderCreateDTO(items=[{"product_id": "ebook-1"}], payment_method="stripe"))
    await service.update_payment_status(order.id, PaymentStatus.PROCESSING, admin)
    await service.update_payment_status(order.id, PaymentStatus.PAID, admin)

    refunded = await service.update_payment_status(order.id, PaymentStatus.REFUNDED, admin)

    assert refunded.payment_status == "refunded"
    assert all(g.revoked for g in await _grants(uow_factory, order.id))


@pytest.mark.asyncio
async def test_fulfillment_update(service, buyer, admin):
    order = await service.create_order(
        buyer,
        OrderCreateDTO(items=[{"product_id": "print-1"}], payment_method="bkash", shipping_address=ADDRESS),
    )
    updated = await service.update_fulfillment_status(order.id, FulfillmentStatus.PROCESSING, admin)
    assert updated.fulfillment_status == "processing"

    with pytest.raises(InvalidStateTransitionException):
        await service.update_fulfillment_status(order.id, FulfillmentStatus.DELIVERED, PrincipalDTO(account_id="ops", is_admin=True))
