"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

from typing import AsyncIterator

import pytest
import pytest_asyncio

from application.dto import PrincipalDTO
from domain.order.entity import Order, OrderLine, PaymentMethod, ProductKind
from infrastructure.database import Database
from infrastructure.unit_of_work import uow_factory_for
from support import FakeCatalog, RecordingNotifier, digital, physical, shipping_address


@pytest.fixture
def buyer() -> PrincipalDTO:
    return PrincipalDTO(account_id="buyer-1")


@pytest.fixture
def other_buyer() -> PrincipalDTO:
    return PrincipalDTO(account_id="buyer-2")


@pytest.fixture
def admin() -> PrincipalDTO:
    return PrincipalDTO(account_id="admin-1", is_admin=True)


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncIterator[Database]:
    # 文件库：并发测试需要多个连接看到同一份数据
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_tables()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def uow_factory(database):
    return uow_factory_for(database.session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        {
            p.product_id: p
            for p in (digital("ebook-1", "10.00"), digital("ebook-2", "15.50"), physical("print-1", "25.00"))
        }
    )


@pytest.fixture
def place_order(uow_factory):
    """Persist an order directly through the ledger."""
    from application.services.fulfillment import build_ledger

    async def _place(
        *,
        buyer_id: str = "buyer-1",
        method: PaymentMethod = PaymentMethod.STRIPE,
        products: tuple = (digital(),),
        currency: str = "BDT",
    ) -> Order:
        lines = [
            OrderLine(
                product_id=p.product_id,
                title=p.title,
                kind=ProductKind.DIGITAL if p.is_digital else ProductKind.PHYSICAL,
                quantity=1,
                unit_price=p.price,
                content_key=p.content_key,
            )
            for p in products
        ]
        order = Order.place(
            order_code="",
            buyer_id=buyer_id,
            lines=lines,
            payment_method=method,
            currency=currency,
            shipping_address=None if all(p.is_digital for p in products) else shipping_address(),
        )
        async with uow_factory() as uow:
            return await build_ledger(uow).record(order)

    return _place
