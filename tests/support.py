"""Test doubles for the catalog, content storage, notification and gateway ports."""
from decimal import Decimal
from typing import AsyncIterator, Optional

from application.dtos.payments import GatewayVerdict, InitiateResult
from application.ports.catalog import ProductInfo
from application.ports.content_storage import ContentInfo
from domain.common.exceptions import ContentUnavailableException
from domain.order.entity import Order, PaymentMethod, ShippingAddress


class FakeCatalog:
    def __init__(self, products: Optional[dict] = None):
        self.products: dict[str, ProductInfo] = dict(products or {})
        self.calls: list[str] = []

    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        self.calls.append(product_id)
        return self.products.get(product_id)


class FakeContentStorage:
    def __init__(self, objects: Optional[dict] = None):
        self.objects: dict[str, tuple[bytes, str]] = dict(objects or {})

    async def stat(self, key: str) -> ContentInfo:
        if key not in self.objects:
            raise ContentUnavailableException(key)
        data, content_type = self.objects[key]
        return ContentInfo(key=key, size=len(data), content_type=content_type)

    async def read(self, key: str) -> bytes:
        return self.objects[key][0]

    async def open_stream(self, key: str) -> AsyncIterator[bytes]:
        data = self.objects[key][0]
        for i in range(0, len(data), 4):
            yield data[i:i + 4]

    async def close(self) -> None:
        return None


class RecordingNotifier:
    def __init__(self):
        self.confirmed: list = []
        self.issued: list = []

    def payment_confirmed(self, event) -> None:
        self.confirmed.append(event)

    def grants_issued(self, event) -> None:
        self.issued.append(event)


class FakeGateway:
    """Scriptable gateway: verify/reconcile consume `verdicts` in order, the last one repeats."""

    def __init__(self, provider: str = "stripe"):
        self.provider = provider
        self.verdicts: list[GatewayVerdict] = []
        self.initiated: list[str] = []

    def correlation_for(self, order_code: str) -> str:
        return f"{self.provider}-{order_code}"

    def verdict(self, order: Order, *, status: str = "paid", amount: Optional[Decimal] = None,
                correlation_id: Optional[str] = None) -> GatewayVerdict:
        return GatewayVerdict(
            provider=self.provider,
            correlation_id=correlation_id or self.correlation_for(order.order_code),
            status=status,
            order_code=order.order_code,
            amount=order.total if amount is None else amount,
            currency=order.currency,
        )

    def respond_with(self, *verdicts: GatewayVerdict) -> None:
        self.verdicts = list(verdicts)

    def _next(self) -> GatewayVerdict:
        if len(self.verdicts) > 1:
            return self.verdicts.pop(0)
        return self.verdicts[0]

    async def initiate(self, order: Order) -> InitiateResult:
        self.initiated.append(order.order_code)
        if self.provider == PaymentMethod.CASH_ON_DELIVERY.value:
            return InitiateResult(
                order_code=order.order_code,
                provider=self.provider,
                payment_status="processing",
                correlation_id=f"cod:{order.order_code}",
                immediate=True,
            )
        return InitiateResult(
            order_code=order.order_code,
            provider=self.provider,
            payment_status=order.payment_status.value,
            correlation_id=self.correlation_for(order.order_code),
            redirect_url=f"https://pay.example/{order.order_code}",
        )

    async def verify(self, headers, body, params) -> GatewayVerdict:
        return self._next()

    async def reconcile(self, correlation_id: str, order: Order) -> GatewayVerdict:
        for verdict in self.verdicts:
            if verdict.correlation_id == correlation_id:
                return verdict
        return self._next()

    async def aclose(self) -> None:
        return None


def digital(product_id: str = "ebook-1", price: str = "10.00") -> ProductInfo:
    return ProductInfo(
        product_id=product_id,
        title=f"Book {product_id}",
        price=Decimal(price),
        is_digital=True,
        content_key=f"books/{product_id}.pdf",
    )


def physical(product_id: str = "print-1", price: str = "25.00") -> ProductInfo:
    return ProductInfo(product_id=product_id, title=f"Print {product_id}", price=Decimal(price), is_digital=False)


def shipping_address() -> ShippingAddress:
    return ShippingAddress(recipient="Rahim", phone="01700000000", line1="House 1, Road 2", city="Dhaka")

