from decimal import Decimal

import httpx
import jwt
import pytest
import pytest_asyncio

from core.config import settings
from core.settings import payment_settings
from domain.entitlement.origin_policy import ExactOriginPolicy
from domain.order.entity import PaymentMethod
from infrastructure.external.payments import CashOnDeliveryClient
from main import app
from support import FakeContentStorage, FakeGateway


READER_HEADERS = {"User-Agent": "Reader/1.0", "Accept-Language": "bn-BD", "X-Forwarded-For": "203.0.113.7"}


def _auth(subject: str, *, is_admin: bool = False) -> dict[str, str]:
    claims = {"sub": subject}
    if is_admin:
        claims[settings.ADMIN_CLAIM] = True
    return {"Authorization": f"Bearer {jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)}"}


BUYER = _auth("buyer-1")
OTHER = _auth("buyer-2")
ADMIN = _auth("admin-1", is_admin=True)


@pytest.fixture
def stripe_gateway() -> FakeGateway:
    return FakeGateway("stripe")


@pytest_asyncio.fixture
async def client(database, uow_factory, catalog, notifier, stripe_gateway):
    # ASGITransport 不触发 lifespan，手动装配 app.state
    app.state.database = database
    app.state.uow_factory = uow_factory
    app.state.gateways = {
        PaymentMethod.STRIPE: stripe_gateway,
        PaymentMethod.CASH_ON_DELIVERY: CashOnDeliveryClient(),
    }
    app.state.catalog = catalog
    app.state.content_storage = FakeContentStorage({"books/ebook-1.pdf": (b"%PDF-1.4 body", "application/pdf")})
    app.state.watermarker = None
    app.state.notifier = notifier
    app.state.origin_policy = ExactOriginPolicy()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create(client, method: str = "stripe", items=None, headers=BUYER) -> dict:
    response = await client.post(
        "/api/v1/orders",
        json={"items": items or [{"product_id": "ebook-1"}], "payment_method": method},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "healthy", "database": True}


@pytest.mark.asyncio
async def test_orders_require_authentication(client):
    response = await client.post("/api/v1/orders", json={"items": [{"product_id": "ebook-1"}], "payment_method": "stripe"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_create_and_read_order(client):
    order = await _create(client, items=[{"product_id": "ebook-1"}, {"product_id": "ebook-2", "quantity": 2}])

    assert order["order_code"].startswith("ORD-")
    assert Decimal(order["total"]) == Decimal("41.00")
    assert order["payment_status"] == "pending"

    mine = await client.get(f"/api/v1/orders/{order['id']}", headers=BUYER)
    assert mine.status_code == 200
    assert mine.json()["data"]["order_code"] == order["order_code"]

    theirs = await client.get(f"/api/v1/orders/{order['id']}", headers=OTHER)
    assert theirs.status_code == 404

    listing = await client.get("/api/v1/orders", headers=BUYER)
    assert listing.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_invalid_order_body_is_rejected(client):
    response = await client.post("/api/v1/orders", json={"items": [], "payment_method": "stripe"}, headers=BUYER)
    assert response.status_code == 422

    unknown = await client.post(
        "/api/v1/orders", json={"items": [{"product_id": "nope"}], "payment_method": "stripe"}, headers=BUYER
    )
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_admin_routes_are_forbidden_to_buyers(client):
    order = await _create(client)

    forbidden = await client.get("/api/v1/orders/admin/all", headers=BUYER)
    assert forbidden.status_code == 403
    refund = await client.post(f"/api/v1/orders/{order['id']}/refund", headers=BUYER)
    assert refund.status_code == 403

    allowed = await client.get("/api/v1/orders/admin/all", headers=ADMIN)
    assert allowed.status_code == 200
    assert allowed.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_webhook_settles_order_and_content_is_delivered(client, place_order, stripe_gateway):
    order = await place_order()
    initiated = await client.post("/api/v1/payments/initiate", json={"order_code": order.order_code}, headers=BUYER)
    assert initiated.status_code == 200
    assert initiated.json()["data"]["redirect_url"] == f"https://pay.example/{order.order_code}"

    stripe_gateway.respond_with(stripe_gateway.verdict(order))
    webhook = await client.post("/api/v1/payments/webhooks/stripe", content=b"{}")
    assert webhook.status_code == 200
    assert webhook.json()["data"]["acknowledged"] is True
    assert webhook.json()["data"]["status"] == "paid"

    grants = (await client.get("/api/v1/entitlements", headers=BUYER)).json()["data"]
    assert len(grants) == 1
    token = grants[0]["token"]

    content = await client.get("/api/v1/entitlements/content", params={"token": token}, headers=READER_HEADERS)
    assert content.status_code == 200
    assert content.content == b"%PDF-1.4 body"
    assert content.headers["Content-Length"] == str(len(b"%PDF-1.4 body"))
    assert content.headers["Cache-Control"].startswith("no-store")
    assert content.headers["Content-Disposition"].startswith("inline")

    elsewhere = await client.get(
        "/api/v1/entitlements/content",
        params={"token": token},
        headers={**READER_HEADERS, "User-Agent": "Scraper/0.1"},
    )
    assert elsewhere.status_code == 403
    assert elsewhere.json()["error"]["type"] == "AccessDenied"


@pytest.mark.asyncio
async def test_tampered_webhook_is_acknowledged_but_not_applied(client, place_order, stripe_gateway):
    order = await place_order()
    stripe_gateway.respond_with(stripe_gateway.verdict(order, amount=Decimal("1.00")))

    webhook = await client.post("/api/v1/payments/webhooks/stripe", content=b"{}")

    assert webhook.status_code == 200
    assert webhook.json()["data"]["acknowledged"] is False
    assert webhook.json()["data"]["status"] is None
    stored = await client.get(f"/api/v1/orders/{order.id}", headers=BUYER)
    assert stored.json()["data"]["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_callback_redirects_to_storefront(client, place_order, stripe_gateway):
    order = await place_order()
    stripe_gateway.respond_with(stripe_gateway.verdict(order))

    response = await client.get("/api/v1/payments/stripe/callback/cancel", params={"session_id": "cs_1"})

    # 以网关结论为准，而不是跳转路径
    assert response.status_code == 302
    location = response.headers["location"]
    assert "/payment/success" in location
    assert f"order_code={order.order_code}" in location


@pytest.mark.asyncio
async def test_callback_for_unsupported_method_lands_on_failure(client):
    response = await client.get("/api/v1/payments/paypal/callback/success")

    assert response.status_code == 302
    assert "/payment/failed" in response.headers["location"]


@pytest.mark.asyncio
async def test_cash_on_delivery_order_grants_access_immediately(client, notifier):
    order = await _create(client, method="cash_on_delivery")

    assert order["payment_status"] == "processing"
    grants = (await client.get("/api/v1/entitlements", headers=BUYER)).json()["data"]
    assert [g["product_id"] for g in grants] == ["ebook-1"]
    assert len(notifier.issued) == 1

    revoked = await client.delete(f"/api/v1/entitlements/{grants[0]['id']}", headers=OTHER)
    assert revoked.status_code == 404
    revoked = await client.delete(f"/api/v1/entitlements/{grants[0]['id']}", headers=BUYER)
    assert revoked.status_code == 200
    assert revoked.json()["data"]["revoked"] is True
    assert revoked.json()["data"]["token"] is None

    reissue = await client.post(f"/api/v1/entitlements/{grants[0]['id']}/reissue", headers=BUYER)
    assert reissue.status_code == 403
    reissue = await client.post(f"/api/v1/entitlements/{grants[0]['id']}/reissue", headers=ADMIN)
    assert reissue.status_code == 200
    assert reissue.json()["data"]["token"]


@pytest.mark.asyncio
async def test_content_refuses_a_signed_in_stranger(client):
    await _create(client, method="cash_on_delivery")
    token = (await client.get("/api/v1/entitlements", headers=BUYER)).json()["data"][0]["token"]

    stranger = await client.get(
        "/api/v1/entitlements/content", params={"token": token}, headers={**READER_HEADERS, **OTHER}
    )
    assert stranger.status_code == 403
    assert stranger.json()["error"]["type"] == "AccessDenied"

    # 被拒的请求不会占用绑定，本人同一设备仍可首次访问
    owner = await client.get(
        "/api/v1/entitlements/content", params={"token": token}, headers={**READER_HEADERS, **BUYER}
    )
    assert owner.status_code == 200
    assert owner.content == b"%PDF-1.4 body"


@pytest.mark.asyncio
async def test_webhook_allowlist_ignores_forwarding_headers(client, place_order, stripe_gateway, monkeypatch):
    order = await place_order()
    stripe_gateway.respond_with(stripe_gateway.verdict(order))
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["198.51.100.10"])

    spoofed = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=b"{}",
        headers={"X-Forwarded-For": "198.51.100.10", "X-Real-IP": "198.51.100.10"},
    )
    assert spoofed.status_code == 200
    assert spoofed.json()["data"]["acknowledged"] is False
    stored = await client.get(f"/api/v1/orders/{order.id}", headers=BUYER)
    assert stored.json()["data"]["payment_status"] == "pending"

    # ASGITransport 的对端地址为 127.0.0.1
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["127.0.0.1"])
    accepted = await client.post("/api/v1/payments/webhooks/stripe", content=b"{}")
    assert accepted.json()["data"]["acknowledged"] is True
    assert accepted.json()["data"]["status"] == "paid"


@pytest.mark.asyncio
async def test_refunded_order_cannot_be_reissued(client, place_order, stripe_gateway):
    order = await place_order()
    stripe_gateway.respond_with(stripe_gateway.verdict(order))
    await client.post("/api/v1/payments/webhooks/stripe", content=b"{}")
    grant = (await client.get("/api/v1/entitlements", headers=BUYER)).json()["data"][0]

    refund = await client.post(f"/api/v1/orders/{order.id}/refund", headers=ADMIN)
    assert refund.status_code == 200

    reissue = await client.post(f"/api/v1/entitlements/{grant['id']}/reissue", headers=ADMIN)
    assert reissue.status_code == 409
    assert reissue.json()["error"]["type"] == "InvalidStateTransition"
    assert (await client.get("/api/v1/entitlements", headers=BUYER)).json()["data"] == []

    content = await client.get("/api/v1/entitlements/content", params={"token": grant["token"]}, headers=READER_HEADERS)
    assert content.status_code == 403
