import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from application.services.fulfillment import build_issuer, build_ledger, transition_and_entitle
from core.config import EntitlementSettings
from domain.common.exceptions import (
    DeviceMismatchException,
    GrantExpiredException,
    GrantRevokedException,
    IdentityMismatchException,
    InvalidTokenException,
)
from domain.entitlement.origin_policy import (
    ClientCharacteristics,
    ExactOriginPolicy,
    SubnetOriginPolicy,
    build_origin_policy,
    compute_fingerprint,
)
from domain.entitlement.service import AccessValidator
from domain.order.entity import PaymentMethod, PaymentStatus
from support import digital


EXACT = ExactOriginPolicy()
READER = ClientCharacteristics(user_agent="Reader/1.0", accept_language="bn-BD", accept_encoding="gzip", accept="*/*")
OTHER_DEVICE = ClientCharacteristics(user_agent="Other/2.0", accept_language="en-US", accept_encoding="br", accept="*/*")


@pytest.fixture
def issue_grant(uow_factory, place_order):
    async def _issue(products=(digital(),)):
        order = await place_order(method=PaymentMethod.CASH_ON_DELIVERY, products=products)
        async with uow_factory() as uow:
            result = await transition_and_entitle(uow, order.id, [PaymentStatus.PROCESSING])
        return result.grants[0]

    return _issue


async def _validate(uow_factory, token, client, origin, *, policy=EXACT, clock=None, account_id=None):
    async with uow_factory() as uow:
        kwargs = {"clock": clock} if clock else {}
        validator = AccessValidator(uow.grant_repository, policy, **kwargs)
        return await validator.validate(
            token, compute_fingerprint(client, origin, policy), origin, account_id=account_id
        )


@pytest.mark.asyncio
async def test_first_access_binds_and_same_device_is_allowed(uow_factory, issue_grant):
    grant = await issue_grant()

    first = await _validate(uow_factory, grant.token, READER, "203.0.113.7")
    again = await _validate(uow_factory, grant.token, READER, "203.0.113.7")

    assert first.first_use is True
    assert again.first_use is False
    assert again.grant.access_count == 2
    assert again.remaining > timedelta(days=364)
    async with uow_factory(readonly=True) as uow:
        stored = await uow.grant_repository.get_by_id(grant.id)
    assert stored.bound_fingerprint == compute_fingerprint(READER, "203.0.113.7", EXACT)
    assert stored.bound_origin == "203.0.113.7"
    assert stored.last_access_at is not None


@pytest.mark.asyncio
async def test_token_cannot_move_to_another_device(uow_factory, issue_grant):
    grant = await issue_grant()
    await _validate(uow_factory, grant.token, READER, "203.0.113.7")

    with pytest.raises(DeviceMismatchException):
        await _validate(uow_factory, grant.token, OTHER_DEVICE, "203.0.113.7")
    with pytest.raises(DeviceMismatchException):
        await _validate(uow_factory, grant.token, READER, "198.51.100.20")

    # 被拒绝的访问不改变绑定，也不计数
    async with uow_factory(readonly=True) as uow:
        stored = await uow.grant_repository.get_by_id(grant.id)
    assert stored.bound_fingerprint == compute_fingerprint(READER, "203.0.113.7", EXACT)
    assert stored.access_count == 1


@pytest.mark.asyncio
async def test_subnet_policy_tolerates_address_changes_within_prefix(uow_factory, issue_grant):
    policy = SubnetOriginPolicy(ipv4_prefix=24, ipv6_prefix=64)
    grant = await issue_grant()

    await _validate(uow_factory, grant.token, READER, "203.0.113.7", policy=policy)
    decision = await _validate(uow_factory, grant.token, READER, "203.0.113.200", policy=policy)
    assert decision.first_use is False

    with pytest.raises(DeviceMismatchException):
        await _validate(uow_factory, grant.token, READER, "203.0.114.7", policy=policy)


@pytest.mark.asyncio
async def test_unknown_token(uow_factory, issue_grant):
    await issue_grant()
    with pytest.raises(InvalidTokenException):
        await _validate(uow_factory, "f" * 64, READER, "203.0.113.7")
    with pytest.raises(InvalidTokenException):
        await _validate(uow_factory, "", READER, "203.0.113.7")


@pytest.mark.asyncio
async def test_revoked_grant_is_refused_even_on_bound_device(uow_factory, issue_grant):
    grant = await issue_grant()
    await _validate(uow_factory, grant.token, READER, "203.0.113.7")

    async with uow_factory() as uow:
        changed = await build_issuer(uow).revoke(grant, "buyer-1")
    assert changed is True
    async with uow_factory() as uow:
        assert await build_issuer(uow).revoke(grant, "buyer-1") is False

    with pytest.raises(GrantRevokedException):
        await _validate(uow_factory, grant.token, READER, "203.0.113.7")
    async with uow_factory(readonly=True) as uow:
        stored = await uow.grant_repository.get_by_id(grant.id)
    # 撤销不会清掉原有绑定
    assert stored.revoked is True
    assert stored.bound_fingerprint == compute_fingerprint(READER, "203.0.113.7", EXACT)
    assert stored.bound_origin == "203.0.113.7"
    assert stored.access_count == 1


@pytest.mark.asyncio
async def test_signed_in_caller_must_own_the_grant(uow_factory, issue_grant):
    grant = await issue_grant()

    with pytest.raises(IdentityMismatchException):
        await _validate(uow_factory, grant.token, READER, "203.0.113.7", account_id="buyer-2")
    async with uow_factory(readonly=True) as uow:
        stored = await uow.grant_repository.get_by_id(grant.id)
    assert stored.is_bound is False
    assert stored.access_count == 0

    decision = await _validate(uow_factory, grant.token, READER, "203.0.113.7", account_id="buyer-1")
    assert decision.first_use is True
    # 匿名访问仍凭令牌与设备判定
    again = await _validate(uow_factory, grant.token, READER, "203.0.113.7")
    assert again.grant.access_count == 2


@pytest.mark.asyncio
async def test_expired_grant_is_refused(uow_factory, issue_grant):
    grant = await issue_grant()
    future = datetime.now(timezone.utc) + timedelta(days=366)

    with pytest.raises(GrantExpiredException):
        await _validate(uow_factory, grant.token, READER, "203.0.113.7", clock=lambda: future)

    # 过期判定不绑定
    async with uow_factory(readonly=True) as uow:
        stored = await uow.grant_repository.get_by_id(grant.id)
    assert stored.bound_fingerprint is None


@pytest.mark.asyncio
async def test_concurrent_first_use_binds_exactly_one_device(uow_factory, issue_grant):
    grant = await issue_grant()

    results = await asyncio.gather(
        _validate(uow_factory, grant.token, READER, "203.0.113.7"),
        _validate(uow_factory, grant.token, OTHER_DEVICE, "198.51.100.20"),
        return_exceptions=True,
    )

    allowed = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, Exception)]
    assert len(allowed) == 1
    assert allowed[0].first_use is True
    assert len(refused) == 1
    assert isinstance(refused[0], DeviceMismatchException)


@pytest.mark.asyncio
async def test_reissue_creates_fresh_unbound_grant(uow_factory, issue_grant):
    grant = await issue_grant()
    await _validate(uow_factory, grant.token, READER, "203.0.113.7")

    async with uow_factory() as uow:
        order = await build_ledger(uow).get(grant.order_id)
        fresh = await build_issuer(uow).reissue(grant, order, "admin-1")

    assert fresh.id != grant.id
    assert fresh.token != grant.token
    assert fresh.issue_seq == 1
    assert not fresh.is_bound

    decision = await _validate(uow_factory, fresh.token, OTHER_DEVICE, "198.51.100.20")
    assert decision.first_use is True
    with pytest.raises(GrantRevokedException):
        await _validate(uow_factory, grant.token, READER, "203.0.113.7")


@pytest.mark.asyncio
async def test_issue_is_idempotent_per_order_and_product(uow_factory, place_order):
    order = await place_order(method=PaymentMethod.CASH_ON_DELIVERY)
    async with uow_factory() as uow:
        first = await transition_and_entitle(uow, order.id, [PaymentStatus.PROCESSING])
    async with uow_factory() as uow:
        second = await transition_and_entitle(uow, order.id, [])

    assert len(first.grants) == 1
    assert second.grants == []
    assert second.events == []


def test_fingerprint_is_stable_and_opaque():
    a = compute_fingerprint(READER, "203.0.113.7", EXACT)
    assert a == compute_fingerprint(READER, "203.0.113.7", EXACT)
    assert len(a) == 32
    assert "Reader" not in a
    assert a != compute_fingerprint(OTHER_DEVICE, "203.0.113.7", EXACT)


def test_exact_policy_normalizes_addresses():
    assert EXACT.normalize("::ffff:203.0.113.7") == "203.0.113.7"
    assert EXACT.normalize("2001:0db8:0000:0000:0000:0000:0000:0001") == "2001:db8::1"
    assert EXACT.matches("203.0.113.7", " 203.0.113.7 ")
    assert not EXACT.matches("203.0.113.7", "203.0.113.8")


def test_subnet_policy_requires_explicit_prefixes():
    with pytest.raises(ValueError):
        build_origin_policy("subnet")
    with pytest.raises(ValueError):
        build_origin_policy("subnet", ipv4_prefix=0, ipv6_prefix=64)
    with pytest.raises(ValueError):
        build_origin_policy("geo")
    with pytest.raises(ValueError):
        EntitlementSettings(origin_policy="subnet", subnet_ipv4_prefix=24)

    policy = build_origin_policy("subnet", ipv4_prefix=24, ipv6_prefix=48)
    assert policy.normalize("2001:db8:1:2::9") == "2001:db8:1::/48"
    assert isinstance(build_origin_policy("exact"), ExactOriginPolicy)
