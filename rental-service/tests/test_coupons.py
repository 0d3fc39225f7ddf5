import pytest
from datetime import datetime
from decimal import Decimal

from rental_engine.coupons import INVALID_COUPON_MESSAGE, normalize_code
from rental_engine.errors import AuthorizationError, InvalidCouponError, InvalidTransitionError
from rental_engine.models import Coupon, CouponRedemption
from sqlalchemy import func, select


@pytest.fixture
def thousand(quote, line):
    """Quotation with a subtotal of exactly 1000."""
    async def _thousand():
        return await quote(line(quantity=4))
    return _thousand


async def used_count(session_factory, code):
    async with session_factory() as session:
        return (await session.get(Coupon, code)).used_count


def test_normalize_code():
    assert normalize_code("  welcome10 ") == "WELCOME10"
    assert normalize_code(None) == ""


@pytest.mark.asyncio
async def test_scenario_c_coupon_is_idempotent(manager, thousand, customer, session_factory):
    """
    Test case 1: WELCOME10 on a 1000 subtotal gives 100 off, however often it is applied.
    """
    order = await thousand()
    assert order.subtotal == Decimal("1000.00")

    once = await manager.apply_coupon(order.id, "WELCOME10", actor=customer)
    twice = await manager.apply_coupon(order.id, "WELCOME10", actor=customer)
    again = await manager.apply_coupon(order.id, " welcome10 ", actor=customer)

    assert once.discount == twice.discount == again.discount == Decimal("100.00")
    assert again.grand_total == Decimal("1080.00")
    assert again.coupon_code == "WELCOME10"
    assert await used_count(session_factory, "WELCOME10") == 1

    async with session_factory() as session:
        redemptions = await session.execute(select(func.count()).select_from(CouponRedemption))
        assert redemptions.scalar_one() == 1


@pytest.mark.asyncio
async def test_fixed_coupon_and_clamping(manager, quote, line, thousand, vendor):
    order = await manager.apply_coupon((await thousand()).id, "FLAT100", actor=vendor)
    assert order.discount == Decimal("100.00")

    small = await quote(line(quantity=1))
    small = await manager.apply_coupon(small.id, "HUGE", actor=vendor)
    assert small.discount == small.subtotal == Decimal("250.00")
    assert small.grand_total == small.tax


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["NOPE", "OLD", "PAUSED", "   "])
async def test_unusable_coupons(manager, thousand, customer, code):
    """
    Test case 2: Unknown, expired, inactive or blank codes share one message.
    """
    order = await thousand()

    with pytest.raises(InvalidCouponError) as exc_info:
        await manager.apply_coupon(order.id, code, actor=customer)

    assert str(exc_info.value) == INVALID_COUPON_MESSAGE
    assert (await manager.get_order(order.id, actor=customer)).discount == Decimal("0.00")


@pytest.mark.asyncio
async def test_usage_limit(manager, thousand, customer, session_factory):
    first = await thousand()
    second = await thousand()

    await manager.apply_coupon(first.id, "ONCE", actor=customer)
    with pytest.raises(InvalidCouponError):
        await manager.apply_coupon(second.id, "ONCE", actor=customer)

    assert await used_count(session_factory, "ONCE") == 1


@pytest.mark.asyncio
async def test_one_coupon_per_order(manager, thousand, customer):
    order = await thousand()
    await manager.apply_coupon(order.id, "WELCOME10", actor=customer)

    with pytest.raises(InvalidCouponError):
        await manager.apply_coupon(order.id, "FLAT100", actor=customer)


@pytest.mark.asyncio
async def test_coupon_window(manager, thousand, quote, line, advance, customer, vendor):
    """
    Test case 3: Coupons apply until an invoice exists; later re-application is still a no-op.
    """
    order = await advance(await thousand(), "SALES_ORDER")
    order = await manager.apply_coupon(order.id, "WELCOME10", actor=customer)
    assert order.discount == Decimal("100.00")

    late = await advance(await quote(line(quantity=1, start=datetime(2030, 6, 10), end=datetime(2030, 6, 12))), "SALES_ORDER")
    await manager.create_invoice(late.id, actor=vendor)
    with pytest.raises(InvalidTransitionError):
        await manager.apply_coupon(late.id, "WELCOME10", actor=customer)

    paid = (await manager.pay(order.id, actor=customer)).order
    unchanged = await manager.apply_coupon(paid.id, "welcome10", actor=customer)
    assert unchanged.discount == Decimal("100.00")
    assert unchanged.grand_total == paid.grand_total


@pytest.mark.asyncio
async def test_coupon_authorization(manager, thousand, other_customer):
    order = await thousand()

    with pytest.raises(AuthorizationError):
        await manager.apply_coupon(order.id, "WELCOME10", actor=other_customer)
