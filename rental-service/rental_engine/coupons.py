from datetime import datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.errors import InvalidCouponError
from rental_engine.models import Coupon, CouponRedemption

INVALID_COUPON_MESSAGE = "Invalid or expired coupon"


def normalize_code(code: str) -> str:
    return str(code or "").strip().upper()


async def resolve_coupon(session: AsyncSession, code: str, now: datetime) -> Coupon:
    """Load a redeemable coupon, locking its row so usage counting stays exact."""
    normalized = normalize_code(code)
    if not normalized:
        raise InvalidCouponError(INVALID_COUPON_MESSAGE)

    result = await session.execute(select(Coupon).where(Coupon.code == normalized).with_for_update())
    coupon = result.scalar_one_or_none()
    if coupon is None or not coupon.is_active:
        raise InvalidCouponError(INVALID_COUPON_MESSAGE)
    if coupon.expires_at is not None and now > coupon.expires_at:
        raise InvalidCouponError(INVALID_COUPON_MESSAGE)
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise InvalidCouponError(INVALID_COUPON_MESSAGE)
    return coupon


def redeem_coupon(session: AsyncSession, coupon: Coupon, order_id: str, now: datetime) -> CouponRedemption:
    coupon.used_count = (coupon.used_count or 0) + 1
    redemption = CouponRedemption(id=str(uuid4()), coupon_code=coupon.code, order_id=order_id, created_at=now)
    session.add(redemption)
    return redemption
