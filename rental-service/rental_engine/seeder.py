import asyncio
import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_engine.config import Settings
from rental_engine.database import init_db, make_engine, make_session_factory
from rental_engine.logging_config import setup_logging
from rental_engine.models import Coupon, DiscountKind, DurationUnit, Product

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    dict(id="camera-A", vendor_id="vendor-1", name="Mirrorless camera", stock=5, price=Decimal("250.00"), duration_unit=DurationUnit.DAY),
    dict(id="tent-B", vendor_id="vendor-1", name="Four-person tent", stock=3, price=Decimal("900.00"), duration_unit=DurationUnit.WEEK),
    dict(id="drill-C", vendor_id="vendor-2", name="Hammer drill", stock=2, price=Decimal("40.00"), duration_unit=DurationUnit.HOUR),
    dict(id="sold-out-D", vendor_id="vendor-2", name="Projector", stock=0, price=Decimal("500.00"), duration_unit=DurationUnit.DAY),
]

DEMO_COUPONS = [
    dict(code="WELCOME10", kind=DiscountKind.PERCENT, value=Decimal("10")),
    dict(code="FLAT100", kind=DiscountKind.FIXED, value=Decimal("100.00"), usage_limit=100),
]


async def seed_catalog(session_factory: async_sessionmaker) -> bool:
    """Insert demo products and coupons once; returns False when already seeded."""
    async with session_factory() as session:
        if await session.get(Product, DEMO_PRODUCTS[0]["id"]):
            logger.info("Catalog already seeded.")
            return False

        session.add_all([Product(**product) for product in DEMO_PRODUCTS])
        session.add_all([Coupon(**coupon) for coupon in DEMO_COUPONS])
        await session.commit()
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} products and {len(DEMO_COUPONS)} coupons.")
        return True


async def main():
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)
    engine = make_engine(settings)
    try:
        await init_db(engine)
        await seed_catalog(make_session_factory(engine))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
