import pytest
import pytest_asyncio
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from rental_engine.auth import Actor, Role
from rental_engine.catalog import SqlCatalog
from rental_engine.database import init_db, make_session_factory
from rental_engine.lifecycle import OrderLifecycleManager, QuotationLine
from rental_engine.models import Coupon, DiscountKind, DurationUnit, Product
from rental_engine.pricing import PricingConfig

NOW = datetime(2030, 5, 1, 9, 0)


def JUN(day):
    return datetime(2030, 6, day)


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class RecordingNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    async def notify(self, routing_key, event):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.events.append((routing_key, event))


@pytest_asyncio.fixture
async def engine():
    # One shared in-memory database for every session of a test
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def catalog(session_factory):
    async with session_factory() as session:
        session.add_all([
            Product(id="camera-A", vendor_id="vendor-1", name="Camera", stock=5, price=Decimal("250.00"), duration_unit=DurationUnit.DAY),
            Product(id="tent-B", vendor_id="vendor-1", name="Tent", stock=2, price=Decimal("900.00"), duration_unit=DurationUnit.WEEK),
            Product(id="drill-C", vendor_id="vendor-2", name="Drill", stock=1, price=Decimal("40.00"), duration_unit=DurationUnit.HOUR),
            Coupon(code="WELCOME10", kind=DiscountKind.PERCENT, value=Decimal("10")),
            Coupon(code="FLAT100", kind=DiscountKind.FIXED, value=Decimal("100.00")),
            Coupon(code="HUGE", kind=DiscountKind.FIXED, value=Decimal("5000.00")),
            Coupon(code="ONCE", kind=DiscountKind.PERCENT, value=Decimal("5"), usage_limit=1),
            Coupon(code="OLD", kind=DiscountKind.PERCENT, value=Decimal("20"), expires_at=datetime(2030, 1, 1)),
            Coupon(code="PAUSED", kind=DiscountKind.PERCENT, value=Decimal("20"), is_active=False),
        ])
        await session.commit()
    return SqlCatalog()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(session_factory, catalog, clock, notifier):
    return OrderLifecycleManager(
        session_factory=session_factory,
        catalog=catalog,
        pricing_config=PricingConfig(tax_rate=Decimal("0.18"), late_fee_multiplier=Decimal("1.0")),
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def customer():
    return Actor("customer-1", Role.CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor("customer-2", Role.CUSTOMER)


@pytest.fixture
def vendor():
    return Actor("vendor-1", Role.VENDOR)


@pytest.fixture
def other_vendor():
    return Actor("vendor-2", Role.VENDOR)


@pytest.fixture
def admin():
    return Actor("admin-1", Role.ADMIN)


@pytest.fixture
def line():
    """Build a quotation line; defaults to 3 cameras for [Jun 1, Jun 5)."""
    def _line(product_id="camera-A", quantity=3, start=None, end=None, **variants):
        return QuotationLine(
            product_id=product_id,
            quantity=quantity,
            start_at=start or JUN(1),
            end_at=end or JUN(5),
            variants=variants,
        )
    return _line


@pytest.fixture
def quote(manager, customer, line):
    """Create a quotation for customer-1."""
    async def _quote(*lines, customer_id="customer-1", actor=None, **kwargs):
        return await manager.create_quotation(
            customer_id, list(lines) or [line()], actor=actor or customer, **kwargs
        )
    return _quote


@pytest.fixture
def advance(manager, customer, vendor):
    """Walk an order forward through the happy path up to the given status name."""
    steps = ["SALES_ORDER", "PAID", "PICKED_UP"]

    async def _advance(order, until):
        order = await manager.confirm(order.id, actor=vendor)
        if steps.index(until) >= 1:
            order = (await manager.pay(order.id, actor=customer)).order
        if steps.index(until) >= 2:
            order = await manager.pickup(order.id, actor=vendor)
        return order
    return _advance
