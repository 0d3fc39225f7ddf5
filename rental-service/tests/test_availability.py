import pytest
from datetime import datetime, timedelta, timezone

from rental_engine.errors import InsufficientStockError, InvalidRangeError, ProductNotFoundError
from rental_engine.interval_store import IntervalStore
from rental_engine.models import CommitmentLevel, Product


def jun(day):
    return datetime(2030, 6, day)


@pytest.mark.asyncio
async def test_empty_calendar_offers_full_stock(manager):
    """
    Test case 1: With no reservations the whole stock is available.
    """
    availability = await manager.check_availability("camera-A", 2, jun(1), jun(5))

    assert availability.stock == 5
    assert availability.reserved_units == 0
    assert availability.available_units == 5
    assert availability.is_available


@pytest.mark.asyncio
async def test_provisional_reservations_do_not_count(manager, quote):
    await quote()

    availability = await manager.check_availability("camera-A", 1, jun(1), jun(5))
    assert availability.available_units == 5


@pytest.mark.asyncio
async def test_committed_reservation_reduces_overlapping_window(manager, quote, advance):
    """
    Test case 2: A committed line of 3 leaves 2 for any overlapping window.
    """
    await advance(await quote(), "SALES_ORDER")

    overlapping = await manager.check_availability("camera-A", 3, jun(3), jun(7))
    assert overlapping.reserved_units == 3
    assert overlapping.available_units == 2
    assert not overlapping.is_available


@pytest.mark.asyncio
async def test_adjacent_windows_do_not_overlap(manager, quote, advance):
    """
    Test case 3: Windows are half-open, so [Jun 1, Jun 5) and [Jun 5, Jun 7) never collide.
    """
    await advance(await quote(), "SALES_ORDER")

    after = await manager.check_availability("camera-A", 5, jun(5), jun(7))
    before = await manager.check_availability("camera-A", 5, jun(1) - timedelta(days=2), jun(1))
    assert after.available_units == 5
    assert before.available_units == 5


@pytest.mark.asyncio
async def test_active_reservations_still_count(manager, quote, advance):
    await advance(await quote(), "PICKED_UP")

    availability = await manager.check_availability("camera-A", 1, jun(2), jun(3))
    assert availability.available_units == 2


@pytest.mark.asyncio
async def test_available_units_never_negative(manager, quote, advance, session_factory):
    await advance(await quote(), "SALES_ORDER")

    # Catalog shrinks below what is already committed
    async with session_factory() as session:
        product = await session.get(Product, "camera-A")
        product.stock = 1
        await session.commit()

    availability = await manager.check_availability("camera-A", 1, jun(1), jun(5))
    assert availability.reserved_units == 3
    assert availability.available_units == 0


@pytest.mark.asyncio
async def test_aware_datetimes_are_normalised_to_utc(manager, quote, advance):
    await advance(await quote(), "SALES_ORDER")

    ist = timezone(timedelta(hours=5, minutes=30))
    # 2030-06-05 05:30 IST is exactly the end of the committed window in UTC
    availability = await manager.check_availability(
        "camera-A", 1, datetime(2030, 6, 5, 5, 30, tzinfo=ist), datetime(2030, 6, 6, tzinfo=ist)
    )
    assert availability.start_at == jun(5)
    assert availability.available_units == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "quantity, start, end",
    [
        (0, jun(1), jun(5)),
        (-2, jun(1), jun(5)),
        (1, jun(5), jun(5)),
        (1, jun(5), jun(1)),
        (1, datetime(2030, 4, 30), jun(1)),
    ],
)
async def test_invalid_ranges_are_rejected(manager, quantity, start, end):
    with pytest.raises(InvalidRangeError):
        await manager.check_availability("camera-A", quantity, start, end)


@pytest.mark.asyncio
async def test_unknown_product(manager):
    with pytest.raises(ProductNotFoundError):
        await manager.check_availability("missing", 1, jun(1), jun(5))


@pytest.mark.asyncio
async def test_order_cannot_overbook_itself(manager, quote, line, vendor):
    """
    Test case 4: Two overlapping lines of one order compete for the same stock.
    """
    order = await quote(line(quantity=3), line(quantity=3, start=jun(3), end=jun(8)))

    with pytest.raises(InsufficientStockError) as exc_info:
        await manager.confirm(order.id, actor=vendor)

    [shortage] = exc_info.value.shortages
    assert shortage.line_id == order.lines[1].id
    assert shortage.requested == 3
    assert shortage.available == 2
    assert shortage.deficit == 1

    reloaded = await manager.get_order(order.id, actor=vendor)
    assert {line.interval.level for line in reloaded.lines} == {CommitmentLevel.PROVISIONAL}


@pytest.mark.asyncio
async def test_reserved_units_counts_committed_only(manager, quote, advance, session_factory):
    committed = await advance(await quote(), "SALES_ORDER")
    await quote()

    async with session_factory() as session:
        store = IntervalStore(session)
        counted = await store.reserved_units("camera-A", jun(4), jun(6))
        adjacent = await store.reserved_units("camera-A", jun(5), jun(6))
        excluded = await store.reserved_units("camera-A", jun(4), jun(6), exclude_order_id=committed.id)

    assert (counted, adjacent, excluded) == (3, 0, 0)
