import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from rental_engine.database import call_with_retry, store_errors
from rental_engine.errors import InvalidTransitionError, TransientStoreError
from rental_engine.models import OrderStatus


class FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "error",
    [
        OperationalError("SELECT 1", {}, Exception("connection refused")),
        PoolTimeoutError("QueuePool limit reached"),
        TimeoutError("statement timeout"),
        DBAPIError("SELECT ... FOR UPDATE", {}, FakeDriverError("40P01")),
        DBAPIError("SELECT ... FOR UPDATE", {}, FakeDriverError("55P03")),
        DBAPIError("UPDATE", {}, FakeDriverError("40001")),
    ],
)
def test_store_errors_become_transient(error):
    """
    Test case 1: Contention, timeouts and lost connections surface as TransientStoreError.
    """
    with pytest.raises(TransientStoreError):
        with store_errors():
            raise error


def test_store_errors_passes_other_failures_through():
    with pytest.raises(IntegrityError):
        with store_errors():
            raise IntegrityError("INSERT", {}, FakeDriverError("23505"))
    with pytest.raises(InvalidTransitionError):
        with store_errors():
            raise InvalidTransitionError("order", "PAID", "cancel")


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_error():
    """
    Test case 2: A transient failure is retried and the second attempt's result returned.
    """
    operation = AsyncMock(side_effect=[TransientStoreError("lock timeout"), "confirmed"])

    result = await call_with_retry(operation, "order-1", actor="vendor-1", attempts=3, backoff=0)

    assert result == "confirmed"
    assert operation.call_count == 2
    operation.assert_called_with("order-1", actor="vendor-1")


@pytest.mark.asyncio
async def test_retry_gives_up_after_attempts():
    operation = AsyncMock(side_effect=TransientStoreError("pool exhausted"))

    with pytest.raises(TransientStoreError):
        await call_with_retry(operation, attempts=3, backoff=0)

    assert operation.call_count == 3


@pytest.mark.asyncio
async def test_business_errors_are_not_retried():
    operation = AsyncMock(side_effect=InvalidTransitionError("order", "PAID", "cancel"))

    with pytest.raises(InvalidTransitionError):
        await call_with_retry(operation, attempts=5, backoff=0)

    assert operation.call_count == 1


@pytest.mark.asyncio
async def test_transient_failure_leaves_order_unchanged(manager, quote, vendor):
    """
    Test case 3: A store failure mid-confirm rolls back and a retry succeeds.
    """
    order = await quote()
    real_lock = manager.catalog.lock_products
    lock = AsyncMock(side_effect=[OperationalError("SELECT", {}, Exception("server closed the connection")), None])

    async def flaky_lock(session, product_ids):
        await lock()
        return await real_lock(session, product_ids)

    with patch.object(manager.catalog, "lock_products", new=flaky_lock):
        with pytest.raises(TransientStoreError):
            await manager.confirm(order.id, actor=vendor)
        assert (await manager.get_order(order.id, actor=vendor)).status == OrderStatus.QUOTATION

        confirmed = await call_with_retry(manager.confirm, order.id, actor=vendor, backoff=0)

    assert confirmed.status == OrderStatus.SALES_ORDER
