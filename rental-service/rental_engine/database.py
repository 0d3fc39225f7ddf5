import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from rental_engine.config import Settings
from rental_engine.errors import TransientStoreError

logger = logging.getLogger(__name__)

Base = declarative_base()

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03", "57014"}

T = TypeVar("T")


def make_engine(settings: Settings) -> AsyncEngine:
    kwargs = {}
    if settings.database_url.startswith("postgresql"):
        # confirm() locks product rows and then re-reads the overlap sums;
        # READ COMMITTED makes those reads see the competing commit.
        kwargs.update(isolation_level="READ COMMITTED", pool_timeout=settings.db_pool_timeout, pool_pre_ping=True)
    return create_async_engine(settings.database_url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine):
    # registers the tables on Base.metadata
    from rental_engine import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _sqlstate(error: DBAPIError):
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


@contextmanager
def store_errors():
    """Translate storage-layer contention and timeouts into TransientStoreError."""
    try:
        yield
    except PoolTimeoutError as e:
        raise TransientStoreError(f"Connection pool timeout: {e}") from e
    except TimeoutError as e:
        raise TransientStoreError(f"Store timeout: {e}") from e
    except DBAPIError as e:
        if isinstance(e, OperationalError) or e.connection_invalidated or _sqlstate(e) in TRANSIENT_SQLSTATES:
            raise TransientStoreError(f"Store unavailable: {e.orig}") from e
        raise


def store_retry(attempts: int = 3, backoff: float = 0.5) -> AsyncRetrying:
    return AsyncRetrying(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff, min=0, max=backoff * 8),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


async def call_with_retry(
    fn: Callable[..., Awaitable[T]],
    *args,
    attempts: int = 3,
    backoff: float = 0.5,
    **kwargs,
) -> T:
    """Run an engine operation, retrying only TransientStoreError with exponential backoff."""
    async for attempt in store_retry(attempts, backoff):
        with attempt:
            return await fn(*args, **kwargs)
