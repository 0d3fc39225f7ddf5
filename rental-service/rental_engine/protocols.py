"""
Collaborator interfaces.

The catalog and notification services sit outside the engine; these
protocols are what the lifecycle manager depends on. No I/O imports here.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.models import DurationUnit


@dataclass(frozen=True)
class ProductInfo:
    """Read-only view of a catalog product"""
    id: str
    vendor_id: str
    stock: int
    price: Decimal
    duration_unit: DurationUnit


@runtime_checkable
class CatalogProtocol(Protocol):

    async def get_product(self, session: AsyncSession, product_id: str) -> ProductInfo:
        """Get product by ID; raises ProductNotFoundError"""
        ...

    async def lock_products(self, session: AsyncSession, product_ids: Iterable[str]) -> Dict[str, ProductInfo]:
        """Lock product rows for the rest of the transaction"""
        ...


@runtime_checkable
class NotifierProtocol(Protocol):

    async def notify(self, routing_key: str, event: Dict[str, Any]) -> None:
        """Deliver an order event; may fail, callers never wait on it"""
        ...
