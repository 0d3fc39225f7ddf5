"""
Availability Calculator

available = stock - sum of COMMITTED/ACTIVE quantities overlapping the window,
clamped at zero. Read-only; used for previews and as the confirm() guard.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from rental_engine.clock import to_utc_naive, utcnow
from rental_engine.errors import InvalidRangeError, LineShortage
from rental_engine.interval_store import IntervalStore
from rental_engine.protocols import CatalogProtocol, ProductInfo


@dataclass(frozen=True)
class Availability:
    product_id: str
    quantity: int
    start_at: datetime
    end_at: datetime
    stock: int
    reserved_units: int
    available_units: int

    @property
    def is_available(self) -> bool:
        return self.available_units >= self.quantity


def validate_window(quantity: int, start: datetime, end: datetime, now: datetime):
    if quantity <= 0:
        raise InvalidRangeError(f"Quantity must be positive, got {quantity}")
    if end <= start:
        raise InvalidRangeError(f"Window end {end.isoformat()} must be after start {start.isoformat()}")
    if start < now:
        raise InvalidRangeError(f"Window start {start.isoformat()} is in the past")


def _overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and b_start < a_end


class AvailabilityCalculator:

    def __init__(self, catalog: CatalogProtocol, clock: Callable[[], datetime] = utcnow):
        self.catalog = catalog
        self.clock = clock

    async def available_units(
        self,
        store: IntervalStore,
        product: ProductInfo,
        start: datetime,
        end: datetime,
        exclude_order_id: Optional[str] = None,
    ) -> int:
        reserved = await store.reserved_units(product.id, start, end, exclude_order_id)
        return max(product.stock - reserved, 0)

    async def check(
        self,
        store: IntervalStore,
        product_id: str,
        quantity: int,
        start: datetime,
        end: datetime,
    ) -> Availability:
        start, end = to_utc_naive(start), to_utc_naive(end)
        validate_window(quantity, start, end, self.clock())
        product = await self.catalog.get_product(store.session, product_id)
        reserved = await store.reserved_units(product.id, start, end)
        return Availability(
            product_id=product.id,
            quantity=quantity,
            start_at=start,
            end_at=end,
            stock=product.stock,
            reserved_units=reserved,
            available_units=max(product.stock - reserved, 0),
        )

    async def shortages(self, store: IntervalStore, order, products: Dict[str, ProductInfo]) -> List[LineShortage]:
        """
        Re-check every line of an order against committed demand from other orders.

        Earlier lines of the same order on the same product count against later
        overlapping ones, so an order cannot overbook itself.
        """
        shortages = []
        accepted = defaultdict(list)
        for line in order.lines:
            product = products[line.product_id]
            available = await self.available_units(store, product, line.start_at, line.end_at, exclude_order_id=order.id)
            own = sum(
                other.quantity
                for other in accepted[line.product_id]
                if _overlaps(other.start_at, other.end_at, line.start_at, line.end_at)
            )
            available = max(available - own, 0)
            if line.quantity > available:
                shortages.append(LineShortage(line.id, line.product_id, line.quantity, available))
            else:
                accepted[line.product_id].append(line)
        return shortages
