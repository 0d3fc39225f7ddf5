"""
Rental engine exceptions.

Business errors (range, stock, transition, coupon, authorization) are results
for the caller to act on; only TransientStoreError is worth retrying.
"""

from dataclasses import dataclass
from typing import List, Optional


class RentalEngineError(Exception):
    """Base exception for rental engine errors"""
    pass


class InvalidRangeError(RentalEngineError):
    """Malformed or past rental window, or non-positive quantity"""
    pass


@dataclass(frozen=True)
class LineShortage:
    line_id: str
    product_id: str
    requested: int
    available: int

    @property
    def deficit(self) -> int:
        return self.requested - self.available


class InsufficientStockError(RentalEngineError):
    """Capacity guard failure at confirm; lists every failing line"""

    def __init__(self, shortages: List[LineShortage]):
        self.shortages = list(shortages)
        detail = ", ".join(
            f"line {s.line_id} ({s.product_id}): requested {s.requested}, available {s.available}"
            for s in self.shortages
        )
        super().__init__(f"Insufficient stock: {detail}")


class InvalidTransitionError(RentalEngineError):
    """Illegal state change for an order, invoice or reservation"""

    def __init__(self, entity: str, current: str, action: str):
        self.entity = entity
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} {entity} in state {current}")


class DuplicateInvoiceError(RentalEngineError):
    """An invoice already exists for the order"""

    def __init__(self, order_id: str, invoice_id: str):
        self.order_id = order_id
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} already exists for order {order_id}")


class TransientStoreError(RentalEngineError):
    """Storage-layer contention or timeout; safe to retry"""
    pass


class AuthorizationError(RentalEngineError):
    """Actor not permitted for the requested operation"""

    def __init__(self, actor_id: Optional[str], action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not allowed to {action}")


class InvalidCouponError(RentalEngineError):
    """Unknown, inactive, expired, exhausted or conflicting coupon"""
    pass


class InvalidQuotationError(RentalEngineError):
    """Quotation request that can never become a valid order"""
    pass


class NotFoundError(RentalEngineError):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass
