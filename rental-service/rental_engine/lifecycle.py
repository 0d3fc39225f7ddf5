"""
Order Lifecycle Manager

Drives an order from QUOTATION to RETURNED or CANCELLED. Each operation runs
in its own session and transaction: load and lock the order, check the
transition and the actor, mutate reservations and totals, commit. Any error
before the commit leaves the store untouched.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_engine import invoices, pricing
from rental_engine.auth import Actor, Role, require_customer, require_party, require_vendor
from rental_engine.availability import Availability, AvailabilityCalculator, validate_window
from rental_engine.clock import to_utc_naive, utcnow
from rental_engine.coupons import normalize_code, redeem_coupon, resolve_coupon
from rental_engine.database import store_errors
from rental_engine.errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidCouponError,
    InvalidQuotationError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    OrderNotFoundError,
)
from rental_engine.interval_store import IntervalStore
from rental_engine.models import Invoice, InvoiceStatus, Order, OrderLine, OrderStatus
from rental_engine.pricing import PricingConfig
from rental_engine.protocols import CatalogProtocol, NotifierProtocol
from rental_engine.transitions import LEVEL_EFFECTS, OrderEvent, next_order_status

logger = logging.getLogger(__name__)

# Totals may change only before an invoice mirrors them
COUPON_STATUSES = (OrderStatus.QUOTATION, OrderStatus.QUOTATION_SENT, OrderStatus.SALES_ORDER)


@dataclass
class QuotationLine:
    product_id: str
    quantity: int
    start_at: datetime
    end_at: datetime
    variants: Optional[Dict[str, Any]] = None


@dataclass
class PaymentResult:
    order: Order
    invoice: Invoice


@dataclass
class ReturnResult:
    order: Order
    late_fee: Decimal


def _order_number() -> str:
    return f"SO{uuid4().hex[:8].upper()}"


class OrderLifecycleManager:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        catalog: CatalogProtocol,
        pricing_config: PricingConfig,
        notifier: Optional[NotifierProtocol] = None,
        clock: Callable[[], datetime] = utcnow,
        default_shipping: Decimal = pricing.ZERO,
        currency: str = "INR",
    ):
        self.session_factory = session_factory
        self.catalog = catalog
        self.pricing_config = pricing_config
        self.notifier = notifier
        self.clock = clock
        self.default_shipping = default_shipping
        self.currency = currency
        self.availability = AvailabilityCalculator(catalog, clock)
        self._deliveries = set()
        self._product_locks: Dict[str, asyncio.Lock] = {}

    # Queries

    async def check_availability(self, product_id: str, quantity: int, start: datetime, end: datetime) -> Availability:
        async with self.session_factory() as session:
            with store_errors():
                return await self.availability.check(IntervalStore(session), product_id, quantity, start, end)

    async def get_order(self, order_id: str, *, actor: Actor) -> Order:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id)
        require_party(actor, order, "view order")
        return order

    async def get_invoice(self, invoice_id: str, *, actor: Actor) -> Invoice:
        """Look up by invoice id, falling back to the owning order's id."""
        async with self.session_factory() as session:
            with store_errors():
                invoice = await self._load_invoice(session, invoice_id, allow_order_id=True)
                order = await self._load_order(session, invoice.order_id)
        require_party(actor, order, "view invoice")
        return invoice

    # Transitions

    async def create_quotation(
        self,
        customer_id: str,
        lines: Sequence[QuotationLine],
        *,
        actor: Actor,
        shipping: Optional[Decimal] = None,
    ) -> Order:
        if not lines:
            raise InvalidQuotationError("A quotation needs at least one line")
        shipping = self.default_shipping if shipping is None else shipping
        if shipping < 0:
            raise InvalidQuotationError(f"Shipping must not be negative, got {shipping}")

        now = self.clock()
        async with self.session_factory() as session:
            with store_errors():
                products = {}
                for requested in lines:
                    if requested.product_id not in products:
                        products[requested.product_id] = await self.catalog.get_product(session, requested.product_id)

                vendors = {p.vendor_id for p in products.values()}
                if len(vendors) != 1:
                    raise InvalidQuotationError(f"Quotation mixes products of vendors {sorted(vendors)}")
                vendor_id = vendors.pop()

                if not (
                    actor.role is Role.ADMIN
                    or (actor.role is Role.CUSTOMER and actor.id == customer_id)
                    or (actor.role is Role.VENDOR and actor.id == vendor_id)
                ):
                    raise AuthorizationError(actor.id, "create quotation")

                order = Order(
                    id=str(uuid4()),
                    number=_order_number(),
                    customer_id=customer_id,
                    vendor_id=vendor_id,
                    status=OrderStatus.QUOTATION,
                    currency=self.currency,
                    shipping=pricing.money(shipping),
                    tax_rate=self.pricing_config.tax_rate,
                    late_fee_multiplier=self.pricing_config.late_fee_multiplier,
                    created_at=now,
                    updated_at=now,
                )
                store = IntervalStore(session)
                for position, requested in enumerate(lines):
                    start, end = to_utc_naive(requested.start_at), to_utc_naive(requested.end_at)
                    validate_window(requested.quantity, start, end, now)
                    product = products[requested.product_id]
                    line = OrderLine(
                        id=str(uuid4()),
                        order_id=order.id,
                        position=position,
                        product_id=product.id,
                        quantity=requested.quantity,
                        unit_price=product.price,
                        duration_unit=product.duration_unit,
                        start_at=start,
                        end_at=end,
                        variants=dict(requested.variants or {}),
                    )
                    order.lines.append(line)
                    store.provisional_for(line, now)

                self._reprice(order)
                session.add(order)
                await session.commit()
                order = await self._load_order(session, order.id)

        logger.info(f"[Order: {order.id}] Quotation {order.number} created with {len(order.lines)} line(s), total {order.grand_total}")
        return order

    async def send(self, order_id: str, *, actor: Actor) -> Order:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_vendor(actor, order, "send quotation")
                self._advance(order, OrderEvent.SEND)
                await session.commit()

        logger.info(f"[Order: {order.id}] Quotation sent.")
        self._notify("order.quotation_sent", "QuotationSent", order)
        return order

    async def confirm(self, order_id: str, *, actor: Actor) -> Order:
        """
        Promote every PROVISIONAL interval to COMMITTED, or none of them.

        Product rows are locked before the overlap sums are read, so two
        confirms competing for the same product run one after the other.
        Within one process the per-product guard gives the same ordering on
        stores that ignore FOR UPDATE, such as SQLite.
        """
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id)
                require_vendor(actor, order, "confirm order")
                next_order_status(order.status, OrderEvent.CONFIRM)
                product_ids = [line.product_id for line in order.lines]

                async with self._product_guard(product_ids):
                    # Re-read under the guard; a competing confirm may have committed meanwhile
                    order = await self._load_order(session, order_id, lock=True)
                    next_order_status(order.status, OrderEvent.CONFIRM)

                    store = IntervalStore(session)
                    products = await self.catalog.lock_products(session, product_ids)
                    shortages = await self.availability.shortages(store, order, products)
                    if shortages:
                        logger.warning(f"[Order: {order.id}] Confirm rejected: {[(s.line_id, s.requested, s.available) for s in shortages]}")
                        raise InsufficientStockError(shortages)

                    self._advance(order, OrderEvent.CONFIRM, store)
                    await session.commit()

        logger.info(f"[Order: {order.id}] Confirmed as sales order; {len(order.lines)} reservation(s) committed.")
        return order

    async def apply_coupon(self, order_id: str, code: str, *, actor: Actor) -> Order:
        normalized = normalize_code(code)
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_party(actor, order, "apply coupon")
                if order.coupon_code is not None and order.coupon_code == normalized:
                    return order
                if order.status not in COUPON_STATUSES or order.invoice is not None:
                    raise InvalidTransitionError("order", order.status.value, "apply coupon")
                if order.coupon_code is not None:
                    raise InvalidCouponError(f"Order already uses coupon {order.coupon_code}")

                now = self.clock()
                coupon = await resolve_coupon(session, normalized, now)
                order.coupon_code = coupon.code
                order.coupon_kind = coupon.kind
                order.coupon_value = coupon.value
                redeem_coupon(session, coupon, order.id, now)
                self._reprice(order)
                order.updated_at = now
                await session.commit()

        logger.info(f"[Order: {order.id}] Coupon {order.coupon_code} applied, discount {order.discount}")
        return order

    async def create_invoice(self, order_id: str, *, actor: Actor, method: Optional[str] = None) -> Invoice:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_vendor(actor, order, "create invoice")
                invoice = invoices.create_invoice(session, order, self.clock(), method)
                await session.commit()
        return invoice

    async def pay(self, order_id: str, *, actor: Actor, method: Optional[str] = None) -> PaymentResult:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_customer(actor, order, "pay order")
                if order.status is OrderStatus.PAID and order.invoice is not None:
                    return PaymentResult(order, order.invoice)

                next_order_status(order.status, OrderEvent.PAY)
                if order.invoice is not None and order.invoice.status is InvoiceStatus.VOID:
                    raise InvalidTransitionError("invoice", InvoiceStatus.VOID.value, "pay")
                invoice = invoices.settle_invoice(session, order, self.clock(), method)
                self._advance(order, OrderEvent.PAY)
                await session.commit()

        logger.info(f"[Order: {order.id}] Paid; invoice {invoice.id} settled for {invoice.amount}")
        self._notify("order.paid", "OrderPaid", order, invoice_id=invoice.id, amount=str(invoice.amount))
        return PaymentResult(order, invoice)

    async def pickup(self, order_id: str, *, actor: Actor) -> Order:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_vendor(actor, order, "hand over order")
                next_order_status(order.status, OrderEvent.PICKUP)
                if order.invoice is None or order.invoice.status is not InvoiceStatus.PAID:
                    raise InvalidTransitionError("order", order.status.value, "pick up without a paid invoice")
                self._advance(order, OrderEvent.PICKUP, IntervalStore(session))
                await session.commit()

        logger.info(f"[Order: {order.id}] Picked up; rental period started.")
        return order

    async def return_items(self, order_id: str, *, actor: Actor, returned_at: Optional[datetime] = None) -> ReturnResult:
        returned_at = to_utc_naive(returned_at) if returned_at is not None else self.clock()
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_vendor(actor, order, "accept return")
                self._advance(order, OrderEvent.RETURN, IntervalStore(session))
                order.returned_at = returned_at
                self._reprice(order)
                await session.commit()

        if order.late_fee > 0:
            logger.warning(f"[Order: {order.id}] Returned late; late fee {order.late_fee}")
        else:
            logger.info(f"[Order: {order.id}] Returned on time.")
        return ReturnResult(order, order.late_fee)

    async def cancel(self, order_id: str, *, actor: Actor) -> Order:
        async with self.session_factory() as session:
            with store_errors():
                order = await self._load_order(session, order_id, lock=True)
                require_party(actor, order, "cancel order")
                self._advance(order, OrderEvent.CANCEL, IntervalStore(session))
                if order.invoice is not None and order.invoice.status is InvoiceStatus.UNPAID:
                    invoices.void_invoice(order.invoice, order.updated_at)
                await session.commit()

        logger.info(f"[Order: {order.id}] Cancelled; reservations released.")
        return order

    async def void_invoice(self, invoice_id: str, *, actor: Actor) -> Invoice:
        async with self.session_factory() as session:
            with store_errors():
                invoice = await self._load_invoice(session, invoice_id, lock=True)
                order = await self._load_order(session, invoice.order_id)
                require_vendor(actor, order, "void invoice")
                invoices.void_invoice(invoice, self.clock())
                await session.commit()

        logger.info(f"[Order: {invoice.order_id}] Invoice {invoice.id} voided; reservations unchanged.")
        return invoice

    async def drain(self):
        """Wait for in-flight notifications."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    # Helpers

    @asynccontextmanager
    async def _product_guard(self, product_ids: Sequence[str]):
        """Hold this process's lock for each product, taken in id order."""
        async with AsyncExitStack() as stack:
            for product_id in sorted(set(product_ids)):
                lock = self._product_locks.setdefault(product_id, asyncio.Lock())
                await stack.enter_async_context(lock)
            yield

    async def _load_order(self, session: AsyncSession, order_id: str, lock: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update(of=Order)
        result = await session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        return order

    async def _load_invoice(self, session: AsyncSession, invoice_id: str, lock: bool = False,
                            allow_order_id: bool = False) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if lock:
            stmt = stmt.with_for_update()
        invoice = (await session.execute(stmt)).scalar_one_or_none()
        if invoice is None and allow_order_id:
            invoice = (await session.execute(select(Invoice).where(Invoice.order_id == invoice_id))).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    def _advance(self, order: Order, event: OrderEvent, store: Optional[IntervalStore] = None):
        new_status = next_order_status(order.status, event)
        now = self.clock()
        if event in LEVEL_EFFECTS:
            from_levels, target = LEVEL_EFFECTS[event]
            store.transition([line.interval for line in order.lines], from_levels, target, now)
        logger.debug(f"[Order: {order.id}] {order.status.value} -> {new_status.value}")
        order.status = new_status
        order.updated_at = now

    def _reprice(self, order: Order):
        pricing.apply_totals(order, pricing.totals_for_order(order))

    def _notify(self, routing_key: str, event_type: str, order: Order, **data):
        if self.notifier is None:
            return
        event = {
            "event_id": str(uuid4()),
            "event_type": event_type,
            "timestamp": self.clock().isoformat(),
            "order_id": order.id,
            "order_number": order.number,
            "customer_id": order.customer_id,
            "vendor_id": order.vendor_id,
            "status": order.status.value,
            "grand_total": str(order.grand_total),
            **data,
        }
        task = asyncio.create_task(self._deliver(routing_key, event))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, routing_key: str, event: Dict[str, Any]):
        try:
            await self.notifier.notify(routing_key, event)
        except Exception as e:
            logger.error(f"[Order: {event['order_id']}] Notification {routing_key} failed: {e}")
