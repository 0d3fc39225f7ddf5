"""
Invoice Lifecycle

One invoice per order, created no earlier than SALES_ORDER. UNPAID may move to
PAID or VOID; both are terminal. Voiding is billing-only and leaves the
order's reservations untouched.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.errors import DuplicateInvoiceError, InvalidTransitionError
from rental_engine.models import Invoice, InvoiceStatus, Order, OrderStatus
from rental_engine.transitions import check_invoice_transition

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_METHOD = "BANK_TRANSFER"
DEFAULT_PAYMENT_METHOD = "ONLINE"

INVOICEABLE_STATUSES = (
    OrderStatus.SALES_ORDER,
    OrderStatus.PAID,
    OrderStatus.PICKED_UP,
    OrderStatus.RETURNED,
)


def create_invoice(session: AsyncSession, order: Order, now: datetime, method: Optional[str] = None) -> Invoice:
    if order.invoice is not None:
        raise DuplicateInvoiceError(order.id, order.invoice.id)
    if order.status not in INVOICEABLE_STATUSES:
        raise InvalidTransitionError("order", order.status.value, "invoice")

    invoice = Invoice(
        id=str(uuid4()),
        order_id=order.id,
        amount=order.grand_total,
        status=InvoiceStatus.UNPAID,
        payment_method=method or DEFAULT_INVOICE_METHOD,
        created_at=now,
        updated_at=now,
    )
    session.add(invoice)
    order.invoice = invoice
    logger.info(f"[Order: {order.id}] Invoice {invoice.id} created for {invoice.amount}")
    return invoice


def settle_invoice(session: AsyncSession, order: Order, now: datetime, method: Optional[str] = None) -> Invoice:
    """Mark the order's invoice PAID, creating it already paid when absent."""
    invoice = order.invoice
    if invoice is None:
        invoice = Invoice(
            id=str(uuid4()),
            order_id=order.id,
            amount=order.grand_total,
            status=InvoiceStatus.PAID,
            payment_date=now,
            payment_method=method or DEFAULT_PAYMENT_METHOD,
            created_at=now,
            updated_at=now,
        )
        session.add(invoice)
        order.invoice = invoice
        return invoice

    if invoice.status is InvoiceStatus.PAID:
        return invoice
    check_invoice_transition(invoice.status, InvoiceStatus.PAID)
    invoice.status = InvoiceStatus.PAID
    invoice.payment_date = now
    if method:
        invoice.payment_method = method
    invoice.updated_at = now
    return invoice


def void_invoice(invoice: Invoice, now: datetime) -> Invoice:
    check_invoice_transition(invoice.status, InvoiceStatus.VOID)
    invoice.status = InvoiceStatus.VOID
    invoice.updated_at = now
    return invoice
