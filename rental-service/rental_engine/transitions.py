"""
Order and reservation state machines.

Every allowed move is listed here; anything missing is an
InvalidTransitionError. Nothing else in the engine compares status strings.
"""

import enum
from typing import Dict, Tuple

from rental_engine.errors import InvalidTransitionError
from rental_engine.models import CommitmentLevel, InvoiceStatus, OrderStatus


class OrderEvent(enum.Enum):
    SEND = "send"
    CONFIRM = "confirm"
    PAY = "pay"
    PICKUP = "pickup"
    RETURN = "return"
    CANCEL = "cancel"


ORDER_TRANSITIONS: Dict[Tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.QUOTATION, OrderEvent.SEND): OrderStatus.QUOTATION_SENT,
    (OrderStatus.QUOTATION, OrderEvent.CONFIRM): OrderStatus.SALES_ORDER,
    (OrderStatus.QUOTATION_SENT, OrderEvent.CONFIRM): OrderStatus.SALES_ORDER,
    (OrderStatus.SALES_ORDER, OrderEvent.PAY): OrderStatus.PAID,
    (OrderStatus.PAID, OrderEvent.PICKUP): OrderStatus.PICKED_UP,
    (OrderStatus.PICKED_UP, OrderEvent.RETURN): OrderStatus.RETURNED,
    (OrderStatus.QUOTATION, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.QUOTATION_SENT, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.SALES_ORDER, OrderEvent.CANCEL): OrderStatus.CANCELLED,
}

# Lifecycle effect on the order's reservation intervals, per event
LEVEL_EFFECTS: Dict[OrderEvent, Tuple[Tuple[CommitmentLevel, ...], CommitmentLevel]] = {
    OrderEvent.CONFIRM: ((CommitmentLevel.PROVISIONAL,), CommitmentLevel.COMMITTED),
    OrderEvent.PICKUP: ((CommitmentLevel.COMMITTED,), CommitmentLevel.ACTIVE),
    OrderEvent.RETURN: ((CommitmentLevel.ACTIVE,), CommitmentLevel.RELEASED),
    OrderEvent.CANCEL: (
        (CommitmentLevel.PROVISIONAL, CommitmentLevel.COMMITTED, CommitmentLevel.ACTIVE),
        CommitmentLevel.RELEASED,
    ),
}

LEVEL_TRANSITIONS = {
    CommitmentLevel.PROVISIONAL: {CommitmentLevel.COMMITTED, CommitmentLevel.RELEASED},
    CommitmentLevel.COMMITTED: {CommitmentLevel.ACTIVE, CommitmentLevel.RELEASED},
    CommitmentLevel.ACTIVE: {CommitmentLevel.RELEASED},
    CommitmentLevel.RELEASED: set(),
}

INVOICE_TRANSITIONS = {
    InvoiceStatus.UNPAID: {InvoiceStatus.PAID, InvoiceStatus.VOID},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.VOID: set(),
}


def next_order_status(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    try:
        return ORDER_TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError("order", current.value, event.value)


def check_level_transition(current: CommitmentLevel, target: CommitmentLevel):
    if target not in LEVEL_TRANSITIONS[current]:
        raise InvalidTransitionError("reservation", current.value, f"move to {target.value}")


def check_invoice_transition(current: InvoiceStatus, target: InvoiceStatus):
    if target not in INVOICE_TRANSITIONS[current]:
        raise InvalidTransitionError("invoice", current.value, f"move to {target.value}")
