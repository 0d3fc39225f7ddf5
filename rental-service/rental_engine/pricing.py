"""
Pricing Engine

Pure functions over line data and configuration. Lines are anything exposing
unit_price, quantity, end_at and duration_unit (OrderLine rows included), so
totals can be recomputed from stored lines at any time.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from rental_engine.models import DiscountKind, DurationUnit

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

UNIT_LENGTHS = {
    DurationUnit.HOUR: timedelta(hours=1),
    DurationUnit.DAY: timedelta(days=1),
    DurationUnit.WEEK: timedelta(weeks=1),
    DurationUnit.MONTH: timedelta(days=30),
    DurationUnit.YEAR: timedelta(days=365),
}


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingConfig:
    tax_rate: Decimal = Decimal("0.18")
    late_fee_multiplier: Decimal = Decimal("1.0")


@dataclass(frozen=True)
class Discount:
    kind: DiscountKind
    value: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    shipping: Decimal
    late_fee: Decimal
    grand_total: Decimal


def subtotal(lines: Iterable) -> Decimal:
    return money(sum((Decimal(str(line.unit_price)) * line.quantity for line in lines), ZERO))


def tax(amount: Decimal, tax_rate: Decimal) -> Decimal:
    return money(amount * Decimal(str(tax_rate)))


def discount_amount(amount: Decimal, discount: Optional[Discount]) -> Decimal:
    """Flat amount or percentage of the subtotal, clamped to [0, subtotal]."""
    if discount is None:
        return ZERO
    value = Decimal(str(discount.value))
    if discount.kind is DiscountKind.PERCENT:
        raw = amount * value / 100
    else:
        raw = value
    return money(min(max(raw, ZERO), amount))


def periods_late(returned_at: datetime, end_at: datetime, unit: DurationUnit) -> int:
    overdue = returned_at - end_at
    if overdue <= timedelta(0):
        return 0
    return math.ceil(overdue / UNIT_LENGTHS[unit])


def line_late_fee(line, returned_at: datetime, multiplier: Decimal) -> Decimal:
    periods = periods_late(returned_at, line.end_at, line.duration_unit)
    return money(periods * Decimal(str(line.unit_price)) * Decimal(str(multiplier)))


def late_fee(lines: Iterable, returned_at: Optional[datetime], multiplier: Decimal) -> Decimal:
    if returned_at is None:
        return ZERO
    return money(sum((line_late_fee(line, returned_at, multiplier) for line in lines), ZERO))


def compute_totals(
    lines: Iterable,
    config: PricingConfig,
    discount: Optional[Discount] = None,
    shipping: Decimal = ZERO,
    returned_at: Optional[datetime] = None,
) -> Totals:
    lines = list(lines)
    sub = subtotal(lines)
    tax_amount = tax(sub, config.tax_rate)
    disc = discount_amount(sub, discount)
    ship = money(shipping)
    fee = late_fee(lines, returned_at, config.late_fee_multiplier)
    return Totals(
        subtotal=sub,
        tax=tax_amount,
        discount=disc,
        shipping=ship,
        late_fee=fee,
        grand_total=money(sub + tax_amount - disc + ship + fee),
    )


def totals_for_order(order) -> Totals:
    """Recompute an order's totals from its stored lines and pricing snapshot."""
    discount = None
    if order.coupon_kind is not None:
        discount = Discount(order.coupon_kind, order.coupon_value)
    config = PricingConfig(tax_rate=order.tax_rate, late_fee_multiplier=order.late_fee_multiplier)
    return compute_totals(order.lines, config, discount, order.shipping, order.returned_at)


def apply_totals(order, totals: Totals):
    order.subtotal = totals.subtotal
    order.tax = totals.tax
    order.discount = totals.discount
    order.shipping = totals.shipping
    order.late_fee = totals.late_fee
    order.grand_total = totals.grand_total
