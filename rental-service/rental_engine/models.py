from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship
import enum

from rental_engine.clock import utcnow
from rental_engine.database import Base

MONEY = Numeric(12, 2)
RATE = Numeric(8, 4)


class DurationUnit(enum.Enum):
    HOUR = "HOUR"
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"


class CommitmentLevel(enum.Enum):
    PROVISIONAL = "PROVISIONAL"
    COMMITTED = "COMMITTED"
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


# Levels that count against a product's capacity
COUNTED_LEVELS = (CommitmentLevel.COMMITTED, CommitmentLevel.ACTIVE)


class OrderStatus(enum.Enum):
    QUOTATION = "QUOTATION"
    QUOTATION_SENT = "QUOTATION_SENT"
    SALES_ORDER = "SALES_ORDER"
    PAID = "PAID"
    PICKED_UP = "PICKED_UP"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    VOID = "VOID"


class DiscountKind(enum.Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class Product(Base):
    """Catalog row; stock is the capacity ceiling and is never written by the engine."""

    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True)
    vendor_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False, default="")
    stock = Column(Integer, nullable=False)
    price = Column(MONEY, nullable=False)
    duration_unit = Column(Enum(DurationUnit), nullable=False, default=DurationUnit.DAY)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)
    number = Column(String, unique=True, nullable=False)
    customer_id = Column(String, index=True, nullable=False)
    vendor_id = Column(String, index=True, nullable=False)
    status = Column(Enum(OrderStatus), default=OrderStatus.QUOTATION, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    subtotal = Column(MONEY, nullable=False, default=0)
    tax = Column(MONEY, nullable=False, default=0)
    discount = Column(MONEY, nullable=False, default=0)
    shipping = Column(MONEY, nullable=False, default=0)
    late_fee = Column(MONEY, nullable=False, default=0)
    grand_total = Column(MONEY, nullable=False, default=0)

    # Pricing inputs snapshotted at quotation time
    tax_rate = Column(RATE, nullable=False)
    late_fee_multiplier = Column(RATE, nullable=False)
    coupon_code = Column(String, ForeignKey("coupons.code"), nullable=True)
    coupon_kind = Column(Enum(DiscountKind), nullable=True)
    coupon_value = Column(MONEY, nullable=True)

    returned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
        lazy="selectin",
    )
    invoice = relationship("Invoice", back_populates="order", uselist=False, lazy="selectin")


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(String, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    duration_unit = Column(Enum(DurationUnit), nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    variants = Column(JSON, nullable=False, default=dict)

    order = relationship("Order", back_populates="lines")
    interval = relationship(
        "ReservationInterval",
        back_populates="line",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        CheckConstraint("end_at > start_at", name="ck_order_lines_window"),
    )


class ReservationInterval(Base):
    __tablename__ = "reservation_intervals"

    id = Column(String, primary_key=True, index=True)
    order_line_id = Column(String, ForeignKey("order_lines.id", ondelete="CASCADE"), unique=True, nullable=False)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    level = Column(Enum(CommitmentLevel), default=CommitmentLevel.PROVISIONAL, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    released_at = Column(DateTime, nullable=True)

    line = relationship("OrderLine", back_populates="interval")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_intervals_quantity_positive"),
        CheckConstraint("end_at > start_at", name="ck_reservation_intervals_window"),
        Index("ix_reservation_intervals_overlap", "product_id", "start_at", "end_at", "level"),
    )


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.UNPAID, nullable=False)
    payment_date = Column(DateTime, nullable=True)
    payment_method = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="invoice")


class Coupon(Base):
    __tablename__ = "coupons"

    code = Column(String, primary_key=True)
    kind = Column(Enum(DiscountKind), nullable=False)
    value = Column(MONEY, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(String, primary_key=True)
    coupon_code = Column(String, ForeignKey("coupons.code"), index=True, nullable=False)
    # One coupon per order
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
