from pydantic import BaseModel, Field, field_validator
from typing import List, Any, Dict, Optional
from decimal import Decimal
from datetime import datetime
from rental_engine.models import CommitmentLevel, DiscountKind, DurationUnit, InvoiceStatus, OrderStatus

class QuotationLineIn(BaseModel):
    product_id: str = Field(..., example="camera-A")
    quantity: int = Field(..., gt=0, example=2)
    start_at: datetime = Field(..., example="2030-06-01T00:00:00Z")
    end_at: datetime = Field(..., example="2030-06-05T00:00:00Z")
    variants: Dict[str, Any] = Field(default_factory=dict)

class QuotationCreate(BaseModel):
    customer_id: str = Field(..., example="customer-123")
    lines: List[QuotationLineIn] = Field(..., min_length=1)
    shipping: Optional[Decimal] = Field(None, ge=0)

class CouponApply(BaseModel):
    code: str = Field(..., min_length=1, example="WELCOME10")

class InvoiceCreate(BaseModel):
    method: Optional[str] = Field(None, example="BANK_TRANSFER")

class PaymentRequest(BaseModel):
    method: Optional[str] = Field(None, example="ONLINE")

class ReturnRequest(BaseModel):
    returned_at: Optional[datetime] = None


class ReservationRead(BaseModel):
    id: str
    product_id: str
    quantity: int
    start_at: datetime
    end_at: datetime
    level: CommitmentLevel

    class Config:
        from_attributes = True


class OrderLineRead(BaseModel):
    id: str
    position: int
    product_id: str
    quantity: int
    unit_price: Decimal
    duration_unit: DurationUnit
    start_at: datetime
    end_at: datetime
    variants: Dict[str, Any]
    interval: Optional[ReservationRead] = None

    @field_validator('variants', mode='before')
    @classmethod
    def default_variants(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    class Config:
        from_attributes = True


class InvoiceRead(BaseModel):
    id: str
    order_id: str
    amount: Decimal
    status: InvoiceStatus
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: str
    number: str
    customer_id: str
    vendor_id: str
    status: OrderStatus
    currency: str
    lines: List[OrderLineRead]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    shipping: Decimal
    late_fee: Decimal
    grand_total: Decimal
    coupon_code: Optional[str] = None
    coupon_kind: Optional[DiscountKind] = None
    returned_at: Optional[datetime] = None
    invoice: Optional[InvoiceRead] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    order: OrderRead
    invoice: InvoiceRead

    class Config:
        from_attributes = True


class ReturnRead(BaseModel):
    order: OrderRead
    late_fee: Decimal

    class Config:
        from_attributes = True


class AvailabilityRead(BaseModel):
    product_id: str
    quantity: int
    start_at: datetime
    end_at: datetime
    stock: int
    reserved_units: int
    available_units: int
    is_available: bool

    class Config:
        from_attributes = True
