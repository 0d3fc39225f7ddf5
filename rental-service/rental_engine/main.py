import logging
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from rental_engine.auth import Actor, Role
from rental_engine.config import Settings
from rental_engine.database import call_with_retry, init_db, make_engine, make_session_factory
from rental_engine.errors import (
    AuthorizationError,
    DuplicateInvoiceError,
    InsufficientStockError,
    InvalidCouponError,
    InvalidQuotationError,
    InvalidRangeError,
    InvalidTransitionError,
    NotFoundError,
    RentalEngineError,
    TransientStoreError,
)
from rental_engine.factory import build_manager
from rental_engine.lifecycle import OrderLifecycleManager, QuotationLine
from rental_engine.logging_config import setup_logging
from rental_engine.schemas import (
    AvailabilityRead,
    CouponApply,
    InvoiceCreate,
    InvoiceRead,
    OrderRead,
    PaymentRead,
    PaymentRequest,
    QuotationCreate,
    ReturnRead,
    ReturnRequest,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (InvalidRangeError, 400),
    (InvalidCouponError, 400),
    (InvalidQuotationError, 400),
    (InvalidTransitionError, 409),
    (InsufficientStockError, 409),
    (DuplicateInvoiceError, 409),
    (TransientStoreError, 503),
)


def error_status(error: RentalEngineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def error_body(error: RentalEngineError) -> dict:
    body = {"error": type(error).__name__, "detail": str(error)}
    if isinstance(error, InsufficientStockError):
        body["shortages"] = [
            {
                "line_id": s.line_id,
                "product_id": s.product_id,
                "requested": s.requested,
                "available": s.available,
                "deficit": s.deficit,
            }
            for s in error.shortages
        ]
    if isinstance(error, DuplicateInvoiceError):
        body["invoice_id"] = error.invoice_id
    return body


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_actor_role}")
    return Actor(id=x_actor_id, role=role)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    manager: Optional[OrderLifecycleManager] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if manager is None:
        engine = engine or make_engine(settings)
        manager = build_manager(make_session_factory(engine), settings)

    app = FastAPI(title="Rental Service")
    app.state.manager = manager

    async def call(fn, *args, **kwargs):
        return await call_with_retry(
            fn, *args,
            attempts=settings.store_retry_attempts,
            backoff=settings.store_retry_backoff,
            **kwargs,
        )

    @app.on_event("startup")
    async def startup_event():
        setup_logging(settings.log_level, settings.log_file)
        if engine is not None:
            await init_db(engine)
        connect = getattr(manager.notifier, "connect", None)
        if connect is not None:
            try:
                await connect()
            except Exception as e:
                # Delivery reconnects on demand; transitions never wait on it
                logger.error(f"Error setting up RabbitMQ: {e}")

    @app.on_event("shutdown")
    async def shutdown_event():
        await manager.drain()
        close = getattr(manager.notifier, "close", None)
        if close is not None:
            await close()

    @app.exception_handler(RentalEngineError)
    async def rental_error_handler(request: Request, exc: RentalEngineError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/availability", response_model=AvailabilityRead)
    async def check_availability(product_id: str, quantity: int, start_at: datetime, end_at: datetime):
        availability = await call(manager.check_availability, product_id, quantity, start_at, end_at)
        return AvailabilityRead(
            product_id=availability.product_id,
            quantity=availability.quantity,
            start_at=availability.start_at,
            end_at=availability.end_at,
            stock=availability.stock,
            reserved_units=availability.reserved_units,
            available_units=availability.available_units,
            is_available=availability.is_available,
        )

    @app.post("/api/quotations", response_model=OrderRead, status_code=201)
    async def create_quotation(quotation: QuotationCreate, actor: Actor = Depends(get_actor)):
        lines = [
            QuotationLine(
                product_id=line.product_id,
                quantity=line.quantity,
                start_at=line.start_at,
                end_at=line.end_at,
                variants=line.variants,
            )
            for line in quotation.lines
        ]
        order = await call(manager.create_quotation, quotation.customer_id, lines, actor=actor, shipping=quotation.shipping)
        return OrderRead.model_validate(order)

    @app.get("/api/orders/{order_id}", response_model=OrderRead)
    async def get_order(order_id: str, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.get_order, order_id, actor=actor))

    @app.post("/api/orders/{order_id}/send", response_model=OrderRead)
    async def send_quotation(order_id: str, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.send, order_id, actor=actor))

    @app.post("/api/orders/{order_id}/confirm", response_model=OrderRead)
    async def confirm_order(order_id: str, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.confirm, order_id, actor=actor))

    @app.post("/api/orders/{order_id}/coupon", response_model=OrderRead)
    async def apply_coupon(order_id: str, coupon: CouponApply, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.apply_coupon, order_id, coupon.code, actor=actor))

    @app.post("/api/orders/{order_id}/invoice", response_model=InvoiceRead, status_code=201)
    async def create_invoice(order_id: str, invoice: Optional[InvoiceCreate] = None, actor: Actor = Depends(get_actor)):
        method = invoice.method if invoice else None
        return InvoiceRead.model_validate(await call(manager.create_invoice, order_id, actor=actor, method=method))

    @app.post("/api/orders/{order_id}/pay", response_model=PaymentRead)
    async def pay_order(order_id: str, payment: Optional[PaymentRequest] = None, actor: Actor = Depends(get_actor)):
        method = payment.method if payment else None
        result = await call(manager.pay, order_id, actor=actor, method=method)
        return PaymentRead(order=OrderRead.model_validate(result.order), invoice=InvoiceRead.model_validate(result.invoice))

    @app.post("/api/orders/{order_id}/pickup", response_model=OrderRead)
    async def pickup_order(order_id: str, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.pickup, order_id, actor=actor))

    @app.post("/api/orders/{order_id}/return", response_model=ReturnRead)
    async def return_items(order_id: str, return_request: Optional[ReturnRequest] = None, actor: Actor = Depends(get_actor)):
        returned_at = return_request.returned_at if return_request else None
        result = await call(manager.return_items, order_id, actor=actor, returned_at=returned_at)
        return ReturnRead(order=OrderRead.model_validate(result.order), late_fee=result.late_fee)

    @app.post("/api/orders/{order_id}/cancel", response_model=OrderRead)
    async def cancel_order(order_id: str, actor: Actor = Depends(get_actor)):
        return OrderRead.model_validate(await call(manager.cancel, order_id, actor=actor))

    @app.get("/api/invoices/{invoice_id}", response_model=InvoiceRead)
    async def get_invoice(invoice_id: str, actor: Actor = Depends(get_actor)):
        return InvoiceRead.model_validate(await call(manager.get_invoice, invoice_id, actor=actor))

    @app.post("/api/invoices/{invoice_id}/void", response_model=InvoiceRead)
    async def void_invoice(invoice_id: str, actor: Actor = Depends(get_actor)):
        return InvoiceRead.model_validate(await call(manager.void_invoice, invoice_id, actor=actor))

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
