"""
Order Service — FastAPI entry point

Thin HTTP surface over OrderService. Authentication happens upstream; the
caller's user id arrives in the X-User-Id header.
"""

from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
import uvicorn
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from . import config
from .errors import OrderError
from .logging_config import setup_logging
from .models import (
    CancelRequest,
    DeliveryFeeRequest,
    OrderPage,
    OrderView,
    PlaceOrderRequest,
    StatusUpdateRequest,
)
from .service import OrderService


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    engine = create_async_engine(config.DATABASE_URL, echo=config.SQL_ECHO, pool_pre_ping=True)
    redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    app.state.service = OrderService(
        async_sessionmaker(engine, expire_on_commit=False),
        redis_pool,
    )
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Farm Order Service", lifespan=lifespan)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_service(request: Request) -> OrderService:
    return request.app.state.service


# ── Command Endpoints ────────────────────────────


@app.post("/orders", status_code=201, response_model=OrderView)
async def place_order(
    req: PlaceOrderRequest,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    """Checkout: turn the customer's cart into an order"""
    return await service.place_order(
        x_user_id,
        [item.model_dump() for item in req.items],
        req.delivery_address,
        req.delivery_fee,
        notes=req.notes,
        idempotency_token=req.temp_cart_id,
        customer_phone=req.customer_phone,
    )


@app.put("/orders/{order_id}/status", response_model=OrderView)
async def update_order_status(
    order_id: UUID,
    req: StatusUpdateRequest,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    extras = req.model_dump(exclude={"status"}, exclude_none=True)
    return await service.update_order_status(order_id, x_user_id, req.status, extras)


@app.put("/orders/{order_id}/delivery-fee", response_model=OrderView)
async def set_delivery_fee(
    order_id: UUID,
    req: DeliveryFeeRequest,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    return await service.set_delivery_fee(order_id, x_user_id, req.delivery_fee)


@app.put("/orders/{order_id}/cancel", response_model=OrderView)
async def cancel_order(
    order_id: UUID,
    req: CancelRequest | None = None,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    """Cancel a pending or confirmed order and give its stock back"""
    return await service.cancel_order(order_id, x_user_id, req.reason if req else None)


# ── Query Endpoints ──────────────────────────────


@app.get("/orders/my-orders", response_model=OrderPage)
async def list_my_orders(
    status: str | None = None,
    page: int = Query(1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE),
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    return await service.list_orders_by_customer(x_user_id, status, page, limit)


@app.get("/orders/farm/{farm_id}", response_model=OrderPage)
async def list_farm_orders(
    farm_id: UUID,
    status: str | None = None,
    page: int = Query(1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE),
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    await service.verify_farm_owner(farm_id, x_user_id)
    return await service.list_orders_by_farm(farm_id, status, page, limit)


@app.get("/orders/{order_id}", response_model=OrderView)
async def get_order(
    order_id: UUID,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    return await service.get_order(order_id, x_user_id)


@app.get("/orders/{order_id}/events")
async def get_order_events(
    order_id: UUID,
    x_user_id: UUID = Header(...),
    service: OrderService = Depends(get_service),
):
    """Event history of one order"""
    await service.get_order(order_id, x_user_id)
    return await service.list_order_events(order_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}


def serve() -> None:
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    serve()
