"""
Order Service — service facade

OrderService is what the checkout flow, the operator dashboard and the HTTP
layer talk to. It is built with its storage (an async session factory) and,
optionally, a Redis connection for publishing order events, so tests can
hand it a throwaway database and no Redis at all.

Each call runs in its own session: commands commit on success; any
exception rolls the whole unit back when the session closes. Storage
failures surface as StorageError.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, config, event_store, inventory, queries
from .errors import AccessDenied, NotFound, StorageError, ValidationError
from .models import OrderPage, OrderView

logger = logging.getLogger(__name__)


def _uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}", **{field: str(value)}) from None


class OrderService:
    """Order lifecycle and inventory reconciliation"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                logger.error("Storage failure: %s", e)
                raise StorageError("Storage failure, the operation was rolled back") from e

    # ── Commands ─────────────────────────────────

    async def place_order(
        self,
        customer_id: UUID | str,
        items: Any,
        delivery_address: str | None,
        delivery_fee: Any = 0,
        notes: str | None = None,
        idempotency_token: str | None = None,
        customer_phone: str | None = None,
    ) -> OrderView:
        async with self._session() as session:
            return await commands.place_order(
                session,
                self.redis,
                _uuid(customer_id, "customer_id"),
                items,
                delivery_address,
                delivery_fee,
                notes=notes,
                idempotency_token=idempotency_token,
                customer_phone=customer_phone,
            )

    async def update_order_status(
        self,
        order_id: UUID | str,
        actor_id: UUID | str,
        status: str,
        extras: Mapping[str, Any] | None = None,
    ) -> OrderView:
        async with self._session() as session:
            return await commands.update_status(
                session,
                self.redis,
                _uuid(order_id, "order_id"),
                _uuid(actor_id, "actor_id"),
                status,
                extras,
            )

    async def set_delivery_fee(self, order_id: UUID | str, actor_id: UUID | str, fee: Any) -> OrderView:
        async with self._session() as session:
            return await commands.set_delivery_fee(
                session,
                self.redis,
                _uuid(order_id, "order_id"),
                _uuid(actor_id, "actor_id"),
                fee,
            )

    async def cancel_order(
        self,
        order_id: UUID | str,
        actor_id: UUID | str,
        reason: str | None = None,
    ) -> OrderView:
        async with self._session() as session:
            return await commands.cancel_order(
                session,
                self.redis,
                _uuid(order_id, "order_id"),
                _uuid(actor_id, "actor_id"),
                reason,
            )

    # ── Queries ──────────────────────────────────

    async def get_order(self, order_id: UUID | str, actor_id: UUID | str | None = None) -> OrderView:
        """
        Fetch one order. With an actor, only the customer who placed it or
        the owner of its farm may read it.
        """
        order_id = _uuid(order_id, "order_id")
        async with self._session() as session:
            order = await queries.get_order(session, order_id)
            if order is None:
                raise NotFound("Order not found", order_id=str(order_id))
            if actor_id is not None:
                actor_id = _uuid(actor_id, "actor_id")
                if order.customer_id != actor_id and not await inventory.owns_farm(
                    session, order.farm_id, actor_id
                ):
                    raise AccessDenied("Access denied", order_id=str(order_id))
            return order

    async def list_orders_by_customer(
        self,
        customer_id: UUID | str,
        status: str | None = None,
        page: int = 1,
        page_size: int = config.DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        async with self._session() as session:
            return await queries.list_by_customer(
                session, _uuid(customer_id, "customer_id"), status, page, page_size
            )

    async def list_orders_by_farm(
        self,
        farm_id: UUID | str,
        status: str | None = None,
        page: int = 1,
        page_size: int = config.DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        async with self._session() as session:
            return await queries.list_by_farm(session, _uuid(farm_id, "farm_id"), status, page, page_size)

    async def list_order_events(self, order_id: UUID | str) -> list[dict]:
        order_id = _uuid(order_id, "order_id")
        async with self._session() as session:
            if await queries.get_order_row(session, order_id) is None:
                raise NotFound("Order not found", order_id=str(order_id))
            return await event_store.load_events(session, order_id)

    async def verify_farm_owner(self, farm_id: UUID | str, actor_id: UUID | str) -> None:
        async with self._session() as session:
            if not await inventory.owns_farm(session, _uuid(farm_id, "farm_id"), _uuid(actor_id, "actor_id")):
                raise AccessDenied("Access denied to this farm", farm_id=str(farm_id))
