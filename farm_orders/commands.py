"""
Order Service — command handlers (write side)

Placing an order, moving it through its statuses, editing the delivery fee
and cancelling it. Each command does all of its validation first, then its
writes, then one commit; an exception anywhere before the commit leaves the
session to be rolled back by the caller, so there is never an order without
its line items or stock taken without an order.

After the commit the matching event is published on Redis so other services
(reporting, notifications) can follow along.

    place_order      → pending                   (stock taken)
    update_status    pending / confirmed / processing / shipped → delivered
    cancel_order     pending | confirmed → cancelled  (stock given back)
"""

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import config, event_store, inventory, queries
from .errors import (
    AccessDenied,
    ConflictError,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .events import (
    LineItemPlaced,
    OrderCancelled,
    OrderCreated,
    OrderDeliveryFeeChanged,
    OrderStatusChanged,
    StockRestored,
)
from .metadata import STATUS_EXTRA_KEYS, OrderMetadata
from .models import OrderItemView, OrderView, money
from .schema import order_items, orders
from .status import (
    CANCELLABLE_STATES,
    MILESTONE_COLUMNS,
    PAYMENT_PENDING,
    TERMINAL_STATES,
    PersistedStatus,
    PresentedStatus,
    normalize,
    stored,
    to_persisted,
)

logger = logging.getLogger(__name__)


# ── Input helpers ────────────────────────────────


def _parse_items(items: Any) -> list[tuple[UUID, int]]:
    """Accept dicts or objects with store_product_id / quantity."""
    if not isinstance(items, Iterable) or isinstance(items, (str, bytes, Mapping)):
        raise ValidationError("Items array is required")
    parsed = []
    for item in items:
        if isinstance(item, Mapping):
            raw_id, quantity = item.get("store_product_id"), item.get("quantity")
        else:
            raw_id = getattr(item, "store_product_id", None)
            quantity = getattr(item, "quantity", None)
        if raw_id is None or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                "Each item must have store_product_id and positive quantity",
                store_product_id=None if raw_id is None else str(raw_id),
                quantity=quantity,
            )
        try:
            store_product_id = raw_id if isinstance(raw_id, UUID) else UUID(str(raw_id))
        except ValueError:
            raise ValidationError("Invalid store_product_id", store_product_id=str(raw_id)) from None
        parsed.append((store_product_id, quantity))
    if not parsed:
        raise ValidationError("Items array is required")
    return parsed


def _parse_fee(value: Any) -> Decimal:
    try:
        fee = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid delivery_fee", delivery_fee=str(value)) from None
    if not fee.is_finite() or fee < 0:
        raise ValidationError("Invalid delivery_fee", delivery_fee=str(value))
    return money(fee)


def _final_amount(subtotal: Any, discount: Any, tax: Any, shipping: Decimal) -> Decimal:
    return money(money(subtotal) - money(discount) + money(tax) + money(shipping))


def _order_number(order_id: UUID, now: datetime) -> str:
    return f"ORD-{now:%Y%m%d}-{order_id.hex[:6].upper()}"


async def _publish(redis: aioredis.Redis | None, event_type: str, event_data: dict) -> None:
    """Fire-and-forget; the event is already in the order event log."""
    if redis is None:
        return
    try:
        await redis.publish(
            config.ORDER_EVENTS_CHANNEL,
            json.dumps({"event_type": event_type, "data": event_data}, default=str),
        )
    except RedisError:
        logger.exception("Failed to publish %s", event_type)


async def _require_farm_owner(session: AsyncSession, items: list[OrderItemView], actor_id: UUID) -> None:
    # single-farm orders: the first line decides
    farm_id = items[0].farm_id if items else None
    if not await inventory.owns_farm(session, farm_id, actor_id):
        raise AccessDenied("Access denied to this farm", farm_id=str(farm_id) if farm_id else None)


async def _load_for_update(session: AsyncSession, order_id: UUID) -> Row:
    row = await queries.get_order_row(session, order_id, for_update=True)
    if not row:
        raise NotFound("Order not found", order_id=str(order_id))
    return row


# ── Place ────────────────────────────────────────


async def place_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    customer_id: UUID,
    items: Any,
    delivery_address: str | None,
    delivery_fee: Any = 0,
    notes: str | None = None,
    idempotency_token: str | None = None,
    customer_phone: str | None = None,
) -> OrderView:
    """
    Place an order for a customer's cart.

    1. Validate the input and every line against the inventory record
    2. Snapshot discounted unit prices, compute line totals and the total
    3. Insert the order and its lines, take the stock (conditional update)
    4. Append OrderCreated, commit, publish

    A repeated checkout of the same cart (same idempotency token) returns the
    order placed the first time without touching stock again.
    """
    lines = _parse_items(items)
    if not delivery_address or not str(delivery_address).strip():
        raise ValidationError("delivery_address is required")
    fee = _parse_fee(0 if delivery_fee is None else delivery_fee)

    if idempotency_token:
        existing = await queries.find_by_cart_token(session, customer_id, idempotency_token)
        if existing:
            logger.info("Cart %s already checked out as order %s", idempotency_token, existing.id)
            return queries.to_view(existing, await queries.get_order_items(session, existing.id))

    records: dict[UUID, inventory.InventoryRecord] = {}
    requested: dict[UUID, int] = {}
    prepared = []
    subtotal = Decimal("0.00")

    for store_product_id, quantity in lines:
        record = records.get(store_product_id)
        if record is None:
            record = await inventory.get_store_product(session, store_product_id)
            if record is None:
                raise NotFound("Store product not found", store_product_id=str(store_product_id))
            records[store_product_id] = record

        requested[store_product_id] = requested.get(store_product_id, 0) + quantity
        available = record.stock_quantity if record.is_available else 0
        if available < requested[store_product_id]:
            raise InsufficientStock(store_product_id, requested[store_product_id], available, record.product_name)

        unit_price = record.unit_price
        line_total = money(unit_price * quantity)
        subtotal += line_total
        prepared.append((store_product_id, quantity, unit_price, line_total))

    farm_ids = {record.farm_id for record in records.values()}
    if len(farm_ids) > 1:
        raise ValidationError(
            "All items of an order must come from the same farm",
            farm_ids=sorted(str(f) for f in farm_ids),
        )

    discount = tax = Decimal("0.00")
    final = _final_amount(subtotal, discount, tax, fee)
    meta = OrderMetadata().merged({"customer_phone": customer_phone, "temp_cart_id": idempotency_token})

    now = datetime.now(timezone.utc)
    order_id = uuid4()
    order_number = _order_number(order_id, now)

    try:
        await session.execute(
            insert(orders).values(
                id=order_id,
                order_number=order_number,
                customer_id=customer_id,
                status=PersistedStatus.PENDING.value,
                total_amount=money(subtotal),
                discount_amount=discount,
                tax_amount=tax,
                shipping_amount=fee,
                final_amount=final,
                payment_status=PAYMENT_PENDING,
                payment_method=config.DEFAULT_PAYMENT_METHOD,
                shipping_address=str(delivery_address).strip(),
                notes=notes,
                order_metadata=meta.encode(),
                cart_token=idempotency_token or None,
                order_date=now,
                created_at=now,
                updated_at=now,
            )
        )
    except IntegrityError:
        if not idempotency_token:
            raise
        # the same cart was checked out concurrently and that checkout committed first
        await session.rollback()
        existing = await queries.find_by_cart_token(session, customer_id, idempotency_token)
        if existing is None:
            raise
        logger.info("Cart %s checked out concurrently as order %s", idempotency_token, existing.id)
        return queries.to_view(existing, await queries.get_order_items(session, existing.id))

    for line_no, (store_product_id, quantity, unit_price, line_total) in enumerate(prepared):
        await session.execute(
            insert(order_items).values(
                id=uuid4(),
                order_id=order_id,
                line_no=line_no,
                store_product_id=store_product_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
                created_at=now,
            )
        )
        if not await inventory.reserve_stock(session, store_product_id, quantity):
            # someone else took the stock between our read and this update
            raise ConflictError(
                "Stock changed while placing the order, please retry",
                store_product_id=str(store_product_id),
                requested=quantity,
            )

    event = OrderCreated(
        order_id=order_id,
        order_number=order_number,
        customer_id=customer_id,
        items=[LineItemPlaced(store_product_id=p[0], quantity=p[1], unit_price=p[2]) for p in prepared],
        final_amount=final,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")
    await event_store.append_event(session, order_id, "OrderCreated", event_data, 0)

    await session.commit()
    logger.info(
        "Order %s placed by customer %s: %d line(s), final %s",
        order_number, customer_id, len(prepared), final,
    )

    await _publish(redis, "OrderCreated", event_data)
    return await queries.get_order(session, order_id)


# ── Transition ───────────────────────────────────


async def update_status(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: UUID,
    actor_id: UUID,
    status: str | PresentedStatus,
    extras: Mapping[str, Any] | None = None,
) -> OrderView:
    """
    Move an order to a presented status (farm owner only).

    Extras may carry payment / courier metadata, a delivery_fee override,
    a payment_method (with waiting_for_payment) and a cancellation_reason
    (with cancelled).

    Delivered and cancelled orders are final: repeating their current status
    returns the order unchanged and any extras sent with it are ignored.
    """
    extras = dict(extras or {})
    row = await _load_for_update(session, order_id)
    items = await queries.get_order_items(session, order_id)
    await _require_farm_owner(session, items, actor_id)

    presented = normalize(status)
    target, forced_payment_status = to_persisted(presented)
    current = stored(row.status)

    if current in TERMINAL_STATES:
        if target is current:
            if extras:
                logger.info(
                    "Order %s is already %s; ignoring %s",
                    row.order_number, current.value, ", ".join(sorted(extras)),
                )
            return queries.to_view(row, items)
        raise InvalidTransition(
            f"Order is already {current.value}", current.value, presented.value
        )

    if target is PersistedStatus.CANCELLED:
        if current not in CANCELLABLE_STATES:
            raise InvalidTransition(
                "Only pending or confirmed orders can be cancelled", current.value, presented.value
            )
        return await _cancel(session, redis, row, actor_id, extras.get("cancellation_reason"))

    fee = (
        _parse_fee(extras["delivery_fee"])
        if extras.get("delivery_fee") is not None
        else money(row.shipping_amount)
    )
    final = _final_amount(row.total_amount, row.discount_amount, row.tax_amount, fee)
    meta = OrderMetadata.decode(row.order_metadata).merged(
        {key: extras.get(key) for key in STATUS_EXTRA_KEYS}
    )

    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {
        "status": target.value,
        "shipping_amount": fee,
        "final_amount": final,
        "order_metadata": meta.encode(),
        "updated_at": now,
    }
    payment_status = row.payment_status
    if forced_payment_status:
        payment_status = values["payment_status"] = forced_payment_status
        if extras.get("payment_method"):
            values["payment_method"] = str(extras["payment_method"])
    milestone = MILESTONE_COLUMNS.get(target)
    if milestone and getattr(row, milestone) is None:
        values[milestone] = now

    await session.execute(update(orders).where(orders.c.id == order_id).values(**values))

    event = OrderStatusChanged(
        order_id=order_id,
        previous_status=current.value,
        status=target.value,
        payment_status=payment_status,
        final_amount=final,
        actor_id=actor_id,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")
    await event_store.append_event(session, order_id, "OrderStatusChanged", event_data)

    await session.commit()
    logger.info("Order %s: %s -> %s (presented %s)", row.order_number, current.value, target.value, presented.value)

    await _publish(redis, "OrderStatusChanged", event_data)
    return await queries.get_order(session, order_id)


async def set_delivery_fee(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: UUID,
    actor_id: UUID,
    fee: Any,
) -> OrderView:
    """Replace the delivery fee and recompute the final amount (farm owner only)."""
    if fee is None:
        raise ValidationError("Valid delivery_fee is required")
    delivery_fee = _parse_fee(fee)

    row = await _load_for_update(session, order_id)
    items = await queries.get_order_items(session, order_id)
    await _require_farm_owner(session, items, actor_id)

    final = _final_amount(row.total_amount, row.discount_amount, row.tax_amount, delivery_fee)
    now = datetime.now(timezone.utc)
    await session.execute(
        update(orders)
        .where(orders.c.id == order_id)
        .values(shipping_amount=delivery_fee, final_amount=final, updated_at=now)
    )

    event = OrderDeliveryFeeChanged(
        order_id=order_id,
        delivery_fee=delivery_fee,
        final_amount=final,
        actor_id=actor_id,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")
    await event_store.append_event(session, order_id, "OrderDeliveryFeeChanged", event_data)

    await session.commit()
    logger.info("Order %s: delivery fee set to %s, final %s", row.order_number, delivery_fee, final)

    await _publish(redis, "OrderDeliveryFeeChanged", event_data)
    return await queries.get_order(session, order_id)


# ── Cancel ───────────────────────────────────────


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: UUID,
    actor_id: UUID,
    reason: str | None = None,
) -> OrderView:
    """
    Cancel a pending or confirmed order (customer or farm owner).

    The compensating step gives every line's quantity back to its store
    product, in the same transaction as the status change.
    """
    row = await _load_for_update(session, order_id)
    current = stored(row.status)
    if current not in CANCELLABLE_STATES:
        raise InvalidTransition(
            "Only pending or confirmed orders can be cancelled",
            current.value,
            PresentedStatus.CANCELLED.value,
        )

    if row.customer_id != actor_id:
        items = await queries.get_order_items(session, order_id)
        farm_id = items[0].farm_id if items else None
        if not await inventory.owns_farm(session, farm_id, actor_id):
            raise AccessDenied("Access denied", order_id=str(order_id))

    return await _cancel(session, redis, row, actor_id, reason)


async def _cancel(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    row: Row,
    actor_id: UUID,
    reason: str | None,
) -> OrderView:
    reason = (reason or "").strip() or config.DEFAULT_CANCELLATION_REASON
    meta = OrderMetadata.decode(row.order_metadata).merged({"cancellation_reason": reason})
    now = datetime.now(timezone.utc)

    # guarded so that only one caller ever gets to restore this order's stock
    result = await session.execute(
        update(orders)
        .where(
            orders.c.id == row.id,
            orders.c.status.in_([s.value for s in CANCELLABLE_STATES]),
        )
        .values(
            status=PersistedStatus.CANCELLED.value,
            order_metadata=meta.encode(),
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        raise InvalidTransition(
            "Only pending or confirmed orders can be cancelled",
            row.status,
            PresentedStatus.CANCELLED.value,
        )

    lines = await session.execute(
        select(order_items.c.store_product_id, order_items.c.quantity)
        .where(order_items.c.order_id == row.id)
        .order_by(order_items.c.line_no.asc())
    )
    restored = []
    for line in lines.fetchall():
        await inventory.release_stock(session, line.store_product_id, line.quantity)
        restored.append(StockRestored(store_product_id=line.store_product_id, quantity=line.quantity))

    event = OrderCancelled(
        order_id=row.id,
        previous_status=row.status,
        reason=reason,
        restored=restored,
        actor_id=actor_id,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")
    await event_store.append_event(session, row.id, "OrderCancelled", event_data)

    await session.commit()
    logger.info(
        "Order %s cancelled by %s (%s); restored %d line(s)",
        row.order_number, actor_id, reason, len(restored),
    )

    await _publish(redis, "OrderCancelled", event_data)
    return await queries.get_order(session, row.id)
