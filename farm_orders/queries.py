"""
Order Service — query handlers (read side)

Single-order reads and paginated listings by customer or by farm. Every
returned order carries its enriched line items and its *presented* status;
status filters arrive in presented terms and are translated into predicates
on the stored status, payment status and metadata.
"""

import math
from uuid import UUID

from sqlalchemy import and_, exists, func, select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .errors import ValidationError
from .metadata import OrderMetadata
from .models import OrderItemView, OrderPage, OrderView, Pagination, money
from .schema import farms, order_items, orders, product_categories, products, store_products
from .status import PAYMENT_PENDING, PersistedStatus, PresentedStatus, parse_filter, present, to_persisted


def to_view(row: Row, items: list[OrderItemView]) -> OrderView:
    meta = OrderMetadata.decode(row.order_metadata)
    return OrderView(
        id=row.id,
        order_number=row.order_number,
        customer_id=row.customer_id,
        status=present(row.status, row.payment_status, meta),
        total_amount=money(row.total_amount),
        discount_amount=money(row.discount_amount),
        tax_amount=money(row.tax_amount),
        delivery_fee=money(row.shipping_amount),
        final_amount=money(row.final_amount),
        payment_status=row.payment_status,
        payment_method=row.payment_method,
        delivery_address=row.shipping_address,
        notes=row.notes,
        payment_info=meta.payment_info,
        payment_message=meta.payment_message,
        payment_reference=meta.payment_reference,
        courier_contact=meta.courier_contact,
        courier_ref_id=meta.courier_ref_id,
        customer_phone=meta.customer_phone,
        cancellation_reason=meta.cancellation_reason,
        metadata=meta.encode(),
        order_date=row.order_date,
        confirmed_at=row.confirmed_at,
        shipped_at=row.shipped_at,
        delivered_at=row.delivered_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        items_details=items,
    )


async def get_order_row(session: AsyncSession, order_id: UUID, for_update: bool = False) -> Row | None:
    stmt = select(orders).where(orders.c.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.first()


async def get_order_items(session: AsyncSession, order_id: UUID) -> list[OrderItemView]:
    """Line items joined with product, category and farm, in placement order."""
    result = await session.execute(
        select(
            order_items.c.id,
            order_items.c.store_product_id,
            order_items.c.quantity,
            order_items.c.unit_price,
            order_items.c.total_price,
            products.c.id.label("product_id"),
            products.c.name.label("product_name"),
            products.c.product_type,
            products.c.unit,
            product_categories.c.name.label("category"),
            farms.c.id.label("farm_id"),
            farms.c.name.label("farm_name"),
        )
        .select_from(
            order_items.join(store_products, order_items.c.store_product_id == store_products.c.id)
            .join(products, store_products.c.product_id == products.c.id)
            .outerjoin(product_categories, products.c.category_id == product_categories.c.id)
            .outerjoin(farms, products.c.farm_id == farms.c.id)
        )
        .where(order_items.c.order_id == order_id)
        .order_by(order_items.c.line_no.asc())
    )
    return [
        OrderItemView(
            id=row.id,
            store_product_id=row.store_product_id,
            quantity=row.quantity,
            unit_price=money(row.unit_price),
            total_price=money(row.total_price),
            product_id=row.product_id,
            product_name=row.product_name or "Unknown Product",
            product_type=row.product_type,
            category=row.category,
            unit=row.unit,
            farm_id=row.farm_id,
            farm_name=row.farm_name,
        )
        for row in result.fetchall()
    ]


async def get_order(session: AsyncSession, order_id: UUID) -> OrderView | None:
    row = await get_order_row(session, order_id)
    if not row:
        return None
    return to_view(row, await get_order_items(session, order_id))


async def find_by_cart_token(session: AsyncSession, customer_id: UUID, token: str) -> Row | None:
    """The order a customer already placed from the given checkout cart, if any."""
    result = await session.execute(
        select(orders).where(orders.c.customer_id == customer_id, orders.c.cart_token == token)
    )
    return result.first()


# ── Listings ─────────────────────────────────────


def status_clause(presented: PresentedStatus):
    if presented is PresentedStatus.WAITING_FOR_PAYMENT:
        payment_info = orders.c.order_metadata["payment_info"].as_string()
        return and_(
            orders.c.status == PersistedStatus.PENDING.value,
            orders.c.payment_status == PAYMENT_PENDING,
            func.trim(func.coalesce(payment_info, "")) != "",
        )
    persisted, _ = to_persisted(presented)
    return orders.c.status == persisted.value


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be 1 or greater", page=page)
    if not 1 <= page_size <= config.MAX_PAGE_SIZE:
        raise ValidationError(
            f"page_size must be between 1 and {config.MAX_PAGE_SIZE}", page_size=page_size
        )


async def _list_orders(
    session: AsyncSession,
    where: list,
    status: str | None,
    page: int,
    page_size: int,
) -> OrderPage:
    _check_paging(page, page_size)
    presented = parse_filter(status)
    if presented is not None:
        where = [*where, status_clause(presented)]

    total = (
        await session.execute(select(func.count()).select_from(orders).where(*where))
    ).scalar_one()

    result = await session.execute(
        select(orders)
        .where(*where)
        .order_by(orders.c.order_date.desc(), orders.c.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    views = [to_view(row, await get_order_items(session, row.id)) for row in result.fetchall()]

    return OrderPage(
        orders=views,
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / page_size),
            total_orders=total,
            orders_per_page=page_size,
        ),
    )


async def list_by_customer(
    session: AsyncSession,
    customer_id: UUID,
    status: str | None = None,
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
) -> OrderPage:
    return await _list_orders(session, [orders.c.customer_id == customer_id], status, page, page_size)


async def list_by_farm(
    session: AsyncSession,
    farm_id: UUID,
    status: str | None = None,
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
) -> OrderPage:
    """Orders with at least one line item sold by the farm."""
    has_farm_item = exists().where(
        order_items.c.order_id == orders.c.id,
        order_items.c.store_product_id == store_products.c.id,
        store_products.c.product_id == products.c.id,
        products.c.farm_id == farm_id,
    )
    return await _list_orders(session, [has_farm_item], status, page, page_size)
