"""
Shared fixtures: an in-memory SQLite database with the order and catalog
tables, a small catalog builder, and a Redis stand-in that records what
would have been published.
"""

import json
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from farm_orders import schema
from farm_orders.service import OrderService


class RecordingRedis:
    """Collects publish() calls instead of talking to a server."""

    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    def event_types(self) -> list[str]:
        return [payload["event_type"] for _, payload in self.published]


class Catalog:
    """Seeds farms and store products the way the catalog service would."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def add_farm(self, owner_id: UUID | None = None, name: str = "Green Acres") -> tuple[UUID, UUID]:
        farm_id, owner_id = uuid4(), owner_id or uuid4()
        async with self.session_factory() as session:
            await session.execute(insert(schema.farms).values(id=farm_id, name=name, owner_id=owner_id))
            await session.commit()
        return farm_id, owner_id

    async def add_item(
        self,
        farm_id: UUID,
        price: str = "12.50",
        stock: int = 10,
        discount: str = "0",
        available: bool = True,
        name: str = "Tomatoes",
        category: str | None = "Vegetables",
    ) -> UUID:
        product_id, store_product_id = uuid4(), uuid4()
        category_id = uuid4() if category else None
        async with self.session_factory() as session:
            if category:
                await session.execute(
                    insert(schema.product_categories).values(id=category_id, name=category)
                )
            await session.execute(
                insert(schema.products).values(
                    id=product_id,
                    name=name,
                    farm_id=farm_id,
                    category_id=category_id,
                    unit="kg",
                    product_type="produce",
                )
            )
            await session.execute(
                insert(schema.store_products).values(
                    id=store_product_id,
                    product_id=product_id,
                    store_price=Decimal(price),
                    stock_quantity=stock,
                    discount_percentage=Decimal(discount),
                    is_available=available,
                )
            )
            await session.commit()
        return store_product_id

    async def stock(self, store_product_id: UUID) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(schema.store_products.c.stock_quantity).where(
                    schema.store_products.c.id == store_product_id
                )
            )
            return result.scalar_one()

    async def set_price(self, store_product_id: UUID, price: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(schema.store_products)
                .where(schema.store_products.c.id == store_product_id)
                .values(store_price=Decimal(price))
            )
            await session.commit()

    async def order_count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(schema.orders.c.id))
            return len(result.fetchall())


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(schema.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def service(session_factory, redis):
    return OrderService(session_factory, redis)


@pytest.fixture
def catalog(session_factory):
    return Catalog(session_factory)


@pytest_asyncio.fixture
async def farm(catalog):
    """(farm_id, owner_id) of a farm with nothing listed yet."""
    return await catalog.add_farm()


@pytest_asyncio.fixture
async def tomatoes(catalog, farm):
    """Store product: 12.50 each, 10 in stock."""
    return await catalog.add_item(farm[0])


@pytest.fixture
def customer_id():
    return uuid4()


@pytest_asyncio.fixture
async def placed(service, tomatoes, customer_id):
    """Four tomatoes delivered for 5.00."""
    return await service.place_order(
        customer_id,
        [{"store_product_id": tomatoes, "quantity": 4}],
        "12 Orchard Lane",
        delivery_fee="5.00",
    )
