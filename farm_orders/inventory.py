"""
Order Service — inventory record

Reads and adjusts the catalog's store_products rows. The catalog owns those
rows; the order engine only ever

  * reads the current price / discount / stock / availability,
  * takes stock with a conditional decrement (never below zero),
  * gives stock back when an order is cancelled.

The decrement is one UPDATE ... WHERE stock_quantity >= :qty, so two
checkouts racing for the last units cannot both succeed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Uuid, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import money
from .schema import MONEY


# typed binds / result columns so UUIDs, timestamps and Decimals behave the
# same on PostgreSQL and SQLite
def _id(name: str = "id"):
    return bindparam(name, type_=Uuid)


def _now():
    return bindparam("now", type_=DateTime(timezone=True))


_SELECT_STORE_PRODUCT = (
    text("""
        SELECT sp.id, p.name AS product_name, p.farm_id, sp.store_price,
               sp.discount_percentage, sp.stock_quantity, sp.is_available
        FROM store_products sp
        JOIN products p ON p.id = sp.product_id
        WHERE sp.id = :id
    """)
    .bindparams(_id())
    .columns(
        id=Uuid,
        product_name=String,
        farm_id=Uuid,
        store_price=MONEY,
        discount_percentage=Numeric(5, 2),
        stock_quantity=Integer,
        is_available=Boolean,
    )
)

_RESERVE = text("""
    UPDATE store_products
    SET stock_quantity = stock_quantity - :qty, updated_at = :now
    WHERE id = :id AND is_available = :available AND stock_quantity >= :qty
""").bindparams(_id(), _now(), bindparam("available", type_=Boolean))

_RELEASE = text("""
    UPDATE store_products
    SET stock_quantity = stock_quantity + :qty, updated_at = :now
    WHERE id = :id
""").bindparams(_id(), _now())

_OWNS_FARM = text(
    "SELECT 1 FROM farms WHERE id = :farm_id AND owner_id = :user_id"
).bindparams(_id("farm_id"), _id("user_id"))


class InventoryRecord(BaseModel):
    id: UUID
    product_name: str
    farm_id: UUID
    store_price: Decimal
    discount_percentage: Decimal = Decimal("0")
    stock_quantity: int
    is_available: bool

    @property
    def unit_price(self) -> Decimal:
        """Store price with the discount applied, in cents."""
        if self.discount_percentage and self.discount_percentage > 0:
            return money(self.store_price * (Decimal("100") - self.discount_percentage) / Decimal("100"))
        return money(self.store_price)


async def get_store_product(session: AsyncSession, store_product_id: UUID) -> InventoryRecord | None:
    result = await session.execute(_SELECT_STORE_PRODUCT, {"id": store_product_id})
    row = result.first()
    if not row:
        return None
    return InventoryRecord(
        id=row.id,
        product_name=row.product_name or "Unknown Product",
        farm_id=row.farm_id,
        store_price=row.store_price,
        discount_percentage=row.discount_percentage or Decimal("0"),
        stock_quantity=row.stock_quantity,
        is_available=bool(row.is_available),
    )


async def reserve_stock(session: AsyncSession, store_product_id: UUID, quantity: int) -> bool:
    """
    Take `quantity` units if they are still there.

    Returns False when the row no longer has enough stock (or is no longer
    available); the caller must abort its transaction.
    """
    result = await session.execute(
        _RESERVE,
        {
            "id": store_product_id,
            "qty": quantity,
            "available": True,
            "now": datetime.now(timezone.utc),
        },
    )
    return result.rowcount == 1


async def release_stock(session: AsyncSession, store_product_id: UUID, quantity: int) -> None:
    """Give units back (cancellation)."""
    await session.execute(
        _RELEASE,
        {"id": store_product_id, "qty": quantity, "now": datetime.now(timezone.utc)},
    )


# ── Farm ownership ───────────────────────────────


async def owns_farm(session: AsyncSession, farm_id: UUID | None, user_id: UUID | None) -> bool:
    if farm_id is None or user_id is None:
        return False
    result = await session.execute(_OWNS_FARM, {"farm_id": farm_id, "user_id": user_id})
    return result.first() is not None
