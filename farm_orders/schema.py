"""
Order Service — table definitions

orders / order_items / order_events are owned by this service.
farms, product_categories, products and store_products belong to the catalog
collaborators; they are declared here only so queries can join against them
(and so tests can create a throwaway database).
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

metadata = MetaData()

MONEY = Numeric(10, 2)

# ── Catalog (referenced, not owned) ──────────────

farms = Table(
    "farms",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("owner_id", Uuid, nullable=False),
)

product_categories = Table(
    "product_categories",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(100), nullable=False),
)

products = Table(
    "products",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("farm_id", Uuid, ForeignKey("farms.id"), nullable=False),
    Column("category_id", Uuid, ForeignKey("product_categories.id")),
    Column("unit", String(50), nullable=False, default="piece"),
    Column("product_type", String(50), nullable=False, default="produce"),
)

store_products = Table(
    "store_products",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("product_id", Uuid, ForeignKey("products.id"), nullable=False),
    Column("store_price", MONEY, nullable=False),
    Column("stock_quantity", Integer, nullable=False),
    Column("discount_percentage", Numeric(5, 2), nullable=False, default=0),
    Column("is_available", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime(timezone=True)),
)

# ── Orders (owned) ───────────────────────────────

orders = Table(
    "orders",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("order_number", String(50), nullable=False, unique=True),
    Column("customer_id", Uuid, nullable=False, index=True),
    Column("status", String(20), nullable=False, default="pending"),
    Column("total_amount", MONEY, nullable=False),
    Column("discount_amount", MONEY, nullable=False, default=0),
    Column("tax_amount", MONEY, nullable=False, default=0),
    Column("shipping_amount", MONEY, nullable=False, default=0),
    Column("final_amount", MONEY, nullable=False),
    Column("payment_status", String(20), nullable=False, default="pending"),
    Column("payment_method", String(50)),
    Column("shipping_address", Text, nullable=False),
    Column("notes", Text),
    Column("order_metadata", JSON, nullable=False, default=dict),
    Column("cart_token", String(100)),
    Column("order_date", DateTime(timezone=True), nullable=False),
    Column("confirmed_at", DateTime(timezone=True)),
    Column("shipped_at", DateTime(timezone=True)),
    Column("delivered_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    # one order per checkout cart; NULL tokens never collide
    UniqueConstraint("customer_id", "cart_token", name="uq_orders_cart_token"),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("order_id", Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("line_no", Integer, nullable=False),
    Column("store_product_id", Uuid, ForeignKey("store_products.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", MONEY, nullable=False),
    Column("total_price", MONEY, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

# Append-only history; UNIQUE(order_id, version) doubles as an optimistic lock.
order_events = Table(
    "order_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
    Column("event_type", String(50), nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("order_id", "version", name="uq_order_events_version"),
)
