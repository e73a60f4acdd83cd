"""
Order Service — event definitions

Facts about an order, named in the past tense. They are stored in the order
event log and published on the `order_events` Redis channel after commit.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class LineItemPlaced(BaseModel):
    store_product_id: UUID
    quantity: int
    unit_price: Decimal


class OrderCreated(BaseModel):
    """An order was placed and its stock taken"""
    order_id: UUID
    order_number: str
    customer_id: UUID
    items: list[LineItemPlaced]
    final_amount: Decimal
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    order_id: UUID
    previous_status: str
    status: str
    payment_status: str
    final_amount: Decimal
    actor_id: UUID
    timestamp: datetime


class OrderDeliveryFeeChanged(BaseModel):
    order_id: UUID
    delivery_fee: Decimal
    final_amount: Decimal
    actor_id: UUID
    timestamp: datetime


class StockRestored(BaseModel):
    store_product_id: UUID
    quantity: int


class OrderCancelled(BaseModel):
    """An order was cancelled and every line's stock given back (compensation)"""
    order_id: UUID
    previous_status: str
    reason: str
    restored: list[StockRestored]
    actor_id: UUID
    timestamp: datetime
