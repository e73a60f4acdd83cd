"""
Order Service — request / response models

Request bodies for the HTTP layer and the shapes handed back to callers.
Money is Decimal everywhere and quantised to cents.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from .status import PresentedStatus

CENT = Decimal("0.01")


def money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ── Requests ─────────────────────────────────────


class LineItemRequest(BaseModel):
    store_product_id: UUID
    quantity: int = Field(..., gt=0)


class PlaceOrderRequest(BaseModel):
    items: list[LineItemRequest] = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None
    customer_phone: str | None = None
    temp_cart_id: str | None = None


class StatusUpdateRequest(BaseModel):
    status: str
    payment_info: str | None = None
    payment_message: str | None = None
    payment_reference: str | None = None
    payment_method: str | None = None
    courier_contact: str | None = None
    courier_ref_id: str | None = None
    cancellation_reason: str | None = None
    delivery_fee: Decimal | None = None


class DeliveryFeeRequest(BaseModel):
    delivery_fee: Decimal


class CancelRequest(BaseModel):
    reason: str | None = None


# ── Responses ────────────────────────────────────


class OrderItemView(BaseModel):
    id: UUID
    store_product_id: UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_id: UUID | None = None
    product_name: str = "Unknown Product"
    product_type: str | None = None
    category: str | None = None
    unit: str | None = None
    farm_id: UUID | None = None
    farm_name: str | None = None


class OrderView(BaseModel):
    id: UUID
    order_number: str
    customer_id: UUID
    status: PresentedStatus
    total_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    delivery_fee: Decimal
    final_amount: Decimal
    payment_status: str
    payment_method: str | None = None
    delivery_address: str
    notes: str | None = None
    payment_info: str | None = None
    payment_message: str | None = None
    payment_reference: str | None = None
    courier_contact: str | None = None
    courier_ref_id: str | None = None
    customer_phone: str | None = None
    cancellation_reason: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    order_date: datetime
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items_details: list[OrderItemView] = Field(default_factory=list)

    @property
    def farm_id(self) -> UUID | None:
        """Orders are single-farm; the farm is the one of the first line."""
        return self.items_details[0].farm_id if self.items_details else None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    orders_per_page: int


class OrderPage(BaseModel):
    orders: list[OrderView]
    pagination: Pagination
