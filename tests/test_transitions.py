"""
Tests: status transitions, delivery-fee edits and cancellation
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from farm_orders.errors import (
    AccessDenied,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from farm_orders.status import PresentedStatus


# ── Status updates ───────────────────────────────


@pytest.mark.asyncio
async def test_waiting_for_payment(placed, service, farm):
    _, owner_id = farm
    order = await service.update_order_status(
        placed.id,
        owner_id,
        "waiting_for_payment",
        {"payment_info": "bkash:TXN123", "payment_method": "mobile_banking"},
    )

    assert order.status is PresentedStatus.WAITING_FOR_PAYMENT
    assert order.payment_status == "pending"
    assert order.payment_method == "mobile_banking"
    assert order.payment_info == "bkash:TXN123"

    reread = await service.get_order(placed.id)
    assert reread.status is PresentedStatus.WAITING_FOR_PAYMENT


@pytest.mark.asyncio
async def test_in_transit_alias_and_courier_details(placed, service, farm):
    _, owner_id = farm
    order = await service.update_order_status(
        placed.id,
        owner_id,
        "on-transit",
        {"courier_contact": "+8801811111111", "courier_ref_id": "PATHAO-42"},
    )

    assert order.status is PresentedStatus.IN_TRANSIT
    assert order.courier_ref_id == "PATHAO-42"
    assert order.shipped_at is not None
    assert order.delivered_at is None


@pytest.mark.asyncio
async def test_metadata_merge_keeps_earlier_keys(service, tomatoes, customer_id, farm):
    _, owner_id = farm
    placed = await service.place_order(
        customer_id,
        [{"store_product_id": tomatoes, "quantity": 1}],
        "12 Orchard Lane",
        customer_phone="017",
        idempotency_token="cart-9",
    )
    await service.update_order_status(placed.id, owner_id, "confirmed", {"payment_info": "bkash:1"})
    order = await service.update_order_status(placed.id, owner_id, "processing", {"courier_ref_id": "C1"})

    assert order.metadata == {
        "customer_phone": "017",
        "temp_cart_id": "cart-9",
        "payment_info": "bkash:1",
        "courier_ref_id": "C1",
    }
    assert order.confirmed_at is not None


@pytest.mark.asyncio
async def test_status_update_with_fee_override(placed, service, farm):
    _, owner_id = farm
    order = await service.update_order_status(placed.id, owner_id, "confirmed", {"delivery_fee": "8.25"})

    assert order.delivery_fee == Decimal("8.25")
    assert order.final_amount == Decimal("58.25")


@pytest.mark.asyncio
async def test_status_update_rejects_negative_fee(placed, service, farm):
    _, owner_id = farm
    with pytest.raises(ValidationError):
        await service.update_order_status(placed.id, owner_id, "confirmed", {"delivery_fee": -1})

    reread = await service.get_order(placed.id)
    assert reread.status is PresentedStatus.PENDING
    assert reread.final_amount == Decimal("55.00")


@pytest.mark.asyncio
async def test_invalid_status(placed, service, farm):
    _, owner_id = farm
    with pytest.raises(InvalidStatus):
        await service.update_order_status(placed.id, owner_id, "shipped")


@pytest.mark.asyncio
async def test_only_farm_owner_updates_status(placed, service, customer_id):
    with pytest.raises(AccessDenied):
        await service.update_order_status(placed.id, customer_id, "confirmed")
    with pytest.raises(AccessDenied):
        await service.update_order_status(placed.id, uuid4(), "confirmed")


@pytest.mark.asyncio
async def test_update_unknown_order(service, farm):
    with pytest.raises(NotFound):
        await service.update_order_status(uuid4(), farm[1], "confirmed")


@pytest.mark.asyncio
async def test_terminal_status_is_final(placed, service, farm):
    _, owner_id = farm
    delivered = await service.update_order_status(placed.id, owner_id, "delivered")
    assert delivered.status is PresentedStatus.DELIVERED
    assert delivered.delivered_at is not None

    again = await service.update_order_status(placed.id, owner_id, "delivered")
    assert again.updated_at == delivered.updated_at

    with pytest.raises(InvalidTransition) as exc_info:
        await service.update_order_status(placed.id, owner_id, "pending")
    assert exc_info.value.current == "delivered"
    assert exc_info.value.requested == "pending"


@pytest.mark.asyncio
async def test_repeating_final_status_ignores_extras(placed, service, farm, redis):
    _, owner_id = farm
    delivered = await service.update_order_status(placed.id, owner_id, "delivered")
    published = len(redis.published)

    again = await service.update_order_status(
        placed.id, owner_id, "delivered", {"courier_ref_id": "LATE-1", "delivery_fee": "9.00"}
    )

    assert again.courier_ref_id is None
    assert again.delivery_fee == delivered.delivery_fee == Decimal("5.00")
    assert again.final_amount == Decimal("55.00")
    assert len(redis.published) == published


@pytest.mark.asyncio
async def test_cancelling_through_status_update_restores_stock(placed, service, catalog, tomatoes, farm):
    _, owner_id = farm
    order = await service.update_order_status(
        placed.id, owner_id, "cancelled", {"cancellation_reason": "Out of season"}
    )

    assert order.status is PresentedStatus.CANCELLED
    assert order.cancellation_reason == "Out of season"
    assert await catalog.stock(tomatoes) == 10


@pytest.mark.asyncio
async def test_cancelling_shipped_order_through_status_update(placed, service, catalog, tomatoes, farm):
    _, owner_id = farm
    await service.update_order_status(placed.id, owner_id, "in_transit")

    with pytest.raises(InvalidTransition):
        await service.update_order_status(placed.id, owner_id, "cancelled")
    assert await catalog.stock(tomatoes) == 6


@pytest.mark.asyncio
async def test_status_change_events(placed, service, redis, farm):
    _, owner_id = farm
    await service.update_order_status(placed.id, owner_id, "confirmed")
    await service.update_order_status(placed.id, owner_id, "in_transit")

    events = await service.list_order_events(placed.id)
    assert [(e["event_type"], e["version"]) for e in events] == [
        ("OrderCreated", 1),
        ("OrderStatusChanged", 2),
        ("OrderStatusChanged", 3),
    ]
    assert events[-1]["event_data"]["previous_status"] == "confirmed"
    assert events[-1]["event_data"]["status"] == "shipped"
    assert redis.event_types() == ["OrderCreated", "OrderStatusChanged", "OrderStatusChanged"]


# ── Delivery fee ─────────────────────────────────


@pytest.mark.asyncio
async def test_set_delivery_fee(placed, service, farm):
    _, owner_id = farm
    order = await service.set_delivery_fee(placed.id, owner_id, "7.50")

    assert order.delivery_fee == Decimal("7.50")
    assert order.final_amount == Decimal("57.50")
    assert order.status is PresentedStatus.PENDING


@pytest.mark.asyncio
async def test_set_delivery_fee_to_zero(placed, service, farm):
    order = await service.set_delivery_fee(placed.id, farm[1], 0)
    assert order.final_amount == order.total_amount == Decimal("50.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("fee", [-0.01, "free", None])
async def test_set_delivery_fee_rejects_bad_values(placed, service, farm, fee):
    with pytest.raises(ValidationError):
        await service.set_delivery_fee(placed.id, farm[1], fee)


@pytest.mark.asyncio
async def test_set_delivery_fee_requires_farm_owner(placed, service, customer_id):
    with pytest.raises(AccessDenied):
        await service.set_delivery_fee(placed.id, customer_id, "1.00")


@pytest.mark.asyncio
async def test_totals_stay_consistent_across_edits(placed, service, farm):
    _, owner_id = farm
    await service.set_delivery_fee(placed.id, owner_id, "3.10")
    await service.update_order_status(placed.id, owner_id, "confirmed", {"delivery_fee": "4.20"})
    order = await service.update_order_status(placed.id, owner_id, "processing")

    assert order.delivery_fee == Decimal("4.20")
    assert order.final_amount == (
        order.total_amount - order.discount_amount + order.tax_amount + order.delivery_fee
    )


# ── Cancellation ─────────────────────────────────


@pytest.mark.asyncio
async def test_customer_cancels_pending_order(placed, service, catalog, tomatoes, customer_id, redis):
    order = await service.cancel_order(placed.id, customer_id)

    assert order.status is PresentedStatus.CANCELLED
    assert order.cancellation_reason == "Cancelled by user"
    assert await catalog.stock(tomatoes) == 10
    assert redis.event_types()[-1] == "OrderCancelled"


@pytest.mark.asyncio
async def test_cancel_twice_restores_once(placed, service, catalog, tomatoes, customer_id):
    await service.cancel_order(placed.id, customer_id, "Changed my mind")

    with pytest.raises(InvalidTransition) as exc_info:
        await service.cancel_order(placed.id, customer_id)

    assert exc_info.value.current == "cancelled"
    assert await catalog.stock(tomatoes) == 10

    reread = await service.get_order(placed.id)
    assert reread.cancellation_reason == "Changed my mind"


@pytest.mark.asyncio
async def test_farm_owner_cancels_confirmed_order(placed, service, catalog, tomatoes, farm):
    _, owner_id = farm
    await service.update_order_status(placed.id, owner_id, "confirmed")

    order = await service.cancel_order(placed.id, owner_id, "No courier available")
    assert order.status is PresentedStatus.CANCELLED
    assert order.cancellation_reason == "No courier available"
    assert await catalog.stock(tomatoes) == 10


@pytest.mark.asyncio
async def test_cancel_delivered_order_fails(placed, service, catalog, tomatoes, farm, customer_id):
    _, owner_id = farm
    await service.update_order_status(placed.id, owner_id, "delivered")

    with pytest.raises(InvalidTransition):
        await service.cancel_order(placed.id, customer_id)
    assert await catalog.stock(tomatoes) == 6


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(placed, service, catalog, tomatoes):
    with pytest.raises(AccessDenied):
        await service.cancel_order(placed.id, uuid4())
    assert await catalog.stock(tomatoes) == 6


@pytest.mark.asyncio
async def test_cancel_unknown_order(service, customer_id):
    with pytest.raises(NotFound):
        await service.cancel_order(uuid4(), customer_id)


@pytest.mark.asyncio
async def test_cancel_restores_every_line(service, catalog, farm, customer_id):
    eggs = await catalog.add_item(farm[0], price="6.00", stock=12, name="Eggs")
    milk = await catalog.add_item(farm[0], price="3.00", stock=5, name="Milk")
    order = await service.place_order(
        customer_id,
        [
            {"store_product_id": eggs, "quantity": 6},
            {"store_product_id": milk, "quantity": 5},
            {"store_product_id": eggs, "quantity": 2},
        ],
        "12 Orchard Lane",
    )
    assert (await catalog.stock(eggs), await catalog.stock(milk)) == (4, 0)

    await service.cancel_order(order.id, customer_id)
    assert (await catalog.stock(eggs), await catalog.stock(milk)) == (12, 5)


@pytest.mark.asyncio
async def test_stock_conservation(service, catalog, tomatoes, customer_id):
    orders = [
        await service.place_order(customer_id, [{"store_product_id": tomatoes, "quantity": q}], "12 Orchard Lane")
        for q in (2, 3, 4)
    ]
    assert await catalog.stock(tomatoes) == 1

    await service.cancel_order(orders[0].id, customer_id)
    await service.cancel_order(orders[2].id, customer_id)

    assert await catalog.stock(tomatoes) == 10 - 3
