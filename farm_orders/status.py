"""
Order Service — status presenter

The orders table stores a small status vocabulary; callers see a richer one.

    persisted  -> presented
    shipped    -> in_transit
    pending    -> waiting_for_payment  (payment pending and payment_info set)
    pending    -> pending              (otherwise)
    *          -> *

Writes go the other way through PRESENTED_TO_PERSISTED. `on-transit` is
accepted as a spelling of `in_transit`.
"""

from enum import Enum

from .errors import InvalidStatus, StorageError
from .metadata import OrderMetadata


class PersistedStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PresentedStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    WAITING_FOR_PAYMENT = "waiting_for_payment"
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset([PersistedStatus.DELIVERED, PersistedStatus.CANCELLED])
CANCELLABLE_STATES = frozenset([PersistedStatus.PENDING, PersistedStatus.CONFIRMED])

PAYMENT_PENDING = "pending"

ALIASES = {"on-transit": "in_transit"}

PRESENTED_TO_PERSISTED = {
    PresentedStatus.PENDING: PersistedStatus.PENDING,
    PresentedStatus.CONFIRMED: PersistedStatus.CONFIRMED,
    PresentedStatus.WAITING_FOR_PAYMENT: PersistedStatus.PENDING,
    PresentedStatus.PROCESSING: PersistedStatus.PROCESSING,
    PresentedStatus.IN_TRANSIT: PersistedStatus.SHIPPED,
    PresentedStatus.DELIVERED: PersistedStatus.DELIVERED,
    PresentedStatus.CANCELLED: PersistedStatus.CANCELLED,
}

# milestone column stamped when an order first enters the status
MILESTONE_COLUMNS = {
    PersistedStatus.CONFIRMED: "confirmed_at",
    PersistedStatus.SHIPPED: "shipped_at",
    PersistedStatus.DELIVERED: "delivered_at",
}


def normalize(raw: str | PresentedStatus | None) -> PresentedStatus:
    """Parse caller input into a presented status, or raise InvalidStatus."""
    if isinstance(raw, PresentedStatus):
        return raw
    if raw is None or not str(raw).strip():
        raise InvalidStatus("Status is required")
    value = str(raw).strip().lower()
    value = ALIASES.get(value, value)
    try:
        return PresentedStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in PresentedStatus)
        raise InvalidStatus(f"Status must be one of: {allowed}", status=str(raw)) from None


def to_persisted(presented: PresentedStatus) -> tuple[PersistedStatus, str | None]:
    """
    Reverse mapping used on every write.

    Returns the status to store and the payment status to force alongside it
    (None leaves payment_status untouched).
    """
    persisted = PRESENTED_TO_PERSISTED[presented]
    payment_status = PAYMENT_PENDING if presented is PresentedStatus.WAITING_FOR_PAYMENT else None
    return persisted, payment_status


def stored(raw: str | PersistedStatus) -> PersistedStatus:
    """
    Parse a status column value. Anything outside the stored vocabulary
    (e.g. a legacy `refunded` row) is a data fault, not caller input.
    """
    if isinstance(raw, PersistedStatus):
        return raw
    try:
        return PersistedStatus(str(raw).strip().lower())
    except ValueError:
        raise StorageError("Order has an unrecognised stored status", status=str(raw)) from None


def present(
    status: str | PersistedStatus,
    payment_status: str | None,
    metadata: OrderMetadata,
) -> PresentedStatus:
    """Forward mapping used on every read."""
    base = stored(status)
    if base is PersistedStatus.SHIPPED:
        return PresentedStatus.IN_TRANSIT
    if (
        base is PersistedStatus.PENDING
        and (payment_status or "").lower() == PAYMENT_PENDING
        and metadata.has_payment_info
    ):
        return PresentedStatus.WAITING_FOR_PAYMENT
    return PresentedStatus(base.value)


def parse_filter(raw: str | None) -> PresentedStatus | None:
    """`None`, blank and `all` mean no filter."""
    if raw is None or not str(raw).strip() or str(raw).strip().lower() == "all":
        return None
    return normalize(raw)
