"""
Order Service — error taxonomy

Every failure the engine reports to a caller is an OrderError subclass.
`status_code` is what the HTTP layer answers with; `context` carries the
details a client needs to build a message (offending item, quantities,
current vs. requested status).
"""

from typing import Any


class OrderError(Exception):
    status_code = 400
    code = "order_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.context}


class ValidationError(OrderError):
    """Malformed input: missing items, bad quantity, negative fee, no address."""

    status_code = 400
    code = "validation_error"


class NotFound(OrderError):
    status_code = 404
    code = "not_found"


class InsufficientStock(OrderError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, store_product_id: Any, requested: int, available: int, name: str = "") -> None:
        label = f"'{name}'" if name else str(store_product_id)
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            store_product_id=str(store_product_id),
            requested=requested,
            available=available,
        )
        self.store_product_id = store_product_id
        self.requested = requested
        self.available = available


class AccessDenied(OrderError):
    status_code = 403
    code = "access_denied"


class InvalidStatus(OrderError):
    status_code = 400
    code = "invalid_status"


class InvalidTransition(OrderError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, message: str, current: str, requested: str) -> None:
        super().__init__(message, current_status=current, requested_status=requested)
        self.current = current
        self.requested = requested


class ConflictError(OrderError):
    """A concurrent writer got there first (stock already taken, event version used)."""

    status_code = 409
    code = "conflict"


class StorageError(OrderError):
    status_code = 500
    code = "storage_error"
