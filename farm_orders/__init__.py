"""Farm marketplace order lifecycle and inventory reconciliation engine."""

from .service import OrderService

__all__ = ["OrderService"]
