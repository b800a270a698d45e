"""Orders module — Order, OrderItem, ReturnRequest and the consumption ledger."""

from backend.orders.models import Order, OrderItem, ReturnRequest

__all__ = ["Order", "OrderItem", "ReturnRequest"]
