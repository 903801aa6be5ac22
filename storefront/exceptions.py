"""
Domain exceptions.

Raised by the service layer; routers translate them into HTTP responses and
the checkout orchestrator translates them into user-facing messages.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    pass


class ValidationError(StorefrontError):
    """Missing or malformed customer input. *errors* maps field -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class NotFoundError(StorefrontError):
    pass


class InsufficientStockError(StorefrontError):
    """
    One or more line items cannot be fulfilled.

    *items* is the per-item shortfall detail; *order_id* is set when the
    shortage was detected after the order record existed (it is then cancelled).
    """

    def __init__(self, items: List[Any], order_id: Optional[str] = None):
        self.items = items
        self.order_id = order_id
        super().__init__(f"Insufficient stock for {len(items)} line item(s)")


class InvalidTransitionError(StorefrontError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from {current!r} to {requested!r}")


class PartialFailureError(StorefrontError):
    """Order persisted but its stock deduction could not be completed or undone."""

    def __init__(self, order_id: str, message: str = ""):
        self.order_id = order_id
        super().__init__(message or f"Order {order_id} requires manual reconciliation")


class BackingStoreUnavailableError(StorefrontError):
    pass
