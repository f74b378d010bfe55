"""
Exceptions raised by the order lifecycle core.

InvalidTransitionError and UnknownStatusError are raised synchronously and
must be handled by the immediate caller. ReconciliationRunFailure propagates
up to the daily job command, which logs it and exits non-zero.
"""

from datetime import date
from typing import Optional


class OrderLifecycleError(Exception):
    """Base class for all order lifecycle errors."""


class UnknownStatusError(OrderLifecycleError):
    """Raised when a value is not one of the nine order statuses."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown order status: {value!r}")


class InvalidTransitionError(OrderLifecycleError):
    """Raised when a status change is not an edge of the transition table."""

    def __init__(self, current, target, order_id: Optional[int] = None):
        self.current = getattr(current, "value", current)
        self.target = getattr(target, "value", target)
        self.order_id = order_id
        prefix = f"Order #{order_id}: " if order_id is not None else ""
        super().__init__(
            f"{prefix}cannot transition from '{self.current}' to '{self.target}'"
        )


class NotCodOrderError(OrderLifecycleError):
    """Raised when a COD workflow step is applied to a non-COD order."""

    def __init__(self, order_id: int, payment_method: Optional[str]):
        self.order_id = order_id
        self.payment_method = payment_method
        super().__init__(
            f"Order #{order_id} is not a COD order (payment method: {payment_method})"
        )


class CodCollectionError(OrderLifecycleError):
    """Raised when a COD order is completed before cash was collected."""


class VendorItemError(OrderLifecycleError):
    """Raised for invalid vendor order-item updates."""


class ReconciliationRunFailure(OrderLifecycleError):
    """Raised when the daily COD reconciliation run cannot complete.

    The run has been rolled back when this is raised; nothing from it was
    persisted.
    """

    def __init__(self, report_date: date, reason: str):
        self.report_date = report_date
        self.reason = reason
        super().__init__(
            f"COD reconciliation for {report_date.isoformat()} failed: {reason}"
        )
