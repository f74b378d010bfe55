"""
Order Status Engine
===================

The closed set of order statuses, their display metadata, and the static
transition table that decides which status changes are legal.

Transition Table:
-----------------
    pending          -> confirmed, cancelled
    confirmed        -> processing, cancelled
    processing       -> out_for_delivery, cancelled
    out_for_delivery -> delivered, failed, cancelled
    delivered        -> completed, refunded
    completed        -> refunded
    cancelled        -> (terminal)
    refunded         -> (terminal)
    failed           -> processing, cancelled

A status never transitions to itself. Everything here is pure and stateless;
callers that actually change an order go through
services.transitions.transition_order.

Usage:
------
    from marketplace_orders.order_status import OrderStatus, can_transition

    can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)  # True
    can_transition("completed", "pending")                      # False
    OrderStatus.OUT_FOR_DELIVERY.label                          # "Out for Delivery"
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Union

from .exceptions import UnknownStatusError


class OrderStatus(str, Enum):
    """Status of an order. Declaration order is the display order."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def color(self) -> str:
        return _COLORS[self]

    @property
    def icon(self) -> str:
        return _ICONS[self]

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if this status can move to target."""
        return target in ALLOWED_TRANSITIONS[self]


StatusLike = Union[OrderStatus, str]


_LABELS: Mapping[OrderStatus, str] = MappingProxyType({
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.REFUNDED: "Refunded",
    OrderStatus.FAILED: "Failed",
})

# Badge colors used by the storefront and admin UI
_COLORS: Mapping[OrderStatus, str] = MappingProxyType({
    OrderStatus.PENDING: "yellow",
    OrderStatus.CONFIRMED: "blue",
    OrderStatus.PROCESSING: "indigo",
    OrderStatus.OUT_FOR_DELIVERY: "purple",
    OrderStatus.DELIVERED: "green",
    OrderStatus.COMPLETED: "emerald",
    OrderStatus.CANCELLED: "red",
    OrderStatus.REFUNDED: "gray",
    OrderStatus.FAILED: "red",
})

_ICONS: Mapping[OrderStatus, str] = MappingProxyType({
    OrderStatus.PENDING: "clock",
    OrderStatus.CONFIRMED: "check-circle",
    OrderStatus.PROCESSING: "package",
    OrderStatus.OUT_FOR_DELIVERY: "truck",
    OrderStatus.DELIVERED: "check-square",
    OrderStatus.COMPLETED: "check-circle-2",
    OrderStatus.CANCELLED: "x-circle",
    OrderStatus.REFUNDED: "refresh-cw",
    OrderStatus.FAILED: "alert-triangle",
})


# Valid state transitions - whitelist approach
ALLOWED_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = MappingProxyType({
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.FAILED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
})

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def coerce_status(value: StatusLike) -> OrderStatus:
    """
    Convert a raw status value to an OrderStatus.

    Raises:
        UnknownStatusError: If value is not one of the nine statuses. This
            is an integration defect, not something to retry.
    """
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise UnknownStatusError(value) from None


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    """Return True iff target is an allowed next status for current."""
    return coerce_status(target) in ALLOWED_TRANSITIONS[coerce_status(current)]


def allowed_targets(status: StatusLike) -> List[OrderStatus]:
    """Allowed next statuses for status, in declaration order."""
    targets = ALLOWED_TRANSITIONS[coerce_status(status)]
    return [s for s in OrderStatus if s in targets]


def is_terminal(status: StatusLike) -> bool:
    """Check if a status has no outgoing transitions."""
    return coerce_status(status) in TERMINAL_STATUSES


def label(status: StatusLike) -> str:
    return coerce_status(status).label


def color(status: StatusLike) -> str:
    return coerce_status(status).color


def icon(status: StatusLike) -> str:
    return coerce_status(status).icon


def all_values() -> List[str]:
    """All nine status values in declaration order."""
    return [status.value for status in OrderStatus]


def all_options() -> List[Dict[str, str]]:
    """Status value/label pairs for select inputs, in declaration order."""
    return [{"value": status.value, "label": status.label} for status in OrderStatus]
