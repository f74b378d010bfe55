"""
Domain events emitted by the order lifecycle core.

Events are plain dataclasses dispatched synchronously, after the database
transaction that produced them has committed. A listener that raises is
logged and skipped; it never undoes the committed change and never stops the
remaining listeners from running.

Usage:
    from marketplace_orders.events import OrderStatusChanged, get_dispatcher

    dispatcher = get_dispatcher()
    dispatcher.subscribe(OrderStatusChanged, lambda event: print(event.order_id))
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass
class OrderStatusChanged:
    """An order moved along an edge of the transition table."""
    order_id: int
    from_status: str
    to_status: str
    user_id: Optional[int] = None
    comment: Optional[str] = None
    changed_at: Optional[datetime] = None


@dataclass
class CodOrderConfirmed:
    order_id: int
    total_cents: int


@dataclass
class CodOrderOutForDelivery:
    order_id: int
    delivery_person_id: int


@dataclass
class CodPaymentCollected:
    order_id: int
    amount_cents: int
    collected_by: int
    collected_at: datetime


@dataclass
class CodDeliveryFailed:
    """A COD delivery attempt failed. attempt_number starts at 1."""
    order_id: int
    reason: str
    attempt_number: int
    rescheduled: bool = False


@dataclass
class PaymentFailed:
    order_id: int
    gateway_reference: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class OrderItemStatusUpdated:
    order_id: int
    item_id: int
    vendor_id: int
    from_status: str
    to_status: str


Listener = Callable[[object], None]


@dataclass
class EventDispatcher:
    """Synchronous in-process event dispatcher keyed by event class."""
    listeners: Dict[Type, List[Listener]] = field(default_factory=lambda: defaultdict(list))

    def subscribe(self, event_type: Type, listener: Listener) -> None:
        self.listeners[event_type].append(listener)

    def clear(self) -> None:
        self.listeners.clear()

    def dispatch(self, event: object) -> None:
        for listener in list(self.listeners.get(type(event), [])):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Listener %s failed for %s",
                    getattr(listener, "__name__", repr(listener)),
                    type(event).__name__,
                )


_dispatcher: Optional[EventDispatcher] = None


def get_dispatcher() -> EventDispatcher:
    """Return the process-wide dispatcher, registering default listeners on first use."""
    global _dispatcher
    if _dispatcher is None:
        from .listeners import register_default_listeners

        _dispatcher = EventDispatcher()
        register_default_listeners(_dispatcher)
    return _dispatcher
