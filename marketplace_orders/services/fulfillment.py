"""
Fulfillment events: carrier tracking, payment gateway outcomes and vendor
order-item updates.

These are the external signals that move an order. Each handler records the
signal first and then asks the transition table whether the order may move:

- Shipment events map carrier statuses to order statuses. A carrier
  repeating the status the order already has is a no-op.
- Payment events update the payment status and confirm or refund the order.
- Vendor item updates roll the order status up from its items.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..events import EventDispatcher, OrderItemStatusUpdated, PaymentFailed, get_dispatcher
from ..exceptions import VendorItemError
from ..models import Order, OrderItem, Shipment
from ..order_status import OrderStatus, can_transition, coerce_status
from ..schemas.orders import PaymentEvent, ShipmentEvent, TransitionResult
from .transitions import dispatch_transitions, transition_order

logger = logging.getLogger(__name__)


# Carrier statuses that move the order; the rest are recorded as evidence only
SHIPMENT_STATUS_TARGETS = {
    "out_for_delivery": OrderStatus.OUT_FOR_DELIVERY,
    "delivered": OrderStatus.DELIVERED,
    "failed": OrderStatus.FAILED,
}

# Order statuses that are already past a carrier status; a late update is a no-op
_PASSED_BY = {
    OrderStatus.OUT_FOR_DELIVERY: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
}

VENDOR_ITEM_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "ready_to_ship",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
)


def find_order_by_tracking_number(db: Session, tracking_number: str) -> Optional[Order]:
    """Look up an order by its own tracking number or one of its shipments'."""
    order = db.query(Order).filter(Order.tracking_number == tracking_number).first()
    if order is not None:
        return order
    shipment = db.query(Shipment).filter(Shipment.tracking_number == tracking_number).first()
    return shipment.order if shipment is not None else None


def _record_shipment(db: Session, order: Order, event: ShipmentEvent) -> Shipment:
    shipment = (
        db.query(Shipment)
        .filter(Shipment.order_id == order.id, Shipment.tracking_number == event.tracking_number)
        .first()
    )
    if shipment is None:
        shipment = Shipment(order_id=order.id, tracking_number=event.tracking_number)
        db.add(shipment)

    occurred_at = event.occurred_at or datetime.now(timezone.utc)
    shipment.status = event.status
    shipment.carrier = event.carrier or shipment.carrier
    shipment.last_tracking_update = occurred_at
    if event.status == "delivered":
        shipment.delivered_at = occurred_at
    shipment.tracking_events = list(shipment.tracking_events or []) + [{
        "status": event.status,
        "occurred_at": occurred_at.isoformat(),
        "description": event.description,
    }]

    if not order.tracking_number:
        order.tracking_number = event.tracking_number
    if event.carrier and not order.shipping_carrier:
        order.shipping_carrier = event.carrier

    return shipment


def apply_shipment_event(
    db: Session,
    order: Order,
    event: ShipmentEvent,
    *,
    dispatcher: Optional[EventDispatcher] = None,
) -> Optional[TransitionResult]:
    """
    Record a carrier tracking update and move the order when it maps to a status.

    The tracking evidence is committed even if the order cannot move. A
    carrier repeating the current status, or reporting one the order has
    already moved past (a late "delivered" for a completed order), leaves the
    order as it is.

    Returns:
        The transition taken, or None when the order did not change

    Raises:
        InvalidTransitionError: If the carrier status implies an illegal move
    """
    _record_shipment(db, order, event)
    db.commit()
    logger.info(
        "Shipment %s for order #%d: %s",
        event.tracking_number,
        order.id,
        event.status,
    )

    target = SHIPMENT_STATUS_TARGETS.get(event.status)
    if target is None:
        return None
    current = coerce_status(order.status)
    if current == target:
        return None
    if current in _PASSED_BY.get(target, ()):
        logger.info(
            "Ignoring late carrier status %s for order #%d, already %s",
            event.status,
            order.id,
            current.value,
        )
        return None

    return transition_order(
        db, order, target,
        comment=f"Carrier update ({event.carrier or 'unknown carrier'}): {event.status}",
        dispatcher=dispatcher,
    )


def apply_payment_event(
    db: Session,
    order: Order,
    event: PaymentEvent,
    *,
    dispatcher: Optional[EventDispatcher] = None,
) -> Optional[TransitionResult]:
    """
    Apply a payment gateway outcome.

    - succeeded: payment status paid; a pending order is confirmed
    - failed: payment status failed, PaymentFailed is emitted, status unchanged
    - refunded: payment status refunded and the order moves to refunded,
      which is only legal from delivered or completed

    Returns:
        The transition taken, or None when the order status did not change
    """
    dispatcher = dispatcher or get_dispatcher()
    result = None

    try:
        if event.type == "succeeded":
            order.payment_status = "paid"
            if coerce_status(order.status) == OrderStatus.PENDING:
                result = transition_order(
                    db, order, OrderStatus.CONFIRMED,
                    comment="Payment received",
                    commit=False,
                )
        elif event.type == "failed":
            order.payment_status = "failed"
        else:
            result = transition_order(
                db, order, OrderStatus.REFUNDED,
                comment=f"Payment refunded{': ' + event.reason if event.reason else ''}",
                commit=False,
            )
            order.payment_status = "refunded"
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Payment %s for order #%d", event.type, order.id)

    if result is not None:
        dispatch_transitions([result], comment="Payment event", dispatcher=dispatcher)
    if event.type == "failed":
        dispatcher.dispatch(PaymentFailed(
            order_id=order.id,
            gateway_reference=event.gateway_reference,
            reason=event.reason,
        ))
    return result


def rollup_status(vendor_statuses: Iterable[str]) -> Optional[OrderStatus]:
    """
    Derive the order status from its items' vendor statuses.

    All delivered -> delivered; all shipped or delivered -> out_for_delivery;
    any processing -> processing. Anything else implies no change.
    """
    statuses = list(vendor_statuses)
    if not statuses:
        return None
    if all(s == "delivered" for s in statuses):
        return OrderStatus.DELIVERED
    if all(s in ("shipped", "delivered") for s in statuses):
        return OrderStatus.OUT_FOR_DELIVERY
    if any(s == "processing" for s in statuses):
        return OrderStatus.PROCESSING
    return None


def update_vendor_item_status(
    db: Session,
    item: OrderItem,
    vendor_id: int,
    status: str,
    *,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> List[TransitionResult]:
    """
    Update one vendor's order item and roll the order status up.

    The roll-up only takes legal transitions; when the derived status is not
    reachable from the current one the order is left as it is.

    Returns:
        The order transitions taken (empty when the order did not move)

    Raises:
        VendorItemError: If the item belongs to another vendor or status is
            not a vendor item status
    """
    if item.vendor_id != vendor_id:
        raise VendorItemError(
            f"Order item {item.id} does not belong to vendor {vendor_id}"
        )
    if status not in VENDOR_ITEM_STATUSES:
        raise VendorItemError(f"Unknown vendor item status: {status!r}")

    dispatcher = dispatcher or get_dispatcher()
    order = item.order
    from_status = item.vendor_status
    now = datetime.now(timezone.utc)

    results = []
    try:
        item.vendor_status = status
        if tracking_number:
            item.tracking_number = tracking_number
        if carrier:
            item.carrier = carrier
        if status == "shipped":
            item.shipped_at = now
        elif status == "delivered":
            item.delivered_at = now

        target = rollup_status(i.vendor_status for i in order.items)
        current = coerce_status(order.status)
        if target is not None and target != current and can_transition(current, target):
            results.append(transition_order(
                db, order, target,
                comment=f"Rolled up from vendor item statuses ({status})",
                commit=False,
            ))
        elif target is not None and target != current:
            logger.debug(
                "Order #%d roll-up to %s skipped: not reachable from %s",
                order.id,
                target.value,
                current.value,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    dispatcher.dispatch(OrderItemStatusUpdated(
        order_id=order.id,
        item_id=item.id,
        vendor_id=vendor_id,
        from_status=from_status,
        to_status=status,
    ))
    dispatch_transitions(results, dispatcher=dispatcher)
    return results
