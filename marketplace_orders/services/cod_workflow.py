"""
COD order workflow.

The steps a Cash on Delivery order goes through, from confirmation to
completion. Every step checks that the order is a COD order and moves the
status only through services.transitions, so a step attempted from the
wrong status raises InvalidTransitionError and writes nothing.

    pending --confirm_order--> confirmed --start_processing--> processing
    processing --mark_out_for_delivery--> out_for_delivery
    out_for_delivery --confirm_cod_collection--> delivered --complete_order--> completed
    out_for_delivery --handle_delivery_failure--> failed [--reschedule--> processing]

Each step commits its own transaction and dispatches its events after the
commit.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..events import (
    CodDeliveryFailed,
    CodOrderConfirmed,
    CodOrderOutForDelivery,
    CodPaymentCollected,
    EventDispatcher,
    get_dispatcher,
)
from ..exceptions import CodCollectionError, NotCodOrderError
from ..models import Order
from ..order_status import OrderStatus, StatusLike, allowed_targets, coerce_status
from ..schemas.orders import TransitionResult, WorkflowState
from .cod import requires_verification
from .transitions import dispatch_transitions, walk_to

logger = logging.getLogger(__name__)


# Workflow action offered for each edge of the transition table
_TARGET_ACTIONS: Mapping[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirm",
    OrderStatus.PROCESSING: "start_processing",
    OrderStatus.OUT_FOR_DELIVERY: "mark_out_for_delivery",
    OrderStatus.DELIVERED: "confirm_delivery",
    OrderStatus.COMPLETED: "complete",
    OrderStatus.CANCELLED: "cancel",
    OrderStatus.REFUNDED: "refund",
    OrderStatus.FAILED: "mark_failed",
}
_EDGE_ACTIONS: Mapping[tuple, str] = {
    (OrderStatus.FAILED, OrderStatus.PROCESSING): "retry_delivery",
}


def _ensure_cod(order: Order) -> None:
    if not order.is_cod():
        raise NotCodOrderError(order.id, order.payment_method)


def _commit_step(
    db: Session,
    order: Order,
    path: Iterable[StatusLike],
    *,
    user_id: Optional[int],
    comment: Optional[str],
    dispatcher: Optional[EventDispatcher],
    **fields,
) -> List[TransitionResult]:
    """Walk path, set fields on the order and commit everything together."""
    try:
        results = walk_to(db, order, path, user_id=user_id, comment=comment, commit=False)
        for name, value in fields.items():
            setattr(order, name, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for result in results:
        logger.info(
            "COD order #%d transitioned %s -> %s",
            result.order_id,
            result.from_status,
            result.to_status,
        )
    dispatch_transitions(results, user_id=user_id, comment=comment, dispatcher=dispatcher)
    return results


def confirm_order(
    db: Session,
    order: Order,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """Confirm the order and flag it for manual verification when it is high value."""
    _ensure_cod(order)
    dispatcher = dispatcher or get_dispatcher()
    (result,) = _commit_step(
        db, order, [OrderStatus.CONFIRMED],
        user_id=user_id,
        comment=comment or "Order confirmed and ready for processing",
        dispatcher=dispatcher,
        cod_verification_required=requires_verification(order.total_cents),
    )
    dispatcher.dispatch(CodOrderConfirmed(order_id=order.id, total_cents=order.total_cents))
    return result


def start_processing(
    db: Session,
    order: Order,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    _ensure_cod(order)
    (result,) = _commit_step(
        db, order, [OrderStatus.PROCESSING],
        user_id=user_id,
        comment=comment or "Order is being prepared for delivery",
        dispatcher=dispatcher,
        fulfillment_status="preparing",
    )
    return result


def mark_out_for_delivery(
    db: Session,
    order: Order,
    delivery_person_id: int,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """Hand the order to a delivery person."""
    _ensure_cod(order)
    dispatcher = dispatcher or get_dispatcher()
    (result,) = _commit_step(
        db, order, [OrderStatus.OUT_FOR_DELIVERY],
        user_id=user_id,
        comment=comment or "Order is out for delivery with assigned delivery person",
        dispatcher=dispatcher,
        delivery_person_id=delivery_person_id,
        fulfillment_status="out_for_delivery",
    )
    dispatcher.dispatch(CodOrderOutForDelivery(
        order_id=order.id,
        delivery_person_id=delivery_person_id,
    ))
    return result


def confirm_cod_collection(
    db: Session,
    order: Order,
    amount_cents: int,
    collected_by: int,
    *,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """
    Record the cash handed over at the door and mark the order delivered.

    The collected amount is stored as given; whether it matches the order
    total is decided by the daily reconciliation, not here.

    Raises:
        NotCodOrderError: If the order is not a COD order
        CodCollectionError: If amount_cents is negative
        InvalidTransitionError: If the order is not out for delivery
    """
    _ensure_cod(order)
    if amount_cents < 0:
        raise CodCollectionError(
            f"Order #{order.id}: collected amount cannot be negative ({amount_cents})"
        )

    dispatcher = dispatcher or get_dispatcher()
    collected_at = datetime.now(timezone.utc)
    (result,) = _commit_step(
        db, order, [OrderStatus.DELIVERED],
        user_id=collected_by,
        comment=comment or f"Order delivered and COD payment collected: ${amount_cents / 100:.2f}",
        dispatcher=dispatcher,
        cod_amount_collected=amount_cents,
        cod_collected_at=collected_at,
        cod_collected_by=collected_by,
        payment_status="paid",
        fulfillment_status="delivered",
    )
    dispatcher.dispatch(CodPaymentCollected(
        order_id=order.id,
        amount_cents=amount_cents,
        collected_by=collected_by,
        collected_at=collected_at,
    ))
    return result


def handle_delivery_failure(
    db: Session,
    order: Order,
    reason: str,
    attempt_number: int = 1,
    reschedule: bool = True,
    *,
    user_id: Optional[int] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> List[TransitionResult]:
    """
    Record a failed delivery attempt.

    The order always moves out_for_delivery -> failed. With reschedule it
    then moves failed -> processing so it can be dispatched again. The
    attempt is recorded in the order metadata.

    Returns:
        The transitions taken (one or two)
    """
    _ensure_cod(order)
    dispatcher = dispatcher or get_dispatcher()

    path = [OrderStatus.FAILED]
    if reschedule:
        path.append(OrderStatus.PROCESSING)

    meta = dict(order.meta or {})
    meta["delivery_attempts"] = attempt_number
    meta["last_delivery_failure"] = {
        "reason": reason,
        "attempted_at": datetime.now(timezone.utc).isoformat(),
        "delivery_person_id": order.delivery_person_id,
    }

    outcome = "Rescheduling delivery." if reschedule else "Order marked as failed."
    results = _commit_step(
        db, order, path,
        user_id=user_id,
        comment=f"Delivery attempt #{attempt_number} failed: {reason}. {outcome}",
        dispatcher=dispatcher,
        meta=meta,
        fulfillment_status="pending_reschedule" if reschedule else "delivery_failed",
    )
    dispatcher.dispatch(CodDeliveryFailed(
        order_id=order.id,
        reason=reason,
        attempt_number=attempt_number,
        rescheduled=reschedule,
    ))
    return results


def retry_delivery(
    db: Session,
    order: Order,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """Put a failed order back into processing for another delivery attempt."""
    _ensure_cod(order)
    (result,) = _commit_step(
        db, order, [OrderStatus.PROCESSING],
        user_id=user_id,
        comment=comment or "Delivery rescheduled",
        dispatcher=dispatcher,
        fulfillment_status="pending_reschedule",
    )
    return result


def complete_order(
    db: Session,
    order: Order,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """
    Close a delivered COD order.

    Raises:
        CodCollectionError: If no cash has been recorded for the order
    """
    _ensure_cod(order)
    if not order.is_cod_collected():
        raise CodCollectionError(
            f"Order #{order.id}: COD payment must be collected before completion"
        )
    (result,) = _commit_step(
        db, order, [OrderStatus.COMPLETED],
        user_id=user_id,
        comment=comment or "Order completed after COD verification period",
        dispatcher=dispatcher,
        fulfillment_status="completed",
    )
    return result


def cancel_order(
    db: Session,
    order: Order,
    reason: str,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> TransitionResult:
    """Cancel the order. Only legal before delivery (see the transition table)."""
    _ensure_cod(order)

    meta = dict(order.meta or {})
    meta["cancellation_reason"] = reason
    meta["cancelled_by"] = user_id

    (result,) = _commit_step(
        db, order, [OrderStatus.CANCELLED],
        user_id=user_id,
        comment=comment or f"Order cancelled: {reason}",
        dispatcher=dispatcher,
        meta=meta,
        fulfillment_status="cancelled",
    )
    return result


def get_workflow_state(order: Order) -> WorkflowState:
    """Current status and the workflow actions legal from it."""
    status = coerce_status(order.status)

    if not order.is_cod():
        return WorkflowState(
            current_status=status.value,
            status_label=status.label,
            workflow_enabled=False,
        )

    actions = [
        _EDGE_ACTIONS.get((status, target), _TARGET_ACTIONS[target])
        for target in allowed_targets(status)
    ]
    return WorkflowState(
        current_status=status.value,
        status_label=status.label,
        available_actions=actions,
        is_cod_collected=order.is_cod_collected(),
        has_delivery_person=order.delivery_person_id is not None,
        delivery_attempts=(order.meta or {}).get("delivery_attempts", 0),
    )
