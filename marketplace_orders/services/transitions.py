"""
Validated order status transitions.

transition_order is the only place that writes Order.status. It:

1. Flushes pending changes and re-reads the order row with SELECT ... FOR
   UPDATE, so two callers cannot both move the same order.
2. Checks the transition table and raises InvalidTransitionError when the
   edge is missing. Nothing is written in that case.
3. Sets the new status, writes an OrderStatusHistory row and commits.
4. Dispatches OrderStatusChanged after the commit.

With commit=False the caller owns the transaction: the change is flushed
but not committed, and the caller dispatches the returned results with
dispatch_transitions() once it has committed.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..events import EventDispatcher, OrderStatusChanged, get_dispatcher
from ..exceptions import InvalidTransitionError
from ..models import Order, OrderStatusHistory
from ..order_status import OrderStatus, StatusLike, can_transition, coerce_status
from ..schemas.orders import TransitionResult

logger = logging.getLogger(__name__)


def _lock_order(db: Session, order_id: int) -> Order:
    db.flush()
    return (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _apply(
    db: Session,
    order: Order,
    target: OrderStatus,
    user_id: Optional[int],
    comment: Optional[str],
) -> TransitionResult:
    current = coerce_status(order.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target, order_id=order.id)

    now = datetime.now(timezone.utc)
    order.status = target.value
    if target == OrderStatus.COMPLETED:
        order.completed_at = now
    elif target == OrderStatus.CANCELLED:
        order.cancelled_at = now

    db.add(OrderStatusHistory(
        order_id=order.id,
        user_id=user_id,
        from_status=current.value,
        status=target.value,
        comment=comment,
        created_at=now,
    ))
    db.flush()

    return TransitionResult(
        order_id=order.id,
        from_status=current.value,
        to_status=target.value,
        changed_at=now,
    )


def dispatch_transitions(
    results: Iterable[TransitionResult],
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> None:
    """Emit OrderStatusChanged for transitions that have been committed."""
    dispatcher = dispatcher or get_dispatcher()
    for result in results:
        dispatcher.dispatch(OrderStatusChanged(
            order_id=result.order_id,
            from_status=result.from_status,
            to_status=result.to_status,
            user_id=user_id,
            comment=comment,
            changed_at=result.changed_at,
        ))


def transition_order(
    db: Session,
    order: Order,
    target: StatusLike,
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
    commit: bool = True,
) -> TransitionResult:
    """
    Move an order to target along a legal edge of the transition table.

    Args:
        db: Database session
        order: The order to change
        target: The new status (enum or raw value)
        user_id: Who made the change; None for system changes
        comment: Why, stored in the audit trail
        dispatcher: Event dispatcher (defaults to the process-wide one)
        commit: Commit and dispatch here; False when the caller owns the
            transaction

    Returns:
        TransitionResult describing the change

    Raises:
        UnknownStatusError: If target (or the stored status) is not a status
        InvalidTransitionError: If the edge is not in the transition table
    """
    target = coerce_status(target)
    locked = _lock_order(db, order.id)

    try:
        result = _apply(db, locked, target, user_id, comment)
    except InvalidTransitionError as e:
        logger.warning("Rejected status change: %s", e)
        if commit:
            db.rollback()
        raise
    except Exception:
        if commit:
            db.rollback()
        raise

    if commit:
        db.commit()
        logger.info(
            "Order #%d transitioned %s -> %s",
            result.order_id,
            result.from_status,
            result.to_status,
        )
        dispatch_transitions([result], user_id=user_id, comment=comment, dispatcher=dispatcher)

    return result


def walk_to(
    db: Session,
    order: Order,
    path: Iterable[StatusLike],
    *,
    user_id: Optional[int] = None,
    comment: Optional[str] = None,
    dispatcher: Optional[EventDispatcher] = None,
    commit: bool = True,
) -> List[TransitionResult]:
    """
    Apply a sequence of transitions, each checked against the table.

    Either every step is applied or, when this call owns the transaction,
    none is: a rejected step, or any other error, rolls back the steps
    before it.
    """
    results = []
    try:
        for target in path:
            results.append(transition_order(
                db, order, target, user_id=user_id, comment=comment, commit=False,
            ))
    except Exception:
        if commit:
            db.rollback()
        raise

    if commit:
        db.commit()
        for result in results:
            logger.info(
                "Order #%d transitioned %s -> %s",
                result.order_id,
                result.from_status,
                result.to_status,
            )
        dispatch_transitions(results, user_id=user_id, comment=comment, dispatcher=dispatcher)

    return results
