"""
Tests for validated order status transitions.
"""
import logging

import pytest
from sqlalchemy.exc import OperationalError

import marketplace_orders.services.transitions as transitions_mod
from marketplace_orders.events import EventDispatcher, OrderStatusChanged
from marketplace_orders.exceptions import InvalidTransitionError, UnknownStatusError
from marketplace_orders.models import OrderStatusHistory
from marketplace_orders.order_status import OrderStatus
from marketplace_orders.services.transitions import transition_order, walk_to


def history_for(db, order):
    return (
        db.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order.id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


class TestTransitionOrder:
    """Test single transitions."""

    def test_legal_transition_persists_audits_and_emits(self, db, make_order, dispatcher):
        order = make_order(status="pending")

        result = transition_order(
            db, order, OrderStatus.CONFIRMED,
            user_id=5, comment="Looks good", dispatcher=dispatcher,
        )

        assert result.order_id == order.id
        assert result.from_status == "pending"
        assert result.to_status == "confirmed"

        db.expire_all()
        assert order.status == "confirmed"

        history = history_for(db, order)
        assert len(history) == 1
        assert history[0].from_status == "pending"
        assert history[0].status == "confirmed"
        assert history[0].user_id == 5
        assert history[0].comment == "Looks good"

        events = dispatcher.of_type(OrderStatusChanged)
        assert len(events) == 1
        assert events[0].order_id == order.id
        assert events[0].to_status == "confirmed"

    def test_accepts_raw_status_value(self, db, make_order, dispatcher):
        order = make_order(status="delivered")
        result = transition_order(db, order, "completed", dispatcher=dispatcher)
        assert result.to_status == "completed"

    def test_illegal_transition_raises_and_writes_nothing(self, db, make_order, dispatcher):
        order = make_order(status="completed")

        with pytest.raises(InvalidTransitionError) as exc_info:
            transition_order(db, order, OrderStatus.PENDING, dispatcher=dispatcher)

        assert exc_info.value.current == "completed"
        assert exc_info.value.target == "pending"
        assert exc_info.value.order_id == order.id

        db.expire_all()
        assert order.status == "completed"
        assert history_for(db, order) == []
        assert dispatcher.events == []

    def test_self_transition_is_rejected(self, db, make_order, dispatcher):
        order = make_order(status="processing")
        with pytest.raises(InvalidTransitionError):
            transition_order(db, order, OrderStatus.PROCESSING, dispatcher=dispatcher)

    @pytest.mark.parametrize("terminal", ["cancelled", "refunded"])
    def test_terminal_orders_never_move(self, db, make_order, dispatcher, terminal):
        order = make_order(status=terminal)
        for target in OrderStatus:
            with pytest.raises(InvalidTransitionError):
                transition_order(db, order, target, dispatcher=dispatcher)
        db.expire_all()
        assert order.status == terminal

    def test_unknown_target_raises(self, db, make_order, dispatcher):
        order = make_order(status="pending")
        with pytest.raises(UnknownStatusError):
            transition_order(db, order, "shipped", dispatcher=dispatcher)

    def test_completed_and_cancelled_timestamps(self, db, make_order, dispatcher):
        delivered = make_order(status="delivered")
        pending = make_order(status="pending")

        transition_order(db, delivered, OrderStatus.COMPLETED, dispatcher=dispatcher)
        transition_order(db, pending, OrderStatus.CANCELLED, dispatcher=dispatcher)

        db.expire_all()
        assert delivered.completed_at is not None
        assert pending.cancelled_at is not None

    def test_commit_false_defers_commit_and_events(self, db, make_order, dispatcher):
        order = make_order(status="pending")

        transition_order(db, order, OrderStatus.CONFIRMED, dispatcher=dispatcher, commit=False)
        assert dispatcher.events == []

        db.rollback()
        db.expire_all()
        assert order.status == "pending"
        assert history_for(db, order) == []

    def test_listener_failure_does_not_undo_transition(self, db, make_order, caplog):
        failing = EventDispatcher()

        def broken_listener(event):
            raise RuntimeError("listener down")

        failing.subscribe(OrderStatusChanged, broken_listener)
        order = make_order(status="pending")

        with caplog.at_level(logging.ERROR, logger="marketplace_orders"):
            transition_order(db, order, OrderStatus.CONFIRMED, dispatcher=failing)

        db.expire_all()
        assert order.status == "confirmed"
        assert "broken_listener" in caplog.text


class TestWalkTo:
    """Test multi-step transitions."""

    def test_walks_every_step(self, db, make_order, dispatcher):
        order = make_order(status="out_for_delivery")

        results = walk_to(
            db, order, [OrderStatus.DELIVERED, OrderStatus.COMPLETED], dispatcher=dispatcher,
        )

        assert [(r.from_status, r.to_status) for r in results] == [
            ("out_for_delivery", "delivered"),
            ("delivered", "completed"),
        ]
        db.expire_all()
        assert order.status == "completed"
        assert len(history_for(db, order)) == 2
        assert len(dispatcher.of_type(OrderStatusChanged)) == 2

    def test_rejected_step_rolls_back_earlier_steps(self, db, make_order, dispatcher):
        order = make_order(status="processing")

        with pytest.raises(InvalidTransitionError):
            walk_to(
                db, order, [OrderStatus.OUT_FOR_DELIVERY, OrderStatus.COMPLETED],
                dispatcher=dispatcher,
            )

        db.expire_all()
        assert order.status == "processing"
        assert history_for(db, order) == []
        assert dispatcher.events == []

    def test_database_error_rolls_back_earlier_steps(self, db, make_order, dispatcher, monkeypatch):
        order = make_order(status="out_for_delivery")
        real_transition = transitions_mod.transition_order
        calls = []

        def flaky_transition(*args, **kwargs):
            calls.append(args[2])
            if len(calls) == 2:
                raise OperationalError("UPDATE orders", {}, Exception("database is locked"))
            return real_transition(*args, **kwargs)

        monkeypatch.setattr(transitions_mod, "transition_order", flaky_transition)

        with pytest.raises(OperationalError):
            walk_to(
                db, order, [OrderStatus.DELIVERED, OrderStatus.COMPLETED],
                dispatcher=dispatcher,
            )

        db.expire_all()
        assert order.status == "out_for_delivery"
        assert history_for(db, order) == []
        assert dispatcher.events == []
