import logging
import os
from datetime import datetime, timezone

# marketplace_orders.db requires DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace_orders.events import EventDispatcher
from marketplace_orders.models import Base, Order


class RecordingDispatcher(EventDispatcher):
    """EventDispatcher that also keeps every dispatched event."""

    def __init__(self):
        super().__init__()
        self.events = []

    def dispatch(self, event):
        self.events.append(event)
        super().dispatch(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def session_factory():
    """sessionmaker over an in-memory SQLite DB.

    Uses StaticPool so every session (including the ones the daily job opens)
    shares the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_order(db):
    """Factory for committed orders. Defaults to a pending COD order."""
    counter = {"n": 0}

    def _make(
        status="pending",
        payment_method="cod",
        total_cents=100000,
        created_at=None,
        **fields,
    ):
        counter["n"] += 1
        order = Order(
            order_number=f"ORD-{counter['n']:05d}",
            status=status,
            payment_method=payment_method,
            total_cents=total_cents,
            subtotal_cents=total_cents,
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        db.add(order)
        db.commit()
        return order

    return _make


@pytest.fixture(autouse=True)
def reset_package_log_level():
    """setup_logging() changes the package logger level; restore it after each test."""
    package_logger = logging.getLogger("marketplace_orders")
    original = package_logger.level
    yield
    package_logger.setLevel(original)
