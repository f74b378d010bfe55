from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Boolean,
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

from .config import PAYMENT_METHOD_COD

Base = declarative_base()


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=True)
    user_id = Column(Integer, nullable=True, index=True)  # Customer who placed the order
    status = Column(String, nullable=False, default="pending", index=True)  # see order_status.OrderStatus

    payment_method = Column(String, nullable=True, index=True)  # credit_card/paypal/bank_transfer/cod
    payment_status = Column(String, nullable=False, default="pending")  # pending/paid/failed/refunded
    fulfillment_status = Column(String, nullable=True)

    # Amounts are stored in cents
    subtotal_cents = Column(BigInteger, nullable=False, default=0)
    shipping_cents = Column(BigInteger, nullable=False, default=0)
    cod_fee_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False, default=0)

    # COD collection
    cod_verification_required = Column(Boolean, nullable=False, default=False)
    cod_amount_collected = Column(BigInteger, nullable=True)
    cod_collected_at = Column(DateTime(timezone=True), nullable=True, index=True)
    cod_collected_by = Column(Integer, nullable=True)
    delivery_person_id = Column(Integer, nullable=True, index=True)

    tracking_number = Column(String, nullable=True, index=True)
    shipping_carrier = Column(String, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True, default=dict)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )
    shipments = relationship("Shipment", back_populates="order", cascade="all, delete-orphan")

    # The reconciliation job filters COD orders by creation date
    __table_args__ = (
        Index("ix_orders_payment_method_created_at", "payment_method", "created_at"),
    )

    def is_cod(self) -> bool:
        return self.payment_method == PAYMENT_METHOD_COD

    def is_cod_collected(self) -> bool:
        return self.cod_collected_at is not None and self.cod_amount_collected is not None


class OrderItem(Base):
    """One vendor's line in a customer order. Each vendor fulfills its own items."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)

    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(BigInteger, nullable=False, default=0)

    vendor_status = Column(String, nullable=False, default="pending")
    tracking_number = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    """Audit trail entry written for every order status change."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)  # None = system (job, webhook)
    from_status = Column(String, nullable=False)
    status = Column(String, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_history")


class Shipment(Base):
    """Carrier tracking state for an order, used as delivery evidence."""
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    carrier = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="in_transit")  # in_transit/out_for_delivery/delivered/failed/returned
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    last_tracking_update = Column(DateTime(timezone=True), nullable=True)
    tracking_events = Column(JSON, nullable=True, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="shipments")


# --- COD reconciliation ---

class CodDailyReport(Base):
    """
    Daily COD reconciliation report. Written once per calendar day by the
    reconciliation job and never updated afterwards.
    """
    __tablename__ = "cod_daily_reports"

    id = Column(Integer, primary_key=True, index=True)
    report_date = Column(Date, nullable=False, unique=True, index=True)

    total_orders = Column(Integer, nullable=False, default=0)
    expected_cents = Column(BigInteger, nullable=False, default=0)
    collected_cents = Column(BigInteger, nullable=False, default=0)

    # Outcome categories
    reconciled_count = Column(Integer, nullable=False, default=0)
    reconciled_cents = Column(BigInteger, nullable=False, default=0)
    delivered_uncollected_count = Column(Integer, nullable=False, default=0)
    delivered_uncollected_cents = Column(BigInteger, nullable=False, default=0)
    delivery_failed_count = Column(Integer, nullable=False, default=0)
    delivery_failed_cents = Column(BigInteger, nullable=False, default=0)
    in_transit_count = Column(Integer, nullable=False, default=0)
    in_transit_cents = Column(BigInteger, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)  # cancelled/refunded orders

    anomalies = Column(JSON, nullable=False, default=list)

    auto_verify = Column(Boolean, nullable=False, default=False)
    completed_orders = Column(Integer, nullable=False, default=0)
    auto_verified_reconciliations = Column(Integer, nullable=False, default=0)

    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CodReconciliation(Base):
    """Cash collected by one delivery person on one day versus what was expected."""
    __tablename__ = "cod_reconciliations"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    delivery_person_id = Column(Integer, nullable=True)

    total_orders_count = Column(Integer, nullable=False, default=0)
    total_cod_amount_cents = Column(BigInteger, nullable=False, default=0)
    collected_amount_cents = Column(BigInteger, nullable=False, default=0)
    discrepancy_cents = Column(BigInteger, nullable=False, default=0)  # collected - expected

    status = Column(String, nullable=False, default="pending", index=True)  # pending/verified/disputed/resolved

    verified_by = Column(Integer, nullable=True)  # None with verified_at set = auto-verified
    verified_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "delivery_person_id", name="uix_cod_reconciliation_date_person"),
        Index("ix_cod_reconciliations_date_status", "date", "status"),
    )

    def has_discrepancy(self) -> bool:
        return self.discrepancy_cents != 0

    def accuracy_percentage(self) -> float:
        if not self.total_cod_amount_cents:
            return 100.0
        return (self.collected_amount_cents / self.total_cod_amount_cents) * 100
