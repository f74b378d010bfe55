"""
Schemas Package for Marketplace Orders
======================================

Pydantic models for the inputs the core consumes (shipment and payment
events) and the results it emits (transition results, workflow state and
reconciliation reports).

Schema Organization:
--------------------
- **orders.py**: Transition results, status options, workflow state,
  COD availability, shipment and payment events
- **reconciliation.py**: Anomaly records, daily reports, per delivery person
  reconciliations and statistics

Pydantic Configuration:
-----------------------
Models read from SQLAlchemy rows use `model_config =
ConfigDict(from_attributes=True)`:

    report = db.query(CodDailyReport).first()
    return ReconciliationReportOut.from_row(report)
"""

from .orders import (
    CodAvailability,
    PaymentEvent,
    ShipmentEvent,
    TransitionResult,
    WorkflowState,
)
from .reconciliation import (
    AnomalyRecord,
    CategoryTotals,
    CodReconciliationOut,
    DeliveryPersonSummary,
    ReconciliationReportOut,
    ReconciliationStatistics,
)

__all__ = [
    # Orders
    "CodAvailability",
    "PaymentEvent",
    "ShipmentEvent",
    "TransitionResult",
    "WorkflowState",
    # Reconciliation
    "AnomalyRecord",
    "CategoryTotals",
    "CodReconciliationOut",
    "DeliveryPersonSummary",
    "ReconciliationReportOut",
    "ReconciliationStatistics",
]
