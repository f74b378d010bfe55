"""
Reconciliation Schemas for Marketplace Orders
=============================================

Pydantic models for the daily COD reconciliation job and the per delivery
person reconciliation records.

Report Categories:
------------------
Every COD order created on the report day lands in exactly one category,
unless it was cancelled or refunded (then it is only counted as skipped):

1. **reconciled**: Delivered, and the collected cash matches the total
2. **delivered_uncollected**: Delivered, but no cash (or the wrong amount)
   was recorded
3. **delivery_failed**: The delivery attempt failed
4. **in_transit**: Not delivered yet

Anomalies:
----------
An AnomalyRecord flags inconsistent evidence on a single order (cash on an
undelivered order, a carrier delivery on a failed order, a wrong amount).
Anomalies are stored inside the report and never abort the run.

Usage:
------
    report = generate_daily_report(db, date(2026, 3, 1))
    print(report.reconciled.count, report.reconciled.amount_cents)
    for anomaly in report.anomalies:
        print(anomaly.order_id, anomaly.kind)
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnomalyRecord(BaseModel):
    """
    Inconsistent evidence found on one order during reconciliation.

    Attributes:
        order_id: The affected order
        kind: Short machine-readable anomaly type
        detail: Human-readable description
    """
    order_id: int
    kind: str
    detail: str


class CategoryTotals(BaseModel):
    count: int = 0
    amount_cents: int = 0

    def add(self, amount_cents: int) -> None:
        self.count += 1
        self.amount_cents += amount_cents


class CodReconciliationOut(BaseModel):
    """One delivery person's reconciliation for one day."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    delivery_person_id: Optional[int] = None
    total_orders_count: int
    total_cod_amount_cents: int
    collected_amount_cents: int
    discrepancy_cents: int
    status: str
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None


class ReconciliationReportOut(BaseModel):
    """
    The daily COD reconciliation report.

    Attributes:
        report_date: The calendar day (UTC) the report covers
        total_orders: COD orders created that day, skipped ones included
        skipped_count: Cancelled or refunded orders left out of the categories
        expected_cents: Sum of order totals over the four categories
        collected_cents: Sum of cash recorded over the four categories
        reconciled / delivered_uncollected / delivery_failed / in_transit:
            Count and cent total per category
        anomalies: Per-order inconsistencies
        auto_verify: Whether the run was allowed to mutate orders
        completed_orders: Orders moved to completed by auto-verify
        auto_verified_reconciliations: Reconciliation rows auto-verified
        generated_at: When the report was written
        reconciliations: Per delivery person rows created by this run (not
            stored on the report row)
    """
    model_config = ConfigDict(from_attributes=True)

    report_date: date
    total_orders: int = 0
    skipped_count: int = 0
    expected_cents: int = 0
    collected_cents: int = 0

    reconciled: CategoryTotals = Field(default_factory=CategoryTotals)
    delivered_uncollected: CategoryTotals = Field(default_factory=CategoryTotals)
    delivery_failed: CategoryTotals = Field(default_factory=CategoryTotals)
    in_transit: CategoryTotals = Field(default_factory=CategoryTotals)

    anomalies: List[AnomalyRecord] = Field(default_factory=list)

    auto_verify: bool = False
    completed_orders: int = 0
    auto_verified_reconciliations: int = 0
    generated_at: Optional[datetime] = None

    reconciliations: List[CodReconciliationOut] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "ReconciliationReportOut":
        """Build from a CodDailyReport row (its category columns are flat)."""
        return cls(
            report_date=row.report_date,
            total_orders=row.total_orders,
            skipped_count=row.skipped_count,
            expected_cents=row.expected_cents,
            collected_cents=row.collected_cents,
            reconciled=CategoryTotals(count=row.reconciled_count, amount_cents=row.reconciled_cents),
            delivered_uncollected=CategoryTotals(
                count=row.delivered_uncollected_count,
                amount_cents=row.delivered_uncollected_cents,
            ),
            delivery_failed=CategoryTotals(
                count=row.delivery_failed_count,
                amount_cents=row.delivery_failed_cents,
            ),
            in_transit=CategoryTotals(count=row.in_transit_count, amount_cents=row.in_transit_cents),
            anomalies=[AnomalyRecord.model_validate(a) for a in (row.anomalies or [])],
            auto_verify=row.auto_verify,
            completed_orders=row.completed_orders,
            auto_verified_reconciliations=row.auto_verified_reconciliations,
            generated_at=row.generated_at,
        )


class ReconciliationStatistics(BaseModel):
    """Totals over all reconciliation rows in a date range."""
    total_reconciliations: int = 0
    total_orders: int = 0
    total_expected_cents: int = 0
    total_collected_cents: int = 0
    total_discrepancy_cents: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    accuracy_percentage: float = 100.0


class DeliveryPersonSummary(BaseModel):
    """Totals over one delivery person's reconciliation rows in a date range."""
    delivery_person_id: int
    total_days: int = 0
    total_orders: int = 0
    total_expected_cents: int = 0
    total_collected_cents: int = 0
    total_discrepancy_cents: int = 0
    verified_count: int = 0
    disputed_count: int = 0
    pending_count: int = 0
    accuracy_percentage: float = 100.0
    daily_breakdown: List[CodReconciliationOut] = Field(default_factory=list)
