"""
COD Reconciliation
==================

The daily COD reconciliation job and the maintenance operations on its
per delivery person records.

Daily Report:
-------------
generate_daily_report() looks at every COD order created on the report day
(a UTC calendar day) and classifies it with classify_cod_order():

- cancelled / refunded -> skipped (counted, not categorized)
- a status outside OrderStatus -> skipped, with an unknown_status anomaly
- delivered and collected cash matches the total -> reconciled
- delivered, no cash or the wrong amount -> delivered_uncollected
- delivery failed -> delivery_failed
- anything else -> in_transit

"Delivered" means the order status is delivered/completed or a carrier
reported a delivered shipment. "Matches" means within
COD_COLLECTION_TOLERANCE_CENTS of the order total. Inconsistent evidence is
recorded as an AnomalyRecord on the report and never aborts the run.

The same run writes one CodReconciliation row per delivery person who
collected cash that day, and with auto_verify it completes reconciled orders
(along legal edges only) and verifies zero-discrepancy reconciliations.

Atomicity:
----------
The report row, the reconciliation rows and every auto-verify change are
committed together. Any error rolls all of it back and is raised as
ReconciliationRunFailure. A day that already has a report cannot be run
again.
"""

import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import config
from ..events import EventDispatcher
from ..exceptions import ReconciliationRunFailure, UnknownStatusError
from ..models import CodDailyReport, CodReconciliation, Order
from ..order_status import OrderStatus, TERMINAL_STATUSES, coerce_status
from ..schemas.reconciliation import (
    AnomalyRecord,
    CodReconciliationOut,
    DeliveryPersonSummary,
    ReconciliationReportOut,
    ReconciliationStatistics,
)
from .transitions import dispatch_transitions, walk_to

logger = logging.getLogger(__name__)

# Report categories
RECONCILED = "reconciled"
DELIVERED_UNCOLLECTED = "delivered_uncollected"
DELIVERY_FAILED = "delivery_failed"
IN_TRANSIT = "in_transit"

AUTO_VERIFY_NOTE = "Auto-verified: Zero discrepancy"
AUTO_COMPLETE_COMMENT = "Auto-verified by daily COD reconciliation"

# Legal paths to completed for a reconciled order, by current status
_COMPLETION_PATHS = {
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.COMPLETED),
    OrderStatus.DELIVERED: (OrderStatus.COMPLETED,),
    OrderStatus.COMPLETED: (),
}


def report_window(report_date: date) -> Tuple[datetime, datetime]:
    """[start, end) of the report day in the reporting timezone (UTC)."""
    start = datetime.combine(report_date, time.min, tzinfo=config.COD_REPORT_TIMEZONE)
    return start, start + timedelta(days=1)


def previous_reporting_day(now: Optional[datetime] = None) -> date:
    """The calendar day before now, in the reporting timezone."""
    now = now or datetime.now(timezone.utc)
    return (now.astimezone(config.COD_REPORT_TIMEZONE) - timedelta(days=1)).date()


def classify_cod_order(
    order: Order,
    tolerance_cents: Optional[int] = None,
) -> Tuple[Optional[str], List[AnomalyRecord]]:
    """
    Put a COD order in its report category.

    Returns:
        (category, anomalies). category is None for cancelled and refunded
        orders, which are excluded from the categories.
    """
    if tolerance_cents is None:
        tolerance_cents = config.COD_COLLECTION_TOLERANCE_CENTS

    status = coerce_status(order.status)
    if status in TERMINAL_STATUSES:
        return None, []

    shipment_statuses = {shipment.status for shipment in order.shipments}
    collected = order.cod_amount_collected
    anomalies = []

    def flag(kind: str, detail: str) -> None:
        anomalies.append(AnomalyRecord(order_id=order.id, kind=kind, detail=detail))

    if status == OrderStatus.FAILED:
        if "delivered" in shipment_statuses:
            flag("delivered_shipment_on_failed_order", "Carrier reported delivery but the order is failed")
        if collected is not None:
            flag("cash_on_undelivered_order", f"{collected} cents recorded on a failed delivery")
        return DELIVERY_FAILED, anomalies

    if status in (OrderStatus.DELIVERED, OrderStatus.COMPLETED) or "delivered" in shipment_statuses:
        if collected is None:
            return DELIVERED_UNCOLLECTED, anomalies
        if abs(collected - order.total_cents) <= tolerance_cents:
            return RECONCILED, anomalies
        flag(
            "amount_mismatch",
            f"Collected {collected} cents, expected {order.total_cents} cents",
        )
        return DELIVERED_UNCOLLECTED, anomalies

    if "failed" in shipment_statuses:
        if collected is not None:
            flag("cash_on_undelivered_order", f"{collected} cents recorded on a failed delivery")
        return DELIVERY_FAILED, anomalies

    if collected is not None:
        flag("cash_on_undelivered_order", f"{collected} cents recorded before delivery")
    return IN_TRANSIT, anomalies


def delivery_person_exists(db: Session, delivery_person_id: int) -> bool:
    """A delivery person is known once they have been assigned an order."""
    return db.query(Order.id).filter(Order.delivery_person_id == delivery_person_id).first() is not None


def _create_person_reconciliations(
    db: Session,
    report_date: date,
    delivery_person_id: Optional[int],
    user_id: Optional[int],
) -> List[CodReconciliation]:
    start, end = report_window(report_date)
    collected_on_day = (
        db.query(Order)
        .filter(
            Order.payment_method == config.PAYMENT_METHOD_COD,
            Order.cod_collected_at.isnot(None),
            Order.cod_collected_at >= start,
            Order.cod_collected_at < end,
            Order.delivery_person_id.isnot(None),
        )
    )
    if delivery_person_id is not None:
        collected_on_day = collected_on_day.filter(Order.delivery_person_id == delivery_person_id)

    by_person = {}
    for order in collected_on_day.order_by(Order.id):
        by_person.setdefault(order.delivery_person_id, []).append(order)

    created = []
    for person_id, orders in sorted(by_person.items()):
        existing = (
            db.query(CodReconciliation)
            .filter(CodReconciliation.date == report_date, CodReconciliation.delivery_person_id == person_id)
            .first()
        )
        if existing is not None:
            logger.info(
                "Reconciliation already exists for delivery person %d on %s",
                person_id,
                report_date.isoformat(),
            )
            continue

        expected = sum(o.total_cents for o in orders)
        collected = sum(o.cod_amount_collected or 0 for o in orders)
        reconciliation = CodReconciliation(
            date=report_date,
            delivery_person_id=person_id,
            total_orders_count=len(orders),
            total_cod_amount_cents=expected,
            collected_amount_cents=collected,
            discrepancy_cents=collected - expected,
            status="pending",
            meta={
                "order_ids": [o.id for o in orders],
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "generated_by": user_id,
            },
        )
        db.add(reconciliation)
        created.append(reconciliation)

    db.flush()
    return created


def generate_daily_report(
    db: Session,
    report_date: date,
    *,
    delivery_person_id: Optional[int] = None,
    auto_verify: bool = False,
    user_id: Optional[int] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> ReconciliationReportOut:
    """
    Run the daily COD reconciliation for report_date.

    Args:
        db: Database session; this function owns its transaction
        report_date: The UTC calendar day to reconcile
        delivery_person_id: Only create the reconciliation row for this
            delivery person (the daily report still covers every order)
        auto_verify: Complete reconciled orders and verify zero-discrepancy
            reconciliations
        user_id: Who triggered the run; None for the scheduler
        dispatcher: Receives OrderStatusChanged for auto-verified orders

    Returns:
        The committed report

    Raises:
        ReconciliationRunFailure: If the day already has a report or anything
            fails during the run. Nothing from the run is persisted.
    """
    logger.info(
        "Starting COD reconciliation for %s (auto_verify=%s)",
        report_date.isoformat(),
        auto_verify,
    )
    transitions = []

    try:
        already_reported = (
            db.query(CodDailyReport.id).filter(CodDailyReport.report_date == report_date).first()
        )
        if already_reported is not None:
            raise ReconciliationRunFailure(report_date, "a report for this day already exists")

        start, end = report_window(report_date)
        orders = (
            db.query(Order)
            .filter(
                Order.payment_method == config.PAYMENT_METHOD_COD,
                Order.created_at >= start,
                Order.created_at < end,
            )
            .order_by(Order.id)
            .all()
        )

        report = ReconciliationReportOut(report_date=report_date, auto_verify=auto_verify)
        reconciled_orders = []
        for order in orders:
            report.total_orders += 1
            try:
                category, anomalies = classify_cod_order(order)
            except UnknownStatusError:
                report.anomalies.append(AnomalyRecord(
                    order_id=order.id,
                    kind="unknown_status",
                    detail=f"Status {order.status!r} is not an order status",
                ))
                report.skipped_count += 1
                continue
            report.anomalies.extend(anomalies)
            if category is None:
                report.skipped_count += 1
                continue

            getattr(report, category).add(order.total_cents)
            report.expected_cents += order.total_cents
            report.collected_cents += order.cod_amount_collected or 0
            if category == RECONCILED:
                reconciled_orders.append(order)

        reconciliations = _create_person_reconciliations(db, report_date, delivery_person_id, user_id)

        if auto_verify:
            for order in reconciled_orders:
                path = _COMPLETION_PATHS.get(coerce_status(order.status))
                if path is None:
                    report.anomalies.append(AnomalyRecord(
                        order_id=order.id,
                        kind="not_completable",
                        detail=f"Reconciled but cannot be completed from status '{order.status}'",
                    ))
                    continue
                if not path:
                    continue
                transitions.extend(walk_to(
                    db, order, path,
                    user_id=user_id,
                    comment=AUTO_COMPLETE_COMMENT,
                    commit=False,
                ))
                order.fulfillment_status = "completed"
                report.completed_orders += 1

            report.auto_verified_reconciliations = auto_verify_zero_discrepancy(db, commit=False)

        report.generated_at = datetime.now(timezone.utc)
        db.add(CodDailyReport(
            report_date=report_date,
            total_orders=report.total_orders,
            expected_cents=report.expected_cents,
            collected_cents=report.collected_cents,
            reconciled_count=report.reconciled.count,
            reconciled_cents=report.reconciled.amount_cents,
            delivered_uncollected_count=report.delivered_uncollected.count,
            delivered_uncollected_cents=report.delivered_uncollected.amount_cents,
            delivery_failed_count=report.delivery_failed.count,
            delivery_failed_cents=report.delivery_failed.amount_cents,
            in_transit_count=report.in_transit.count,
            in_transit_cents=report.in_transit.amount_cents,
            skipped_count=report.skipped_count,
            anomalies=[a.model_dump() for a in report.anomalies],
            auto_verify=auto_verify,
            completed_orders=report.completed_orders,
            auto_verified_reconciliations=report.auto_verified_reconciliations,
            generated_at=report.generated_at,
        ))
        db.commit()
    except ReconciliationRunFailure as e:
        db.rollback()
        logger.error("%s", e)
        raise
    except Exception as e:
        db.rollback()
        logger.exception("COD reconciliation for %s failed", report_date.isoformat())
        raise ReconciliationRunFailure(report_date, str(e)) from e

    report.reconciliations = [CodReconciliationOut.model_validate(r) for r in reconciliations]

    logger.info(
        "COD reconciliation for %s completed: %d orders, %d reconciled, %d anomalies, "
        "%d reconciliation rows",
        report_date.isoformat(),
        report.total_orders,
        report.reconciled.count,
        len(report.anomalies),
        len(reconciliations),
    )
    dispatch_transitions(transitions, user_id=user_id, comment=AUTO_COMPLETE_COMMENT, dispatcher=dispatcher)
    return report


def get_daily_report(db: Session, report_date: date) -> Optional[ReconciliationReportOut]:
    row = db.query(CodDailyReport).filter(CodDailyReport.report_date == report_date).first()
    return ReconciliationReportOut.from_row(row) if row is not None else None


# --- Reconciliation maintenance ---

def verify_collection(
    db: Session,
    reconciliation: CodReconciliation,
    actual_amount_cents: int,
    notes: Optional[str] = None,
    user_id: Optional[int] = None,
) -> CodReconciliation:
    """
    Record the cash actually handed in by the delivery person.

    The discrepancy is recomputed against the expected total: zero makes the
    reconciliation verified, anything else disputed.
    """
    now = datetime.now(timezone.utc)
    discrepancy = actual_amount_cents - reconciliation.total_cod_amount_cents

    meta = dict(reconciliation.meta or {})
    meta["verification"] = {
        "actual_amount_cents": actual_amount_cents,
        "discrepancy_cents": discrepancy,
        "verified_at": now.isoformat(),
        "verified_by": user_id,
        "notes": notes,
    }

    reconciliation.collected_amount_cents = actual_amount_cents
    reconciliation.discrepancy_cents = discrepancy
    reconciliation.status = "disputed" if reconciliation.has_discrepancy() else "verified"
    reconciliation.verified_by = user_id
    reconciliation.verified_at = now
    reconciliation.notes = notes
    reconciliation.meta = meta
    db.commit()
    db.refresh(reconciliation)

    if reconciliation.has_discrepancy():
        logger.warning(
            "Reconciliation %d disputed: discrepancy of %d cents",
            reconciliation.id,
            discrepancy,
        )
    else:
        logger.info("Reconciliation %d verified with no discrepancy", reconciliation.id)
    return reconciliation


def handle_discrepancy(
    db: Session,
    reconciliation: CodReconciliation,
    reason: str,
    resolution: Optional[str] = None,
    user_id: Optional[int] = None,
) -> CodReconciliation:
    """Record why a reconciliation is off; with a resolution it becomes resolved."""
    previous_status = reconciliation.status
    status = "resolved" if resolution else "disputed"

    notes = (reconciliation.notes or "") + f"\n\nDiscrepancy Reason: {reason}"
    if resolution:
        notes += f"\n\nResolution: {resolution}"

    meta = dict(reconciliation.meta or {})
    meta["discrepancy_handling"] = {
        "reason": reason,
        "resolution": resolution,
        "handled_at": datetime.now(timezone.utc).isoformat(),
        "handled_by": user_id,
        "previous_status": previous_status,
    }

    reconciliation.status = status
    reconciliation.notes = notes
    reconciliation.meta = meta
    db.commit()
    db.refresh(reconciliation)

    logger.info(
        "Reconciliation %d discrepancy handled: %s -> %s",
        reconciliation.id,
        previous_status,
        status,
    )
    return reconciliation


def auto_verify_zero_discrepancy(
    db: Session,
    *,
    on_date: Optional[date] = None,
    commit: bool = True,
) -> int:
    """
    Verify every pending reconciliation whose discrepancy is zero.

    verified_by stays None to mark the verification as automatic.

    Returns:
        Number of reconciliations verified
    """
    query = db.query(CodReconciliation).filter(
        CodReconciliation.status == "pending",
        CodReconciliation.discrepancy_cents == 0,
    )
    if on_date is not None:
        query = query.filter(CodReconciliation.date == on_date)

    now = datetime.now(timezone.utc)
    count = 0
    for reconciliation in query.all():
        reconciliation.status = "verified"
        reconciliation.verified_by = None
        reconciliation.verified_at = now
        reconciliation.notes = AUTO_VERIFY_NOTE
        count += 1

    if commit:
        db.commit()
    else:
        db.flush()

    logger.info("Auto-verified %d reconciliations with zero discrepancy", count)
    return count


def _accuracy(expected_cents: int, collected_cents: int) -> float:
    if expected_cents <= 0:
        return 100.0
    return round(collected_cents / expected_cents * 100, 2)


def get_overall_statistics(db: Session, start: date, end: date) -> ReconciliationStatistics:
    """Totals over reconciliation rows dated start..end (inclusive)."""
    rows = (
        db.query(CodReconciliation)
        .filter(CodReconciliation.date >= start, CodReconciliation.date <= end)
        .all()
    )
    expected = sum(r.total_cod_amount_cents for r in rows)
    collected = sum(r.collected_amount_cents for r in rows)

    breakdown = {"pending": 0, "verified": 0, "disputed": 0, "resolved": 0}
    breakdown.update(Counter(r.status for r in rows))

    return ReconciliationStatistics(
        total_reconciliations=len(rows),
        total_orders=sum(r.total_orders_count for r in rows),
        total_expected_cents=expected,
        total_collected_cents=collected,
        total_discrepancy_cents=sum(r.discrepancy_cents for r in rows),
        status_breakdown=breakdown,
        accuracy_percentage=_accuracy(expected, collected),
    )


def get_delivery_person_summary(
    db: Session,
    delivery_person_id: int,
    start: date,
    end: date,
) -> DeliveryPersonSummary:
    """
    One delivery person's collection record between start and end (inclusive).

    Order totals come from the orders collected in the range; status counts
    come from the reconciliation rows.
    """
    range_start, _ = report_window(start)
    _, range_end = report_window(end)

    expected, collected, order_count = (
        db.query(
            func.coalesce(func.sum(Order.total_cents), 0),
            func.coalesce(func.sum(Order.cod_amount_collected), 0),
            func.count(Order.id),
        )
        .filter(
            Order.payment_method == config.PAYMENT_METHOD_COD,
            Order.delivery_person_id == delivery_person_id,
            Order.cod_collected_at.isnot(None),
            Order.cod_collected_at >= range_start,
            Order.cod_collected_at < range_end,
        )
        .one()
    )

    rows = (
        db.query(CodReconciliation)
        .filter(
            CodReconciliation.delivery_person_id == delivery_person_id,
            CodReconciliation.date >= start,
            CodReconciliation.date <= end,
        )
        .order_by(CodReconciliation.date.desc())
        .all()
    )
    statuses = Counter(r.status for r in rows)

    return DeliveryPersonSummary(
        delivery_person_id=delivery_person_id,
        total_days=(end - start).days + 1,
        total_orders=order_count,
        total_expected_cents=expected,
        total_collected_cents=collected,
        total_discrepancy_cents=collected - expected,
        verified_count=statuses.get("verified", 0),
        disputed_count=statuses.get("disputed", 0),
        pending_count=statuses.get("pending", 0),
        accuracy_percentage=_accuracy(expected, collected),
        daily_breakdown=[CodReconciliationOut.model_validate(r) for r in rows],
    )
