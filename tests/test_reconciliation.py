"""
Tests for the daily COD reconciliation and the reconciliation maintenance operations.
"""
from datetime import date, datetime, timezone

import pytest

import marketplace_orders.config as config_mod
import marketplace_orders.services.reconciliation as reconciliation_mod
from marketplace_orders.events import OrderStatusChanged
from marketplace_orders.exceptions import ReconciliationRunFailure
from marketplace_orders.models import CodDailyReport, CodReconciliation, Order, OrderStatusHistory, Shipment
from marketplace_orders.services.reconciliation import (
    AUTO_VERIFY_NOTE,
    DELIVERED_UNCOLLECTED,
    DELIVERY_FAILED,
    IN_TRANSIT,
    RECONCILED,
    auto_verify_zero_discrepancy,
    classify_cod_order,
    generate_daily_report,
    get_daily_report,
    get_delivery_person_summary,
    get_overall_statistics,
    handle_discrepancy,
    previous_reporting_day,
    report_window,
    verify_collection,
)


REPORT_DATE = date(2026, 3, 1)
CREATED = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
COLLECTED = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


def add_shipment(db, order, status):
    db.add(Shipment(order_id=order.id, tracking_number=f"T-{order.id}", status=status))
    db.commit()


@pytest.fixture
def cod_order(make_order):
    """COD order created on the report day."""
    def _make(status, total_cents=100000, collected=None, delivery_person_id=None, **fields):
        if collected is not None:
            fields.setdefault("cod_collected_at", COLLECTED)
            fields.setdefault("cod_collected_by", delivery_person_id)
        return make_order(
            status=status,
            total_cents=total_cents,
            created_at=CREATED,
            cod_amount_collected=collected,
            delivery_person_id=delivery_person_id,
            **fields,
        )
    return _make


# =============================================================================
# Classification
# =============================================================================

class TestClassifyCodOrder:
    """Test the category each COD order lands in."""

    def test_delivered_and_collected_is_reconciled(self, cod_order):
        category, anomalies = classify_cod_order(cod_order("delivered", collected=100000))
        assert category == RECONCILED
        assert anomalies == []

    def test_delivered_without_cash(self, cod_order):
        category, anomalies = classify_cod_order(cod_order("delivered"))
        assert category == DELIVERED_UNCOLLECTED
        assert anomalies == []

    def test_amount_mismatch_is_uncollected_with_anomaly(self, cod_order):
        category, anomalies = classify_cod_order(cod_order("completed", collected=90000))
        assert category == DELIVERED_UNCOLLECTED
        assert [a.kind for a in anomalies] == ["amount_mismatch"]

    def test_tolerance_allows_small_gap(self, cod_order):
        order = cod_order("delivered", collected=99990)
        assert classify_cod_order(order, tolerance_cents=10)[0] == RECONCILED
        assert classify_cod_order(order, tolerance_cents=0)[0] == DELIVERED_UNCOLLECTED

    def test_tolerance_from_config(self, cod_order, monkeypatch):
        monkeypatch.setattr(config_mod, "COD_COLLECTION_TOLERANCE_CENTS", 50)
        assert classify_cod_order(cod_order("delivered", collected=99950))[0] == RECONCILED

    def test_delivered_shipment_counts_as_delivery(self, db, cod_order):
        order = cod_order("out_for_delivery", collected=100000)
        add_shipment(db, order, "delivered")
        assert classify_cod_order(order)[0] == RECONCILED

    def test_failed_status(self, cod_order):
        assert classify_cod_order(cod_order("failed")) == (DELIVERY_FAILED, [])

    def test_failed_shipment(self, db, cod_order):
        order = cod_order("out_for_delivery")
        add_shipment(db, order, "failed")
        assert classify_cod_order(order)[0] == DELIVERY_FAILED

    def test_delivered_shipment_on_failed_order_is_anomaly(self, db, cod_order):
        order = cod_order("failed")
        add_shipment(db, order, "delivered")
        category, anomalies = classify_cod_order(order)
        assert category == DELIVERY_FAILED
        assert [a.kind for a in anomalies] == ["delivered_shipment_on_failed_order"]

    def test_cash_before_delivery_is_anomaly(self, cod_order):
        category, anomalies = classify_cod_order(cod_order("processing", collected=100000))
        assert category == IN_TRANSIT
        assert [a.kind for a in anomalies] == ["cash_on_undelivered_order"]

    @pytest.mark.parametrize("status", ["pending", "confirmed", "processing", "out_for_delivery"])
    def test_undelivered_is_in_transit(self, cod_order, status):
        assert classify_cod_order(cod_order(status))[0] == IN_TRANSIT

    @pytest.mark.parametrize("status", ["cancelled", "refunded"])
    def test_terminal_orders_are_skipped(self, cod_order, status):
        assert classify_cod_order(cod_order(status, collected=100000)) == (None, [])


# =============================================================================
# Daily Report
# =============================================================================

class TestGenerateDailyReport:
    """Test the daily run."""

    def test_empty_day(self, db, dispatcher):
        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        assert report.total_orders == 0
        assert report.reconciled.count == 0
        assert report.delivered_uncollected.count == 0
        assert report.delivery_failed.count == 0
        assert report.in_transit.count == 0
        assert report.anomalies == []
        assert db.query(CodDailyReport).count() == 1

    def test_aggregates_by_category(self, db, cod_order, make_order, dispatcher):
        cod_order("delivered", total_cents=100000, collected=100000)
        cod_order("completed", total_cents=200000, collected=200000)
        cod_order("delivered", total_cents=50000)
        cod_order("failed", total_cents=70000)
        cod_order("out_for_delivery", total_cents=30000)
        cod_order("cancelled", total_cents=999999)
        # Other days and other payment methods are not part of the report
        make_order(status="delivered", created_at=datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc))
        make_order(status="delivered", payment_method="credit_card", created_at=CREATED)

        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        assert report.total_orders == 6
        assert report.skipped_count == 1
        assert (report.reconciled.count, report.reconciled.amount_cents) == (2, 300000)
        assert (report.delivered_uncollected.count, report.delivered_uncollected.amount_cents) == (1, 50000)
        assert (report.delivery_failed.count, report.delivery_failed.amount_cents) == (1, 70000)
        assert (report.in_transit.count, report.in_transit.amount_cents) == (1, 30000)
        assert report.expected_cents == 450000
        assert report.collected_cents == 300000

        stored = get_daily_report(db, REPORT_DATE)
        assert stored.reconciled.count == 2
        assert stored.expected_cents == 450000

    def test_without_auto_verify_nothing_moves(self, db, cod_order, dispatcher):
        order = cod_order("delivered", collected=100000)
        generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)
        db.expire_all()
        assert order.status == "delivered"
        assert dispatcher.events == []

    def test_anomalies_stored_and_do_not_abort(self, db, cod_order, dispatcher):
        order = cod_order("processing", collected=5000)
        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        assert [a.order_id for a in report.anomalies] == [order.id]
        row = db.query(CodDailyReport).one()
        assert row.anomalies[0]["kind"] == "cash_on_undelivered_order"

    def test_unknown_status_is_skipped_with_anomaly(self, db, cod_order, dispatcher):
        delivered = cod_order("delivered", collected=100000)
        legacy = cod_order("shipped", collected=100000)

        report = generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert report.total_orders == 2
        assert report.skipped_count == 1
        assert report.reconciled.count == 1
        assert report.completed_orders == 1
        assert [(a.order_id, a.kind) for a in report.anomalies] == [(legacy.id, "unknown_status")]
        assert db.query(CodDailyReport).count() == 1
        db.expire_all()
        assert delivered.status == "completed"
        assert legacy.status == "shipped"

    def test_auto_verify_walks_legal_edges(self, db, cod_order, dispatcher):
        delivered = cod_order("delivered", collected=100000)
        in_flight = cod_order("out_for_delivery", collected=100000)
        add_shipment(db, in_flight, "delivered")
        uncollected = cod_order("delivered")

        report = generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert report.completed_orders == 2
        db.expire_all()
        assert delivered.status == "completed"
        assert in_flight.status == "completed"
        assert uncollected.status == "delivered"

        steps = [
            (h.from_status, h.status)
            for h in db.query(OrderStatusHistory).filter_by(order_id=in_flight.id).order_by(OrderStatusHistory.id)
        ]
        assert steps == [("out_for_delivery", "delivered"), ("delivered", "completed")]
        assert len(dispatcher.of_type(OrderStatusChanged)) == 3

    def test_auto_verify_never_touches_terminal_orders(self, db, cod_order, dispatcher):
        cancelled = cod_order("cancelled", collected=100000)
        refunded = cod_order("refunded", collected=100000)
        add_shipment(db, cancelled, "delivered")

        generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        db.expire_all()
        assert cancelled.status == "cancelled"
        assert refunded.status == "refunded"
        assert db.query(OrderStatusHistory).count() == 0

    def test_auto_verify_flags_orders_it_cannot_complete(self, db, cod_order, dispatcher):
        order = cod_order("processing", collected=100000)
        add_shipment(db, order, "delivered")

        report = generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert report.completed_orders == 0
        assert "not_completable" in [a.kind for a in report.anomalies]
        db.expire_all()
        assert order.status == "processing"

    def test_failed_run_rolls_everything_back(self, db, cod_order, dispatcher, monkeypatch):
        order = cod_order("delivered", collected=100000, delivery_person_id=7)

        def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(reconciliation_mod, "auto_verify_zero_discrepancy", boom)

        with pytest.raises(ReconciliationRunFailure) as exc_info:
            generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert exc_info.value.report_date == REPORT_DATE
        assert "database went away" in exc_info.value.reason
        db.expire_all()
        assert order.status == "delivered"
        assert db.query(CodDailyReport).count() == 0
        assert db.query(CodReconciliation).count() == 0
        assert db.query(OrderStatusHistory).count() == 0
        assert dispatcher.events == []

    def test_second_run_for_same_day_fails(self, db, cod_order, dispatcher):
        cod_order("delivered", collected=100000)
        first = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)
        cod_order("failed")

        with pytest.raises(ReconciliationRunFailure):
            generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert db.query(CodDailyReport).count() == 1
        stored = get_daily_report(db, REPORT_DATE)
        assert stored.total_orders == first.total_orders == 1
        assert stored.delivery_failed.count == 0


# =============================================================================
# Per Delivery Person Reconciliation
# =============================================================================

class TestDeliveryPersonReconciliation:
    """Test the per delivery person rows written by the daily run."""

    def test_one_row_per_delivery_person(self, db, cod_order, dispatcher):
        cod_order("delivered", total_cents=100000, collected=100000, delivery_person_id=7)
        cod_order("delivered", total_cents=50000, collected=40000, delivery_person_id=7)
        cod_order("delivered", total_cents=80000, collected=80000, delivery_person_id=8)

        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        rows = {r.delivery_person_id: r for r in report.reconciliations}
        assert set(rows) == {7, 8}
        assert rows[7].total_orders_count == 2
        assert rows[7].total_cod_amount_cents == 150000
        assert rows[7].collected_amount_cents == 140000
        assert rows[7].discrepancy_cents == -10000
        assert rows[7].status == "pending"
        assert rows[8].discrepancy_cents == 0

    def test_delivery_person_filter(self, db, cod_order, dispatcher):
        cod_order("delivered", collected=100000, delivery_person_id=7)
        cod_order("delivered", collected=100000, delivery_person_id=8)

        report = generate_daily_report(db, REPORT_DATE, delivery_person_id=8, dispatcher=dispatcher)

        assert [r.delivery_person_id for r in report.reconciliations] == [8]
        # The daily report itself still covers every order
        assert report.total_orders == 2

    def test_existing_row_is_skipped(self, db, cod_order, dispatcher):
        cod_order("delivered", collected=100000, delivery_person_id=7)
        db.add(CodReconciliation(date=REPORT_DATE, delivery_person_id=7, status="verified"))
        db.commit()

        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        assert report.reconciliations == []
        assert db.query(CodReconciliation).count() == 1

    def test_auto_verify_verifies_zero_discrepancy_rows(self, db, cod_order, dispatcher):
        cod_order("delivered", total_cents=100000, collected=100000, delivery_person_id=7)
        cod_order("delivered", total_cents=100000, collected=90000, delivery_person_id=8)

        report = generate_daily_report(db, REPORT_DATE, auto_verify=True, dispatcher=dispatcher)

        assert report.auto_verified_reconciliations == 1
        verified = db.query(CodReconciliation).filter_by(delivery_person_id=7).one()
        assert verified.status == "verified"
        assert verified.verified_by is None
        assert verified.verified_at is not None
        assert verified.notes == AUTO_VERIFY_NOTE
        assert db.query(CodReconciliation).filter_by(delivery_person_id=8).one().status == "pending"


# =============================================================================
# Maintenance Operations
# =============================================================================

def make_reconciliation(db, person_id=7, expected=100000, collected=100000, status="pending", on=REPORT_DATE):
    reconciliation = CodReconciliation(
        date=on,
        delivery_person_id=person_id,
        total_orders_count=1,
        total_cod_amount_cents=expected,
        collected_amount_cents=collected,
        discrepancy_cents=collected - expected,
        status=status,
    )
    db.add(reconciliation)
    db.commit()
    return reconciliation


class TestReconciliationMaintenance:
    """Test verification, discrepancy handling and statistics."""

    def test_verify_without_discrepancy(self, db):
        reconciliation = make_reconciliation(db, collected=90000)
        verify_collection(db, reconciliation, 100000, notes="Counted twice", user_id=3)

        assert reconciliation.status == "verified"
        assert reconciliation.discrepancy_cents == 0
        assert reconciliation.verified_by == 3
        assert reconciliation.meta["verification"]["actual_amount_cents"] == 100000

    def test_verify_with_discrepancy_disputes(self, db):
        reconciliation = make_reconciliation(db)
        verify_collection(db, reconciliation, 95000, user_id=3)

        assert reconciliation.status == "disputed"
        assert reconciliation.discrepancy_cents == -5000
        assert reconciliation.collected_amount_cents == 95000

    def test_handle_discrepancy_without_resolution(self, db):
        reconciliation = make_reconciliation(db, collected=95000, status="disputed")
        handle_discrepancy(db, reconciliation, "Change not returned")

        assert reconciliation.status == "disputed"
        assert "Discrepancy Reason: Change not returned" in reconciliation.notes

    def test_handle_discrepancy_with_resolution(self, db):
        reconciliation = make_reconciliation(db, collected=95000, status="disputed")
        handle_discrepancy(db, reconciliation, "Change not returned", resolution="Deducted from payout", user_id=1)

        assert reconciliation.status == "resolved"
        assert "Resolution: Deducted from payout" in reconciliation.notes
        assert reconciliation.meta["discrepancy_handling"]["previous_status"] == "disputed"

    def test_auto_verify_zero_discrepancy(self, db):
        zero = make_reconciliation(db, person_id=1)
        off = make_reconciliation(db, person_id=2, collected=1)
        disputed = make_reconciliation(db, person_id=3, status="disputed")

        assert auto_verify_zero_discrepancy(db) == 1
        db.expire_all()
        assert zero.status == "verified"
        assert zero.notes == AUTO_VERIFY_NOTE
        assert off.status == "pending"
        assert disputed.status == "disputed"

    def test_overall_statistics(self, db):
        make_reconciliation(db, person_id=1, expected=100000, collected=100000, status="verified")
        make_reconciliation(db, person_id=2, expected=100000, collected=50000, status="disputed")
        make_reconciliation(db, person_id=3, on=date(2026, 4, 1))

        stats = get_overall_statistics(db, date(2026, 3, 1), date(2026, 3, 31))

        assert stats.total_reconciliations == 2
        assert stats.total_expected_cents == 200000
        assert stats.total_collected_cents == 150000
        assert stats.total_discrepancy_cents == -50000
        assert stats.status_breakdown["verified"] == 1
        assert stats.status_breakdown["disputed"] == 1
        assert stats.status_breakdown["pending"] == 0
        assert stats.accuracy_percentage == 75.0

    def test_row_helpers(self, db):
        short = make_reconciliation(db, person_id=1, expected=80000, collected=60000)
        empty = make_reconciliation(db, person_id=2, expected=0, collected=0)

        assert short.has_discrepancy()
        assert short.accuracy_percentage() == 75.0
        assert not empty.has_discrepancy()
        assert empty.accuracy_percentage() == 100.0

    def test_accuracy_is_100_when_nothing_expected(self, db):
        stats = get_overall_statistics(db, date(2026, 3, 1), date(2026, 3, 31))
        assert stats.total_reconciliations == 0
        assert stats.accuracy_percentage == 100.0

    def test_delivery_person_summary(self, db, cod_order):
        cod_order("delivered", total_cents=100000, collected=100000, delivery_person_id=7)
        cod_order("delivered", total_cents=100000, collected=80000, delivery_person_id=7)
        cod_order("delivered", total_cents=100000, collected=100000, delivery_person_id=8)
        make_reconciliation(db, person_id=7, expected=200000, collected=180000, status="disputed")

        summary = get_delivery_person_summary(db, 7, date(2026, 3, 1), date(2026, 3, 7))

        assert summary.total_days == 7
        assert summary.total_orders == 2
        assert summary.total_expected_cents == 200000
        assert summary.total_collected_cents == 180000
        assert summary.total_discrepancy_cents == -20000
        assert summary.disputed_count == 1
        assert summary.accuracy_percentage == 90.0
        assert len(summary.daily_breakdown) == 1


class TestReportDay:
    """Test the report day boundaries."""

    def test_report_window_is_a_utc_day(self):
        start, end = report_window(REPORT_DATE)
        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 2, tzinfo=timezone.utc)

    def test_previous_reporting_day(self):
        assert previous_reporting_day(datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc)) == REPORT_DATE

    def test_boundary_orders(self, db, make_order, dispatcher):
        make_order(status="pending", created_at=datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc))
        make_order(status="pending", created_at=datetime(2026, 3, 1, 23, 59, 59, tzinfo=timezone.utc))
        make_order(status="pending", created_at=datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc))

        report = generate_daily_report(db, REPORT_DATE, dispatcher=dispatcher)

        assert report.total_orders == 2
