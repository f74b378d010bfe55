#!/usr/bin/env python
"""
Daily COD reconciliation job.

Reconciles the COD orders of one UTC calendar day and mails the summary to
the admins in COD_REPORT_RECIPIENTS. Scheduled by cron at 23:30 UTC
(config.COD_REPORT_SCHEDULE); without a DATE it reports on the previous day.

Usage:
    # Previous UTC day
    python -m marketplace_orders.jobs.cod_daily_report

    # A specific day, completing reconciled orders
    cod-daily-report 2026-03-01 --auto-verify

    # Only create the reconciliation row for one delivery person
    cod-daily-report 2026-03-01 --delivery-person 42

Exit codes:
    0: report generated
    1: the run failed (nothing was persisted) or the delivery person is unknown
"""
import argparse
import logging
import sys
from datetime import date
from typing import Callable, List, Optional

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from .. import config
from ..email_service import send_cod_report_email
from ..exceptions import ReconciliationRunFailure
from ..logging_config import setup_logging
from ..schemas.reconciliation import ReconciliationReportOut
from ..services.reconciliation import (
    delivery_person_exists,
    generate_daily_report,
    previous_reporting_day,
)

logger = logging.getLogger(__name__)


def _format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def print_summary(report: ReconciliationReportOut) -> None:
    """Print the run summary for whoever is watching the cron output."""
    print(f"\n=== COD Reconciliation {report.report_date.isoformat()} ===")
    print(f"Orders:    {report.total_orders} ({report.skipped_count} skipped)")
    print(f"Expected:  {_format_cents(report.expected_cents)}")
    print(f"Collected: {_format_cents(report.collected_cents)}")
    for name in ("reconciled", "delivered_uncollected", "delivery_failed", "in_transit"):
        totals = getattr(report, name)
        print(f"  {name:<22} {totals.count:>5}  {_format_cents(totals.amount_cents):>14}")

    if report.reconciliations:
        print("\nDelivery Person   Orders      Expected     Collected   Discrepancy  Status")
        for r in report.reconciliations:
            print(
                f"{r.delivery_person_id:<15} {r.total_orders_count:>8} "
                f"{_format_cents(r.total_cod_amount_cents):>13} "
                f"{_format_cents(r.collected_amount_cents):>13} "
                f"{_format_cents(r.discrepancy_cents):>13}  {r.status}"
            )

    if report.auto_verify:
        print(
            f"\nAuto-verify: {report.completed_orders} orders completed, "
            f"{report.auto_verified_reconciliations} reconciliations verified"
        )
    if report.anomalies:
        print(f"\n{len(report.anomalies)} anomalies:")
        for anomaly in report.anomalies:
            print(f"  Order #{anomaly.order_id} [{anomaly.kind}] {anomaly.detail}")


def run(
    db: Session,
    report_date: date,
    delivery_person_id: Optional[int] = None,
    auto_verify: bool = False,
) -> int:
    """Generate the report and notify admins. Returns the process exit code."""
    if delivery_person_id is not None and not delivery_person_exists(db, delivery_person_id):
        logger.error("Delivery person with ID %d not found", delivery_person_id)
        return 1

    try:
        report = generate_daily_report(
            db,
            report_date,
            delivery_person_id=delivery_person_id,
            auto_verify=auto_verify,
        )
    except ReconciliationRunFailure as e:
        logger.error("COD daily report generation failed: %s", e.reason)
        return 1

    print_summary(report)
    send_cod_report_email(config.COD_REPORT_RECIPIENTS, report)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cod-daily-report",
        description="Generate the daily COD reconciliation report.",
    )
    parser.add_argument(
        "date",
        nargs="?",
        type=date.fromisoformat,
        help="Report date (YYYY-MM-DD). Defaults to the previous UTC day.",
    )
    parser.add_argument(
        "--delivery-person",
        type=int,
        dest="delivery_person_id",
        help="Only create the reconciliation for this delivery person ID",
    )
    parser.add_argument(
        "--auto-verify",
        action="store_true",
        help="Complete reconciled orders and verify zero-discrepancy reconciliations",
    )
    return parser


def main(
    argv: Optional[List[str]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> int:
    load_dotenv()
    setup_logging()

    args = build_parser().parse_args(argv)
    report_date = args.date or previous_reporting_day()

    if session_factory is None:
        from ..db import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        return run(
            db,
            report_date,
            delivery_person_id=args.delivery_person_id,
            auto_verify=args.auto_verify,
        )
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
