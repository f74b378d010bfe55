"""
Email service for admin notifications.

Sends real emails via SMTP when configured, falls back to logging in mock mode.

Environment variables:
- SMTP_HOST: SMTP server hostname (e.g., smtp.gmail.com)
- SMTP_PORT: SMTP server port (default: 587 for TLS)
- SMTP_USERNAME: SMTP authentication username
- SMTP_PASSWORD: SMTP authentication password
- SMTP_FROM_EMAIL: Sender email address
"""

import logging
import os
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import List

from .schemas.reconciliation import ReconciliationReportOut

logger = logging.getLogger(__name__)

# SMTP configuration from environment
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")


def is_email_configured() -> bool:
    """Check if SMTP is properly configured."""
    return all([SMTP_HOST, SMTP_USERNAME, SMTP_PASSWORD, SMTP_FROM_EMAIL])


def _format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def build_cod_report_body(report: ReconciliationReportOut) -> str:
    """Plain-text summary of a daily COD reconciliation report."""
    lines = [
        f"COD reconciliation for {report.report_date.isoformat()}",
        "",
        f"Orders: {report.total_orders} (skipped: {report.skipped_count})",
        f"Expected: {_format_cents(report.expected_cents)}",
        f"Collected: {_format_cents(report.collected_cents)}",
        "",
        f"  Reconciled:            {report.reconciled.count} ({_format_cents(report.reconciled.amount_cents)})",
        f"  Delivered, uncollected: {report.delivered_uncollected.count} ({_format_cents(report.delivered_uncollected.amount_cents)})",
        f"  Delivery failed:       {report.delivery_failed.count} ({_format_cents(report.delivery_failed.amount_cents)})",
        f"  In transit:            {report.in_transit.count} ({_format_cents(report.in_transit.amount_cents)})",
    ]

    if report.auto_verify:
        lines += [
            "",
            f"Auto-verify: {report.completed_orders} orders completed, "
            f"{report.auto_verified_reconciliations} reconciliations verified",
        ]

    if report.anomalies:
        lines += ["", f"Anomalies ({len(report.anomalies)}):"]
        for anomaly in report.anomalies:
            lines.append(f"  - Order #{anomaly.order_id} [{anomaly.kind}]: {anomaly.detail}")

    return "\n".join(lines) + "\n"


def send_cod_report_email(recipients: List[str], report: ReconciliationReportOut) -> dict:
    """
    Send the daily COD reconciliation summary to admins.

    Args:
        recipients: Admin email addresses
        report: The committed daily report

    Returns:
        dict with status and details. Errors are reported in the dict, not
        raised, so a mail failure never fails the reconciliation run.
    """
    subject = f"COD Reconciliation Report - {report.report_date.isoformat()}"
    body_text = build_cod_report_body(report)

    if not recipients:
        logger.info("No COD report recipients configured, skipping email")
        return {"status": "skipped", "recipients": [], "subject": subject}

    if not is_email_configured():
        # Mock mode - just log the email
        logger.info(
            "MOCK EMAIL to %s: Subject: %s | Body: %s",
            ", ".join(recipients),
            subject,
            body_text[:200] + "...",
        )
        return {
            "status": "sent",
            "recipients": recipients,
            "subject": subject,
            "mock": True,
            "message": "Email logged (SMTP not configured)",
        }

    try:
        msg = MIMEText(body_text, "plain")
        msg["Subject"] = subject
        msg["From"] = SMTP_FROM_EMAIL
        msg["To"] = ", ".join(recipients)

        context = ssl.create_default_context()
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls(context=context)
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.sendmail(SMTP_FROM_EMAIL, recipients, msg.as_string())

        logger.info("COD report email sent to %d recipients", len(recipients))

        return {
            "status": "sent",
            "recipients": recipients,
            "subject": subject,
            "mock": False,
        }

    except Exception as e:
        logger.error("Failed to send COD report email: %s", str(e))
        return {
            "status": "error",
            "recipients": recipients,
            "error": str(e),
            "mock": False,
        }
