"""
Configuration Module for Marketplace Orders
===========================================

This module centralizes the configuration settings, environment variables, and
constants used by the order lifecycle core. All values are read once at import
time; tests override them by patching the module attributes.

Configuration Categories:
-------------------------
- **Cash on Delivery**: Fees, order amount limits, delivery estimates, the
  high-value verification threshold and restricted delivery areas.

- **Reconciliation**: When the daily COD reconciliation runs, how strictly
  collected cash is compared against the order total, and who receives the
  summary mail.

- **Delivery Failures**: How many failed attempts escalate a COD order.

Environment Variables:
----------------------
- COD_ENABLED: Enable/disable COD globally (default: "true")
- COD_MIN_ORDER_AMOUNT_CENTS: Minimum order total for COD (default: 50000)
- COD_MAX_ORDER_AMOUNT_CENTS: Maximum order total for COD (default: 50000000)
- COD_FIXED_FEE_CENTS: Fixed COD fee (default: 500)
- COD_FEE_PERCENTAGE: Percentage COD fee, 0.02 = 2% (default: 0.02)
- COD_MIN_DELIVERY_DAYS / COD_MAX_DELIVERY_DAYS: Delivery estimate (3 / 5)
- COD_HIGH_VALUE_THRESHOLD_CENTS: Verification threshold (default: 1000000)
- COD_RESTRICTED_STATES / COD_RESTRICTED_CITIES / COD_RESTRICTED_POSTAL_CODES:
  Comma-separated lists (default: empty)
- COD_COLLECTION_TOLERANCE_CENTS: Allowed collected-vs-expected gap (default: 0)
- COD_REPORT_RECIPIENTS: Comma-separated admin emails (default: empty)
- DELIVERY_ESCALATION_ATTEMPTS: Failed attempts before escalation (default: 3)

Usage:
------
    from marketplace_orders.config import (
        COD_FIXED_FEE_CENTS,
        COD_REPORT_SCHEDULE,
    )
"""

import os
from datetime import time, timezone
from typing import List


def _env_list(name: str) -> List[str]:
    """Parse a comma-separated environment variable into a list."""
    raw = os.getenv(name, "")
    return [value.strip() for value in raw.split(",") if value.strip()]


# =============================================================================
# Cash on Delivery Configuration
# =============================================================================
# All amounts are integer cents to avoid float rounding on money.

COD_ENABLED: bool = os.getenv("COD_ENABLED", "true").lower() == "true"

COD_MIN_ORDER_AMOUNT_CENTS: int = int(os.getenv("COD_MIN_ORDER_AMOUNT_CENTS", "50000"))  # $500
COD_MAX_ORDER_AMOUNT_CENTS: int = int(os.getenv("COD_MAX_ORDER_AMOUNT_CENTS", "50000000"))  # $500,000

# The COD fee is the higher of the fixed fee and the percentage fee
COD_FIXED_FEE_CENTS: int = int(os.getenv("COD_FIXED_FEE_CENTS", "500"))  # $5
COD_FEE_PERCENTAGE: float = float(os.getenv("COD_FEE_PERCENTAGE", "0.02"))

COD_MIN_DELIVERY_DAYS: int = int(os.getenv("COD_MIN_DELIVERY_DAYS", "3"))
COD_MAX_DELIVERY_DAYS: int = int(os.getenv("COD_MAX_DELIVERY_DAYS", "5"))

# Orders at or above this total need manual verification before dispatch
COD_HIGH_VALUE_THRESHOLD_CENTS: int = int(os.getenv("COD_HIGH_VALUE_THRESHOLD_CENTS", "1000000"))  # $10,000

# Areas where COD is not offered
COD_RESTRICTED_STATES: List[str] = [s.upper() for s in _env_list("COD_RESTRICTED_STATES")]
COD_RESTRICTED_CITIES: List[str] = [c.lower() for c in _env_list("COD_RESTRICTED_CITIES")]
COD_RESTRICTED_POSTAL_CODES: List[str] = _env_list("COD_RESTRICTED_POSTAL_CODES")


# =============================================================================
# Reconciliation Configuration
# =============================================================================
# The daily job is triggered by an external scheduler (cron). It reports on
# the previous UTC calendar day.

COD_REPORT_TIMEZONE = timezone.utc
COD_REPORT_RUN_AT: time = time(23, 30, tzinfo=COD_REPORT_TIMEZONE)

# Crontab line for the scheduler (minute hour, UTC, every day)
COD_REPORT_SCHEDULE: str = f"{COD_REPORT_RUN_AT.minute} {COD_REPORT_RUN_AT.hour} * * *"

# Collected cash within this many cents of the order total counts as collected
COD_COLLECTION_TOLERANCE_CENTS: int = int(os.getenv("COD_COLLECTION_TOLERANCE_CENTS", "0"))

COD_REPORT_RECIPIENTS: List[str] = _env_list("COD_REPORT_RECIPIENTS")


# =============================================================================
# Delivery Failure Configuration
# =============================================================================

# Failed COD delivery attempts at or above this count are escalated
DELIVERY_ESCALATION_ATTEMPTS: int = int(os.getenv("DELIVERY_ESCALATION_ATTEMPTS", "3"))


# =============================================================================
# Payment Methods
# =============================================================================

PAYMENT_METHOD_COD = "cod"
