"""
Cash on Delivery policy.

Fee calculation, order amount limits, restricted delivery areas and the
high-value verification rule. All functions are pure and read their limits
from marketplace_orders.config.
"""

import logging
from typing import Mapping, Optional

from .. import config
from ..schemas.orders import CodAvailability

logger = logging.getLogger(__name__)


def get_cod_fee(amount_cents: int) -> int:
    """The larger of the fixed fee and the percentage fee (truncated to cents)."""
    percentage_fee = int(amount_cents * config.COD_FEE_PERCENTAGE)
    return max(config.COD_FIXED_FEE_CENTS, percentage_fee)


def calculate_total_with_cod_fee(amount_cents: int) -> dict:
    fee = get_cod_fee(amount_cents)
    return {
        "order_amount_cents": amount_cents,
        "cod_fee_cents": fee,
        "total_cents": amount_cents + fee,
    }


def get_delivery_time_estimate() -> dict:
    min_days = config.COD_MIN_DELIVERY_DAYS
    max_days = config.COD_MAX_DELIVERY_DAYS
    return {
        "min_days": min_days,
        "max_days": max_days,
        "text": f"{min_days}-{max_days} business days",
    }


def is_available_for_address(address: Mapping[str, Optional[str]]) -> bool:
    """Check a delivery address against the restricted states, cities and postal codes."""
    state = (address.get("state") or "").upper()
    city = (address.get("city") or "").lower()
    postal_code = address.get("postal_code") or ""

    if state and state in config.COD_RESTRICTED_STATES:
        return False
    if city and city in config.COD_RESTRICTED_CITIES:
        return False
    if postal_code and postal_code in config.COD_RESTRICTED_POSTAL_CODES:
        return False
    return True


def requires_verification(total_cents: int) -> bool:
    """High-value COD orders need manual verification before dispatch."""
    return total_cents >= config.COD_HIGH_VALUE_THRESHOLD_CENTS


def validate_cod_availability(
    amount_cents: int,
    address: Optional[Mapping[str, Optional[str]]] = None,
    phone: Optional[str] = None,
) -> CodAvailability:
    """
    Check whether COD can be offered.

    Args:
        amount_cents: Order total before the COD fee
        address: Delivery address with state, city, postal_code and
            optionally phone keys
        phone: Customer phone; falls back to address["phone"]

    Returns:
        CodAvailability with every failed check listed in errors
    """
    errors = []

    if not config.COD_ENABLED:
        errors.append("Cash on delivery is currently unavailable.")

    if amount_cents < config.COD_MIN_ORDER_AMOUNT_CENTS:
        errors.append(
            f"COD is only available for orders above ${config.COD_MIN_ORDER_AMOUNT_CENTS / 100:,.2f}"
        )
    if amount_cents > config.COD_MAX_ORDER_AMOUNT_CENTS:
        errors.append(
            f"COD is not available for orders above ${config.COD_MAX_ORDER_AMOUNT_CENTS / 100:,.2f}"
        )

    if address and not is_available_for_address(address):
        errors.append("COD is not available for your delivery location.")

    if not phone and address:
        phone = address.get("phone")
    if not phone:
        errors.append("Phone number is required for COD orders.")

    if errors:
        logger.debug("COD unavailable for %d cents: %s", amount_cents, "; ".join(errors))

    fee = get_cod_fee(amount_cents)
    return CodAvailability(
        available=not errors,
        errors=errors,
        cod_fee_cents=fee,
        total_with_fee_cents=amount_cents + fee,
        min_delivery_days=config.COD_MIN_DELIVERY_DAYS,
        max_delivery_days=config.COD_MAX_DELIVERY_DAYS,
    )
