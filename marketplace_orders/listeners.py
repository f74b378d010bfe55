"""
Default listeners for order lifecycle events.

Customer and vendor notifications are delivered by other services that tail
the application log, so these listeners only record structured log lines.
Repeated COD delivery failures are escalated at CRITICAL level.
"""

import logging

from . import config
from .events import (
    CodDeliveryFailed,
    CodOrderConfirmed,
    CodOrderOutForDelivery,
    CodPaymentCollected,
    EventDispatcher,
    OrderItemStatusUpdated,
    OrderStatusChanged,
    PaymentFailed,
)

logger = logging.getLogger(__name__)


def log_status_change(event: OrderStatusChanged) -> None:
    logger.info(
        "Order #%d status changed: %s -> %s (by %s)",
        event.order_id,
        event.from_status,
        event.to_status,
        event.user_id if event.user_id is not None else "system",
    )


def notify_cod_order_confirmed(event: CodOrderConfirmed) -> None:
    logger.info("COD order #%d confirmed, total %d cents", event.order_id, event.total_cents)


def notify_out_for_delivery(event: CodOrderOutForDelivery) -> None:
    logger.info(
        "COD order #%d out for delivery with delivery person %d",
        event.order_id,
        event.delivery_person_id,
    )


def notify_cod_payment_collected(event: CodPaymentCollected) -> None:
    logger.info(
        "COD payment collected for order #%d: %d cents by user %d",
        event.order_id,
        event.amount_cents,
        event.collected_by,
    )


def notify_delivery_failed(event: CodDeliveryFailed) -> None:
    logger.warning(
        "COD delivery failed for order #%d (attempt %d): %s",
        event.order_id,
        event.attempt_number,
        event.reason,
    )
    if event.attempt_number >= config.DELIVERY_ESCALATION_ATTEMPTS:
        logger.critical(
            "Multiple delivery failures for COD order #%d: %d attempts",
            event.order_id,
            event.attempt_number,
        )


def notify_payment_failed(event: PaymentFailed) -> None:
    logger.warning(
        "Payment failed for order #%d (reference %s): %s",
        event.order_id,
        event.gateway_reference or "n/a",
        event.reason or "no reason given",
    )


def notify_item_status_updated(event: OrderItemStatusUpdated) -> None:
    logger.info(
        "Order #%d item %d (vendor %d): %s -> %s",
        event.order_id,
        event.item_id,
        event.vendor_id,
        event.from_status,
        event.to_status,
    )


def register_default_listeners(dispatcher: EventDispatcher) -> None:
    dispatcher.subscribe(OrderStatusChanged, log_status_change)
    dispatcher.subscribe(CodOrderConfirmed, notify_cod_order_confirmed)
    dispatcher.subscribe(CodOrderOutForDelivery, notify_out_for_delivery)
    dispatcher.subscribe(CodPaymentCollected, notify_cod_payment_collected)
    dispatcher.subscribe(CodDeliveryFailed, notify_delivery_failed)
    dispatcher.subscribe(PaymentFailed, notify_payment_failed)
    dispatcher.subscribe(OrderItemStatusUpdated, notify_item_status_updated)
