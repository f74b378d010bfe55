"""
Order Schemas for Marketplace Orders
====================================

Pydantic models for order status changes and the external signals that
drive them.

Inputs:
-------
- **ShipmentEvent**: A carrier tracking update (from the shipping webhook)
- **PaymentEvent**: A payment gateway outcome (from the payment webhook)

Outputs:
--------
- **TransitionResult**: What a successful status transition did
- **WorkflowState**: The COD workflow view of an order, including which
  actions are currently possible
- **CodAvailability**: Whether COD can be offered for an order total and
  delivery address

Usage:
------
    event = ShipmentEvent(carrier="dhl", tracking_number="JD0123", status="delivered")
    result = apply_shipment_event(db, order, event)
    if result is not None:
        print(f"{result.from_status} -> {result.to_status}")
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransitionResult(BaseModel):
    """
    Result of a successful order status transition.

    Attributes:
        order_id: The order that changed
        from_status: Status before the transition
        to_status: Status after the transition
        changed_at: When the transition was recorded (UTC)
    """
    model_config = ConfigDict(frozen=True)

    order_id: int
    from_status: str
    to_status: str
    changed_at: datetime


class WorkflowState(BaseModel):
    """
    COD workflow view of an order.

    Attributes:
        current_status: Status value
        status_label: Display label of the status
        available_actions: Workflow actions legal from the current status
        is_cod_collected: Whether cash has been recorded
        has_delivery_person: Whether a delivery person is assigned
        delivery_attempts: Failed delivery attempts recorded so far
        workflow_enabled: False for non-COD orders (no actions offered)
    """
    current_status: str
    status_label: str
    available_actions: List[str] = Field(default_factory=list)
    is_cod_collected: bool = False
    has_delivery_person: bool = False
    delivery_attempts: int = 0
    workflow_enabled: bool = True


class CodAvailability(BaseModel):
    available: bool
    errors: List[str] = Field(default_factory=list)
    cod_fee_cents: int = 0
    total_with_fee_cents: int = 0
    min_delivery_days: int
    max_delivery_days: int


class ShipmentEvent(BaseModel):
    """
    Carrier tracking update.

    Only out_for_delivery, delivered and failed move the order; in_transit
    and returned are recorded on the shipment as evidence.
    """
    carrier: Optional[str] = None
    tracking_number: str
    status: Literal["in_transit", "out_for_delivery", "delivered", "failed", "returned"]
    occurred_at: Optional[datetime] = None
    description: Optional[str] = None


class PaymentEvent(BaseModel):
    """Payment gateway outcome for an order."""
    type: Literal["succeeded", "failed", "refunded"]
    gateway_reference: Optional[str] = None
    amount_cents: Optional[int] = None
    reason: Optional[str] = None
