"""
Services Package for Marketplace Orders
=======================================

Business logic that changes orders. Every status change goes through
transitions.transition_order, which checks the transition table, locks the
order row, writes the audit trail and emits OrderStatusChanged.

Available Services:
-------------------
- **transitions**: The single implementation of a validated status change
- **cod**: COD fee, order limits, restricted areas and verification policy
- **cod_workflow**: COD order steps from confirmation to completion
- **fulfillment**: Shipment tracking, payment gateway and vendor item events
- **reconciliation**: The daily COD reconciliation report and the per
  delivery person reconciliation records

Design Philosophy:
------------------
Services receive a SQLAlchemy Session from the caller and never create one.
Functions that own their transaction take `commit=True` by default; pass
`commit=False` to compose them inside a larger transaction.

Usage:
------
    from marketplace_orders.services.transitions import transition_order
    from marketplace_orders.services.cod_workflow import confirm_order
    from marketplace_orders.services.reconciliation import generate_daily_report
"""
