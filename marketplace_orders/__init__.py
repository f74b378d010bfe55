"""
Marketplace Orders
==================

Order lifecycle core for the multi-vendor marketplace: the order status
transition table, the callers that move orders through it (COD workflow,
shipment and payment events, vendor item roll-up) and the daily COD
reconciliation job.
"""
