"""Orders bounded context: Order Money Accounting and Refund Reconciliation.

Handles authoritative order totals, seller payouts, refunds against a hosted
payment processor, refund state reconciliation, and shipment tracking. Orders
use CQRS (state stored, events raised for audit); refund records are an
append-only ledger that the order's refund summary is derived from.
"""

import structlog
from protean.domain import Domain

orders = Domain(name="orders")

logger = structlog.get_logger(__name__)
