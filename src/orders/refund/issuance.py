"""Refund issuance: execute-and-record, then reconcile.

The engine appends the refund record under the per-order lock; the order's
refund summary is rebuilt afterwards as a separate step whose failure is
logged and left for a later reconcile.
"""

from orders.refund.engine import RefundOutcome, create_refund_for_order
from orders.refund.recompute import reconcile_refund_state


def issue_refund(order_id: str, selections, options) -> RefundOutcome:
    outcome = create_refund_for_order(order_id, selections, options)
    # Pending refunds count here so the order reflects the refund right away.
    reconcile_refund_state(order_id, include_pending=True)
    return outcome
