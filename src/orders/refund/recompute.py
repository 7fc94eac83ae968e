"""Refund state recomputation.

The only writer of ``Order.refunded_total_cents``, ``status`` and
``last_refund_at``. Always recounts from the full set of refund records, so
repeated or concurrent runs converge on the same result.
"""

import time

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_domain

from orders.money import sum_cents
from orders.order.order import Order
from orders.refund.engine import refund_records_for
from orders.refund.refund import RefundStatus

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 5
RETRY_BACKOFF_SECONDS = 0.05


def recompute_refund_state(order_id: str, include_pending: bool = False) -> bool:
    """Rebuild the order's refund summary. Returns True when the order changed.

    ``include_pending`` also counts pending refunds, for an optimistic view
    right after a refund was issued; webhooks recount succeeded refunds only.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return _recompute_once(str(order_id), include_pending)
        except ExpectedVersionError:
            if attempt == MAX_ATTEMPTS:
                raise
            logger.info("Refund state write conflict, retrying", order_id=str(order_id), attempt=attempt)
            time.sleep(RETRY_BACKOFF_SECONDS * attempt)
    return False


def _recompute_once(order_id: str, include_pending: bool) -> bool:
    repo = current_domain.repository_for(Order)
    try:
        order = repo.get(order_id)
    except ObjectNotFoundError:
        logger.warning("Refund state recompute skipped, order not found", order_id=order_id)
        return False

    statuses = {RefundStatus.SUCCEEDED.value}
    if include_pending:
        statuses.add(RefundStatus.PENDING.value)

    counted = [r for r in refund_records_for(order_id) if r.status in statuses]
    refunded_total = sum_cents(r.amount_cents for r in counted)
    last_refund_at = max((r.created_at for r in counted if r.created_at), default=None)

    changed = order.sync_refund_state(refunded_total, last_refund_at, order.refund_ceiling_cents())
    if changed:
        repo.add(order)
        logger.info(
            "Order refund state updated",
            order_id=order_id,
            refunded_total_cents=refunded_total,
            status=order.status,
            include_pending=include_pending,
        )
    return changed


def reconcile_refund_state(order_id: str, include_pending: bool = False) -> bool:
    """Run the recompute as a follow-up step that must not fail its caller.

    A refund that already went through at the processor is never unwound;
    a failed recompute is left for the next webhook or manual reconcile.
    """
    try:
        return recompute_refund_state(order_id, include_pending=include_pending)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Refund state recompute failed, needs reconciliation",
            order_id=str(order_id),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return False
