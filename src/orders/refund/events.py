"""Domain events for the RefundRecord aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from orders.domain import orders


@orders.event(part_of="RefundRecord")
class RefundRecorded:
    """A refund was executed by the processor and appended to the ledger."""

    __version__ = 1

    refund_record_id = Identifier(required=True)
    order_id = Identifier(required=True)
    gateway_refund_id = String()
    amount_cents = Integer(required=True)
    status = String(required=True)
    source = String(required=True)
    idempotency_key = String(required=True)
    recorded_at = DateTime(required=True)


@orders.event(part_of="RefundRecord")
class RefundStatusChanged:
    """The processor reported a new status for a recorded refund."""

    __version__ = 1

    refund_record_id = Identifier(required=True)
    order_id = Identifier(required=True)
    gateway_refund_id = String()
    previous_status = String(required=True)
    status = String(required=True)
    changed_at = DateTime(required=True)
