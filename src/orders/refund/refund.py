"""RefundRecord aggregate (CQRS): the append-only refund ledger.

One record per refund the processor executed. Amount, order and selections
never change after creation; only ``status`` moves, driven by processor
webhooks. The order's cached refund summary is always rebuilt from these
records.

State Machine:
    PENDING → {SUCCEEDED, FAILED, CANCELED}
    SUCCEEDED → FAILED   (the processor can fail a refund after success)
    FAILED, CANCELED are terminal
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, HasMany, Identifier, Integer, String, Text

from orders.domain import orders
from orders.refund.events import RefundRecorded, RefundStatusChanged


class RefundStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class RefundReason(Enum):
    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    OTHER = "other"


class RefundSource(Enum):
    ENGINE = "engine"
    PROCESSOR = "processor"  # issued outside this system, learned from a webhook


_VALID_TRANSITIONS = {
    RefundStatus.PENDING: {RefundStatus.SUCCEEDED, RefundStatus.FAILED, RefundStatus.CANCELED},
    RefundStatus.SUCCEEDED: {RefundStatus.FAILED},
    RefundStatus.FAILED: set(),
    RefundStatus.CANCELED: set(),
}


@orders.entity(part_of="RefundRecord")
class RefundSelection:
    """Snapshot of one refunded line at the time of the refund."""

    item_id = String(required=True, max_length=100)
    quantity = Integer(required=True, min_value=1)
    unit_amount = Integer(default=0)
    amount_cents = Integer(default=0)  # this selection's share of the refund


@orders.aggregate
class RefundRecord:
    order_id = Identifier(required=True)
    order_number = String(max_length=50)
    gateway_refund_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    charge_id = String(max_length=255)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    amount_cents = Integer(required=True, min_value=0)
    reason = String(choices=RefundReason)
    selections = HasMany(RefundSelection)
    restocking_fee_cents = Integer(default=0, min_value=0)
    refund_shipping_cents = Integer(default=0, min_value=0)
    notes = Text()
    idempotency_key = String(required=True, max_length=255, unique=True)
    source = String(choices=RefundSource, default=RefundSource.ENGINE.value)
    created_at = DateTime()
    status_updated_at = DateTime()
    # Event time of the last status the processor reported; None until then.
    processor_status_at = DateTime()

    @classmethod
    def record(
        cls,
        order_id: str,
        amount_cents: int,
        status: str,
        idempotency_key: str,
        gateway_refund_id: str | None = None,
        order_number: str | None = None,
        payment_intent_id: str | None = None,
        charge_id: str | None = None,
        reason: str | None = None,
        selections: list[dict] | None = None,
        restocking_fee_cents: int = 0,
        refund_shipping_cents: int = 0,
        notes: str | None = None,
        source: str = RefundSource.ENGINE.value,
        created_at: datetime | None = None,
        processor_status_at: datetime | None = None,
    ):
        now = datetime.now(UTC)
        record = cls(
            order_id=order_id,
            order_number=order_number,
            gateway_refund_id=gateway_refund_id,
            payment_intent_id=payment_intent_id,
            charge_id=charge_id,
            status=status,
            amount_cents=amount_cents,
            reason=reason,
            restocking_fee_cents=restocking_fee_cents,
            refund_shipping_cents=refund_shipping_cents,
            notes=notes,
            idempotency_key=idempotency_key,
            source=source,
            created_at=created_at or now,
            status_updated_at=created_at or now,
            processor_status_at=processor_status_at,
        )
        for selection in selections or []:
            record.add_selections(RefundSelection(**selection))

        record.raise_(
            RefundRecorded(
                refund_record_id=str(record.id),
                order_id=str(order_id),
                gateway_refund_id=gateway_refund_id,
                amount_cents=amount_cents,
                status=status,
                source=source,
                idempotency_key=idempotency_key,
                recorded_at=now,
            )
        )
        return record

    def can_transition_to(self, target: RefundStatus) -> bool:
        return target in _VALID_TRANSITIONS.get(RefundStatus(self.status), set())

    def apply_status(self, target: RefundStatus, occurred_at: datetime | None = None) -> bool:
        """Move to ``target`` as reported by the processor.

        Returns False, leaving the record untouched, for duplicates, for
        reports older than the last processor report applied, and for moves
        the state machine does not allow (out-of-order webhooks).

        ``occurred_at`` is processor time. It is only compared with earlier
        processor reports, never with our own write times, so the first
        report is decided by the state machine alone.
        """
        if target.value == self.status:
            return False
        if occurred_at and self.processor_status_at and occurred_at < self.processor_status_at:
            return False
        if not self.can_transition_to(target):
            return False

        previous = self.status
        now = datetime.now(UTC)
        self.status = target.value
        self.status_updated_at = now
        if occurred_at:
            self.processor_status_at = occurred_at
        self.raise_(
            RefundStatusChanged(
                refund_record_id=str(self.id),
                order_id=str(self.order_id),
                gateway_refund_id=self.gateway_refund_id,
                previous_status=previous,
                status=target.value,
                changed_at=now,
            )
        )
        return True
