"""Refund webhook processing and reconciliation: commands and handler.

The processor reports refund status changes by webhook, including refunds
issued directly in its dashboard. Deliveries may be duplicated or arrive
out of order.
"""

from datetime import UTC

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from orders.domain import orders
from orders.order.order import Order
from orders.refund.engine import find_refund_record, to_local_refund_status, to_processor_refund_reason
from orders.refund.recompute import recompute_refund_state
from orders.refund.refund import RefundRecord, RefundSource

logger = structlog.get_logger(__name__)


@orders.command(part_of="RefundRecord")
class ProcessRefundWebhook:
    gateway_refund_id = String(required=True, max_length=255)
    status = String(required=True, max_length=50)
    amount_cents = Integer(min_value=0)
    payment_intent_id = String(max_length=255)
    charge_id = String(max_length=255)
    reason = String(max_length=50)
    occurred_at = DateTime()


@orders.command(part_of="Order")
class RecomputeRefundState:
    order_id = Identifier(required=True)
    include_pending = Boolean(default=False)


def _find_order_by_payment(payment_intent_id: str | None, charge_id: str | None) -> Order | None:
    repo = current_domain.repository_for(Order)
    for field_name, value in (("payment_intent_id", payment_intent_id), ("charge_id", charge_id)):
        if not value:
            continue
        found = repo._dao.query.filter(**{field_name: value}).all().items
        if found:
            return found[0]
    return None


def _aware(moment):
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


@orders.command_handler(part_of=RefundRecord)
class RefundWebhookHandler:
    @handle(ProcessRefundWebhook)
    def process_refund_webhook(self, command):
        """Apply the reported status; returns the affected order id, if any."""
        repo = current_domain.repository_for(RefundRecord)
        status = to_local_refund_status(command.status)
        occurred_at = _aware(command.occurred_at)

        record = find_refund_record(gateway_refund_id=command.gateway_refund_id)
        if record is not None:
            if record.apply_status(status, occurred_at=occurred_at):
                repo.add(record)
                logger.info(
                    "Refund status updated from webhook",
                    order_id=str(record.order_id),
                    gateway_refund_id=command.gateway_refund_id,
                    status=status.value,
                )
            else:
                logger.info(
                    "Refund webhook ignored",
                    order_id=str(record.order_id),
                    gateway_refund_id=command.gateway_refund_id,
                    current_status=record.status,
                    reported_status=status.value,
                )
            return str(record.order_id)

        order = _find_order_by_payment(command.payment_intent_id, command.charge_id)
        if order is None:
            logger.warning(
                "Refund webhook for unknown payment",
                gateway_refund_id=command.gateway_refund_id,
                payment_intent_id=command.payment_intent_id,
                charge_id=command.charge_id,
            )
            return None
        if command.amount_cents is None:
            raise ValidationError({"amount_cents": ["Amount is required for refunds not issued here"]})

        record = RefundRecord.record(
            order_id=str(order.id),
            order_number=order.order_number,
            amount_cents=command.amount_cents,
            status=status.value,
            idempotency_key=f"processor:{command.gateway_refund_id}",
            gateway_refund_id=command.gateway_refund_id,
            payment_intent_id=command.payment_intent_id or order.payment_intent_id,
            charge_id=command.charge_id or order.charge_id,
            reason=to_processor_refund_reason(command.reason),
            source=RefundSource.PROCESSOR.value,
            created_at=occurred_at,
            processor_status_at=occurred_at,
        )
        repo.add(record)
        logger.info(
            "External refund recorded from webhook",
            order_id=str(order.id),
            gateway_refund_id=command.gateway_refund_id,
            amount_cents=command.amount_cents,
            status=status.value,
        )
        return str(order.id)


@orders.command_handler(part_of=Order)
class RecomputeRefundStateHandler:
    @handle(RecomputeRefundState)
    def recompute(self, command):
        return recompute_refund_state(
            command.order_id,
            include_pending=bool(command.include_pending),
        )
