"""Processor fee backfill: command and handler."""

from protean import handle
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from orders.domain import orders
from orders.order.order import Order


@orders.command(part_of="Order")
class RecordProcessorFees:
    order_id = Identifier(required=True)
    stripe_fee_cents = Integer(required=True, min_value=0)
    platform_fee_cents = Integer(min_value=0)


@orders.command_handler(part_of=Order)
class ProcessorFeesHandler:
    @handle(RecordProcessorFees)
    def record_processor_fees(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_processor_fees(
            stripe_fee_cents=command.stripe_fee_cents,
            platform_fee_cents=command.platform_fee_cents,
        )
        repo.add(order)
