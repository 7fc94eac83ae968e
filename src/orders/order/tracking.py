"""Order tracking: commands and handler.

Sellers record carrier tracking; the notifier acknowledges emails it sent;
carriers (or sellers) confirm delivery.
"""

from protean import handle
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from orders.domain import orders
from orders.order.order import Order


@orders.command(part_of="Order")
class RecordShipment:
    order_id = Identifier(required=True)
    carrier = String(required=True, max_length=20)
    tracking_number = String(required=True, max_length=255)
    shipped_at = String(max_length=40)


@orders.command(part_of="Order")
class MarkTrackingNotified:
    order_id = Identifier(required=True)
    message_key = String(required=True, max_length=64)


@orders.command(part_of="Order")
class MarkDelivered:
    order_id = Identifier(required=True)
    delivered_at = DateTime()


@orders.command_handler(part_of=Order)
class TrackingHandler:
    @handle(RecordShipment)
    def record_shipment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_shipment(
            carrier=command.carrier,
            tracking_number=command.tracking_number,
            shipped_at=command.shipped_at,
        )
        repo.add(order)

    @handle(MarkTrackingNotified)
    def mark_tracking_notified(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_tracking_notified(command.message_key)
        repo.add(order)

    @handle(MarkDelivered)
    def mark_delivered(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_delivered(command.delivered_at)
        repo.add(order)
