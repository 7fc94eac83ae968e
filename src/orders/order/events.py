"""Domain events for the Order aggregate.

Orders are stored as state (CQRS); these events are the audit trail of how
the money and shipment fields changed, and the hook for notifications.
"""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from orders.domain import orders


@orders.event(part_of="Order")
class OrderPlaced:
    """A checkout completed and the order was recorded with locked amounts."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    tenant_id = Identifier(required=True)
    currency = String(required=True)
    total_cents = Integer(required=True)
    subtotal_cents = Integer(required=True)
    platform_fee_cents = Integer(required=True)
    stripe_fee_cents = Integer(required=True)
    seller_net_cents = Integer(required=True)
    item_count = Integer(required=True)
    placed_at = DateTime(required=True)


@orders.event(part_of="Order")
class ProcessorFeesRecorded:
    """The payment processor reported its fee, changing the seller payout."""

    __version__ = 1

    order_id = Identifier(required=True)
    stripe_fee_cents = Integer(required=True)
    platform_fee_cents = Integer(required=True)
    seller_net_cents = Integer(required=True)
    recorded_at = DateTime(required=True)


@orders.event(part_of="Order")
class ShipmentRecorded:
    """A seller recorded tracking for the order.

    ``notification_due`` is False when the canonical tracking did not change
    or the buyer was already notified about it (``message_key`` matches the
    stored ``last_notified_key``).
    """

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    carrier = String(required=True)
    tracking_number = String(required=True)
    tracking_url = String()
    shipped_at = String(required=True)
    latest_shipped_at = String()
    change_kind = String()  # added, updated, or empty when unchanged
    previous_tracking_number = String()
    message_key = String(required=True)
    notification_due = Boolean(required=True)
    buyer_email = String()
    recorded_at = DateTime(required=True)


@orders.event(part_of="Order")
class OrderDelivered:
    """The order's shipment reached the buyer."""

    __version__ = 1

    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@orders.event(part_of="Order")
class OrderRefundStateChanged:
    """The cached refund summary of the order was rebuilt from refund records."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    status = String(required=True)
    previous_refunded_total_cents = Integer(required=True)
    refunded_total_cents = Integer(required=True)
    last_refund_at = DateTime()
    changed_at = DateTime(required=True)
