"""Order placement: command and handler.

Records a paid checkout as an Order with its amounts locked.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from orders.domain import orders
from orders.order.order import Order


@orders.command(part_of="Order")
class PlaceOrder:
    order_number = String(required=True, max_length=50)
    tenant_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of line item dicts
    total_cents = Integer()
    currency = String(max_length=3, default="USD")
    buyer_id = Identifier()
    buyer_email = String(max_length=255)
    checkout_session_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    charge_id = String(max_length=255)
    connected_account_id = String(max_length=255)
    shipping_total_cents = Integer()
    discount_total_cents = Integer()
    stripe_fee_cents = Integer()
    platform_fee_cents = Integer()
    shipment = Text()  # JSON object, legacy single shipment


def _load_json(raw: str | None, field: str):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError({field: ["Must be valid JSON"]}) from exc


@orders.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order = Order.create(
            order_number=command.order_number,
            tenant_id=command.tenant_id,
            items_data=_load_json(command.items, "items") or [],
            total_cents=command.total_cents,
            currency=command.currency,
            buyer_id=command.buyer_id,
            buyer_email=command.buyer_email,
            checkout_session_id=command.checkout_session_id,
            payment_intent_id=command.payment_intent_id,
            charge_id=command.charge_id,
            connected_account_id=command.connected_account_id,
            shipping_total_cents=command.shipping_total_cents,
            discount_total_cents=command.discount_total_cents,
            stripe_fee_cents=command.stripe_fee_cents,
            platform_fee_cents=command.platform_fee_cents,
            shipment=_load_json(command.shipment, "shipment"),
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
