"""Order aggregate (CQRS).

An Order is written once at checkout with its amounts locked in, then only
touched by three flows: shipment tracking, processor fee backfill, and the
refund recompute that rebuilds ``refunded_total_cents``/``status`` from the
refund records. Nothing else writes those two fields.

Status:
    PAID → PARTIALLY_REFUNDED → REFUNDED, derived from the refunded total.
    CANCELED is set outside the refund flow and is never overwritten by it.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from orders.domain import orders
from orders.money import to_int_cents, to_int_cents_or_none
from orders.order.amounts import OrderAmounts, compute_order_amounts
from orders.order.events import (
    OrderDelivered,
    OrderPlaced,
    OrderRefundStateChanged,
    ProcessorFeesRecorded,
    ShipmentRecorded,
)
from orders.order.shipments import (
    SHIPMENT_FIELDS,
    Carrier,
    TrackingChange,
    build_tracking_message_key,
    build_tracking_url,
    classify_tracking_change,
    compute_latest_shipped_at,
    has_shipment_data,
    is_valid_tracking_number,
    mirror_shipments_array_to_single,
    mirror_single_shipment_to_array,
    normalize_tracking_number,
    parse_shipped_at,
    to_iso,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    CANCELED = "canceled"


class FulfillmentStatus(Enum):
    UNFULFILLED = "unfulfilled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"


def status_for_refunded_total(refunded_cents: int, ceiling_cents: int) -> OrderStatus:
    """Order status implied by a refunded total against the refund ceiling."""
    if refunded_cents <= 0:
        return OrderStatus.PAID
    if refunded_cents >= ceiling_cents:
        return OrderStatus.REFUNDED
    return OrderStatus.PARTIALLY_REFUNDED


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orders.value_object(part_of="Order")
class Amounts:
    """Locked money breakdown, everything except the gross total."""

    subtotal_cents = Integer(default=0)
    tax_total_cents = Integer(default=0)
    shipping_total_cents = Integer(default=0)
    discount_total_cents = Integer(default=0)
    platform_fee_cents = Integer(default=0)
    stripe_fee_cents = Integer(default=0)
    seller_net_cents = Integer(default=0)


@orders.value_object(part_of="Order")
class Shipment:
    """Canonical shipment, mirrored from the ``shipments`` history."""

    carrier = String(max_length=20, choices=Carrier)
    tracking_number = String(max_length=255)
    tracking_url = String(max_length=500)
    shipped_at = String(max_length=40)
    last_notified_key = String(max_length=64)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orders.entity(part_of="Order")
class OrderItem:
    """A purchased line; prices are snapshots taken at checkout."""

    product_id = Identifier()
    name_snapshot = String(required=True, max_length=255)
    unit_amount = Integer(default=0)
    quantity = Integer(default=1, min_value=1)
    amount_subtotal = Integer()
    amount_tax = Integer()
    amount_total = Integer()
    refund_policy = String(max_length=50)
    returns_accepted_through = DateTime()


@orders.entity(part_of="Order")
class ShipmentEntry:
    carrier = String(max_length=20, choices=Carrier)
    tracking_number = String(max_length=255)
    tracking_url = String(max_length=500)
    shipped_at = String(max_length=40)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@orders.aggregate
class Order:
    order_number = String(required=True, max_length=50)
    tenant_id = Identifier(required=True)
    buyer_id = Identifier()
    buyer_email = String(max_length=255)
    checkout_session_id = String(max_length=255)
    payment_intent_id = String(max_length=255)
    charge_id = String(max_length=255)
    connected_account_id = String(max_length=255)
    currency = String(max_length=3, default="USD")
    total = Integer(default=0, min_value=0)
    amounts = ValueObject(Amounts)
    items = HasMany(OrderItem)
    status = String(choices=OrderStatus, default=OrderStatus.PAID.value)
    refunded_total_cents = Integer(default=0)
    last_refund_at = DateTime()
    shipment = ValueObject(Shipment)
    shipments = HasMany(ShipmentEntry)
    latest_shipped_at = String(max_length=40)
    fulfillment_status = String(
        choices=FulfillmentStatus,
        default=FulfillmentStatus.UNFULFILLED.value,
    )
    delivered_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def refunded_total_must_stay_within_total(self):
        refunded = self.refunded_total_cents or 0
        if refunded < 0:
            raise ValidationError({"refunded_total_cents": ["Refunded total cannot be negative"]})
        if refunded > (self.total or 0):
            raise ValidationError({"refunded_total_cents": ["Refunded total cannot exceed the order total"]})

    @invariant.post
    def status_must_match_refunded_total(self):
        if self.status == OrderStatus.CANCELED.value:
            return
        expected = status_for_refunded_total(self.refunded_total_cents or 0, self.total or 0)
        if self.status != expected.value:
            raise ValidationError(
                {"status": [f"Status {self.status} does not match refunded total {self.refunded_total_cents}"]}
            )

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number: str,
        tenant_id: str,
        items_data: list[dict],
        total_cents=None,
        currency: str = "USD",
        buyer_id: str | None = None,
        buyer_email: str | None = None,
        checkout_session_id: str | None = None,
        payment_intent_id: str | None = None,
        charge_id: str | None = None,
        connected_account_id: str | None = None,
        shipping_total_cents=None,
        discount_total_cents=None,
        stripe_fee_cents=None,
        platform_fee_cents=None,
        shipment: dict | None = None,
    ):
        """Record a paid order, locking its amounts from the line items.

        ``total_cents`` is only trusted when no line item carries a price.
        ``shipment`` seeds a legacy single-shipment document.
        """
        if not isinstance(items_data, list | tuple):
            raise ValidationError({"items": ["Items must be a list"]})

        lines = [_normalize_line(index, raw) for index, raw in enumerate(items_data) if raw is not None]
        computed = compute_order_amounts(
            lines,
            total_cents,
            shipping_total_cents=shipping_total_cents,
            discount_total_cents=discount_total_cents,
            stripe_fee_cents=stripe_fee_cents,
            platform_fee_cents=platform_fee_cents,
        )

        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            tenant_id=tenant_id,
            buyer_id=buyer_id,
            buyer_email=buyer_email,
            checkout_session_id=checkout_session_id,
            payment_intent_id=payment_intent_id,
            charge_id=charge_id,
            connected_account_id=connected_account_id,
            currency=(currency or "USD").upper(),
            total=computed.total_cents,
            amounts=_amounts_value(computed),
            status=OrderStatus.PAID.value,
            refunded_total_cents=0,
            fulfillment_status=FulfillmentStatus.UNFULFILLED.value,
            created_at=now,
            updated_at=now,
        )
        for line in lines:
            order.add_items(OrderItem(**line))

        if shipment and has_shipment_data(shipment):
            order.shipment = Shipment(**{name: shipment.get(name) for name in SHIPMENT_FIELDS})
            order._sync_shipments()

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                tenant_id=str(tenant_id),
                currency=order.currency,
                total_cents=computed.total_cents,
                subtotal_cents=computed.subtotal_cents,
                platform_fee_cents=computed.platform_fee_cents,
                stripe_fee_cents=computed.stripe_fee_cents,
                seller_net_cents=computed.seller_net_cents,
                item_count=len(lines),
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Amounts
    # -------------------------------------------------------------------
    def compute_amounts(self) -> OrderAmounts:
        """Re-derive the amounts from the stored lines and locked inputs.

        The stored platform fee is passed through, so the result does not
        drift when the configured percentage changes after checkout.
        """
        locked = self.amounts
        return compute_order_amounts(
            list(self.items or []),
            self.total,
            shipping_total_cents=locked.shipping_total_cents if locked else 0,
            discount_total_cents=locked.discount_total_cents if locked else 0,
            stripe_fee_cents=locked.stripe_fee_cents if locked else 0,
            platform_fee_cents=locked.platform_fee_cents if locked else None,
        )

    def refund_ceiling_cents(self) -> int:
        return self.compute_amounts().total_cents

    def item_by_id(self, item_id: str):
        return next((item for item in (self.items or []) if str(item.id) == str(item_id)), None)

    def record_processor_fees(self, stripe_fee_cents, platform_fee_cents=None) -> None:
        """Backfill the processor fee (and optionally the platform fee) once known."""
        stripe_fee = to_int_cents_or_none(stripe_fee_cents)
        if stripe_fee is None:
            raise ValidationError({"stripe_fee_cents": ["Processor fee must be a non-negative amount"]})

        locked = self.amounts
        platform_fee = to_int_cents_or_none(platform_fee_cents)
        computed = compute_order_amounts(
            list(self.items or []),
            self.total,
            shipping_total_cents=locked.shipping_total_cents if locked else 0,
            discount_total_cents=locked.discount_total_cents if locked else 0,
            stripe_fee_cents=stripe_fee,
            platform_fee_cents=platform_fee if platform_fee is not None else (locked.platform_fee_cents if locked else None),
        )

        now = datetime.now(UTC)
        self.amounts = _amounts_value(computed)
        self.updated_at = now
        self.raise_(
            ProcessorFeesRecorded(
                order_id=str(self.id),
                stripe_fee_cents=computed.stripe_fee_cents,
                platform_fee_cents=computed.platform_fee_cents,
                seller_net_cents=computed.seller_net_cents,
                recorded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Refund summary
    # -------------------------------------------------------------------
    def sync_refund_state(self, refunded_total_cents: int, last_refund_at, ceiling_cents: int) -> bool:
        """Overwrite the cached refund summary; returns False when nothing changed."""
        if self.status == OrderStatus.CANCELED.value:
            next_status = self.status
        else:
            next_status = status_for_refunded_total(refunded_total_cents, ceiling_cents).value

        previous_total = self.refunded_total_cents or 0
        if (
            previous_total == refunded_total_cents
            and self.status == next_status
            and self.last_refund_at == last_refund_at
        ):
            return False

        previous_status = self.status
        now = datetime.now(UTC)
        with atomic_change(self):
            self.refunded_total_cents = refunded_total_cents
            self.status = next_status
            self.last_refund_at = last_refund_at
            self.updated_at = now

        self.raise_(
            OrderRefundStateChanged(
                order_id=str(self.id),
                previous_status=previous_status,
                status=next_status,
                previous_refunded_total_cents=previous_total,
                refunded_total_cents=refunded_total_cents,
                last_refund_at=last_refund_at,
                changed_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Shipments
    # -------------------------------------------------------------------
    def _shipment_document(self) -> dict:
        return {
            "shipment": _shipment_dict(self.shipment) if self.shipment else None,
            "shipments": [_shipment_dict(entry) for entry in (self.shipments or [])],
        }

    def _sync_shipments(self) -> None:
        """Keep ``shipment``, ``shipments`` and ``latest_shipped_at`` consistent."""
        document = self._shipment_document()

        seeded = mirror_single_shipment_to_array(document)
        if not document["shipments"] and seeded.get("shipments"):
            for entry in seeded["shipments"]:
                self.add_shipments(ShipmentEntry(**entry))
            document = self._shipment_document()

        mirrored = mirror_shipments_array_to_single({"shipments": document["shipments"]}, document)
        chosen = mirrored.get("shipment")
        if chosen:
            notified_key = self.shipment.last_notified_key if self.shipment else None
            self.shipment = Shipment(
                **{name: chosen.get(name) for name in SHIPMENT_FIELDS},
                last_notified_key=notified_key,
            )

        self.latest_shipped_at = compute_latest_shipped_at(self._shipment_document())

    def record_shipment(self, carrier: str, tracking_number: str, shipped_at: str | None = None) -> None:
        """Append a shipment to the history and mirror the canonical one."""
        if self.status == OrderStatus.CANCELED.value:
            raise ValidationError({"status": ["Cannot ship a canceled order"]})
        if carrier not in {c.value for c in Carrier}:
            raise ValidationError({"carrier": [f"Unknown carrier {carrier}"]})

        normalized = normalize_tracking_number(tracking_number)
        if not normalized:
            raise ValidationError({"tracking_number": ["Tracking number is required"]})
        if not is_valid_tracking_number(carrier, normalized):
            raise ValidationError({"tracking_number": [f"Not a valid {carrier} tracking number"]})

        now = datetime.now(UTC)
        if shipped_at:
            parsed = parse_shipped_at(shipped_at)
            if parsed is None:
                raise ValidationError({"shipped_at": ["Shipped at must be an ISO timestamp"]})
            shipped_at_iso = to_iso(parsed)
        else:
            shipped_at_iso = to_iso(now)

        previous_number = self.shipment.tracking_number if self.shipment else None
        previous_carrier = self.shipment.carrier if self.shipment else None

        self.add_shipments(
            ShipmentEntry(
                carrier=carrier,
                tracking_number=normalized,
                tracking_url=build_tracking_url(carrier, normalized),
                shipped_at=shipped_at_iso,
            )
        )
        self._sync_shipments()
        if self.fulfillment_status == FulfillmentStatus.UNFULFILLED.value:
            self.fulfillment_status = FulfillmentStatus.SHIPPED.value
        self.updated_at = now

        current = self.shipment
        change = classify_tracking_change(previous_number, current.tracking_number, previous_carrier, current.carrier)
        message_key = build_tracking_message_key(str(self.id), current.carrier, current.tracking_number)
        notification_due = change in (TrackingChange.ADDED, TrackingChange.UPDATED) and (
            message_key != current.last_notified_key
        )

        self.raise_(
            ShipmentRecorded(
                order_id=str(self.id),
                order_number=self.order_number,
                carrier=current.carrier,
                tracking_number=current.tracking_number,
                tracking_url=current.tracking_url,
                shipped_at=current.shipped_at,
                latest_shipped_at=self.latest_shipped_at,
                change_kind=change.value if change else "",
                previous_tracking_number=previous_number or "",
                message_key=message_key,
                notification_due=notification_due,
                buyer_email=self.buyer_email,
                recorded_at=now,
            )
        )

    def mark_tracking_notified(self, message_key: str) -> None:
        """Remember that the buyer was emailed about the current tracking."""
        if not self.shipment or not self.shipment.tracking_number:
            raise ValidationError({"shipment": ["Order has no tracking to notify about"]})
        expected = build_tracking_message_key(str(self.id), self.shipment.carrier, self.shipment.tracking_number)
        if message_key != expected:
            raise ValidationError({"message_key": ["Message key does not match the current tracking"]})

        self.shipment = Shipment(**_shipment_dict(self.shipment), last_notified_key=message_key)
        self.updated_at = datetime.now(UTC)

    def mark_delivered(self, delivered_at: datetime | None = None) -> None:
        if self.fulfillment_status != FulfillmentStatus.SHIPPED.value:
            raise ValidationError({"fulfillment_status": ["Only shipped orders can be marked delivered"]})

        moment = delivered_at or datetime.now(UTC)
        self.fulfillment_status = FulfillmentStatus.DELIVERED.value
        if self.delivered_at is None:
            self.delivered_at = moment
        self.updated_at = datetime.now(UTC)
        self.raise_(OrderDelivered(order_id=str(self.id), delivered_at=self.delivered_at))


def _shipment_dict(entry) -> dict:
    return {name: getattr(entry, name, None) for name in SHIPMENT_FIELDS}


def _amounts_value(computed: OrderAmounts) -> Amounts:
    values = computed.to_dict()
    values.pop("total_cents")
    return Amounts(**values)


def _normalize_line(index: int, raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError({"items": [f"Item {index} must be an object"]})

    quantity = to_int_cents_or_none(raw.get("quantity"))
    line = {
        "product_id": raw.get("product_id"),
        "name_snapshot": str(raw.get("name_snapshot") or raw.get("name") or "Item"),
        "unit_amount": to_int_cents(raw.get("unit_amount")),
        "quantity": quantity if quantity and quantity > 0 else 1,
        "amount_subtotal": to_int_cents_or_none(raw.get("amount_subtotal")),
        "amount_tax": to_int_cents_or_none(raw.get("amount_tax")),
        "amount_total": to_int_cents_or_none(raw.get("amount_total")),
        "refund_policy": raw.get("refund_policy"),
        "returns_accepted_through": raw.get("returns_accepted_through"),
    }
    if raw.get("id"):
        line["id"] = str(raw["id"])
    return line
