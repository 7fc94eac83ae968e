"""Refund engine.

Validates a refund request against an order, enforces the refundable
ceiling, executes the refund at the payment processor exactly once per
idempotency key, and appends a RefundRecord. It never writes the order's
cached refund fields; callers follow up with ``recompute_refund_state``.
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orders.gateway import get_gateway
from orders.gateway.port import RefundResult
from orders.money import sum_cents, to_int_cents, to_int_cents_or_none
from orders.order.order import Order
from orders.refund.errors import ExceedsRefundableError, FullyRefundedError, PaymentProcessorError
from orders.refund.locking import get_order_lock
from orders.refund.refund import RefundReason, RefundRecord, RefundSource, RefundStatus

logger = structlog.get_logger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 128

_PROCESSOR_STATUS_MAP = {
    "succeeded": RefundStatus.SUCCEEDED,
    "pending": RefundStatus.PENDING,
    "requires_action": RefundStatus.PENDING,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELED,
    "cancelled": RefundStatus.CANCELED,
}

# Reasons the processor accepts; ours that it does not know map to None.
_PROCESSOR_REASONS = {
    RefundReason.REQUESTED_BY_CUSTOMER.value,
    RefundReason.DUPLICATE.value,
    RefundReason.FRAUDULENT.value,
}


@dataclass(frozen=True)
class LineSelection:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class RefundOptions:
    idempotency_key: str
    reason: str | None = None
    restocking_fee_cents: int = 0
    refund_shipping_cents: int = 0
    notes: str | None = None


@dataclass(frozen=True)
class RefundOutcome:
    refund: RefundResult
    record: RefundRecord
    replayed: bool = False


@dataclass(frozen=True)
class RefundableRemainder:
    order_id: str
    ceiling_cents: int
    refunded_cents: int
    remaining_cents: int
    remaining_quantity_by_item: dict[str, int] = field(default_factory=dict)
    refunded_cents_by_item: dict[str, int] = field(default_factory=dict)


def to_local_refund_status(status: str | None) -> RefundStatus:
    """Map a processor refund status onto ours; unknown values stay pending."""
    return _PROCESSOR_STATUS_MAP.get((status or "").lower(), RefundStatus.PENDING)


def to_processor_refund_reason(reason: str | None) -> str | None:
    return reason if reason in _PROCESSOR_REASONS else None


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------
def normalize_selections(selections) -> list[LineSelection]:
    """Validate selections and merge repeated item ids."""
    if not isinstance(selections, list | tuple) or not selections:
        raise ValidationError({"selections": ["At least one item must be selected"]})

    merged: dict[str, int] = {}
    for index, raw in enumerate(selections):
        if isinstance(raw, LineSelection):
            item_id, quantity = raw.item_id, raw.quantity
        elif isinstance(raw, Mapping):
            item_id, quantity = raw.get("item_id"), raw.get("quantity")
        else:
            raise ValidationError({"selections": [f"Selection {index} must be an object"]})

        if not item_id or not str(item_id).strip():
            raise ValidationError({"selections": [f"Selection {index} is missing an item id"]})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError({"selections": [f"Selection {index} quantity must be a positive integer"]})

        key = str(item_id).strip()
        merged[key] = merged.get(key, 0) + quantity

    return [LineSelection(item_id=item_id, quantity=quantity) for item_id, quantity in merged.items()]


def validate_options(options) -> RefundOptions:
    if isinstance(options, Mapping):
        options = RefundOptions(**options)
    if not isinstance(options, RefundOptions):
        raise ValidationError({"options": ["Refund options are required"]})

    key = (options.idempotency_key or "").strip()
    if not key:
        raise ValidationError({"idempotency_key": ["Idempotency key is required"]})
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError({"idempotency_key": [f"Idempotency key exceeds {MAX_IDEMPOTENCY_KEY_LENGTH} characters"]})
    if options.reason is not None and options.reason not in {r.value for r in RefundReason}:
        raise ValidationError({"reason": [f"Unknown refund reason {options.reason}"]})

    restocking = to_int_cents_or_none(options.restocking_fee_cents, allow_negative=True)
    shipping = to_int_cents_or_none(options.refund_shipping_cents, allow_negative=True)
    if restocking is None or restocking < 0:
        raise ValidationError({"restocking_fee_cents": ["Restocking fee must be a non-negative amount"]})
    if shipping is None or shipping < 0:
        raise ValidationError({"refund_shipping_cents": ["Shipping refund must be a non-negative amount"]})

    return RefundOptions(
        idempotency_key=key,
        reason=options.reason,
        restocking_fee_cents=restocking,
        refund_shipping_cents=shipping,
        notes=options.notes,
    )


def build_idempotency_key(
    order_id: str,
    selections,
    reason: str | None = None,
    restocking_fee_cents: int = 0,
    refund_shipping_cents: int = 0,
) -> str:
    """Deterministic key for one logical refund request.

    Same order, selections, reason and adjustments give the same key, so a
    double-submitted form cannot refund twice. Notes are not part of the key.
    """
    lines = sorted((s.item_id, s.quantity) for s in normalize_selections(selections))
    payload = json.dumps(
        {
            "order_id": str(order_id),
            "selections": lines,
            "reason": reason or "",
            "restocking_fee_cents": to_int_cents(restocking_fee_cents),
            "refund_shipping_cents": to_int_cents(refund_shipping_cents),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return "refund:v2:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------
def refund_records_for(order_id: str) -> list[RefundRecord]:
    repo = current_domain.repository_for(RefundRecord)
    return repo._dao.query.filter(order_id=str(order_id)).all().items


def find_refund_record(**filters) -> RefundRecord | None:
    repo = current_domain.repository_for(RefundRecord)
    found = repo._dao.query.filter(**filters).all().items
    return found[0] if found else None


def refunded_quantities(records: Iterable[RefundRecord], statuses=None) -> dict[str, int]:
    """Units refunded per item id across records in ``statuses``."""
    counted = statuses or {RefundStatus.SUCCEEDED.value, RefundStatus.PENDING.value}
    quantities: dict[str, int] = {}
    for record in records:
        if record.status not in counted:
            continue
        for selection in record.selections or []:
            quantities[selection.item_id] = quantities.get(selection.item_id, 0) + selection.quantity
    return quantities


def _line_total(item) -> int:
    explicit = to_int_cents_or_none(item.amount_total)
    if explicit is not None:
        return explicit
    return to_int_cents(item.unit_amount) * (item.quantity or 1)


def _prorate(line_total: int, quantity: int, purchased: int) -> int:
    share = Decimal(line_total) * Decimal(quantity) / Decimal(purchased)
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def selection_amounts(order: Order, selections: list[LineSelection], already_refunded: dict[str, int] | None = None) -> list[dict]:
    """Price each selection against the order's lines.

    Raises ValidationError for unknown items and quantities beyond what is
    still refundable on the line.
    """
    already_refunded = already_refunded or {}
    priced = []
    for selection in selections:
        item = order.item_by_id(selection.item_id)
        if item is None:
            raise ValidationError({"selections": [f"Item {selection.item_id} is not part of this order"]})

        purchased = item.quantity or 1
        available = purchased - already_refunded.get(str(item.id), 0)
        if selection.quantity > available:
            raise ValidationError(
                {"selections": [f"Item {selection.item_id} has only {max(0, available)} unit(s) left to refund"]}
            )

        priced.append(
            {
                "item_id": str(item.id),
                "quantity": selection.quantity,
                "unit_amount": to_int_cents(item.unit_amount),
                "amount_cents": _prorate(_line_total(item), selection.quantity, purchased),
            }
        )
    return priced


def compute_refund_amount_cents(order: Order, selections, already_refunded: dict[str, int] | None = None) -> int:
    """Items portion of a refund, before shipping and restocking adjustments."""
    priced = selection_amounts(order, normalize_selections(selections), already_refunded)
    return sum_cents(line["amount_cents"] for line in priced)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
def _replay(existing: RefundRecord, order_id: str) -> RefundOutcome:
    if str(existing.order_id) != str(order_id):
        raise ValidationError({"idempotency_key": ["Idempotency key was already used for another order"]})
    logger.info(
        "Refund replayed for idempotency key",
        order_id=str(order_id),
        refund_record_id=str(existing.id),
        gateway_refund_id=existing.gateway_refund_id,
    )
    result = RefundResult(
        success=True,
        gateway_refund_id=existing.gateway_refund_id,
        gateway_status=existing.status,
        amount_cents=existing.amount_cents,
    )
    return RefundOutcome(refund=result, record=existing, replayed=True)


def create_refund_for_order(order_id: str, selections, options) -> RefundOutcome:
    """Execute one refund against ``order_id``.

    Raises:
        ValidationError: malformed selections/options, unknown items, or
            quantities beyond what is left on a line.
        ObjectNotFoundError: the order does not exist.
        FullyRefundedError: nothing is left to refund.
        ExceedsRefundableError: the request is larger than the remaining balance.
        PaymentProcessorError: the processor declined; nothing was recorded.
        RefundInProgressError: the per-order lock timed out.
    """
    lines = normalize_selections(selections)
    opts = validate_options(options)
    order_id = str(order_id)

    with get_order_lock().hold(order_id):
        existing = find_refund_record(idempotency_key=opts.idempotency_key)
        if existing is not None:
            return _replay(existing, order_id)

        order = current_domain.repository_for(Order).get(order_id)
        if not (order.payment_intent_id or order.charge_id):
            raise ValidationError({"order": ["Order has no payment reference to refund against"]})

        records = refund_records_for(order_id)
        already_refunded = sum_cents(r.amount_cents for r in records if r.status == RefundStatus.SUCCEEDED.value)
        in_flight = sum_cents(r.amount_cents for r in records if r.status == RefundStatus.PENDING.value)
        ceiling = order.refund_ceiling_cents()

        if already_refunded >= ceiling:
            raise FullyRefundedError(order_id, refunded_cents=already_refunded, ceiling_cents=ceiling)

        priced = selection_amounts(order, lines, refunded_quantities(records))
        requested = (
            sum_cents(line["amount_cents"] for line in priced)
            + opts.refund_shipping_cents
            - opts.restocking_fee_cents
        )
        if requested <= 0:
            raise ValidationError({"amount": ["Refund amount after adjustments must be positive"]})

        remaining = max(0, ceiling - already_refunded - in_flight)
        if requested > remaining:
            raise ExceedsRefundableError(
                order_id,
                requested_cents=requested,
                remaining_cents=remaining,
                refunded_cents=already_refunded,
                ceiling_cents=ceiling,
            )

        result = get_gateway().create_refund(
            amount_cents=requested,
            reason=to_processor_refund_reason(opts.reason),
            idempotency_key=opts.idempotency_key,
            payment_intent_id=order.payment_intent_id,
            charge_id=None if order.payment_intent_id else order.charge_id,
            connected_account_id=order.connected_account_id,
        )
        if not result.success:
            logger.warning(
                "Payment processor declined refund",
                order_id=order_id,
                amount_cents=requested,
                reason=result.failure_reason,
            )
            raise PaymentProcessorError(order_id, result.failure_reason)

        record = RefundRecord.record(
            order_id=order_id,
            order_number=order.order_number,
            amount_cents=result.amount_cents or requested,
            status=to_local_refund_status(result.gateway_status).value,
            idempotency_key=opts.idempotency_key,
            gateway_refund_id=result.gateway_refund_id,
            payment_intent_id=order.payment_intent_id,
            charge_id=order.charge_id,
            reason=opts.reason,
            selections=priced,
            restocking_fee_cents=opts.restocking_fee_cents,
            refund_shipping_cents=opts.refund_shipping_cents,
            notes=opts.notes,
            source=RefundSource.ENGINE.value,
        )
        current_domain.repository_for(RefundRecord).add(record)

    logger.info(
        "Refund recorded",
        order_id=order_id,
        refund_record_id=str(record.id),
        gateway_refund_id=result.gateway_refund_id,
        amount_cents=record.amount_cents,
        status=record.status,
    )
    return RefundOutcome(refund=result, record=record)


def compute_refundable_remainder(order_id: str, include_pending: bool = False) -> RefundableRemainder:
    """What is still refundable on an order, overall and per line."""
    order = current_domain.repository_for(Order).get(str(order_id))
    statuses = {RefundStatus.SUCCEEDED.value}
    if include_pending:
        statuses.add(RefundStatus.PENDING.value)

    counted = [r for r in refund_records_for(order_id) if r.status in statuses]
    refunded = sum_cents(r.amount_cents for r in counted)
    ceiling = order.refund_ceiling_cents()

    quantities = refunded_quantities(counted, statuses)
    refunded_by_item: dict[str, int] = {}
    for record in counted:
        for selection in record.selections or []:
            refunded_by_item[selection.item_id] = refunded_by_item.get(selection.item_id, 0) + (
                selection.amount_cents or 0
            )

    remaining_quantity = {
        str(item.id): max(0, (item.quantity or 1) - quantities.get(str(item.id), 0)) for item in order.items or []
    }
    return RefundableRemainder(
        order_id=str(order_id),
        ceiling_cents=ceiling,
        refunded_cents=refunded,
        remaining_cents=max(0, ceiling - refunded),
        remaining_quantity_by_item=remaining_quantity,
        refunded_cents_by_item=refunded_by_item,
    )
