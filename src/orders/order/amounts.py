"""Order amount aggregator.

Derives the money breakdown of an order from its line items and the
authoritative inputs reported at checkout. The function is pure: identical
input always produces identical output, and nothing is read from storage or
the clock.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

import structlog

from orders.config import get_platform_fee_percentage
from orders.money import to_int_cents, to_int_cents_or_none

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderAmounts:
    """Money breakdown of an order, all in integer cents."""

    subtotal_cents: int
    tax_total_cents: int
    shipping_total_cents: int
    discount_total_cents: int
    platform_fee_cents: int
    stripe_fee_cents: int
    seller_net_cents: int
    # Server-authoritative gross total; doubles as the refund ceiling.
    total_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def _read(item, name: str):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _line_quantity(item) -> int:
    quantity = to_int_cents_or_none(_read(item, "quantity"))
    return quantity if quantity and quantity > 0 else 1


def platform_fee_from_subtotal(subtotal_cents: int, percentage: Decimal) -> int:
    """Marketplace cut on the items subtotal, rounded half-up to the cent."""
    fee = (Decimal(subtotal_cents) * percentage / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, int(fee))


def compute_order_amounts(
    items,
    total_cents,
    shipping_total_cents=None,
    discount_total_cents=None,
    stripe_fee_cents=None,
    platform_fee_cents=None,
    platform_fee_percentage: Decimal | None = None,
) -> OrderAmounts:
    """Compute the authoritative amounts for an order.

    Args:
        items: Line items as mappings or ``OrderItem`` entities. Anything that
            is not a list/tuple is treated as "no items".
        total_cents: Caller-provided total, used only when no line survives.
        shipping_total_cents: Shipping charged, default 0.
        discount_total_cents: Discounts applied, default 0.
        stripe_fee_cents: The processor's own report of its fee. Trusted
            verbatim, default 0, never estimated.
        platform_fee_cents: Marketplace fee if already known. Falls back to
            ``platform_fee_percentage`` of the items subtotal.
        platform_fee_percentage: Overrides the configured percentage.
    """
    item_list = list(items) if isinstance(items, list | tuple) else []

    subtotal = 0
    tax_total = 0
    line_totals = 0
    counted_lines = 0

    for index, item in enumerate(item_list):
        if item is None:
            continue
        quantity = _line_quantity(item)
        unit_amount = to_int_cents(_read(item, "unit_amount"))
        explicit_subtotal = to_int_cents_or_none(_read(item, "amount_subtotal"))
        explicit_total = to_int_cents_or_none(_read(item, "amount_total"))

        if unit_amount <= 0 and explicit_subtotal is None and explicit_total is None:
            logger.warning(
                "Skipping order line without a price",
                line_index=index,
                item_id=str(_read(item, "id") or ""),
                name=_read(item, "name_snapshot"),
            )
            continue

        amount_subtotal = explicit_subtotal if explicit_subtotal is not None else unit_amount * quantity
        amount_tax = to_int_cents(_read(item, "amount_tax"))
        amount_total = explicit_total if explicit_total is not None else amount_subtotal + amount_tax

        subtotal += amount_subtotal
        tax_total += amount_tax
        line_totals += amount_total
        counted_lines += 1

    shipping = to_int_cents(shipping_total_cents)
    discount = to_int_cents(discount_total_cents)

    if counted_lines:
        server_total = max(0, line_totals + shipping - discount)
    else:
        server_total = to_int_cents(total_cents)

    stripe_fee = to_int_cents(stripe_fee_cents)

    provided_platform_fee = to_int_cents_or_none(platform_fee_cents, allow_negative=True)
    if provided_platform_fee is not None and provided_platform_fee >= 0:
        platform_fee = provided_platform_fee
    else:
        percentage = platform_fee_percentage if platform_fee_percentage is not None else get_platform_fee_percentage()
        platform_fee = platform_fee_from_subtotal(subtotal, percentage)

    seller_net = max(0, server_total - platform_fee - stripe_fee)

    return OrderAmounts(
        subtotal_cents=subtotal,
        tax_total_cents=tax_total,
        shipping_total_cents=shipping,
        discount_total_cents=discount,
        platform_fee_cents=platform_fee,
        stripe_fee_cents=stripe_fee,
        seller_net_cents=seller_net,
        total_cents=server_total,
    )
