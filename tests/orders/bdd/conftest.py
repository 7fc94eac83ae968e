"""Shared BDD fixtures and step definitions for refunds."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from orders.gateway import get_gateway
from orders.order.order import Order
from orders.refund.engine import compute_refundable_remainder


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for captured refund rejections."""
    return {"exc": None}


@pytest.fixture()
def outcomes():
    return []


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse("a paid order of {quantity:d} units at {unit_amount:d} cents"), target_fixture="order")
def paid_order(place_order, quantity, unit_amount):
    return place_order(
        items=[{"id": "bdd-line", "name_snapshot": "Bead kit", "unit_amount": unit_amount, "quantity": quantity}],
    )


@given(parsers.cfparse("{amount:d} cents were already refunded"))
def already_refunded(order, seed_refund, amount):
    seed_refund(order, amount)


@given("the processor leaves refunds pending")
def processor_leaves_pending():
    get_gateway().configure(should_succeed=True, refund_status="pending")


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def order_status_is(order, status):
    refreshed = current_domain.repository_for(Order).get(order.id)
    assert refreshed.status == status


@then(parsers.cfparse("the order refunded total is {amount:d} cents"))
def order_refunded_total_is(order, amount):
    refreshed = current_domain.repository_for(Order).get(order.id)
    assert refreshed.refunded_total_cents == amount


@then(parsers.cfparse("{amount:d} cents remain refundable"))
def remaining_refundable(order, amount):
    assert compute_refundable_remainder(order.id).remaining_cents == amount
