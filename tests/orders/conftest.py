import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def orders_bed():
    from orders.domain import orders

    bed = DomainFixture(orders)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orders_bed, monkeypatch):
    from orders.gateway import reset_gateway
    from orders.refund.locking import reset_order_lock

    monkeypatch.delenv("PLATFORM_FEE_PERCENTAGE", raising=False)
    monkeypatch.delenv("ORDER_LOCK_BACKEND", raising=False)
    reset_gateway()
    reset_order_lock()

    with orders_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_order_lock()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
TWO_LINE_ITEMS = [
    {"id": "line-1", "name_snapshot": "Hand loom", "unit_amount": 2000, "quantity": 2},
    {"id": "line-2", "name_snapshot": "Wool skein", "unit_amount": 1500, "quantity": 1},
]


@pytest.fixture()
def place_order():
    """Create and persist a paid order; defaults to two lines worth 5500 cents."""
    from orders.order.order import Order

    def _place(items=None, payment_intent_id="pi_test_001", **overrides):
        params = {
            "order_number": "AH-1001",
            "tenant_id": "tenant-001",
            "items_data": TWO_LINE_ITEMS if items is None else items,
            "payment_intent_id": payment_intent_id,
            "buyer_email": "buyer@example.com",
        }
        params.update(overrides)
        order = Order.create(**params)
        current_domain.repository_for(Order).add(order)
        return current_domain.repository_for(Order).get(order.id)

    return _place


@pytest.fixture()
def ten_unit_order(place_order):
    """Order of 10 x 1000 cents: a 10000 cent refund ceiling."""
    return place_order(
        items=[{"id": "line-ten", "name_snapshot": "Bead kit", "unit_amount": 1000, "quantity": 10}],
    )


@pytest.fixture()
def seed_refund():
    """Append a refund record as if issued in the processor dashboard."""
    from orders.refund.refund import RefundRecord, RefundSource, RefundStatus

    def _seed(order, amount_cents, status=RefundStatus.SUCCEEDED.value, key=None, gateway_refund_id=None):
        record = RefundRecord.record(
            order_id=str(order.id),
            amount_cents=amount_cents,
            status=status,
            idempotency_key=key or f"seed-{amount_cents}-{status}",
            gateway_refund_id=gateway_refund_id or f"re_seed_{amount_cents}_{status}",
            source=RefundSource.PROCESSOR.value,
        )
        current_domain.repository_for(RefundRecord).add(record)
        return record

    return _seed
