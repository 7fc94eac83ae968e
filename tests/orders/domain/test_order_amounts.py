from decimal import Decimal

import pytest

from orders.order.amounts import compute_order_amounts, platform_fee_from_subtotal


class TestEndToEndAmounts:
    def test_two_line_order(self):
        amounts = compute_order_amounts(
            [
                {"unit_amount": 2000, "quantity": 2},
                {"unit_amount": 1500, "quantity": 1},
            ],
            total_cents=None,
        )
        assert amounts.subtotal_cents == 5500
        assert amounts.platform_fee_cents == 550
        assert amounts.stripe_fee_cents == 0
        assert amounts.seller_net_cents == 4950
        assert amounts.total_cents == 5500

    def test_deterministic(self):
        items = [{"unit_amount": 1234, "quantity": 3, "amount_tax": 99}]
        first = compute_order_amounts(items, 0, shipping_total_cents=500, discount_total_cents=100)
        second = compute_order_amounts(items, 0, shipping_total_cents=500, discount_total_cents=100)
        assert first == second


class TestLineDerivation:
    def test_explicit_line_values_win(self):
        amounts = compute_order_amounts(
            [{"unit_amount": 1000, "quantity": 2, "amount_subtotal": 1800, "amount_tax": 144, "amount_total": 1944}],
            total_cents=None,
        )
        assert amounts.subtotal_cents == 1800
        assert amounts.tax_total_cents == 144
        assert amounts.total_cents == 1944

    def test_total_derived_from_subtotal_and_tax(self):
        amounts = compute_order_amounts([{"unit_amount": 1000, "quantity": 1, "amount_tax": 80}], total_cents=None)
        assert amounts.total_cents == 1080

    @pytest.mark.parametrize("quantity", [0, -2, None, "abc"])
    def test_bad_quantity_defaults_to_one(self, quantity):
        amounts = compute_order_amounts([{"unit_amount": 700, "quantity": quantity}], total_cents=None)
        assert amounts.subtotal_cents == 700

    def test_phantom_line_contributes_nothing(self):
        amounts = compute_order_amounts(
            [{"unit_amount": 0, "quantity": 3}, {"unit_amount": 1000, "quantity": 1}],
            total_cents=None,
        )
        assert amounts.subtotal_cents == 1000
        assert amounts.tax_total_cents == 0
        assert amounts.total_cents == 1000

    def test_phantom_only_order_falls_back_to_caller_total(self):
        amounts = compute_order_amounts([{"unit_amount": 0}], total_cents=4200)
        assert amounts.subtotal_cents == 0
        assert amounts.total_cents == 4200

    @pytest.mark.parametrize("items", [None, "garbage", {"unit_amount": 100}, []])
    def test_non_list_items_mean_no_items(self, items):
        assert compute_order_amounts(items, total_cents="3100").total_cents == 3100


class TestServerTotal:
    def test_shipping_and_discount(self):
        amounts = compute_order_amounts(
            [{"unit_amount": 5000, "quantity": 1}],
            total_cents=1,
            shipping_total_cents=700,
            discount_total_cents=1000,
        )
        assert amounts.total_cents == 4700

    def test_total_never_negative(self):
        amounts = compute_order_amounts(
            [{"unit_amount": 500, "quantity": 1}], total_cents=None, discount_total_cents=10000
        )
        assert amounts.total_cents == 0


class TestFees:
    def test_platform_fee_is_on_subtotal_only(self):
        with_shipping = compute_order_amounts(
            [{"unit_amount": 10000, "quantity": 1}], total_cents=None, shipping_total_cents=2500
        )
        without_shipping = compute_order_amounts([{"unit_amount": 10000, "quantity": 1}], total_cents=None)
        assert with_shipping.platform_fee_cents == 1000
        assert without_shipping.platform_fee_cents == 1000

    def test_explicit_platform_fee_is_trusted(self):
        amounts = compute_order_amounts([{"unit_amount": 10000}], total_cents=None, platform_fee_cents=0)
        assert amounts.platform_fee_cents == 0

    def test_invalid_platform_fee_falls_back(self):
        amounts = compute_order_amounts([{"unit_amount": 10000}], total_cents=None, platform_fee_cents=-5)
        assert amounts.platform_fee_cents == 1000

    def test_configured_percentage(self, monkeypatch):
        monkeypatch.setenv("PLATFORM_FEE_PERCENTAGE", "12.5")
        amounts = compute_order_amounts([{"unit_amount": 10000}], total_cents=None)
        assert amounts.platform_fee_cents == 1250

    def test_percentage_rounds_half_up(self):
        assert platform_fee_from_subtotal(1005, Decimal("10")) == 101

    def test_stripe_fee_is_never_estimated(self):
        amounts = compute_order_amounts([{"unit_amount": 10000}], total_cents=None)
        assert amounts.stripe_fee_cents == 0
        reported = compute_order_amounts([{"unit_amount": 10000}], total_cents=None, stripe_fee_cents=320)
        assert reported.stripe_fee_cents == 320
        assert reported.seller_net_cents == 10000 - 1000 - 320

    @pytest.mark.parametrize(
        "platform_fee, stripe_fee",
        [(0, 0), (5000, 5000), (9000, 2000), (100000, 0), (0, 100000)],
    )
    def test_seller_net_never_negative(self, platform_fee, stripe_fee):
        amounts = compute_order_amounts(
            [{"unit_amount": 10000}],
            total_cents=None,
            platform_fee_cents=platform_fee,
            stripe_fee_cents=stripe_fee,
        )
        assert amounts.seller_net_cents >= 0
