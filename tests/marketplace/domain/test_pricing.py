"""Tests for cart pricing, the per-seller split and cent allocation."""

import re
from decimal import Decimal

import pytest
from marketplace.order.pricing import (
    PricingPolicy,
    allocate,
    generate_checkout_number,
    seller_order_number,
    split_cart,
    to_money,
)


def _line(product_id, seller_id, price, quantity):
    return {"product_id": product_id, "seller_id": seller_id, "name": product_id, "price": price, "quantity": quantity}


class TestPricingPolicy:
    def test_defaults(self):
        policy = PricingPolicy()
        assert policy.shipping_for(Decimal("100")) == Decimal("10.00")
        assert policy.shipping_for(Decimal("100.01")) == Decimal("0.00")
        assert policy.tax_for(Decimal("160")) == Decimal("16.00")
        assert policy.platform_fee_for(Decimal("120")) == Decimal("9.60")
        assert policy.commission_for(Decimal("40")) == Decimal("8.00")

    def test_environment_overrides(self):
        policy = PricingPolicy.from_env({"MARKETPLACE_TAX_RATE": "0.05", "MARKETPLACE_FLAT_SHIPPING": "7"})
        assert policy.tax_rate == Decimal("0.05")
        assert policy.flat_shipping == Decimal("7")
        assert policy.platform_fee_rate == Decimal("0.08")

    def test_money_rounds_half_up(self):
        assert to_money("2.345") == Decimal("2.35")
        assert to_money(1) == Decimal("1.00")


class TestAllocate:
    def test_proportional_shares(self):
        assert allocate(Decimal("16.00"), [Decimal("120"), Decimal("40")]) == [Decimal("12.00"), Decimal("4.00")]

    def test_leftover_cents_go_to_largest_remainders(self):
        shares = allocate(Decimal("10.00"), [Decimal("1"), Decimal("1"), Decimal("1")])
        assert shares == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]

    @pytest.mark.parametrize(
        "total, weights",
        [
            ("0.07", ["1", "1", "1", "1"]),
            ("9.99", ["33.33", "33.33", "33.34"]),
            ("1.01", ["0.01", "500", "12.5"]),
        ],
    )
    def test_shares_always_sum_to_total(self, total, weights):
        shares = allocate(Decimal(total), [Decimal(w) for w in weights])
        assert sum(shares) == Decimal(total)

    def test_zero_total(self):
        assert allocate(Decimal("0"), [Decimal("5"), Decimal("5")]) == [Decimal("0.00"), Decimal("0.00")]

    def test_no_weights(self):
        assert allocate(Decimal("5"), []) == []


class TestSplitCart:
    def test_two_seller_scenario(self):
        split = split_cart(
            [_line("A", "seller-x", 60, 2), _line("B", "seller-y", 40, 1)],
            PricingPolicy(),
        )
        assert split.subtotal == Decimal("160.00")
        assert split.shipping == Decimal("0.00")
        assert split.tax == Decimal("16.00")
        assert split.grand_total == Decimal("176.00")
        assert split.total_items == 3

        x, y = split.sellers
        assert (x.seller_id, x.subtotal, x.shipping, x.tax, x.total) == (
            "seller-x",
            Decimal("120.00"),
            Decimal("0.00"),
            Decimal("12.00"),
            Decimal("132.00"),
        )
        assert (y.seller_id, y.subtotal, y.tax, y.total) == ("seller-y", Decimal("40.00"), Decimal("4.00"), Decimal("44.00"))

    def test_small_cart_pays_flat_shipping_split_across_sellers(self):
        split = split_cart(
            [_line("A", "s1", 10, 1), _line("B", "s2", 10, 1), _line("C", "s3", 10, 1)],
            PricingPolicy(),
        )
        assert split.shipping == Decimal("10.00")
        assert sum(seller.shipping for seller in split.sellers) == Decimal("10.00")
        assert sum(seller.total for seller in split.sellers) == split.grand_total

    def test_lines_of_one_seller_are_grouped_in_first_seen_order(self):
        split = split_cart(
            [_line("A", "s2", 5, 1), _line("B", "s1", 5, 1), _line("C", "s2", 5, 2)],
            PricingPolicy(),
        )
        assert [seller.seller_id for seller in split.sellers] == ["s2", "s1"]
        assert [line["product_id"] for line in split.sellers[0].lines] == ["A", "C"]
        assert split.sellers[0].subtotal == Decimal("15.00")

    def test_platform_fee_per_seller(self):
        split = split_cart([_line("A", "s1", 60, 2), _line("B", "s2", 40, 1)], PricingPolicy())
        assert [seller.platform_fee for seller in split.sellers] == [Decimal("9.60"), Decimal("3.20")]


class TestOrderNumbers:
    def test_checkout_number_format(self):
        assert re.fullmatch(r"ORD-\d{13}-[A-Z0-9]{9}", generate_checkout_number())

    def test_seller_suffix(self):
        assert seller_order_number("ORD-1-ABC", 2) == "ORD-1-ABC-2"
