"""Application tests for checkout: splitting a cart into seller orders."""

import pytest
from marketplace import service
from marketplace.affiliate.affiliate import Affiliate, AffiliateStatus
from marketplace.auth import Actor
from marketplace.catalogue.product import Product, ProductStatus
from marketplace.exceptions import (
    Forbidden,
    InsufficientStock,
    ProductNotFound,
    ProductUnavailable,
    ValidationError,
)
from marketplace.order.order import Order
from marketplace.revenue.revenue import RevenueRecord, RevenueStatus, RevenueType
from protean import current_domain

BUYER = Actor.buyer("buyer-1")


@pytest.fixture()
def products(add_product):
    return {
        "A": add_product(name="Product A", seller_id="seller-x", price=60.0, stock=5),
        "B": add_product(name="Product B", seller_id="seller-y", price=40.0, stock=5),
    }


def _cart(products, qty_a=2, qty_b=1):
    return [
        {"product_id": str(products["A"].id), "quantity": qty_a},
        {"product_id": str(products["B"].id), "quantity": qty_b},
    ]


def _stock(product):
    return current_domain.repository_for(Product).get(product.id).stock


def _revenue_records():
    return current_domain.repository_for(RevenueRecord)._dao.query.all().items


class TestCheckoutSplit:
    def test_two_seller_cart_becomes_two_orders(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)

        orders = result["orders"]
        assert [order.seller_id for order in orders] == ["seller-x", "seller-y"]

        x, y = orders
        assert (x.subtotal, x.shipping, x.tax, x.total_amount) == (120.0, 0.0, 12.0, 132.0)
        assert (y.subtotal, y.shipping, y.tax, y.total_amount) == (40.0, 0.0, 4.0, 44.0)

    def test_summary_carries_cart_totals(self, products, address):
        summary = service.create_order(BUYER, _cart(products), address)["summary"]
        assert summary["total_items"] == 3
        assert summary["subtotal"] == 160.0
        assert summary["shipping"] == 0.0
        assert summary["tax"] == 16.0
        assert summary["total"] == 176.0

    def test_money_is_conserved_across_seller_orders(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)
        assert sum(order.total_amount for order in result["orders"]) == result["summary"]["total"]

    def test_order_numbers_share_checkout_root(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)
        root = result["summary"]["order_number"]
        assert [order.order_number for order in result["orders"]] == [f"{root}-1", f"{root}-2"]

    def test_stock_is_reserved(self, products, address):
        service.create_order(BUYER, _cart(products), address)
        assert _stock(products["A"]) == 3
        assert _stock(products["B"]) == 4
        assert current_domain.repository_for(Product).get(products["A"].id).sold_count == 2

    def test_catalogue_price_is_authoritative(self, products, address):
        cart = [{"product_id": str(products["A"].id), "quantity": 1, "price": 0.01}]
        order = service.create_order(BUYER, cart, address)["orders"][0]
        assert order.items[0].price == 60.0

    def test_orders_are_persisted_pending(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)
        stored = current_domain.repository_for(Order).get(result["orders"][0].id)
        assert stored.status == "pending"
        assert stored.customer_id == "buyer-1"
        assert stored.shipping_address.city == "Springfield"
        assert stored.billing_address.city == "Springfield"

    def test_repeated_lines_are_merged(self, products, address):
        cart = [
            {"product_id": str(products["A"].id), "quantity": 1},
            {"product_id": str(products["A"].id), "quantity": 2},
        ]
        order = service.create_order(BUYER, cart, address)["orders"][0]
        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert _stock(products["A"]) == 2

    def test_small_cart_pays_flat_shipping(self, add_product, address):
        product = add_product(price=20.0, stock=3)
        order = service.create_order(BUYER, [{"product_id": str(product.id), "quantity": 1}], address)["orders"][0]
        assert order.shipping == 10.0
        assert order.tax == 2.0
        assert order.total_amount == 32.0


class TestPlatformFees:
    def test_one_collected_fee_per_order(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)
        fees = [r for r in _revenue_records() if r.record_type == RevenueType.PLATFORM_FEE.value]
        assert sorted(fee.amount for fee in fees) == [3.2, 9.6]
        assert {fee.order_id for fee in fees} == {str(order.id) for order in result["orders"]}
        assert all(fee.status == RevenueStatus.COLLECTED.value for fee in fees)


class TestAffiliateCommission:
    def test_commission_per_seller_order(self, products, address, add_affiliate):
        add_affiliate("AFF123")
        result = service.create_order(BUYER, _cart(products), address, affiliate_code="AFF123")

        affiliate = current_domain.repository_for(Affiliate)._dao.query.filter(code="AFF123").all().items[0]
        affiliate = current_domain.repository_for(Affiliate).get(affiliate.id)
        assert sorted(r.commission for r in affiliate.referrals) == [8.0, 24.0]
        assert affiliate.pending_earnings == 32.0
        assert affiliate.paid_earnings == 0.0
        assert all(order.affiliate_code == "AFF123" for order in result["orders"])

        commissions = [r for r in _revenue_records() if r.record_type == RevenueType.AFFILIATE_COMMISSION.value]
        assert sorted(r.amount for r in commissions) == [8.0, 24.0]
        assert all(r.status == RevenueStatus.PENDING.value for r in commissions)

    def test_unknown_code_places_orders_without_commission(self, products, address):
        result = service.create_order(BUYER, _cart(products), address, affiliate_code="NOPE")
        assert all(order.affiliate_code is None for order in result["orders"])
        assert not [r for r in _revenue_records() if r.record_type == RevenueType.AFFILIATE_COMMISSION.value]

    def test_suspended_affiliate_earns_nothing(self, products, address, add_affiliate):
        add_affiliate("SUSP", status=AffiliateStatus.SUSPENDED.value)
        result = service.create_order(BUYER, _cart(products), address, affiliate_code="SUSP")
        assert all(order.affiliate_code is None for order in result["orders"])


class TestCheckoutRejection:
    def test_insufficient_stock_rejects_whole_cart(self, products, address):
        with pytest.raises(InsufficientStock) as exc:
            service.create_order(BUYER, _cart(products, qty_a=2, qty_b=6), address)

        assert exc.value.product_id == str(products["B"].id)
        assert exc.value.available == 5
        assert current_domain.repository_for(Order)._dao.query.all().items == []
        assert _revenue_records() == []
        assert _stock(products["A"]) == 5
        assert _stock(products["B"]) == 5

    def test_unknown_product(self, products, address):
        cart = _cart(products) + [{"product_id": "missing", "quantity": 1}]
        with pytest.raises(ProductNotFound):
            service.create_order(BUYER, cart, address)
        assert _stock(products["A"]) == 5

    def test_inactive_product(self, add_product, address):
        product = add_product(status=ProductStatus.INACTIVE.value)
        with pytest.raises(ProductUnavailable):
            service.create_order(BUYER, [{"product_id": str(product.id), "quantity": 1}], address)

    def test_empty_cart(self, address):
        with pytest.raises(ValidationError):
            service.create_order(BUYER, [], address)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2"])
    def test_bad_quantity(self, products, address, quantity):
        with pytest.raises(ValidationError):
            service.create_order(BUYER, [{"product_id": str(products["A"].id), "quantity": quantity}], address)

    def test_incomplete_address(self, products):
        with pytest.raises(ValidationError):
            service.create_order(BUYER, _cart(products), {"street": "1 St"})

    @pytest.mark.parametrize("payment_method", ["barter", "card", "bank_transfer"])
    def test_unknown_payment_method(self, products, address, payment_method):
        with pytest.raises(ValidationError):
            service.create_order(BUYER, _cart(products), address, payment_method=payment_method)

    @pytest.mark.parametrize("payment_method", ["paypal", "stripe", "bank", "mobile", "cash_on_delivery", "wallet"])
    def test_accepted_payment_methods(self, products, address, payment_method):
        result = service.create_order(BUYER, _cart(products), address, payment_method=payment_method)
        for order in result["orders"]:
            assert current_domain.repository_for(Order).get(order.id).payment_method == payment_method

    def test_stripe_is_the_default_payment_method(self, products, address):
        result = service.create_order(BUYER, _cart(products), address)
        assert {order.payment_method for order in result["orders"]} == {"stripe"}

    def test_system_actor_cannot_shop(self, products, address):
        with pytest.raises(Forbidden):
            service.create_order(Actor.system(), _cart(products), address)


class TestCheckoutNotifications:
    def test_each_seller_is_told_about_their_order(self, products, address, notifier):
        service.create_order(BUYER, _cart(products), address)
        assert [e["event"] for e in notifier.events_for("seller-x")] == ["new-order"]
        assert [e["event"] for e in notifier.events_for("seller-y")] == ["new-order"]

    def test_delivery_failure_does_not_undo_checkout(self, products, address, notifier):
        notifier.configure(should_raise=True)
        result = service.create_order(BUYER, _cart(products), address)
        assert len(result["orders"]) == 2
        assert _stock(products["A"]) == 3
