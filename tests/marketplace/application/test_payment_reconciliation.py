import pytest
from marketplace import service
from marketplace.auth import Actor
from marketplace.catalogue.product import Product
from marketplace.exceptions import Forbidden, InvalidPaymentStatus, OrderNotFound
from marketplace.order.order import Order
from marketplace.order.payment import PAYMENT_RECEIVED_NOTE
from protean import current_domain

BUYER = Actor.buyer("buyer-1")


@pytest.fixture()
def product(add_product):
    return add_product(seller_id="seller-x", price=60.0, stock=5)


@pytest.fixture()
def order(product, address):
    return service.create_order(BUYER, [{"product_id": str(product.id), "quantity": 1}], address)["orders"][0]


class TestApplyPaymentStatus:
    def test_paid_advances_pending_order(self, order):
        updated = service.apply_payment_status(order.id, "paid", transaction_id="txn-42", details={"gateway": "stripe"})

        assert updated.payment_status == "paid"
        assert updated.transaction_id == "txn-42"
        assert updated.status == "processing"
        assert updated.timeline[-1].note == PAYMENT_RECEIVED_NOTE
        assert updated.timeline[-1].changed_by == "system"
        assert [entry.status for entry in updated.payment_timeline] == ["pending", "paid"]

    def test_paid_on_processing_order_does_not_transition(self, order):
        service.transition_status(order.id, "processing", Actor.seller("seller-x"))
        updated = service.apply_payment_status(order.id, "paid")
        assert updated.status == "processing"
        assert len(updated.status_history) == 2

    def test_failed_payment_keeps_order_pending(self, order):
        updated = service.apply_payment_status(order.id, "failed", transaction_id="txn-1")
        assert updated.status == "pending"
        assert updated.payment_status == "failed"

    def test_payment_update_never_touches_stock(self, order, product):
        service.apply_payment_status(order.id, "paid")
        service.apply_payment_status(order.id, "refunded")
        assert current_domain.repository_for(Product).get(product.id).stock == 4

    def test_actor_recorded_in_history(self, order):
        updated = service.apply_payment_status(order.id, "failed", actor=Actor.admin("admin-1"))
        assert updated.payment_timeline[-1].changed_by == "admin-1"

    def test_invalid_status(self, order):
        with pytest.raises(InvalidPaymentStatus):
            service.apply_payment_status(order.id, "bounced")

    def test_unknown_order(self):
        with pytest.raises(OrderNotFound):
            service.apply_payment_status("missing", "paid")

    def test_buyer_notified_of_auto_advance(self, order, notifier):
        service.apply_payment_status(order.id, "paid")
        assert [e["event"] for e in notifier.events_for("buyer-1")] == ["order-status-update"]

    @pytest.mark.parametrize("actor", [BUYER, Actor.seller("seller-x")])
    def test_parties_cannot_reconcile_their_own_payment(self, order, actor):
        with pytest.raises(Forbidden):
            service.apply_payment_status(order.id, "paid", actor=actor)
        stored = current_domain.repository_for(Order).get(order.id)
        assert stored.payment_status == "pending"
        assert stored.status == "pending"
