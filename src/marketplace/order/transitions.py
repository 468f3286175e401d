"""Status transitions: commands, handler and the transition engine.

``apply_transition`` is the single place where an order changes status. It
applies the state change and its cross-aggregate consequences inside the
current unit of work, so a transition either fully applies or leaves the
order, stock and affiliate books untouched:

    cancelled  -> restore stock, cancel the pending referral
    refunded   -> restore stock
    completed  -> approve the pending referral
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.catalogue.inventory import restore_stock
from marketplace.domain import marketplace
from marketplace.exceptions import OrderNotFound, RevisionConflict
from marketplace.order.order import STOCK_RESTORING_STATES, Order, OrderStatus
from marketplace.revenue.ledger import approve_commission, cancel_commission
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def load_order(order_id) -> Order:
    try:
        return current_domain.repository_for(Order).get(str(order_id))
    except ObjectNotFoundError as exc:
        raise OrderNotFound(order_id) from exc


def check_revision(order, expected_revision):
    if expected_revision is not None and expected_revision != order.revision:
        raise RevisionConflict(order.id, expected_revision, order.revision)


def apply_side_effects(order, target: OrderStatus):
    if target in STOCK_RESTORING_STATES:
        for item in order.items:
            restore_stock(item.product_id, item.quantity)

    if target == OrderStatus.CANCELLED:
        cancel_commission(order)
    elif target == OrderStatus.COMPLETED:
        approve_commission(order)


def apply_transition(order, target_status, changed_by, note=None, carrier=None, tracking_number=None):
    """Move ``order`` to ``target_status`` and apply the side effects of entering it."""
    target = OrderStatus(target_status)
    previous = order.transition_to(
        target.value,
        changed_by=changed_by,
        note=note,
        carrier=carrier,
        tracking_number=tracking_number,
    )
    current_domain.repository_for(Order).add(order)
    apply_side_effects(order, target)

    logger.info(
        "Order status changed",
        order_id=str(order.id),
        order_number=order.order_number,
        seller_id=str(order.seller_id),
        previous_status=previous,
        new_status=order.status,
        changed_by=str(changed_by),
        revision=order.revision,
    )
    return order


@marketplace.command(part_of="Order")
class TransitionOrderStatus:
    order_id = Identifier(required=True)
    target_status = String(required=True, choices=OrderStatus)
    changed_by = String(required=True, max_length=255)
    note = String(max_length=1000)
    expected_revision = Integer(min_value=1)
    carrier = String(max_length=100)
    tracking_number = String(max_length=255)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_by = String(required=True, max_length=255)
    expected_revision = Integer(min_value=1)


@marketplace.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(TransitionOrderStatus)
    def transition_order_status(self, command):
        order = load_order(command.order_id)
        check_revision(order, command.expected_revision)
        apply_transition(
            order,
            command.target_status,
            changed_by=command.changed_by,
            note=command.note,
            carrier=command.carrier,
            tracking_number=command.tracking_number,
        )
        return str(order.id)

    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load_order(command.order_id)
        check_revision(order, command.expected_revision)
        order.cancel(reason=command.reason, cancelled_by=command.cancelled_by)
        current_domain.repository_for(Order).add(order)
        apply_side_effects(order, OrderStatus.CANCELLED)

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            seller_id=str(order.seller_id),
            cancelled_by=command.cancelled_by,
            reason=command.reason,
        )
        return str(order.id)
