"""Payment reconciliation: command and handler.

A payment update never touches stock or commissions directly. When a payment
is confirmed for an order that is still pending, the order is advanced to
processing through the transition engine, in the same unit of work.
"""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order, OrderStatus, PaymentStatus
from marketplace.order.transitions import apply_transition, load_order
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

PAYMENT_RECEIVED_NOTE = "payment received"


@marketplace.command(part_of="Order")
class ApplyPaymentStatus:
    order_id = Identifier(required=True)
    payment_status = String(required=True, choices=PaymentStatus)
    transaction_id = String(max_length=255)
    details = Text()  # JSON object from the payment gateway
    changed_by = String(required=True, max_length=255)


@marketplace.command_handler(part_of=Order)
class PaymentReconciliationHandler:
    @handle(ApplyPaymentStatus)
    def apply_payment_status(self, command):
        order = load_order(command.order_id)
        previous = order.record_payment(
            command.payment_status,
            changed_by=command.changed_by,
            transaction_id=command.transaction_id,
            details=json.loads(command.details) if command.details else None,
        )
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Payment status updated",
            order_id=str(order.id),
            order_number=order.order_number,
            previous_status=previous,
            payment_status=order.payment_status,
            transaction_id=command.transaction_id,
        )

        if order.payment_status == PaymentStatus.PAID.value and order.status == OrderStatus.PENDING.value:
            apply_transition(
                order,
                OrderStatus.PROCESSING.value,
                changed_by=command.changed_by,
                note=PAYMENT_RECEIVED_NOTE,
            )

        return str(order.id)
