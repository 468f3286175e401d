"""Seller order placement: command and handler.

Checkout splits a cart into one ``PlaceSellerOrder`` per seller. Each command
is processed in its own unit of work, which creates the Order, reserves stock
for every item, records the platform fee and, when the checkout carries an
active affiliate code, opens the referral and its commission record.
"""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.catalogue.inventory import reserve_stock
from marketplace.domain import marketplace
from marketplace.order.order import Order, PaymentMethod
from marketplace.revenue.ledger import find_active_affiliate, record_affiliate_commission, record_platform_fee
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


@marketplace.command(part_of="Order")
class PlaceSellerOrder:
    order_number = String(required=True, max_length=100)
    checkout_number = String(required=True, max_length=100)
    customer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of item dicts
    shipping_address = Text(required=True)  # JSON: address dict
    billing_address = Text(required=True)  # JSON: address dict
    subtotal = Float(required=True, min_value=0.0)
    shipping = Float(default=0.0)
    tax = Float(default=0.0)
    platform_fee = Float(default=0.0)
    total_amount = Float(required=True, min_value=0.0)
    commission = Float(default=0.0)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.STRIPE.value)
    affiliate_code = String(max_length=50)
    notes = String(max_length=2000)


@marketplace.command_handler(part_of=Order)
class PlaceSellerOrderHandler:
    @handle(PlaceSellerOrder)
    def place_seller_order(self, command):
        items_data = json.loads(command.items)
        affiliate = find_active_affiliate(command.affiliate_code)

        order = Order.place(
            order_number=command.order_number,
            checkout_number=command.checkout_number,
            customer_id=command.customer_id,
            seller_id=command.seller_id,
            items_data=items_data,
            shipping_address=json.loads(command.shipping_address),
            billing_address=json.loads(command.billing_address),
            pricing={
                "subtotal": command.subtotal,
                "shipping": command.shipping or 0.0,
                "tax": command.tax or 0.0,
                "platform_fee": command.platform_fee or 0.0,
                "total_amount": command.total_amount,
            },
            payment_method=command.payment_method,
            affiliate_code=affiliate.code if affiliate else None,
            affiliate_id=str(affiliate.id) if affiliate else None,
            notes=command.notes,
        )
        current_domain.repository_for(Order).add(order)

        for item in items_data:
            reserve_stock(item["product_id"], item["quantity"])

        record_platform_fee(order)
        if affiliate is not None:
            record_affiliate_commission(order, affiliate, command.commission)

        logger.info(
            "Seller order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            seller_id=str(order.seller_id),
            total_amount=order.total_amount,
            affiliate_code=order.affiliate_code,
        )
        return str(order.id)
