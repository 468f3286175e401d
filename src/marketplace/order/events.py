"""Domain events raised by the Order aggregate.

They are the audit trail of the ledger: one ``OrderPlaced`` per seller order,
one ``OrderStatusChanged`` per accepted transition, one
``PaymentStatusUpdated`` per reconciled payment update.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A seller-scoped order was created at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    checkout_number = String(required=True)
    customer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of item dicts
    subtotal = Float(required=True)
    shipping = Float()
    tax = Float()
    platform_fee = Float()
    total_amount = Float(required=True)
    affiliate_code = String()
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_by = String(required=True)
    note = String(max_length=1000)
    sequence = Integer(required=True)
    revision = Integer(required=True)
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class PaymentStatusUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    transaction_id = String()
    changed_by = String(required=True)
    sequence = Integer(required=True)
    changed_at = DateTime(required=True)
