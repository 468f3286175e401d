"""Order aggregate (CQRS): one seller's share of a checkout.

An Order is created at checkout, one per seller present in the cart, and is
never deleted. Its status moves only along the edges of the state machine
below; every accepted move appends one status history entry. Payment updates
append to a separate payment history. Both logs are append-only and each
entry carries a per-order ``sequence``.

State Machine (7 states):
    pending → processing → shipped → delivered → completed → refunded
    pending, processing → cancelled
    cancelled, refunded are terminal

The aggregate applies only the order-local consequences of a transition
(timestamps, payment status, shipment and cancellation details). Stock and
commission consequences are applied by the transition handlers in the same
unit of work.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.exceptions import InvalidTransition, NotCancellable
from marketplace.order.events import OrderPlaced, OrderStatusChanged, PaymentStatusUpdated

_MONEY_TOLERANCE = 0.005


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    PAYPAL = "paypal"
    STRIPE = "stripe"
    BANK = "bank"
    MOBILE = "mobile"  # mobile money
    CASH_ON_DELIVERY = "cash_on_delivery"
    WALLET = "wallet"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# States from which the buyer or seller may cancel
_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.PROCESSING}

# Entering these states puts every item back into stock
STOCK_RESTORING_STATES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


def allowed_targets(status) -> set:
    return _VALID_TRANSITIONS.get(OrderStatus(status), set())


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class Address:
    """Shipping or billing address captured at checkout. Never updated afterwards."""

    full_name = String(max_length=255)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)
    phone = String(max_length=50)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderItem:
    """A purchased product, priced from the catalogue at checkout."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    total = Float(required=True, min_value=0.0)
    image = String(max_length=1000)


@marketplace.entity(part_of="Order")
class StatusHistoryEntry:
    sequence = Integer(required=True, min_value=1)
    status = String(required=True, choices=OrderStatus)
    changed_by = String(required=True, max_length=255)
    changed_at = DateTime(required=True)
    note = String(max_length=1000)


@marketplace.entity(part_of="Order")
class PaymentHistoryEntry:
    sequence = Integer(required=True, min_value=1)
    status = String(required=True, choices=PaymentStatus)
    changed_by = String(required=True, max_length=255)
    changed_at = DateTime(required=True)
    transaction_id = String(max_length=255)
    note = String(max_length=1000)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(required=True, max_length=100)
    checkout_number = String(required=True, max_length=100)
    customer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.STRIPE.value)
    transaction_id = String(max_length=255)
    payment_details = Text()  # JSON object from the payment gateway
    items = HasMany(OrderItem)
    subtotal = Float(default=0.0)
    shipping = Float(default=0.0)
    tax = Float(default=0.0)
    platform_fee = Float(default=0.0)
    total_amount = Float(default=0.0)
    shipping_address = ValueObject(Address)
    billing_address = ValueObject(Address)
    affiliate_code = String(max_length=50)
    affiliate_id = Identifier()
    notes = String(max_length=2000)
    status_history = HasMany(StatusHistoryEntry)
    payment_history = HasMany(PaymentHistoryEntry)
    revision = Integer(default=1)
    carrier = String(max_length=100)
    tracking_number = String(max_length=255)
    completed_at = DateTime()
    cancelled_at = DateTime()
    cancelled_by = String(max_length=255)
    cancellation_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def totals_must_add_up(self):
        items_total = sum(item.total for item in self.items)
        if abs(items_total - self.subtotal) > _MONEY_TOLERANCE:
            raise ValidationError({"subtotal": ["Order subtotal must equal the sum of its item totals"]})
        if abs(self.subtotal + self.shipping + self.tax - self.total_amount) > _MONEY_TOLERANCE:
            raise ValidationError({"total_amount": ["Order total must equal subtotal plus shipping and tax"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number,
        checkout_number,
        customer_id,
        seller_id,
        items_data,
        shipping_address,
        billing_address,
        pricing,
        payment_method=PaymentMethod.STRIPE.value,
        affiliate_code=None,
        affiliate_id=None,
        notes=None,
    ):
        """Create a pending order for one seller.

        Args:
            items_data: List of dicts with product_id, name, price, quantity,
                total and optionally image.
            shipping_address: Dict of ``Address`` fields.
            billing_address: Dict of ``Address`` fields.
            pricing: Dict with subtotal, shipping, tax, platform_fee and
                total_amount, already rounded to cents.
        """
        now = datetime.now(UTC)

        order = cls(
            order_number=order_number,
            checkout_number=checkout_number,
            customer_id=customer_id,
            seller_id=seller_id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            items=[OrderItem(**item) for item in items_data],
            subtotal=pricing["subtotal"],
            shipping=pricing["shipping"],
            tax=pricing["tax"],
            platform_fee=pricing["platform_fee"],
            total_amount=pricing["total_amount"],
            shipping_address=Address(**shipping_address),
            billing_address=Address(**billing_address),
            affiliate_code=affiliate_code,
            affiliate_id=affiliate_id,
            notes=notes,
            status_history=[
                StatusHistoryEntry(
                    sequence=1,
                    status=OrderStatus.PENDING.value,
                    changed_by=str(customer_id),
                    changed_at=now,
                    note="Order placed",
                )
            ],
            payment_history=[
                PaymentHistoryEntry(
                    sequence=1,
                    status=PaymentStatus.PENDING.value,
                    changed_by=str(customer_id),
                    changed_at=now,
                )
            ],
            revision=1,
            created_at=now,
            updated_at=now,
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                checkout_number=checkout_number,
                customer_id=str(customer_id),
                seller_id=str(seller_id),
                items=json.dumps(items_data),
                subtotal=order.subtotal,
                shipping=order.shipping,
                tax=order.tax,
                platform_fee=order.platform_fee,
                total_amount=order.total_amount,
                affiliate_code=affiliate_code,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_terminal(self):
        return not allowed_targets(self.status)

    @property
    def is_cancellable(self):
        return OrderStatus(self.status) in _CANCELLABLE_STATES

    @property
    def timeline(self):
        return sorted(self.status_history, key=lambda entry: entry.sequence)

    @property
    def payment_timeline(self):
        return sorted(self.payment_history, key=lambda entry: entry.sequence)

    def can_transition_to(self, target_status) -> bool:
        return OrderStatus(target_status) in allowed_targets(self.status)

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        """Validate that the current state allows transition to target."""
        if not self.can_transition_to(target_status):
            raise InvalidTransition(self.id, self.status, OrderStatus(target_status).value)

    def _next_status_sequence(self):
        return max((entry.sequence for entry in self.status_history), default=0) + 1

    def _next_payment_sequence(self):
        return max((entry.sequence for entry in self.payment_history), default=0) + 1

    def _append_payment_entry(self, status, changed_by, changed_at, transaction_id=None, note=None):
        entry = PaymentHistoryEntry(
            sequence=self._next_payment_sequence(),
            status=status,
            changed_by=str(changed_by),
            changed_at=changed_at,
            transaction_id=transaction_id,
            note=note,
        )
        self.add_payment_history(entry)
        return entry

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------
    def transition_to(self, target_status, changed_by, note=None, carrier=None, tracking_number=None):
        """Move the order to ``target_status`` and append one history entry.

        Raises ``InvalidTransition`` when the edge is not permitted. Returns
        the previous status.
        """
        target = OrderStatus(target_status)
        self._assert_can_transition(target)

        previous = self.status
        now = datetime.now(UTC)
        changed_by = str(changed_by)

        with atomic_change(self):
            if target == OrderStatus.SHIPPED:
                if carrier:
                    self.carrier = carrier
                if tracking_number:
                    self.tracking_number = tracking_number

            elif target == OrderStatus.COMPLETED:
                self.completed_at = now
                if self.payment_status != PaymentStatus.PAID.value:
                    self.payment_status = PaymentStatus.PAID.value
                    self._append_payment_entry(PaymentStatus.PAID.value, changed_by, now, note="Order completed")

            elif target == OrderStatus.CANCELLED:
                self.cancelled_at = now
                if not self.cancelled_by:
                    self.cancelled_by = changed_by
                was_paid = self.payment_status == PaymentStatus.PAID.value
                self.payment_status = PaymentStatus.REFUNDED.value
                if was_paid:
                    self._append_payment_entry(PaymentStatus.REFUNDED.value, changed_by, now, note="Order cancelled")

            elif target == OrderStatus.REFUNDED:
                self.payment_status = PaymentStatus.REFUNDED.value
                self._append_payment_entry(PaymentStatus.REFUNDED.value, changed_by, now, note="Order refunded")

            entry = StatusHistoryEntry(
                sequence=self._next_status_sequence(),
                status=target.value,
                changed_by=changed_by,
                changed_at=now,
                note=note,
            )
            self.add_status_history(entry)
            self.status = target.value
            self.revision = (self.revision or 1) + 1
            self.updated_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                new_status=target.value,
                changed_by=changed_by,
                note=note,
                sequence=entry.sequence,
                revision=self.revision,
                changed_at=now,
            )
        )
        return previous

    def cancel(self, reason, cancelled_by):
        """Cancel a pending or processing order, recording who and why."""
        if not self.is_cancellable:
            raise NotCancellable(self.id, self.status)

        with atomic_change(self):
            self.cancelled_by = str(cancelled_by)
            self.cancellation_reason = reason

        return self.transition_to(
            OrderStatus.CANCELLED.value,
            changed_by=cancelled_by,
            note=f"Cancelled: {reason}" if reason else "Cancelled",
        )

    def record_payment(self, payment_status, changed_by, transaction_id=None, details=None):
        """Apply an external payment status update and log it."""
        new_status = PaymentStatus(payment_status).value
        previous = self.payment_status
        now = datetime.now(UTC)

        with atomic_change(self):
            self.payment_status = new_status
            if transaction_id:
                self.transaction_id = transaction_id
            if details is not None:
                self.payment_details = json.dumps(details)
            entry = self._append_payment_entry(new_status, changed_by, now, transaction_id=transaction_id)
            self.revision = (self.revision or 1) + 1
            self.updated_at = now

        self.raise_(
            PaymentStatusUpdated(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                new_status=new_status,
                transaction_id=transaction_id,
                changed_by=str(changed_by),
                sequence=entry.sequence,
                changed_at=now,
            )
        )
        return previous
