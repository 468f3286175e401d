"""Application service: the public operations of the order ledger.

Every operation runs inside an active domain context. The service validates
input, authorizes the actor, takes the record locks the operation needs and
then hands a command to the domain, which applies the change and all of its
side effects in one unit of work. Notifications are dispatched after the
locks are released; a failed delivery is logged and never undoes ledger
state.
"""

import json

from protean.utils.globals import current_domain

from marketplace.auth import Actor, Capability
from marketplace.catalogue.inventory import check_availability
from marketplace.concurrency import affiliate_key, order_key, product_key, record_locks
from marketplace.exceptions import (
    Forbidden,
    InvalidPaymentStatus,
    MarketplaceError,
    NotCancellable,
    ValidationError,
)
from marketplace.notification import get_notifier
from marketplace.notification.port import NotificationEvent
from marketplace.order.checkout import PlaceSellerOrder
from marketplace.order.order import STOCK_RESTORING_STATES, OrderStatus, PaymentMethod, PaymentStatus
from marketplace.order.payment import ApplyPaymentStatus
from marketplace.order.pricing import PricingPolicy, generate_checkout_number, seller_order_number, split_cart
from marketplace.order.queries import orders_for_checkout
from marketplace.order.transitions import CancelOrder, TransitionOrderStatus, load_order
from marketplace.revenue.ledger import find_active_affiliate
from marketplace.utils.logging import get_logger, log_context

logger = get_logger(__name__)

_REQUIRED_ADDRESS_FIELDS = ("street", "city", "postal_code", "country")
_ADDRESS_FIELDS = ("full_name", "street", "city", "state", "postal_code", "country", "phone")


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------
def _normalize_cart(cart_lines) -> list[dict]:
    """Validate cart lines and merge repeated products, keeping first-seen order."""
    if not cart_lines:
        raise ValidationError("Cart is empty")

    merged: dict[str, int] = {}
    for line in cart_lines:
        product_id = line.get("product_id") if isinstance(line, dict) else None
        quantity = line.get("quantity") if isinstance(line, dict) else None
        if not product_id:
            raise ValidationError("Each cart line needs a product_id", line=repr(line))
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(
                "Quantity must be a positive integer",
                product_id=str(product_id),
                quantity=quantity,
            )
        merged[str(product_id)] = merged.get(str(product_id), 0) + quantity

    return [{"product_id": product_id, "quantity": quantity} for product_id, quantity in merged.items()]


def _normalize_address(address, label) -> dict:
    if not isinstance(address, dict):
        raise ValidationError(f"{label} is required", field=label)
    missing = [name for name in _REQUIRED_ADDRESS_FIELDS if not address.get(name)]
    if missing:
        raise ValidationError(f"{label} is missing {', '.join(missing)}", field=label, missing=missing)
    return {name: address[name] for name in _ADDRESS_FIELDS if address.get(name) is not None}


def _normalize_payment_method(payment_method) -> str:
    allowed = [method.value for method in PaymentMethod]
    if payment_method not in allowed:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Valid methods: {', '.join(allowed)}",
            payment_method=payment_method,
        )
    return payment_method


def _normalize_target(target) -> OrderStatus:
    try:
        return OrderStatus(target)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in OrderStatus)
        raise ValidationError(f"Invalid status: {target}. Valid statuses: {allowed}", status=target) from exc


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
def _notify(event: NotificationEvent, recipient_id, payload: dict):
    try:
        result = get_notifier().publish(event.value, str(recipient_id), payload)
    except Exception:
        logger.exception("Notification dispatch failed", notification=event.value, recipient_id=str(recipient_id))
        return None

    if result.get("status") != "sent":
        logger.warning(
            "Notification not delivered",
            notification=event.value,
            recipient_id=str(recipient_id),
            error=result.get("error"),
        )
    return result


def _order_payload(order) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
    }


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------
def _authorize_manage(actor: Actor, order, action):
    """Sellers manage their own orders; admins and the system manage any order."""
    if actor.can(Capability.MANAGE_ANY_ORDER) or actor.id == str(order.seller_id):
        return
    raise Forbidden(actor.id, action, order.id)


def _authorize_cancel(actor: Actor, order):
    if actor.can(Capability.MANAGE_ANY_ORDER) or actor.is_party_to(order):
        return
    raise Forbidden(actor.id, "cancel order", order.id)


def _decided_revision(order, expected_revision):
    """The revision a decision was made against: the caller's, else the one just read.

    A request that waited on the order lock while another request moved the
    order fails with ``RevisionConflict`` instead of applying a stale decision.
    """
    return expected_revision if expected_revision is not None else order.revision


def _transition_keys(order, target: OrderStatus) -> list[str]:
    keys = [order_key(order.id)]
    if target in STOCK_RESTORING_STATES:
        keys.extend(product_key(item.product_id) for item in order.items)
    if order.affiliate_code and target in (OrderStatus.CANCELLED, OrderStatus.COMPLETED):
        keys.append(affiliate_key(order.affiliate_code))
    return keys


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def create_order(
    actor: Actor,
    cart_lines,
    shipping_address,
    billing_address=None,
    payment_method=PaymentMethod.STRIPE.value,
    affiliate_code=None,
    notes=None,
    policy: PricingPolicy | None = None,
) -> dict:
    """Split a cart into one order per seller.

    Every line is checked against the catalogue before anything is written,
    while the locks of all products in the cart are held, so either every
    seller order is placed or none is.

    Returns:
        dict with ``orders`` (Order aggregates, one per seller) and
        ``summary`` (total_items, subtotal, shipping, tax, total,
        order_number).
    """
    if not actor.can(Capability.PLACE_ORDERS):
        raise Forbidden(actor.id, "place orders")

    lines = _normalize_cart(cart_lines)
    shipping_address = _normalize_address(shipping_address, "shipping_address")
    billing_address = _normalize_address(billing_address or shipping_address, "billing_address")
    payment_method = _normalize_payment_method(payment_method)
    policy = policy or PricingPolicy.from_env()

    keys = [product_key(line["product_id"]) for line in lines]
    if affiliate_code:
        keys.append(affiliate_key(affiliate_code))

    order_ids = []
    with log_context(customer_id=actor.id), record_locks.hold(*keys):
        priced_lines = []
        for line in lines:
            product = check_availability(line["product_id"], line["quantity"])
            priced_lines.append(
                {
                    "product_id": str(product.id),
                    "seller_id": str(product.seller_id),
                    "name": product.name,
                    "price": product.price,
                    "quantity": line["quantity"],
                    "image": product.primary_image,
                }
            )

        split = split_cart(priced_lines, policy)
        affiliate = find_active_affiliate(affiliate_code)
        if affiliate_code and affiliate is None:
            logger.info("Affiliate code not applied", affiliate_code=affiliate_code)

        checkout_number = generate_checkout_number()
        for sequence, seller in enumerate(split.sellers, start=1):
            items = [
                {
                    "product_id": line["product_id"],
                    "name": line["name"],
                    "price": line["price"],
                    "quantity": line["quantity"],
                    "total": float(line["total"]),
                    "image": line["image"],
                }
                for line in seller.lines
            ]
            order_id = current_domain.process(
                PlaceSellerOrder(
                    order_number=seller_order_number(checkout_number, sequence),
                    checkout_number=checkout_number,
                    customer_id=actor.id,
                    seller_id=seller.seller_id,
                    items=json.dumps(items),
                    shipping_address=json.dumps(shipping_address),
                    billing_address=json.dumps(billing_address),
                    subtotal=float(seller.subtotal),
                    shipping=float(seller.shipping),
                    tax=float(seller.tax),
                    platform_fee=float(seller.platform_fee),
                    total_amount=float(seller.total),
                    commission=float(policy.commission_for(seller.subtotal)) if affiliate else 0.0,
                    payment_method=payment_method,
                    affiliate_code=affiliate.code if affiliate else None,
                    notes=notes,
                ),
                asynchronous=False,
            )
            order_ids.append(order_id)

    orders = [load_order(order_id) for order_id in order_ids]
    summary = {
        "total_items": split.total_items,
        "subtotal": float(split.subtotal),
        "shipping": float(split.shipping),
        "tax": float(split.tax),
        "total": float(split.grand_total),
        "order_number": checkout_number,
        "seller_count": len(orders),
    }

    logger.info(
        "Checkout completed",
        customer_id=actor.id,
        order_number=checkout_number,
        orders=len(orders),
        total=summary["total"],
        affiliate_code=affiliate.code if affiliate else None,
    )

    for order in orders:
        _notify(NotificationEvent.NEW_ORDER, order.seller_id, _order_payload(order))

    return {"orders": orders, "summary": summary}


def transition_status(
    order_id,
    target,
    actor: Actor,
    note=None,
    expected_revision=None,
    carrier=None,
    tracking_number=None,
):
    """Move an order along the status graph and apply the side effects."""
    target = _normalize_target(target)
    order = load_order(order_id)
    _authorize_manage(actor, order, f"change status to {target.value}")

    with log_context(order_id=str(order.id), actor_id=actor.id), record_locks.hold(*_transition_keys(order, target)):
        current_domain.process(
            TransitionOrderStatus(
                order_id=str(order.id),
                target_status=target.value,
                changed_by=actor.id,
                note=note,
                expected_revision=_decided_revision(order, expected_revision),
                carrier=carrier,
                tracking_number=tracking_number,
            ),
            asynchronous=False,
        )

    order = load_order(order.id)
    _notify(NotificationEvent.ORDER_STATUS_UPDATE, order.customer_id, _order_payload(order))
    if target == OrderStatus.CANCELLED:
        _notify(NotificationEvent.ORDER_CANCELLED, order.seller_id, _order_payload(order))
    return order


def cancel_order(order_id, actor: Actor, reason=None, expected_revision=None):
    """Cancel a pending or processing order on behalf of its buyer, seller or an admin."""
    order = load_order(order_id)
    _authorize_cancel(actor, order)
    if not order.is_cancellable:
        raise NotCancellable(order.id, order.status)

    with (
        log_context(order_id=str(order.id), actor_id=actor.id),
        record_locks.hold(*_transition_keys(order, OrderStatus.CANCELLED)),
    ):
        current_domain.process(
            CancelOrder(
                order_id=str(order.id),
                reason=reason,
                cancelled_by=actor.id,
                expected_revision=_decided_revision(order, expected_revision),
            ),
            asynchronous=False,
        )

    order = load_order(order.id)
    payload = {**_order_payload(order), "reason": reason}
    _notify(NotificationEvent.ORDER_CANCELLED, order.seller_id, payload)
    if actor.id != str(order.customer_id):
        _notify(NotificationEvent.ORDER_CANCELLED, order.customer_id, payload)
    return order


def apply_payment_status(order_id, payment_status, transaction_id=None, details=None, actor: Actor | None = None):
    """Record an external payment status update.

    A confirmed payment on a pending order advances it to processing. Updates
    come from the payment system (the default actor) or an admin; buyers and
    sellers cannot mark their own orders paid.
    """
    actor = actor or Actor.system()
    if not actor.can(Capability.RECONCILE_PAYMENTS):
        raise Forbidden(actor.id, "reconcile payments")

    allowed = [status.value for status in PaymentStatus]
    if payment_status not in allowed:
        raise InvalidPaymentStatus(payment_status, allowed)

    order = load_order(order_id)
    previous_status = order.status

    with log_context(order_id=str(order.id), actor_id=actor.id), record_locks.hold(order_key(order.id)):
        current_domain.process(
            ApplyPaymentStatus(
                order_id=str(order.id),
                payment_status=payment_status,
                transaction_id=transaction_id,
                details=json.dumps(details) if details is not None else None,
                changed_by=actor.id,
            ),
            asynchronous=False,
        )

    order = load_order(order.id)
    if order.status != previous_status:
        _notify(NotificationEvent.ORDER_STATUS_UPDATE, order.customer_id, _order_payload(order))
    return order


def bulk_transition(order_ids, target, actor: Actor, note=None) -> dict:
    """Apply one status to many orders, each through the transition engine.

    Orders that cannot be moved are skipped and reported with the reason.
    """
    if not actor.can(Capability.BULK_UPDATE_ORDERS):
        raise Forbidden(actor.id, "bulk update orders")
    target = _normalize_target(target)

    updated, skipped = [], []
    for order_id in order_ids:
        try:
            transition_status(order_id, target.value, actor, note=note)
        except MarketplaceError as exc:
            skipped.append({"order_id": str(order_id), "code": exc.code, "reason": exc.message})
        else:
            updated.append(str(order_id))

    logger.info(
        "Bulk status update finished",
        target_status=target.value,
        updated=len(updated),
        skipped=len(skipped),
        actor_id=actor.id,
    )
    return {"updated": updated, "skipped": skipped}


def related_orders(order_id) -> list:
    """All seller orders that came from the same checkout as ``order_id``."""
    order = load_order(order_id)
    return orders_for_checkout(order.checkout_number)
