"""Read-side queries over seller orders."""

from collections import Counter

from protean.utils.globals import current_domain

from marketplace.order.order import Order, OrderStatus


def orders_for_checkout(checkout_number) -> list[Order]:
    """All seller orders created by one checkout, in sequence order."""
    orders = (
        current_domain.repository_for(Order)._dao.query.filter(checkout_number=checkout_number).all().items
    )
    return sorted(orders, key=lambda order: order.order_number)


def orders_for(seller_id=None, customer_id=None) -> list[Order]:
    dao = current_domain.repository_for(Order)._dao
    criteria = {}
    if seller_id:
        criteria["seller_id"] = str(seller_id)
    if customer_id:
        criteria["customer_id"] = str(customer_id)
    query = dao.query.filter(**criteria) if criteria else dao.query
    return query.all().items


def order_statistics(seller_id=None, customer_id=None) -> dict:
    """Order counts by status and completed-order revenue.

    Revenue counts only completed orders; refunded and cancelled orders are
    excluded.
    """
    orders = orders_for(seller_id=seller_id, customer_id=customer_id)
    by_status = Counter(order.status for order in orders)
    completed = [order for order in orders if order.status == OrderStatus.COMPLETED.value]
    revenue = round(sum(order.total_amount for order in completed), 2)

    return {
        "total_orders": len(orders),
        "by_status": {status.value: by_status.get(status.value, 0) for status in OrderStatus},
        "pending_orders": by_status.get(OrderStatus.PENDING.value, 0),
        "completed_orders": len(completed),
        "cancelled_orders": by_status.get(OrderStatus.CANCELLED.value, 0),
        "total_revenue": revenue,
        "average_order_value": round(revenue / len(completed), 2) if completed else 0.0,
    }
