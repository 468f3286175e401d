"""Commission and revenue ledger operations.

These run inside the unit of work of the order command that triggers them.
Callers hold the ``affiliate:<code>`` lock whenever an affiliate is touched.
"""

from collections import defaultdict

from protean.utils.globals import current_domain

from marketplace.affiliate.affiliate import Affiliate
from marketplace.revenue.revenue import RevenueRecord, RevenueStatus, RevenueType
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def find_affiliate(code) -> Affiliate | None:
    """Resolve an affiliate code to its aggregate, or ``None``."""
    if not code:
        return None
    repo = current_domain.repository_for(Affiliate)
    matches = repo._dao.query.filter(code=code).all().items
    if not matches:
        return None
    return repo.get(matches[0].id)


def find_active_affiliate(code) -> Affiliate | None:
    affiliate = find_affiliate(code)
    if affiliate is None or not affiliate.is_active:
        return None
    return affiliate


def _commission_record(order_id) -> RevenueRecord | None:
    records = (
        current_domain.repository_for(RevenueRecord)
        ._dao.query.filter(
            order_id=str(order_id),
            record_type=RevenueType.AFFILIATE_COMMISSION.value,
        )
        .all()
        .items
    )
    return records[0] if records else None


def record_platform_fee(order) -> RevenueRecord:
    record = RevenueRecord.platform_fee(
        order_id=order.id,
        order_number=order.order_number,
        seller_id=order.seller_id,
        amount=order.platform_fee,
    )
    current_domain.repository_for(RevenueRecord).add(record)

    logger.info(
        "Platform fee recorded",
        order_id=str(order.id),
        seller_id=str(order.seller_id),
        amount=record.amount,
    )
    return record


def record_affiliate_commission(order, affiliate, commission) -> RevenueRecord:
    """Open a pending referral and its matching commission record."""
    affiliate.record_referral(
        order_id=order.id,
        amount=order.subtotal,
        commission=float(commission),
        order_number=order.order_number,
        seller_id=order.seller_id,
    )
    current_domain.repository_for(Affiliate).add(affiliate)

    record = RevenueRecord.affiliate_commission(
        order_id=order.id,
        order_number=order.order_number,
        seller_id=order.seller_id,
        affiliate_id=affiliate.id,
        amount=commission,
    )
    current_domain.repository_for(RevenueRecord).add(record)

    logger.info(
        "Affiliate commission recorded",
        order_id=str(order.id),
        affiliate_code=affiliate.code,
        commission=record.amount,
        pending_earnings=affiliate.pending_earnings,
    )
    return record


def _resolve_commission(order, approve: bool):
    affiliate = find_affiliate(order.affiliate_code)
    if affiliate is None:
        return None

    referral = affiliate.approve_referral(order.id) if approve else affiliate.cancel_referral(order.id)
    if referral is None:
        return None
    current_domain.repository_for(Affiliate).add(affiliate)

    record = _commission_record(order.id)
    if record is not None:
        record = current_domain.repository_for(RevenueRecord).get(record.id)
        changed = record.approve() if approve else record.cancel()
        if changed:
            current_domain.repository_for(RevenueRecord).add(record)

    logger.info(
        "Affiliate commission approved" if approve else "Affiliate commission cancelled",
        order_id=str(order.id),
        affiliate_code=affiliate.code,
        commission=referral.commission,
        pending_earnings=affiliate.pending_earnings,
        paid_earnings=affiliate.paid_earnings,
    )
    return referral


def approve_commission(order):
    """Approve the order's pending referral. Returns ``None`` when there is none."""
    return _resolve_commission(order, approve=True)


def cancel_commission(order):
    """Cancel the order's pending referral. Returns ``None`` when there is none."""
    return _resolve_commission(order, approve=False)


def revenue_summary(seller_id=None) -> dict:
    """Revenue record totals grouped by type and then by status."""
    dao = current_domain.repository_for(RevenueRecord)._dao
    query = dao.query.filter(seller_id=str(seller_id)) if seller_id else dao.query
    records = query.all().items

    totals: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    counts: dict[str, int] = defaultdict(int)
    for record in records:
        totals[record.record_type][record.status] += record.amount
        counts[record.record_type] += 1

    return {
        record_type.value: {
            "count": counts[record_type.value],
            "by_status": {status: round(amount, 2) for status, amount in totals[record_type.value].items()},
            "total": round(
                sum(
                    amount
                    for status, amount in totals[record_type.value].items()
                    if status != RevenueStatus.CANCELLED.value
                ),
                2,
            ),
        }
        for record_type in RevenueType
    }


def affiliate_earnings(code) -> dict | None:
    affiliate = find_affiliate(code)
    if affiliate is None:
        return None
    return affiliate.earnings_summary()
