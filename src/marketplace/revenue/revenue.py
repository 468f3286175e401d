"""RevenueRecord: an append-only fact about money the platform earns or owes.

Two kinds of record exist. A ``platform_fee`` record is written once per
seller order at checkout and is ``collected`` from the start. An
``affiliate_commission`` record is written alongside a pending referral and
follows the referral: ``approved`` when the order completes, ``cancelled``
when it is cancelled.

The facts of a record (type, amount, currency, order, seller, affiliate) are
sealed with a SHA-256 digest when the record is created; only the status and
its settlement stamp may change afterwards.
"""

import hashlib
import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from marketplace.domain import marketplace


class RevenueType(Enum):
    PLATFORM_FEE = "platform_fee"
    AFFILIATE_COMMISSION = "affiliate_commission"


class RevenueStatus(Enum):
    PENDING = "pending"
    COLLECTED = "collected"
    APPROVED = "approved"
    CANCELLED = "cancelled"


def fact_digest(record_type, amount, currency, order_id, seller_id, affiliate_id) -> str:
    """Deterministic digest of a record's immutable facts."""
    facts = {
        "record_type": record_type,
        "amount": f"{float(amount):.2f}",
        "currency": currency,
        "order_id": str(order_id),
        "seller_id": str(seller_id) if seller_id else None,
        "affiliate_id": str(affiliate_id) if affiliate_id else None,
    }
    canonical = json.dumps(facts, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@marketplace.aggregate
class RevenueRecord:
    record_type = String(required=True, choices=RevenueType)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    order_id = Identifier(required=True)
    order_number = String(max_length=100)
    seller_id = Identifier()
    affiliate_id = Identifier()
    status = String(choices=RevenueStatus, default=RevenueStatus.PENDING.value)
    notes = String(max_length=500)
    fact_digest = String(required=True, max_length=64)
    recorded_at = DateTime()
    settled_at = DateTime()

    @invariant.post
    def facts_must_be_unchanged(self):
        expected = fact_digest(
            self.record_type,
            self.amount,
            self.currency,
            self.order_id,
            self.seller_id,
            self.affiliate_id,
        )
        if self.fact_digest != expected:
            raise ValidationError({"fact_digest": ["Revenue record facts cannot be modified"]})

    @classmethod
    def _record(cls, record_type, amount, order_id, status, currency="USD", seller_id=None, affiliate_id=None, **kwargs):
        amount = round(float(amount), 2)
        return cls(
            record_type=record_type,
            amount=amount,
            currency=currency,
            order_id=str(order_id),
            seller_id=seller_id,
            affiliate_id=affiliate_id,
            status=status,
            fact_digest=fact_digest(record_type, amount, currency, order_id, seller_id, affiliate_id),
            recorded_at=datetime.now(UTC),
            **kwargs,
        )

    @classmethod
    def platform_fee(cls, order_id, order_number, seller_id, amount):
        return cls._record(
            RevenueType.PLATFORM_FEE.value,
            amount,
            order_id,
            RevenueStatus.COLLECTED.value,
            seller_id=seller_id,
            order_number=order_number,
            notes=f"Platform fee for order {order_number}",
            settled_at=datetime.now(UTC),
        )

    @classmethod
    def affiliate_commission(cls, order_id, order_number, seller_id, affiliate_id, amount):
        return cls._record(
            RevenueType.AFFILIATE_COMMISSION.value,
            amount,
            order_id,
            RevenueStatus.PENDING.value,
            seller_id=seller_id,
            affiliate_id=affiliate_id,
            order_number=order_number,
            notes=f"Affiliate commission for order {order_number}",
        )

    @property
    def is_pending(self):
        return self.status == RevenueStatus.PENDING.value

    def _settle(self, status):
        with atomic_change(self):
            self.status = status
            self.settled_at = datetime.now(UTC)

    def approve(self):
        """Mark a pending commission approved. No-op unless pending."""
        if not self.is_pending:
            return False
        self._settle(RevenueStatus.APPROVED.value)
        return True

    def cancel(self):
        """Mark a pending commission cancelled. No-op unless pending."""
        if not self.is_pending:
            return False
        self._settle(RevenueStatus.CANCELLED.value)
        return True
