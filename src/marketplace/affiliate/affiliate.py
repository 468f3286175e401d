"""Affiliate aggregate with its embedded referral (commission) records.

A referral is recorded when a checkout carries the affiliate's code: the
commission is fixed at that moment and held in ``pending_earnings``. When the
order completes the referral is approved and the commission moves to
``paid_earnings``; when the order is cancelled the referral is cancelled and
the commission leaves ``pending_earnings``. A referral is resolved at most
once.

Earnings invariant: ``pending_earnings`` and ``paid_earnings`` equal the
commissions of pending and approved referrals respectively.
``total_earnings`` is the lifetime gross: every commission ever referred,
cancelled ones included.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, String

from marketplace.domain import marketplace

_EPSILON = 0.005


class AffiliateStatus(Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class ReferralStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


@marketplace.entity(part_of="Affiliate")
class AffiliateReferral:
    """Commission owed to the affiliate for one seller-scoped order."""

    order_id = Identifier(required=True)
    order_number = String(max_length=100)
    seller_id = Identifier()
    amount = Float(required=True, min_value=0.0)  # seller subtotal referred
    commission = Float(required=True, min_value=0.0)
    status = String(choices=ReferralStatus, default=ReferralStatus.PENDING.value)
    referred_at = DateTime()
    resolved_at = DateTime()


@marketplace.aggregate
class Affiliate:
    code = String(required=True, max_length=50)
    user_id = Identifier()
    name = String(max_length=255)
    status = String(choices=AffiliateStatus, default=AffiliateStatus.ACTIVE.value)
    pending_earnings = Float(default=0.0)
    paid_earnings = Float(default=0.0)
    total_earnings = Float(default=0.0)
    referrals = HasMany(AffiliateReferral)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def earnings_must_match_referrals(self):
        pending = sum(r.commission for r in self.referrals if r.status == ReferralStatus.PENDING.value)
        approved = sum(r.commission for r in self.referrals if r.status == ReferralStatus.APPROVED.value)
        if abs((self.pending_earnings or 0.0) - pending) > _EPSILON:
            raise ValidationError({"pending_earnings": ["Pending earnings do not match pending referrals"]})
        if abs((self.paid_earnings or 0.0) - approved) > _EPSILON:
            raise ValidationError({"paid_earnings": ["Paid earnings do not match approved referrals"]})
        if abs((self.total_earnings or 0.0) - sum(r.commission for r in self.referrals)) > _EPSILON:
            raise ValidationError({"total_earnings": ["Total earnings do not match referred commissions"]})

    @classmethod
    def register(cls, code, user_id=None, name=None, status=AffiliateStatus.ACTIVE.value, **kwargs):
        now = datetime.now(UTC)
        return cls(
            code=code,
            user_id=user_id,
            name=name,
            status=status,
            created_at=now,
            updated_at=now,
            **kwargs,
        )

    @property
    def is_active(self):
        return self.status == AffiliateStatus.ACTIVE.value

    def referral_for(self, order_id):
        return next((r for r in self.referrals if str(r.order_id) == str(order_id)), None)

    def record_referral(self, order_id, amount, commission, order_number=None, seller_id=None):
        """Hold ``commission`` as pending earnings for a newly placed order."""
        if self.referral_for(order_id) is not None:
            raise ValidationError({"order_id": ["A referral is already recorded for this order"]})

        now = datetime.now(UTC)
        referral = AffiliateReferral(
            order_id=str(order_id),
            order_number=order_number,
            seller_id=seller_id,
            amount=amount,
            commission=commission,
            status=ReferralStatus.PENDING.value,
            referred_at=now,
        )

        with atomic_change(self):
            self.add_referrals(referral)
            self.pending_earnings = round((self.pending_earnings or 0.0) + commission, 2)
            self.total_earnings = round((self.total_earnings or 0.0) + commission, 2)
            self.updated_at = now

        return referral

    def approve_referral(self, order_id):
        """Move a pending commission to paid earnings.

        Returns the referral when it changed, ``None`` when there is nothing
        pending for the order.
        """
        referral = self.referral_for(order_id)
        if referral is None or referral.status != ReferralStatus.PENDING.value:
            return None

        now = datetime.now(UTC)
        with atomic_change(self):
            referral.status = ReferralStatus.APPROVED.value
            referral.resolved_at = now
            self.pending_earnings = round(self.pending_earnings - referral.commission, 2)
            self.paid_earnings = round((self.paid_earnings or 0.0) + referral.commission, 2)
            self.updated_at = now

        return referral

    def cancel_referral(self, order_id):
        """Drop a pending commission. Approved commissions are left alone.

        ``total_earnings`` keeps the cancelled commission.
        """
        referral = self.referral_for(order_id)
        if referral is None or referral.status != ReferralStatus.PENDING.value:
            return None

        now = datetime.now(UTC)
        with atomic_change(self):
            referral.status = ReferralStatus.CANCELLED.value
            referral.resolved_at = now
            self.pending_earnings = round(self.pending_earnings - referral.commission, 2)
            self.updated_at = now

        return referral

    def earnings_summary(self):
        counts = {status.value: 0 for status in ReferralStatus}
        for referral in self.referrals:
            counts[referral.status] += 1
        return {
            "code": self.code,
            "pending_earnings": self.pending_earnings,
            "paid_earnings": self.paid_earnings,
            "total_earnings": self.total_earnings,
            "referrals": counts,
        }
