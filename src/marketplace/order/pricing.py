"""Checkout pricing: cart totals, per-seller split and fee rates.

All arithmetic is done in ``Decimal`` and quantized to cents. Shipping and
tax are computed once for the whole cart and then allocated to sellers in
proportion to their subtotals with a largest-remainder correction, so the
per-seller figures always add back up to the cart figures exactly.
"""

import os
import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

_ORDER_TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def to_money(value) -> Decimal:
    """Quantize a number to cents, rounding half up."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingPolicy:
    """Commercial rates applied at checkout."""

    free_shipping_threshold: Decimal = Decimal("100")
    flat_shipping: Decimal = Decimal("10")
    tax_rate: Decimal = Decimal("0.10")
    platform_fee_rate: Decimal = Decimal("0.08")
    affiliate_commission_rate: Decimal = Decimal("0.20")

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        overrides = {
            "free_shipping_threshold": environ.get("MARKETPLACE_FREE_SHIPPING_THRESHOLD"),
            "flat_shipping": environ.get("MARKETPLACE_FLAT_SHIPPING"),
            "tax_rate": environ.get("MARKETPLACE_TAX_RATE"),
            "platform_fee_rate": environ.get("MARKETPLACE_PLATFORM_FEE_RATE"),
            "affiliate_commission_rate": environ.get("MARKETPLACE_AFFILIATE_COMMISSION_RATE"),
        }
        return cls(**{name: Decimal(value) for name, value in overrides.items() if value})

    def shipping_for(self, cart_subtotal: Decimal) -> Decimal:
        # Free shipping strictly above the threshold
        return ZERO if cart_subtotal > self.free_shipping_threshold else to_money(self.flat_shipping)

    def tax_for(self, cart_subtotal: Decimal) -> Decimal:
        return to_money(cart_subtotal * self.tax_rate)

    def platform_fee_for(self, seller_subtotal: Decimal) -> Decimal:
        return to_money(seller_subtotal * self.platform_fee_rate)

    def commission_for(self, seller_subtotal: Decimal) -> Decimal:
        return to_money(seller_subtotal * self.affiliate_commission_rate)


def allocate(total: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """Split ``total`` across ``weights`` proportionally, to the cent.

    Each share starts at the floor of its exact proportional value in cents;
    the cents left over go to the shares with the largest fractional
    remainders (earlier shares win ties). The result always sums to ``total``.
    """
    if not weights:
        return []

    weight_sum = sum(weights, Decimal("0"))
    total_cents = int(to_money(total) / CENTS)
    if total_cents == 0 or weight_sum == 0:
        return [ZERO for _ in weights]

    exact = [Decimal(total_cents) * weight / weight_sum for weight in weights]
    shares = [int(value) for value in exact]
    leftover = total_cents - sum(shares)

    by_remainder = sorted(range(len(exact)), key=lambda i: (-(exact[i] - shares[i]), i))
    for index in by_remainder[:leftover]:
        shares[index] += 1

    return [Decimal(cents) * CENTS for cents in shares]


@dataclass(frozen=True)
class SellerSplit:
    """One seller's share of a checkout."""

    seller_id: str
    lines: tuple
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    platform_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping + self.tax


@dataclass(frozen=True)
class CartSplit:
    """A priced cart divided into seller-scoped parts."""

    sellers: tuple
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total_items: int

    @property
    def grand_total(self) -> Decimal:
        return self.subtotal + self.shipping + self.tax


def split_cart(lines, policy: PricingPolicy) -> CartSplit:
    """Group priced cart lines by seller and allocate shipping and tax.

    Args:
        lines: dicts with ``product_id``, ``seller_id``, ``name``, ``price``,
            ``quantity`` and optionally ``image``. Sellers keep the order in
            which they first appear in the cart.
        policy: rates to apply.
    """
    grouped: dict[str, list[dict]] = {}
    for line in lines:
        total = to_money(Decimal(str(line["price"])) * line["quantity"])
        grouped.setdefault(str(line["seller_id"]), []).append({**line, "total": total})

    seller_subtotals = [sum((line["total"] for line in group), ZERO) for group in grouped.values()]
    cart_subtotal = sum(seller_subtotals, ZERO)
    shipping = policy.shipping_for(cart_subtotal)
    tax = policy.tax_for(cart_subtotal)

    shipping_shares = allocate(shipping, seller_subtotals)
    tax_shares = allocate(tax, seller_subtotals)

    sellers = tuple(
        SellerSplit(
            seller_id=seller_id,
            lines=tuple(group),
            subtotal=subtotal,
            shipping=shipping_share,
            tax=tax_share,
            platform_fee=policy.platform_fee_for(subtotal),
        )
        for (seller_id, group), subtotal, shipping_share, tax_share in zip(
            grouped.items(), seller_subtotals, shipping_shares, tax_shares, strict=True
        )
    )

    return CartSplit(
        sellers=sellers,
        subtotal=cart_subtotal,
        shipping=shipping,
        tax=tax,
        total_items=sum(line["quantity"] for line in lines),
    )


def generate_checkout_number() -> str:
    """Root token shared by every order of one checkout."""
    token = "".join(secrets.choice(_ORDER_TOKEN_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{token}"


def seller_order_number(checkout_number: str, sequence: int) -> str:
    return f"{checkout_number}-{sequence}"
