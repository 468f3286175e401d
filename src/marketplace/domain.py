"""Marketplace bounded context: seller-scoped orders and the revenue ledger.

Splits multi-seller checkouts into one Order per seller, drives each order
through its status state machine, and keeps product stock, platform-fee
revenue and affiliate commissions consistent with order status.
"""

from protean.domain import Domain

from marketplace.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

marketplace = Domain(name="marketplace")
