"""Authenticated principals and the capabilities their roles grant.

An ``Actor`` is built once, when the caller is authenticated, and its
capability set is resolved at construction. Authorization checks ask the
actor for a capability or compare its id against the parties of an order;
they never inspect emails or other identity strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    SYSTEM = "system"


class Capability(Enum):
    PLACE_ORDERS = "place_orders"
    MANAGE_ANY_ORDER = "manage_any_order"
    RECONCILE_PAYMENTS = "reconcile_payments"
    BULK_UPDATE_ORDERS = "bulk_update_orders"


_ROLE_CAPABILITIES = {
    Role.BUYER: {Capability.PLACE_ORDERS},
    Role.SELLER: {Capability.PLACE_ORDERS},
    Role.ADMIN: {
        Capability.PLACE_ORDERS,
        Capability.MANAGE_ANY_ORDER,
        Capability.RECONCILE_PAYMENTS,
        Capability.BULK_UPDATE_ORDERS,
    },
    Role.SUPER_ADMIN: set(Capability),
    Role.SYSTEM: {Capability.MANAGE_ANY_ORDER, Capability.RECONCILE_PAYMENTS},
}


def resolve_capabilities(roles) -> frozenset[Capability]:
    capabilities = set()
    for role in roles:
        capabilities |= _ROLE_CAPABILITIES[Role(role)]
    return frozenset(capabilities)


@dataclass(frozen=True)
class Actor:
    """The caller of a ledger operation."""

    id: str
    roles: frozenset[str] = frozenset({Role.BUYER.value})
    capabilities: frozenset[Capability] = field(init=False, repr=False)

    def __post_init__(self):
        roles = frozenset(Role(r).value for r in self.roles)
        object.__setattr__(self, "roles", roles)
        object.__setattr__(self, "capabilities", resolve_capabilities(roles))

    @classmethod
    def buyer(cls, actor_id: str) -> Actor:
        return cls(id=actor_id, roles=frozenset({Role.BUYER.value}))

    @classmethod
    def seller(cls, actor_id: str) -> Actor:
        return cls(id=actor_id, roles=frozenset({Role.SELLER.value}))

    @classmethod
    def admin(cls, actor_id: str) -> Actor:
        return cls(id=actor_id, roles=frozenset({Role.ADMIN.value}))

    @classmethod
    def system(cls) -> Actor:
        return cls(id="system", roles=frozenset({Role.SYSTEM.value}))

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def is_party_to(self, order) -> bool:
        return self.id in (str(order.customer_id), str(order.seller_id))
