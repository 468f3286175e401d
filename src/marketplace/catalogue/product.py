"""Product aggregate: the catalogue record the ledger reserves stock against.

Products are owned by the catalogue; the ledger only reads their pricing and
availability and moves stock: ``reserve`` is a conditional decrement that
refuses to take stock below zero, ``restore`` puts stock back when an order
is cancelled or refunded.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from marketplace.domain import marketplace
from marketplace.exceptions import InsufficientStock


class ProductStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


@marketplace.aggregate
class Product:
    name = String(required=True, max_length=255)
    seller_id = Identifier(required=True)
    price = Float(required=True, min_value=0.0)
    stock = Integer(default=0)
    sold_count = Integer(default=0)
    status = String(choices=ProductStatus, default=ProductStatus.ACTIVE.value)
    images = Text()  # JSON array of image URLs
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def stock_must_not_be_negative(self):
        if self.stock is not None and self.stock < 0:
            raise ValidationError({"stock": ["Stock cannot be negative"]})

    @classmethod
    def create(cls, name, seller_id, price, stock=0, status=ProductStatus.ACTIVE.value, images=None, **kwargs):
        now = datetime.now(UTC)
        return cls(
            name=name,
            seller_id=seller_id,
            price=price,
            stock=stock,
            sold_count=0,
            status=status,
            images=json.dumps(images or []),
            created_at=now,
            updated_at=now,
            **kwargs,
        )

    @property
    def is_active(self):
        return self.status == ProductStatus.ACTIVE.value

    @property
    def primary_image(self):
        images = json.loads(self.images) if self.images else []
        return images[0] if images else None

    def reserve(self, quantity):
        """Take ``quantity`` units out of stock, only if that many are on hand."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})
        if self.stock < quantity:
            raise InsufficientStock(self.id, self.name, self.stock, quantity)

        with atomic_change(self):
            self.stock = self.stock - quantity
            self.sold_count = (self.sold_count or 0) + quantity
            self.updated_at = datetime.now(UTC)

    def restore(self, quantity):
        """Return ``quantity`` units to stock."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        with atomic_change(self):
            self.stock = self.stock + quantity
            self.updated_at = datetime.now(UTC)
