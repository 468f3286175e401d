"""Typed exceptions for the marketplace order ledger.

Every exception carries a machine-readable ``code`` and the structured
context it was raised with, so callers branch on type and read attributes
instead of parsing messages.

    MarketplaceError
    +-- ValidationError
    +-- NotFoundError
    |   +-- OrderNotFound
    |   +-- ProductNotFound
    +-- ConflictError
    |   +-- InvalidTransition
    |   +-- RevisionConflict
    +-- AuthorizationError
    |   +-- Forbidden
    +-- BusinessRuleError
    |   +-- InsufficientStock
    |   +-- ProductUnavailable
    |   +-- NotCancellable
    |   +-- InvalidPaymentStatus
    +-- ExternalDependencyError

Field-level failures on commands and aggregates are still reported with
``protean.exceptions.ValidationError``; the classes here cover the rules that
span aggregates or belong to the service boundary.
"""


class MarketplaceError(Exception):
    """Base class for all marketplace ledger errors."""

    code: str = "MARKETPLACE_ERROR"

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.context}


# Input shape


class ValidationError(MarketplaceError):
    """The request is malformed (missing fields, bad quantities, empty cart)."""

    code: str = "VALIDATION_ERROR"


# Lookups


class NotFoundError(MarketplaceError):
    code: str = "NOT_FOUND"


class OrderNotFound(NotFoundError):
    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id):
        self.order_id = str(order_id)
        super().__init__(f"Order not found: {order_id}", order_id=self.order_id)


class ProductNotFound(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id):
        self.product_id = str(product_id)
        super().__init__(f"Product not found: {product_id}", product_id=self.product_id)


# Concurrency and state machine


class ConflictError(MarketplaceError):
    """The request conflicts with the current state of the record."""

    code: str = "CONFLICT"


class InvalidTransition(ConflictError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, order_id, current_status, target_status):
        self.order_id = str(order_id)
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot transition from {current_status} to {target_status}",
            order_id=self.order_id,
            current_status=current_status,
            target_status=target_status,
        )


class RevisionConflict(ConflictError):
    """The order was modified by another request since it was read."""

    code: str = "REVISION_CONFLICT"

    def __init__(self, order_id, expected_revision, actual_revision):
        self.order_id = str(order_id)
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"Order {order_id} was modified concurrently "
            f"(expected revision {expected_revision}, found {actual_revision})",
            order_id=self.order_id,
            expected_revision=expected_revision,
            actual_revision=actual_revision,
        )


# Authorization


class AuthorizationError(MarketplaceError):
    code: str = "AUTHORIZATION_ERROR"


class Forbidden(AuthorizationError):
    code: str = "FORBIDDEN"

    def __init__(self, actor_id, action, resource_id=None):
        self.actor_id = str(actor_id)
        self.action = action
        super().__init__(
            f"Access denied: {actor_id} may not {action}",
            actor_id=self.actor_id,
            action=action,
            resource_id=str(resource_id) if resource_id is not None else None,
        )


# Business rules


class BusinessRuleError(MarketplaceError):
    code: str = "BUSINESS_RULE_VIOLATION"


class InsufficientStock(BusinessRuleError):
    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id, name, available, requested):
        self.product_id = str(product_id)
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for: {name}. Available: {available}",
            product_id=self.product_id,
            available=available,
            requested=requested,
        )


class ProductUnavailable(BusinessRuleError):
    code: str = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_id, name, status):
        self.product_id = str(product_id)
        self.status = status
        super().__init__(
            f"Product is not available: {name}",
            product_id=self.product_id,
            status=status,
        )


class NotCancellable(BusinessRuleError):
    code: str = "NOT_CANCELLABLE"

    def __init__(self, order_id, status):
        self.order_id = str(order_id)
        self.status = status
        super().__init__(
            f"Order cannot be cancelled in {status} status",
            order_id=self.order_id,
            status=status,
        )


class InvalidPaymentStatus(BusinessRuleError):
    code: str = "INVALID_PAYMENT_STATUS"

    def __init__(self, payment_status, allowed):
        self.payment_status = payment_status
        super().__init__(
            f"Invalid payment status: {payment_status}. Valid statuses: {', '.join(allowed)}",
            payment_status=payment_status,
        )


# Collaborators


class ExternalDependencyError(MarketplaceError):
    """A best-effort collaborator (notification dispatch) failed."""

    code: str = "EXTERNAL_DEPENDENCY_ERROR"
