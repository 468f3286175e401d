"""Inventory reservation against the catalogue.

These helpers run inside the caller's unit of work; callers hold the
``product:<id>`` lock for every product they touch.
"""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.catalogue.product import Product
from marketplace.exceptions import InsufficientStock, ProductNotFound, ProductUnavailable
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def load_product(product_id) -> Product:
    try:
        return current_domain.repository_for(Product).get(str(product_id))
    except ObjectNotFoundError as exc:
        raise ProductNotFound(product_id) from exc


def check_availability(product_id, quantity) -> Product:
    """Verify a product can be sold in ``quantity`` without touching stock."""
    product = load_product(product_id)
    if not product.is_active:
        raise ProductUnavailable(product.id, product.name, product.status)
    if product.stock < quantity:
        raise InsufficientStock(product.id, product.name, product.stock, quantity)
    return product


def reserve_stock(product_id, quantity) -> Product:
    repo = current_domain.repository_for(Product)
    product = load_product(product_id)
    product.reserve(quantity)
    repo.add(product)

    logger.info(
        "Stock reserved",
        product_id=str(product.id),
        quantity=quantity,
        remaining=product.stock,
    )
    return product


def restore_stock(product_id, quantity) -> Product:
    repo = current_domain.repository_for(Product)
    product = load_product(product_id)
    product.restore(quantity)
    repo.add(product)

    logger.info(
        "Stock restored",
        product_id=str(product.id),
        quantity=quantity,
        available=product.stock,
    )
    return product
