"""Inventory ledger — stock checks and conditional decrements.

Stock lives on the Product aggregate. Decrements run under a per-product
lock so the check and the write form one step: two orders racing on the
same product can never both succeed against stock only one of them fits.
Across worker processes the aggregate version check takes the lock's
place, and a decrement that loses it is reloaded and retried.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.catalogue.product import Product
from storefront.shared.exceptions import InsufficientStock
from storefront.shared.locks import product_locks
from storefront.shared.retry import version_conflict_retry

logger = structlog.get_logger(__name__)


def check_available(product_id, quantity) -> bool:
    try:
        product = current_domain.repository_for(Product).get(product_id)
    except ObjectNotFoundError:
        return False
    return bool(product.is_active) and (product.stock or 0) >= quantity


def require_available(product: Product, quantity: int) -> None:
    """Raise ``InsufficientStock`` naming the available count when ``quantity`` does not fit."""
    available = product.stock or 0
    if quantity > available:
        raise InsufficientStock(product.name, available, quantity)


def decrement(product_id, quantity, order_id=None) -> int:
    """Atomically subtract ``quantity`` from stock; ``OversellDetected`` if it would go negative.

    Returns the remaining stock.
    """
    with product_locks.hold(product_id):
        product = _reload_and_decrement(product_id, quantity, order_id)

    logger.info(
        "stock_decremented",
        product_id=str(product_id),
        quantity=quantity,
        remaining=product.stock,
        order_id=order_id,
    )
    return product.stock


@version_conflict_retry()
def _reload_and_decrement(product_id, quantity, order_id):
    # Reloaded on every attempt
    repo = current_domain.repository_for(Product)
    product = repo.get(product_id)
    product.decrement_stock(quantity, order_id=order_id)
    repo.add(product)
    return product
