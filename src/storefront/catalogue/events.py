"""Domain events for the Product aggregate."""

from protean.fields import Identifier, Integer

from storefront.domain import storefront


@storefront.event(part_of="Product")
class StockDecremented:
    """Stock was taken out of the ledger for a confirmed order."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    previous_stock = Integer(required=True)
    new_stock = Integer(required=True)
    order_id = Identifier()
