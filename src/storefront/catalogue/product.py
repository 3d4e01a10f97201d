"""Product aggregate — the slice of the catalogue the storefront core depends on.

Catalogue management happens elsewhere; the core reads pricing, variant
options and negotiation settings from here and only ever mutates ``stock``.
"""

import json
from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.catalogue.events import StockDecremented
from storefront.domain import storefront
from storefront.shared.exceptions import OversellDetected


def _options(raw):
    if not raw:
        return []
    return json.loads(raw) if isinstance(raw, str) else list(raw)


@storefront.aggregate
class Product:
    name = String(required=True, max_length=255)
    description = Text()
    image_url = String(max_length=500)
    price = Float(required=True, min_value=0.0)
    discounted_price = Float(min_value=0.0)
    currency = String(max_length=3, default="usd")
    stock = Integer(default=0, min_value=0)
    is_active = Boolean(default=True)
    sizes = Text()  # JSON array of size labels
    colors = Text()  # JSON array of color labels
    negotiation_enabled = Boolean(default=False)
    hidden_bottom_price = Float(min_value=0.0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(
        cls,
        name,
        price,
        stock=0,
        discounted_price=None,
        description=None,
        image_url=None,
        currency="usd",
        sizes=None,
        colors=None,
        negotiation_enabled=False,
        hidden_bottom_price=None,
        is_active=True,
    ):
        now = datetime.now(UTC)
        return cls(
            name=name,
            price=price,
            stock=stock,
            discounted_price=discounted_price,
            description=description,
            image_url=image_url,
            currency=currency,
            sizes=json.dumps(list(sizes or [])),
            colors=json.dumps(list(colors or [])),
            negotiation_enabled=negotiation_enabled,
            hidden_bottom_price=hidden_bottom_price,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )

    @property
    def effective_price(self):
        """Price a shopper pays right now: the discounted price when one is set."""
        return self.discounted_price if self.discounted_price is not None else self.price

    @property
    def size_options(self):
        return _options(self.sizes)

    @property
    def color_options(self):
        return _options(self.colors)

    def validate_variant(self, size=None, color=None):
        """Reject size/color selectors the product does not offer.

        A product without options accepts any selector, matching how the
        storefront treats single-variant items.
        """
        sizes = self.size_options
        if size and sizes and size not in sizes:
            raise ValidationError({"size": [f'Size "{size}" not available. Options: {", ".join(sizes)}']})

        colors = self.color_options
        if color and colors and color not in colors:
            raise ValidationError({"color": [f'Color "{color}" not available. Options: {", ".join(colors)}']})

    def decrement_stock(self, quantity, order_id=None):
        """Take ``quantity`` units out of stock, refusing to go below zero."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        previous = self.stock or 0
        if previous < quantity:
            raise OversellDetected(str(self.id), previous, quantity)

        self.stock = previous - quantity
        self.updated_at = datetime.now(UTC)

        self.raise_(
            StockDecremented(
                product_id=str(self.id),
                quantity=quantity,
                previous_stock=previous,
                new_stock=self.stock,
                order_id=str(order_id) if order_id else None,
            )
        )


def find_active_product(product_id):
    """The product if it exists and is on sale, else ``None``."""
    try:
        product = current_domain.repository_for(Product).get(product_id)
    except ObjectNotFoundError:
        return None
    return product if product.is_active else None
