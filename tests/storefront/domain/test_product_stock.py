import pytest
from protean.exceptions import ValidationError

from storefront.catalogue.events import StockDecremented
from storefront.catalogue.product import Product
from storefront.shared.exceptions import OversellDetected


def _product(stock=5, **kwargs):
    return Product.create(name="Canvas Tote", price=30.0, stock=stock, **kwargs)


class TestDecrementStock:
    def test_decrement(self):
        product = _product(stock=5)
        product.decrement_stock(3, order_id="order-1")

        assert product.stock == 2
        event = product._events[-1]
        assert isinstance(event, StockDecremented)
        assert event.previous_stock == 5
        assert event.new_stock == 2

    def test_decrement_to_zero(self):
        product = _product(stock=2)
        product.decrement_stock(2)
        assert product.stock == 0

    def test_oversell_refused(self):
        product = _product(stock=2)
        with pytest.raises(OversellDetected) as exc:
            product.decrement_stock(3)

        assert exc.value.available == 2
        assert exc.value.requested == 3
        assert product.stock == 2

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            _product().decrement_stock(0)


class TestEffectivePrice:
    def test_discounted_price_wins(self):
        assert _product(discounted_price=24.0).effective_price == 24.0

    def test_falls_back_to_price(self):
        assert _product().effective_price == 30.0


class TestVariants:
    def test_unknown_size_rejected(self):
        product = _product(sizes=["S", "M"])
        with pytest.raises(ValidationError) as exc:
            product.validate_variant(size="XL")
        assert exc.value.messages["size"] == ['Size "XL" not available. Options: S, M']

    def test_known_variant_accepted(self):
        _product(sizes=["S", "M"], colors=["Red"]).validate_variant(size="M", color="Red")

    def test_product_without_options_accepts_anything(self):
        _product().validate_variant(size="XL", color="Green")
