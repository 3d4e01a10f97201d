from unittest.mock import patch

import pytest
from protean import current_domain
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError

from storefront.catalogue.product import Product
from storefront.inventory import ledger
from storefront.shared.exceptions import InsufficientStock, OversellDetected


class TestCheckAvailable:
    def test_enough_stock(self, make_product):
        product = make_product(stock=3)
        assert ledger.check_available(product.id, 3)
        assert not ledger.check_available(product.id, 4)

    def test_inactive_or_unknown(self, make_product):
        product = make_product(is_active=False)
        assert not ledger.check_available(product.id, 1)
        assert not ledger.check_available("missing", 1)


class TestRequireAvailable:
    def test_shortfall_names_available_count(self, make_product):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStock) as exc:
            ledger.require_available(product, 3)
        assert exc.value.available == 2
        assert exc.value.messages == {"quantity": ['"Canvas Tote" only has 2 in stock']}


class TestDecrement:
    def test_persists_remaining_stock(self, make_product):
        product = make_product(stock=5)
        assert ledger.decrement(product.id, 2, order_id="order-1") == 3
        assert current_domain.repository_for(Product).get(product.id).stock == 3

    def test_oversell_leaves_stock_untouched(self, make_product):
        product = make_product(stock=1)
        with pytest.raises(OversellDetected):
            ledger.decrement(product.id, 2)
        assert current_domain.repository_for(Product).get(product.id).stock == 1

    def test_unknown_product(self):
        with pytest.raises(ObjectNotFoundError):
            ledger.decrement("missing", 1)


class TestDecrementAcrossWorkers:
    def test_lost_race_reloads_and_retries(self, make_product, lose_first_write):
        product = make_product(stock=5)

        with lose_first_write(Product, rival=lambda p: p.decrement_stock(1, order_id="order-rival")):
            remaining = ledger.decrement(product.id, 2, order_id="order-1")

        assert remaining == 2
        assert current_domain.repository_for(Product).get(product.id).stock == 2

    def test_retry_rechecks_stock_left_by_the_winner(self, make_product, lose_first_write):
        product = make_product(stock=2)

        with lose_first_write(Product, rival=lambda p: p.decrement_stock(2, order_id="order-rival")):
            with pytest.raises(OversellDetected):
                ledger.decrement(product.id, 1, order_id="order-1")

        assert current_domain.repository_for(Product).get(product.id).stock == 0

    def test_persistent_conflict_surfaces(self, make_product):
        product = make_product(stock=5)
        repo_cls = type(current_domain.repository_for(Product))

        with patch.object(repo_cls, "add", side_effect=ExpectedVersionError("Wrong expected version")) as add:
            with pytest.raises(ExpectedVersionError):
                ledger.decrement(product.id, 1)

        assert add.call_count == 5
        assert current_domain.repository_for(Product).get(product.id).stock == 5
