import pytest
from protean.integrations.pytest import DomainFixture

from storefront.gateway import reset_gateway, set_gateway
from storefront.gateway.fake_adapter import FakeGateway


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront

    bed = DomainFixture(storefront)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    with storefront_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def gateway():
    """A fresh in-process payment provider for every test."""
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture()
def make_product():
    """Persist a product; keyword arguments override the defaults."""
    from protean import current_domain

    from storefront.catalogue.product import Product

    def _make(**overrides):
        defaults = {
            "name": "Canvas Tote",
            "price": 30.0,
            "stock": 10,
            "description": "Heavy cotton tote bag",
            "image_url": "https://cdn.example.com/tote.jpg",
        }
        defaults.update(overrides)
        product = Product.create(**defaults)
        current_domain.repository_for(Product).add(product)
        return product

    return _make


@pytest.fixture()
def make_coupon():
    """Persist a manual coupon; keyword arguments override the defaults."""
    from protean import current_domain

    from storefront.coupon.coupon import Coupon

    def _make(**overrides):
        defaults = {
            "code": "SAVE10",
            "discount_type": "percentage",
            "discount_value": 10,
        }
        defaults.update(overrides)
        coupon = Coupon.create(**defaults)
        current_domain.repository_for(Coupon).add(coupon)
        return coupon

    return _make


@pytest.fixture()
def lose_first_write():
    """Make the first save of an aggregate class fail the version check.

    ``rival`` runs against a freshly loaded copy before the failure, standing
    in for another worker whose write got there first.
    """
    from contextlib import contextmanager
    from unittest.mock import patch

    from protean import current_domain
    from protean.exceptions import ExpectedVersionError

    @contextmanager
    def _lose(aggregate_cls, rival=None):
        repo_cls = type(current_domain.repository_for(aggregate_cls))
        real_add = repo_cls.add
        lost = []

        def add(repo, aggregate, *args, **kwargs):
            if isinstance(aggregate, aggregate_cls) and not lost:
                lost.append(aggregate.id)
                if rival is not None:
                    winner = repo.get(aggregate.id)
                    rival(winner)
                    real_add(repo, winner)
                raise ExpectedVersionError(f"Wrong expected version for {aggregate.id}")
            return real_add(repo, aggregate, *args, **kwargs)

        with patch.object(repo_cls, "add", autospec=True, side_effect=add) as patched:
            yield patched
        assert lost, f"no {aggregate_cls.__name__} was saved"

    return _lose
