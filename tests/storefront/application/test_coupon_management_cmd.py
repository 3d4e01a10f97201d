import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from storefront.coupon.coupon import Coupon, CouponSource
from storefront.coupon.management import CreateCoupon, DeactivateCoupon, list_coupons


def _create(**overrides):
    kwargs = {"code": "welcome15", "discount_type": "percentage", "discount_value": 15}
    kwargs.update(overrides)
    return current_domain.process(CreateCoupon(**kwargs), asynchronous=False)


def _repo():
    return current_domain.repository_for(Coupon)


class TestCreateCoupon:
    def test_created_and_mirrored_on_provider(self, gateway):
        coupon_id = _create()

        coupon = _repo().get(coupon_id)
        assert coupon.code == "WELCOME15"
        assert coupon.source == CouponSource.MANUAL.value
        assert coupon.provider_promotion_id in gateway.promotions
        assert gateway.promotions[coupon.provider_promotion_id]["code"] == "WELCOME15"

    def test_duplicate_code_rejected_case_insensitively(self):
        _create(code="WELCOME15")
        with pytest.raises(ValidationError) as exc:
            _create(code="Welcome15")
        assert exc.value.messages == {"code": ["Coupon code already exists"]}

    def test_blank_code_rejected(self):
        with pytest.raises(ValidationError):
            _create(code="   ")

    def test_percentage_over_hundred_rejected(self):
        with pytest.raises(ValidationError):
            _create(discount_value=120)

    def test_unknown_discount_type(self):
        with pytest.raises(ValidationError):
            _create(discount_type="bogo")

    def test_provider_outage_does_not_block_creation(self, gateway):
        gateway.configure(should_succeed=False)
        coupon = _repo().get(_create())

        assert coupon.is_active
        assert coupon.provider_promotion_id is None


class TestDeactivateCoupon:
    def test_deactivated_locally_and_on_provider(self, gateway):
        coupon_id = _create()
        current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)

        coupon = _repo().get(coupon_id)
        assert not coupon.is_active
        assert gateway.promotions[coupon.provider_promotion_id]["active"] is False

    def test_deactivate_twice_is_harmless(self):
        coupon_id = _create()
        current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)
        current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)
        assert not _repo().get(coupon_id).is_active


class TestListCoupons:
    def test_filter_by_source(self):
        _create(code="A1")
        _create(code="B2")
        negotiated = Coupon.create_negotiated(
            code="DEAL-ABC123",
            discount_type="fixed",
            discount_value=5,
            user_id="user-1",
            product_id="prod-1",
            reason="just because",
        )
        _repo().add(negotiated)

        coupons, total = list_coupons(source="manual")
        assert total == 2
        assert {c.code for c in coupons} == {"A1", "B2"}

        coupons, total = list_coupons(source="negotiation")
        assert [c.code for c in coupons] == ["DEAL-ABC123"]

        _, total = list_coupons()
        assert total == 3

    def test_unknown_source(self):
        with pytest.raises(ValidationError):
            list_coupons(source="lottery")
