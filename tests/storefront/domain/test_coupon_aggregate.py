"""Tests for Coupon eligibility, discount calculation and usage tracking."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from storefront.coupon.coupon import (
    ALREADY_USED,
    EXPIRED,
    INACTIVE,
    LIMIT_REACHED,
    Coupon,
    CouponSource,
)
from storefront.coupon.events import CouponCreated, CouponDeactivated, CouponRedeemed
from storefront.shared.exceptions import CouponNotApplicable


def _coupon(**overrides):
    defaults = {"code": "save20", "discount_type": "percentage", "discount_value": 20}
    defaults.update(overrides)
    return Coupon.create(**defaults)


class TestCouponCreation:
    def test_code_is_uppercased(self):
        assert _coupon(code="  summer10 ").code == "SUMMER10"

    def test_defaults(self):
        coupon = _coupon()
        assert coupon.used_count == 0
        assert coupon.is_active is True
        assert coupon.one_per_user is True
        assert coupon.usage_limit is None
        assert coupon.expires_at is None
        assert coupon.source == CouponSource.MANUAL.value

    def test_raises_created_event(self):
        coupon = _coupon()
        assert isinstance(coupon._events[-1], CouponCreated)
        assert coupon._events[-1].code == "SAVE20"

    def test_percentage_over_one_hundred_rejected(self):
        with pytest.raises(ValidationError):
            _coupon(discount_value=120)

    def test_unknown_discount_type_rejected(self):
        with pytest.raises(ValueError):
            _coupon(discount_type="bogo")


class TestNegotiatedCoupon:
    def test_single_use_and_short_lived(self):
        coupon = Coupon.create_negotiated(
            code="deal-abc123",
            discount_type="fixed",
            discount_value=10,
            user_id="user-1",
            product_id="prod-1",
            reason="birthday gift",
        )
        assert coupon.code == "DEAL-ABC123"
        assert coupon.usage_limit == 1
        assert coupon.source == CouponSource.NEGOTIATION.value
        assert coupon.negotiation.reason == "birthday gift"
        remaining = coupon.expires_at - datetime.now(UTC)
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)


class TestEvaluate:
    def test_valid_coupon(self):
        result = _coupon().evaluate(50, user_id="user-1")
        assert result.valid is True
        assert result.reason is None

    def test_inactive(self):
        coupon = _coupon()
        coupon.deactivate()
        assert coupon.evaluate(50).reason == INACTIVE

    def test_expired(self):
        coupon = _coupon(expires_at=datetime.now(UTC) - timedelta(minutes=1))
        assert coupon.evaluate(50).reason == EXPIRED

    def test_naive_expiry_treated_as_utc(self):
        past = (datetime.now(UTC) - timedelta(hours=1)).replace(tzinfo=None)
        assert _coupon(expires_at=past).evaluate(50).reason == EXPIRED

    def test_below_minimum(self):
        result = _coupon(min_purchase=75).evaluate(50)
        assert result.reason == "Minimum purchase of $75.00 required"

    def test_minimum_is_inclusive(self):
        assert _coupon(min_purchase=50).evaluate(50).valid is True

    def test_no_limit_and_no_expiry_means_unlimited(self):
        coupon = _coupon(one_per_user=False)
        for n in range(5):
            coupon.record_usage(user_id=f"user-{n}", order_id=f"order-{n}")
        assert coupon.evaluate(50, user_id="user-9").valid is True

    def test_first_failing_check_wins(self):
        coupon = _coupon(
            expires_at=datetime.now(UTC) - timedelta(days=1),
            usage_limit=1,
            min_purchase=100,
        )
        coupon.record_usage(user_id="user-1", order_id="order-1")
        coupon.deactivate()
        assert coupon.evaluate(10, user_id="user-1").reason == INACTIVE

    def test_expired_before_usage_limit(self):
        coupon = _coupon(expires_at=datetime.now(UTC) - timedelta(days=1), usage_limit=1)
        coupon.record_usage(user_id="user-1", order_id="order-1")
        assert coupon.evaluate(50, user_id="user-2").reason == EXPIRED

    def test_single_use_coupon_after_redemption(self):
        coupon = _coupon(usage_limit=1, one_per_user=True)
        coupon.record_usage(user_id="user-1", order_id="order-1")

        assert coupon.evaluate(50, user_id="user-2").reason == LIMIT_REACHED
        # The limit check runs before the per-user check
        assert coupon.evaluate(50, user_id="user-1").reason == LIMIT_REACHED

    def test_one_per_user_regardless_of_used_count(self):
        coupon = _coupon(usage_limit=5, one_per_user=True)
        coupon.record_usage(user_id="user-1", order_id="order-1")

        assert coupon.evaluate(50, user_id="user-1").reason == ALREADY_USED
        assert coupon.evaluate(50, user_id="user-2").valid is True

    def test_one_per_user_disabled(self):
        coupon = _coupon(one_per_user=False)
        coupon.record_usage(user_id="user-1", order_id="order-1")
        assert coupon.evaluate(50, user_id="user-1").valid is True

    def test_raise_if_invalid_carries_reason(self):
        coupon = _coupon()
        coupon.deactivate()
        with pytest.raises(CouponNotApplicable) as exc:
            coupon.evaluate(50).raise_if_invalid()
        assert exc.value.reason == INACTIVE
        assert exc.value.messages == {"coupon_code": [INACTIVE]}


class TestComputeDiscount:
    def test_capped_percentage(self):
        assert _coupon(max_discount=5).compute_discount(50) == 5.0

    def test_fixed_clamped_to_subtotal(self):
        assert _coupon(discount_type="fixed", discount_value=100).compute_discount(60) == 60.0


class TestRecordUsage:
    def test_increments_and_appends_redemption(self):
        coupon = _coupon()
        assert coupon.record_usage(user_id="user-1", order_id="order-1") is True

        assert coupon.used_count == 1
        assert len(coupon.redemptions) == 1
        assert coupon.has_been_used_by("user-1")
        assert isinstance(coupon._events[-1], CouponRedeemed)
        assert coupon._events[-1].used_count == 1

    def test_same_order_counted_once(self):
        coupon = _coupon()
        coupon.record_usage(user_id="user-1", order_id="order-1")
        assert coupon.record_usage(user_id="user-1", order_id="order-1") is False

        assert coupon.used_count == 1
        assert len(coupon.redemptions) == 1

    def test_refuses_past_usage_limit(self):
        coupon = _coupon(usage_limit=1)
        coupon.record_usage(user_id="user-1", order_id="order-1")

        with pytest.raises(CouponNotApplicable) as exc:
            coupon.record_usage(user_id="user-2", order_id="order-2")
        assert exc.value.reason == LIMIT_REACHED
        assert coupon.used_count == 1


class TestDeactivate:
    def test_soft_deactivation(self):
        coupon = _coupon()
        coupon.deactivate()
        assert coupon.is_active is False
        assert isinstance(coupon._events[-1], CouponDeactivated)

    def test_deactivating_twice_raises_one_event(self):
        coupon = _coupon()
        coupon.deactivate()
        coupon.deactivate()
        assert sum(isinstance(e, CouponDeactivated) for e in coupon._events) == 1
