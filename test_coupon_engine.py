"""
Unit tests for coupon_engine: discount arithmetic and the ordered eligibility rules.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings as hyp_settings, strategies as st

import coupon_engine
import models
from coupon_engine import check_coupon, compute_discount, validate_coupon

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
NAIVE_NOW = NOW.replace(tzinfo=None)

PROPERTY_SETTINGS = hyp_settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
    deadline=None,
)


def transient_coupon(**fields):
    defaults = dict(
        code="SAVE20",
        discount_type="percentage",
        discount_value=20.0,
        is_active=True,
        current_uses=0,
        valid_from=None,
        valid_until=None,
        max_uses=None,
        min_purchase_amount=None,
        course_id=None,
    )
    defaults.update(fields)
    return models.Coupon(**defaults)


# ══════════════════════════════════════════════
#  Discount Calculator
# ══════════════════════════════════════════════

class TestComputeDiscount:

    def test_percentage(self):
        assert compute_discount(1000, "percentage", 20) == (200.0, 800.0)

    def test_percentage_clamped_to_price(self):
        """150% of 1000 is capped at 1000, not 1500"""
        assert compute_discount(1000, "percentage", 150) == (1000.0, 0.0)

    def test_fixed_amount(self):
        assert compute_discount(1000, "fixed_amount", 300) == (300.0, 700.0)

    def test_fixed_amount_clamped_to_price(self):
        assert compute_discount(2000, "fixed_amount", 5000) == (2000.0, 0.0)

    def test_free_course(self):
        assert compute_discount(0, "percentage", 50) == (0.0, 0.0)
        assert compute_discount(0, "fixed_amount", 50) == (0.0, 0.0)

    def test_fractional_percentage_rounds_to_paise(self):
        discount, final = compute_discount(999, "percentage", 15)
        assert discount == 149.85
        assert final == 849.15

    def test_unknown_type_gives_no_discount(self):
        assert compute_discount(500, "bogus", 10) == (0.0, 500.0)

    def test_negative_price_never_gives_negative_discount(self):
        assert compute_discount(-100, "percentage", 20) == (0.0, 0.0)
        assert compute_discount(-100, "fixed_amount", 50) == (0.0, 0.0)

    @PROPERTY_SETTINGS
    @given(
        price=st.integers(min_value=0, max_value=10_000_000).map(lambda paise: paise / 100),
        discount_type=st.sampled_from(["percentage", "fixed_amount"]),
        value=st.floats(min_value=0.01, max_value=1_000_000, allow_nan=False, allow_infinity=False),
    )
    def test_discount_bounds(self, price, discount_type, value):
        discount, final = compute_discount(price, discount_type, value)
        assert 0 <= discount <= price
        assert final >= 0
        assert final == pytest.approx(price - discount, abs=0.01)

    @PROPERTY_SETTINGS
    @given(
        price=st.integers(min_value=-10_000_000, max_value=-1).map(lambda paise: paise / 100),
        discount_type=st.sampled_from(["percentage", "fixed_amount"]),
        value=st.floats(min_value=0.01, max_value=1_000_000, allow_nan=False, allow_infinity=False),
    )
    def test_negative_price_bounds(self, price, discount_type, value):
        assert compute_discount(price, discount_type, value) == (0.0, 0.0)


# ══════════════════════════════════════════════
#  Eligibility rules
# ══════════════════════════════════════════════

class TestCheckCoupon:

    def test_unrestricted_coupon_applies(self):
        assert check_coupon(transient_coupon(), "course1", 1000, NOW) is None

    def test_expired_one_second_ago(self):
        coupon = transient_coupon(valid_until=NAIVE_NOW - timedelta(seconds=1))
        assert check_coupon(coupon, "course1", 1000, NOW) == coupon_engine.EXPIRED

    def test_expires_in_one_second(self):
        coupon = transient_coupon(valid_until=NAIVE_NOW + timedelta(seconds=1))
        assert check_coupon(coupon, "course1", 1000, NOW) is None

    def test_not_yet_valid(self):
        coupon = transient_coupon(valid_from=NAIVE_NOW + timedelta(hours=1))
        assert check_coupon(coupon, "course1", 1000, NOW) == coupon_engine.NOT_YET_VALID

    def test_aware_window_compared_in_utc(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        coupon = transient_coupon(valid_until=(NOW + timedelta(minutes=5)).astimezone(ist))
        assert check_coupon(coupon, "course1", 1000, NOW) is None

    def test_usage_limit_reached(self):
        coupon = transient_coupon(max_uses=1, current_uses=1)
        assert check_coupon(coupon, "course1", 1000, NOW) == coupon_engine.USAGE_LIMIT_REACHED

    def test_usage_limit_not_reached(self):
        coupon = transient_coupon(max_uses=1, current_uses=0)
        assert check_coupon(coupon, "course1", 1000, NOW) is None

    def test_minimum_purchase_message_includes_amount(self):
        coupon = transient_coupon(min_purchase_amount=1500)
        assert check_coupon(coupon, "course1", 1000, NOW) == "Minimum purchase amount of 1500 not met"

    def test_minimum_purchase_met_exactly(self):
        coupon = transient_coupon(min_purchase_amount=1000)
        assert check_coupon(coupon, "course1", 1000, NOW) is None

    def test_course_scoped_coupon(self):
        coupon = transient_coupon(course_id="course1")
        assert check_coupon(coupon, "course1", 1000, NOW) is None
        assert check_coupon(coupon, "course2", 1000, NOW) == coupon_engine.WRONG_COURSE

    def test_course_mismatch_reported_before_expiry(self):
        coupon = transient_coupon(course_id="course1", valid_until=NAIVE_NOW - timedelta(days=1))
        assert check_coupon(coupon, "course2", 1000, NOW) == coupon_engine.WRONG_COURSE

    def test_expiry_reported_before_usage_limit(self):
        coupon = transient_coupon(
            valid_until=NAIVE_NOW - timedelta(days=1),
            min_purchase_amount=5000,
            max_uses=1,
            current_uses=1,
        )
        assert check_coupon(coupon, "course1", 1000, NOW) == coupon_engine.EXPIRED

    def test_minimum_purchase_reported_before_usage_limit(self):
        coupon = transient_coupon(min_purchase_amount=5000, max_uses=1, current_uses=1)
        assert check_coupon(coupon, "course1", 1000, NOW).startswith("Minimum purchase amount")


# ══════════════════════════════════════════════
#  Validator (with lookup)
# ══════════════════════════════════════════════

class TestValidateCoupon:

    @pytest.mark.parametrize("code, course_id, price", [
        (None, "course1", 1000),
        ("", "course1", 1000),
        ("   ", "course1", 1000),
        ("SAVE20", None, 1000),
        ("SAVE20", "course1", None),
    ])
    def test_missing_fields(self, db, code, course_id, price):
        result = validate_coupon(db, code, course_id, price)
        assert result.valid is False
        assert result.reason == coupon_engine.MISSING_FIELDS

    def test_unknown_code(self, db):
        result = validate_coupon(db, "NOPE", "course1", 1000)
        assert result.valid is False
        assert result.reason == coupon_engine.INVALID_CODE

    def test_inactive_code(self, db, make_coupon):
        make_coupon(is_active=False)
        result = validate_coupon(db, "SAVE20", "course1", 1000)
        assert result.reason == coupon_engine.INVALID_CODE

    def test_code_is_case_insensitive_and_trimmed(self, db, make_coupon):
        make_coupon()
        result = validate_coupon(db, "  save20 ", "course1", 1000)
        assert result.valid is True

    def test_save20_quote(self, db, make_coupon):
        make_coupon()
        result = validate_coupon(db, "SAVE20", "course1", 1000)
        assert result.valid is True
        assert result.discount_amount == 200.0
        assert result.final_price == 800.0

    def test_zero_price_is_not_missing(self, db, make_coupon):
        make_coupon()
        result = validate_coupon(db, "SAVE20", "course1", 0)
        assert result.valid is True
        assert result.discount_amount == 0.0
        assert result.final_price == 0.0

    def test_negative_price_rejected(self, db, make_coupon):
        make_coupon()
        result = validate_coupon(db, "SAVE20", "course1", -100)
        assert result.valid is False
        assert result.reason == coupon_engine.INVALID_PRICE
        assert result.discount_amount == 0.0

    def test_validation_does_not_consume_uses(self, db, make_coupon):
        coupon = make_coupon(max_uses=5)
        first = validate_coupon(db, "SAVE20", "course1", 1000)
        second = validate_coupon(db, "SAVE20", "course1", 1000)
        assert (first.valid, first.discount_amount, first.final_price) == (
            second.valid, second.discount_amount, second.final_price
        )
        db.refresh(coupon)
        assert coupon.current_uses == 0

    def test_expired_coupon_in_store(self, db, make_coupon):
        make_coupon(valid_until=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=1))
        result = validate_coupon(db, "SAVE20", "course1", 1000)
        assert result.reason == coupon_engine.EXPIRED

    def test_coupon_expiring_soon_in_store(self, db, make_coupon):
        make_coupon(valid_until=datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(minutes=1))
        result = validate_coupon(db, "SAVE20", "course1", 1000)
        assert result.valid is True
