"""
coupon_engine.py
================
Core business logic for coupon discounts.

1. compute_discount:
   - percentage:   price * value / 100, capped at the price.
   - fixed_amount: value, capped at the price.
   The final price is never negative.

2. check_coupon / validate_coupon:
   Eligibility rules evaluated in a fixed order; the first failure wins and
   its message is what the caller sees:
     missing fields -> negative price -> unknown/inactive code -> wrong course -> expired
     -> not yet valid -> minimum purchase -> usage limit.
   Validation is read-only. current_uses is only bumped at checkout.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.orm import Session

import models
from schemas import DiscountType

MISSING_FIELDS = "Missing required fields"
INVALID_PRICE = "Course price cannot be negative"
INVALID_CODE = "Invalid or inactive coupon code"
WRONG_COURSE = "Coupon is not valid for this course"
EXPIRED = "Coupon has expired"
NOT_YET_VALID = "Coupon is not yet valid"
USAGE_LIMIT_REACHED = "Coupon usage limit reached"


@dataclass
class CouponValidation:
    valid: bool
    reason: Optional[str] = None
    coupon: Optional[models.Coupon] = None
    discount_amount: float = 0.0
    final_price: float = 0.0


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _format_amount(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ─────────────────────────── Discount ───────────────────────────

def compute_discount(course_price: float, discount_type: str, discount_value: float) -> Tuple[float, float]:
    """
    Returns (discount_amount, final_price) with 0 <= discount_amount <= course_price.
    """
    if discount_type == DiscountType.percentage.value:
        discount = course_price * discount_value / 100
    elif discount_type == DiscountType.fixed_amount.value:
        discount = discount_value
    else:
        discount = 0.0

    # Rounding to paise must not push the discount past the price
    discount = max(0.0, min(round(min(discount, course_price), 2), course_price))
    final_price = round(max(0.0, course_price - discount), 2)
    return discount, final_price


# ─────────────────────────── Eligibility ───────────────────────────

def check_coupon(
    coupon: models.Coupon,
    course_id: str,
    course_price: float,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Runs the per-coupon rules against an already loaded coupon.
    Returns the first failing reason, or None when the coupon applies.
    """
    now = _as_utc(now or datetime.now(timezone.utc))

    if coupon.course_id and coupon.course_id != course_id:
        return WRONG_COURSE

    if coupon.valid_until is not None and now > _as_utc(coupon.valid_until):
        return EXPIRED

    if coupon.valid_from is not None and now < _as_utc(coupon.valid_from):
        return NOT_YET_VALID

    if coupon.min_purchase_amount is not None and course_price < coupon.min_purchase_amount:
        return f"Minimum purchase amount of {_format_amount(coupon.min_purchase_amount)} not met"

    if coupon.max_uses is not None and (coupon.current_uses or 0) >= coupon.max_uses:
        return USAGE_LIMIT_REACHED

    return None


def find_active_coupon(db: Session, code: str) -> Optional[models.Coupon]:
    return (
        db.query(models.Coupon)
        .filter(models.Coupon.code == normalize_code(code), models.Coupon.is_active == True)
        .first()
    )


def validate_coupon(
    db: Session,
    code: Optional[str],
    course_id: Optional[str],
    course_price: Optional[float],
    now: Optional[datetime] = None,
) -> CouponValidation:
    """Single entry point for every "is this code usable?" question."""
    if not code or not code.strip() or not course_id or course_price is None:
        return CouponValidation(valid=False, reason=MISSING_FIELDS)
    if course_price < 0:
        return CouponValidation(valid=False, reason=INVALID_PRICE)

    coupon = find_active_coupon(db, code)
    if coupon is None:
        return CouponValidation(valid=False, reason=INVALID_CODE)

    reason = check_coupon(coupon, course_id, course_price, now)
    if reason:
        return CouponValidation(valid=False, reason=reason, coupon=coupon)

    discount, final_price = compute_discount(course_price, coupon.discount_type, coupon.discount_value)
    return CouponValidation(valid=True, coupon=coupon, discount_amount=discount, final_price=final_price)
