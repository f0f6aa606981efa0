"""
payment_engine.py
=================
Payment signature verification and checkout finalization.

Checkout finalization writes, in one transaction:
  - a completed Payment (reusing a row already recorded for the gateway payment
    id, or the pending one opened for the order),
  - the Enrollment for (user, course),
  - when a coupon was used, a CouponUsage row and a conditional
    `current_uses + 1` that only succeeds while the coupon is under max_uses.
Nothing is written when any step fails.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import razorpay
from razorpay.errors import SignatureVerificationError
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from config import settings
from coupon_engine import INVALID_CODE, USAGE_LIMIT_REACHED, check_coupon, compute_discount
from exceptions import (
    ConflictException,
    CouponRejectedException,
    InvalidTransitionException,
    NotFoundException,
)
from logging_config import get_logger
from schemas import CouponQuote, PaymentStatus

logger = get_logger(__name__)

ALREADY_ENROLLED = "User is already enrolled in this course"

ALLOWED_TRANSITIONS = {
    PaymentStatus.pending.value: {PaymentStatus.completed.value, PaymentStatus.failed.value},
    PaymentStatus.completed.value: {PaymentStatus.refunded.value},
    PaymentStatus.failed.value: set(),
    PaymentStatus.refunded.value: set(),
}


@dataclass
class CheckoutResult:
    payment: models.Payment
    enrollment: models.Enrollment
    coupon_usage: Optional[models.CouponUsage] = None
    discount_amount: float = 0.0
    replayed: bool = False


# ─────────────────────────── Signature ───────────────────────────

def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """
    True when `signature` is the gateway's HMAC-SHA256 of "<order_id>|<payment_id>"
    keyed with `secret`. The check itself is done by the Razorpay SDK.
    """
    if not (order_id and payment_id and signature and secret):
        return False

    client = razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, secret))
    try:
        client.utility.verify_payment_signature({
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
        })
    except SignatureVerificationError:
        return False
    return True


# ─────────────────────────── Status ───────────────────────────

def transition_payment(payment: models.Payment, new_status: str) -> None:
    """Moves a payment along pending -> completed | failed, completed -> refunded."""
    if payment.status == new_status:
        return
    if new_status not in ALLOWED_TRANSITIONS.get(payment.status, set()):
        raise InvalidTransitionException(payment.status, new_status)
    payment.status = new_status


# ─────────────────────────── Checkout ───────────────────────────

def _find_enrollment(db: Session, user_id: str, course_id: str) -> Optional[models.Enrollment]:
    return (
        db.query(models.Enrollment)
        .filter(models.Enrollment.user_id == user_id, models.Enrollment.course_id == course_id)
        .first()
    )


def _find_recorded_payment(
    db: Session, payment_id: str, user_id: str, course_id: str
) -> Tuple[Optional[models.Payment], Optional[CheckoutResult]]:
    """
    Looks up a Payment already carrying this gateway payment id.

    Returns (payment, replay): replay is set when that payment already led to an
    enrollment; otherwise the payment row is handed back so checkout reuses it.
    """
    payment = db.query(models.Payment).filter(models.Payment.razorpay_payment_id == payment_id).first()
    if payment is None:
        return None, None
    if payment.user_id != user_id or payment.course_id != course_id:
        raise ConflictException("Payment has already been recorded for another checkout")

    enrollment = _find_enrollment(db, user_id, course_id)
    if enrollment is None:
        return payment, None
    logger.info("Replayed verification for payment %s; returning existing records", payment_id)
    return payment, CheckoutResult(payment=payment, enrollment=enrollment, replayed=True)


def _is_duplicate_enrollment(exc: IntegrityError) -> bool:
    # SQLite reports the columns, PostgreSQL the constraint name
    message = str(exc.orig)
    return "uq_enrollment_user_course" in message or "enrollments.user_id" in message


def _redeemable_coupon(
    db: Session,
    quote: CouponQuote,
    course_id: str,
    course_price: float,
    now: Optional[datetime],
) -> models.Coupon:
    coupon = db.query(models.Coupon).filter(models.Coupon.id == quote.coupon_id).first()
    if coupon is None or not coupon.is_active:
        raise CouponRejectedException(INVALID_CODE)

    reason = check_coupon(coupon, course_id, course_price, now)
    if reason:
        raise CouponRejectedException(reason)
    return coupon


def _claim_coupon_use(db: Session, coupon_id: str) -> bool:
    """Atomic `current_uses += 1` guarded by max_uses. False when the limit was hit."""
    updated = (
        db.query(models.Coupon)
        .filter(
            models.Coupon.id == coupon_id,
            or_(models.Coupon.max_uses.is_(None), models.Coupon.current_uses < models.Coupon.max_uses),
        )
        .update({models.Coupon.current_uses: models.Coupon.current_uses + 1}, synchronize_session=False)
    )
    return updated == 1


def finalize_checkout(
    db: Session,
    order_id: str,
    payment_id: str,
    signature: str,
    user_id: str,
    course_id: str,
    coupon_data: Optional[CouponQuote] = None,
    currency: str = "INR",
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """
    Records a verified gateway payment. The signature must already have been
    checked with verify_signature.

    Raises:
        NotFoundException: the course does not exist.
        ConflictException: the user is already enrolled, or the gateway payment
            id belongs to another checkout.
        CouponRejectedException: the coupon no longer applies.
    """
    recorded, replay = _find_recorded_payment(db, payment_id, user_id, course_id)
    if replay is not None:
        return replay

    course = db.query(models.Course).filter(models.Course.id == course_id).first()
    if course is None:
        raise NotFoundException("Course not found", resource="course")

    if _find_enrollment(db, user_id, course_id) is not None:
        raise ConflictException(ALREADY_ENROLLED)

    course_price = course.price or 0.0
    coupon = None
    discount_amount = 0.0
    if coupon_data is not None:
        coupon = _redeemable_coupon(db, coupon_data, course_id, course_price, now)
        discount_amount, _ = compute_discount(course_price, coupon.discount_type, coupon.discount_value)
        quoted = coupon_data.discount_amount
        if quoted is not None and abs(quoted - discount_amount) > 0.005:
            logger.warning(
                "Client quoted discount %s for coupon %s but server computed %s; using server value",
                quoted, coupon.code, discount_amount,
            )

    final_amount = round(max(0.0, course_price - discount_amount), 2)

    try:
        payment = recorded or (
            db.query(models.Payment)
            .filter(
                models.Payment.razorpay_order_id == order_id,
                models.Payment.user_id == user_id,
                models.Payment.course_id == course_id,
                models.Payment.status == PaymentStatus.pending.value,
            )
            .first()
        )
        if payment is None:
            payment = models.Payment(
                user_id=user_id,
                course_id=course_id,
                currency=currency,
                status=PaymentStatus.pending.value,
                razorpay_order_id=order_id,
            )
            db.add(payment)
        transition_payment(payment, PaymentStatus.completed.value)
        payment.amount = final_amount
        payment.razorpay_payment_id = payment_id
        payment.razorpay_signature = signature

        enrollment = models.Enrollment(user_id=user_id, course_id=course_id)
        db.add(enrollment)
        db.flush()

        usage = None
        if coupon is not None:
            usage = models.CouponUsage(
                coupon_id=coupon.id,
                user_id=user_id,
                course_id=course_id,
                discount_amount=discount_amount,
            )
            db.add(usage)
            if not _claim_coupon_use(db, coupon.id):
                raise CouponRejectedException(USAGE_LIMIT_REACHED)

        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_duplicate_enrollment(exc):
            raise ConflictException(ALREADY_ENROLLED) from exc
        logger.warning("Checkout for payment %s hit a constraint: %s", payment_id, exc.orig)
        raise ConflictException("Payment has already been recorded for another checkout") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    db.refresh(enrollment)
    if usage is not None:
        db.refresh(usage)
        logger.info("Coupon %s redeemed by user %s for course %s (-%s)", coupon.code, user_id, course_id, discount_amount)

    logger.info("Payment %s verified; user %s enrolled in course %s", payment.id, user_id, course_id)
    return CheckoutResult(
        payment=payment,
        enrollment=enrollment,
        coupon_usage=usage,
        discount_amount=discount_amount,
    )
