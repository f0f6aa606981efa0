import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


def generate_id() -> str:
    return uuid.uuid4().hex


class Course(Base):
    """
    Course catalogue entry. This service only reads `price` from it at checkout;
    a missing price is treated as a free course.
    """
    __tablename__ = "courses"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Float, nullable=True)
    instructor_id = Column(String(32), nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Coupon(Base):
    """
    Discount code.

    discount_type: 'percentage' | 'fixed_amount'
    discount_value: percent (0-100) or an absolute amount in the course currency.
    valid_from / valid_until: naive UTC timestamps, both optional.
    max_uses: None means unlimited. current_uses only grows, one per redemption.
    course_id: None means the coupon applies to every course.
    """
    __tablename__ = "coupons"

    id = Column(String(32), primary_key=True, default=generate_id)
    code = Column(String, nullable=False, unique=True, index=True)
    discount_type = Column(String, nullable=False)
    discount_value = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    min_purchase_amount = Column(Float, nullable=True)
    course_id = Column(String(32), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class CouponUsage(Base):
    """Audit row written once per checkout that redeemed a coupon."""
    __tablename__ = "coupon_usages"

    id = Column(String(32), primary_key=True, default=generate_id)
    coupon_id = Column(String(32), nullable=False, index=True)
    user_id = Column(String(32), nullable=False)
    course_id = Column(String(32), nullable=False)
    discount_amount = Column(Float, nullable=False)
    used_at = Column(DateTime(timezone=True), server_default=func.now())


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), nullable=False, index=True)
    course_id = Column(String(32), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(String, default="pending", nullable=False)
    razorpay_order_id = Column(String, nullable=True, index=True)
    razorpay_payment_id = Column(String, nullable=True, unique=True)
    razorpay_signature = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), nullable=False, index=True)
    course_id = Column(String(32), nullable=False, index=True)
    enrolled_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
