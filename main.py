"""
main.py
=======
FastAPI application entry point.

Endpoints (all under settings.API_PREFIX, default /api):
  POST   /coupons                      - Create a coupon
  GET    /coupons                      - List coupons (isActive, courseId, page, limit)
  GET    /coupons/{id}                 - Get coupon by ID
  PUT    /coupons/{id}                 - Update coupon
  DELETE /coupons/{id}                 - Delete coupon
  POST   /coupons/validate             - Quote a coupon for a course
  POST   /razorpay/validate-coupon     - Same as /coupons/validate
  POST   /razorpay/create-order        - Open a gateway order
  POST   /razorpay/verify-payment      - Verify the gateway signature and finalize checkout
  POST   /payments                     - Record a payment
  GET    /payments                     - List payments (status, userId, courseId, page, limit)
  GET    /payments/{id}                - Get payment by ID
  PUT    /payments/{id}                - Change payment status
  GET    /payments/user/{user_id}      - Payments of a user
  GET    /payments/course/{course_id}  - Payments for a course
"""

import math
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import uvicorn

import coupon_engine
import models
import payment_engine
import schemas
from config import settings
from database import engine, get_db
from exceptions import (
    APIException,
    ConflictException,
    NotFoundException,
    PaymentVerificationException,
    ServiceUnavailableException,
    ValidationException,
    api_exception_handler,
    general_exception_handler,
    sqlalchemy_exception_handler,
)
from gateway import RazorpayGateway, get_gateway
from logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

# Create DB tables on startup
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Course Checkout API",
    description="Coupons, Razorpay payment verification and enrollment for a course marketplace.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

router = APIRouter(prefix=settings.API_PREFIX)


def _get_coupon_or_404(db: Session, coupon_id: str) -> models.Coupon:
    coupon = db.query(models.Coupon).filter(models.Coupon.id == coupon_id).first()
    if not coupon:
        raise NotFoundException("Coupon not found", resource="coupon")
    return coupon


def _ensure_code_free(db: Session, code: str, exclude_id: Optional[str] = None) -> None:
    query = db.query(models.Coupon).filter(models.Coupon.code == code)
    if exclude_id is not None:
        query = query.filter(models.Coupon.id != exclude_id)
    if query.first():
        raise ConflictException(f"Coupon code {code} already exists")


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


# ═══════════════════════════════════════════════════
#  COUPON VALIDATION
# ═══════════════════════════════════════════════════

def _quote(request: schemas.ValidateCouponRequest, db: Session) -> schemas.ValidateCouponResponse:
    result = coupon_engine.validate_coupon(db, request.code, request.course_id, request.course_price)
    if not result.valid:
        return schemas.ValidateCouponResponse(valid=False, error=result.reason)

    coupon = result.coupon
    return schemas.ValidateCouponResponse(
        valid=True,
        coupon=schemas.QuotedCoupon(
            id=coupon.id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            discount_amount=result.discount_amount,
            final_price=result.final_price,
        ),
    )


@router.post(
    "/coupons/validate",
    response_model=schemas.ValidateCouponResponse,
    response_model_exclude_none=True,
    tags=["Coupons"],
    summary="Validate a coupon code for a course",
)
def validate_coupon(request: schemas.ValidateCouponRequest, db: Session = Depends(get_db)):
    """
    Quote a coupon against a course price. Rejections come back as HTTP 200 with
    `valid: false` and an `error` message; nothing is mutated.
    """
    return _quote(request, db)


@router.post(
    "/razorpay/validate-coupon",
    response_model=schemas.ValidateCouponResponse,
    response_model_exclude_none=True,
    tags=["Razorpay"],
    summary="Validate a coupon code before checkout",
)
def razorpay_validate_coupon(request: schemas.ValidateCouponRequest, db: Session = Depends(get_db)):
    return _quote(request, db)


# ═══════════════════════════════════════════════════
#  COUPON CRUD
# ═══════════════════════════════════════════════════

@router.post(
    "/coupons",
    response_model=schemas.CouponResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(coupon: schemas.CouponCreate, db: Session = Depends(get_db)):
    """
    Create a coupon. Codes are stored trimmed and uppercase and must be unique.
    - **percentage**: `discount_value` is a percent of the course price (max 100).
    - **fixed_amount**: `discount_value` is taken off the course price.
    """
    _ensure_code_free(db, coupon.code)
    db_coupon = models.Coupon(
        code=coupon.code,
        discount_type=coupon.discount_type.value,
        discount_value=coupon.discount_value,
        is_active=coupon.is_active,
        valid_from=coupon.valid_from,
        valid_until=coupon.valid_until,
        max_uses=coupon.max_uses,
        min_purchase_amount=coupon.min_purchase_amount,
        course_id=coupon.course_id,
    )
    db.add(db_coupon)
    db.commit()
    db.refresh(db_coupon)
    logger.info("Created coupon %s (%s %s)", db_coupon.code, db_coupon.discount_type, db_coupon.discount_value)
    return db_coupon


@router.get(
    "/coupons",
    response_model=schemas.CouponListResponse,
    tags=["Coupons"],
    summary="List coupons",
)
def list_coupons(
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    course_id: Optional[str] = Query(default=None, alias="courseId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Newest first, paginated."""
    query = db.query(models.Coupon)
    if is_active is not None:
        query = query.filter(models.Coupon.is_active == is_active)
    if course_id:
        query = query.filter(models.Coupon.course_id == course_id)

    total = query.count()
    coupons = (
        query.order_by(models.Coupon.created_at.desc(), models.Coupon.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return schemas.CouponListResponse(
        coupons=[schemas.CouponResponse.model_validate(c) for c in coupons],
        total_pages=_total_pages(total, limit),
        current_page=page,
        total=total,
    )


@router.get(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Get a coupon by ID",
)
def get_coupon(coupon_id: str, db: Session = Depends(get_db)):
    return _get_coupon_or_404(db, coupon_id)


@router.put(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Update a coupon",
)
def update_coupon(coupon_id: str, update_data: schemas.CouponUpdate, db: Session = Depends(get_db)):
    """
    Update a coupon. All fields are optional; only provided fields are changed.
    `current_uses` cannot be set here.
    """
    coupon = _get_coupon_or_404(db, coupon_id)
    changes = update_data.model_dump(exclude_unset=True)
    for required in ("code", "discount_type", "discount_value", "is_active"):
        if changes.get(required, "") is None:
            del changes[required]

    if changes.get("code"):
        _ensure_code_free(db, changes["code"], exclude_id=coupon.id)
    if "discount_type" in changes:
        changes["discount_type"] = changes["discount_type"].value

    merged = {
        field: changes.get(field, getattr(coupon, field))
        for field in ("discount_type", "discount_value", "valid_from", "valid_until")
    }
    try:
        schemas.check_coupon_terms(**merged)
    except ValueError as exc:
        raise ValidationException(str(exc)) from exc

    for field, value in changes.items():
        setattr(coupon, field, value)

    db.commit()
    db.refresh(coupon)
    return coupon


@router.delete(
    "/coupons/{coupon_id}",
    tags=["Coupons"],
    summary="Delete a coupon",
)
def delete_coupon(coupon_id: str, db: Session = Depends(get_db)):
    coupon = _get_coupon_or_404(db, coupon_id)
    db.delete(coupon)
    db.commit()
    return {"message": "Coupon deleted successfully"}


# ═══════════════════════════════════════════════════
#  RAZORPAY CHECKOUT
# ═══════════════════════════════════════════════════

@router.post(
    "/razorpay/create-order",
    response_model=schemas.CreateOrderResponse,
    tags=["Razorpay"],
    summary="Create a Razorpay order",
)
def create_order(request: schemas.CreateOrderRequest, gateway: RazorpayGateway = Depends(get_gateway)):
    """`amount` is in rupees; the order is opened in paise."""
    order = gateway.create_order(
        amount=request.amount,
        currency=request.currency or settings.DEFAULT_CURRENCY,
        receipt=request.receipt,
        notes=request.notes,
    )
    return schemas.CreateOrderResponse(
        order_id=order["id"],
        amount=order["amount"],
        currency=order["currency"],
    )


@router.post(
    "/razorpay/verify-payment",
    response_model=schemas.VerifyPaymentResponse,
    tags=["Razorpay"],
    summary="Verify a payment and enroll the user",
)
def verify_payment(request: schemas.VerifyPaymentRequest, db: Session = Depends(get_db)):
    """
    Checks the gateway signature, then records the payment, the enrollment and
    (when `couponData` is given) the coupon redemption in one transaction.
    A bad signature is a 400 and writes nothing.
    """
    secret = settings.RAZORPAY_KEY_SECRET
    if not secret:
        raise ServiceUnavailableException("Payment gateway is not configured")

    if not payment_engine.verify_signature(
        request.razorpay_order_id,
        request.razorpay_payment_id,
        request.razorpay_signature,
        secret,
    ):
        logger.warning("Signature mismatch for order %s", request.razorpay_order_id)
        raise PaymentVerificationException()

    result = payment_engine.finalize_checkout(
        db,
        order_id=request.razorpay_order_id,
        payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
        user_id=request.user_id,
        course_id=request.course_id,
        coupon_data=request.coupon_data,
        currency=settings.DEFAULT_CURRENCY,
    )
    return schemas.VerifyPaymentResponse(
        message="Payment verified successfully",
        payment_id=result.payment.id,
        enrollment_id=result.enrollment.id,
    )


# ═══════════════════════════════════════════════════
#  PAYMENTS
# ═══════════════════════════════════════════════════

def _get_payment_or_404(db: Session, payment_id: str) -> models.Payment:
    payment = db.query(models.Payment).filter(models.Payment.id == payment_id).first()
    if not payment:
        raise NotFoundException("Payment not found", resource="payment")
    return payment


@router.post(
    "/payments",
    response_model=schemas.PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Payments"],
    summary="Record a payment",
)
def create_payment(payment: schemas.PaymentCreate, db: Session = Depends(get_db)):
    db_payment = models.Payment(
        user_id=payment.user_id,
        course_id=payment.course_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        razorpay_order_id=payment.razorpay_order_id,
        razorpay_payment_id=payment.razorpay_payment_id,
        razorpay_signature=payment.razorpay_signature,
    )
    db.add(db_payment)
    db.commit()
    db.refresh(db_payment)
    return db_payment


@router.get(
    "/payments",
    response_model=schemas.PaymentListResponse,
    tags=["Payments"],
    summary="List payments",
)
def list_payments(
    payment_status: Optional[schemas.PaymentStatus] = Query(default=None, alias="status"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    course_id: Optional[str] = Query(default=None, alias="courseId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = db.query(models.Payment)
    if payment_status is not None:
        query = query.filter(models.Payment.status == payment_status.value)
    if user_id:
        query = query.filter(models.Payment.user_id == user_id)
    if course_id:
        query = query.filter(models.Payment.course_id == course_id)

    total = query.count()
    payments = (
        query.order_by(models.Payment.created_at.desc(), models.Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return schemas.PaymentListResponse(
        payments=[schemas.PaymentResponse.model_validate(p) for p in payments],
        total_pages=_total_pages(total, limit),
        current_page=page,
        total=total,
    )


@router.get(
    "/payments/user/{user_id}",
    response_model=List[schemas.PaymentResponse],
    tags=["Payments"],
    summary="Payments made by a user",
)
def get_user_payments(user_id: str, db: Session = Depends(get_db)):
    return (
        db.query(models.Payment)
        .filter(models.Payment.user_id == user_id)
        .order_by(models.Payment.created_at.desc())
        .all()
    )


@router.get(
    "/payments/course/{course_id}",
    response_model=List[schemas.PaymentResponse],
    tags=["Payments"],
    summary="Payments for a course",
)
def get_course_payments(course_id: str, db: Session = Depends(get_db)):
    return (
        db.query(models.Payment)
        .filter(models.Payment.course_id == course_id)
        .order_by(models.Payment.created_at.desc())
        .all()
    )


@router.get(
    "/payments/{payment_id}",
    response_model=schemas.PaymentResponse,
    tags=["Payments"],
    summary="Get a payment by ID",
)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    return _get_payment_or_404(db, payment_id)


@router.put(
    "/payments/{payment_id}",
    response_model=schemas.PaymentResponse,
    tags=["Payments"],
    summary="Update a payment's status",
)
def update_payment(payment_id: str, update_data: schemas.PaymentUpdate, db: Session = Depends(get_db)):
    """
    Allowed moves: pending -> completed | failed, completed -> refunded.
    Anything else is a 409.
    """
    payment = _get_payment_or_404(db, payment_id)
    payment_engine.transition_payment(payment, update_data.status.value)
    if update_data.razorpay_payment_id is not None:
        payment.razorpay_payment_id = update_data.razorpay_payment_id
    if update_data.razorpay_signature is not None:
        payment.razorpay_signature = update_data.razorpay_signature

    db.commit()
    db.refresh(payment)
    logger.info("Payment %s is now %s", payment.id, payment.status)
    return payment


app.include_router(router)


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": "Course Checkout API is running"}


def run():
    """Serve the app with uvicorn; installed as the `course-checkout-api` script."""
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)


if __name__ == "__main__":
    run()
