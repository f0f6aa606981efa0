from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Coupon windows are stored as naive UTC; aware inputs are converted."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ─────────────── Enums ───────────────

class DiscountType(str, Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


# ─────────────── Coupon Request / Response ───────────────

def check_coupon_terms(
    discount_type: Optional[str],
    discount_value: Optional[float],
    valid_from: Optional[datetime],
    valid_until: Optional[datetime],
) -> None:
    """Cross-field rules shared by create and update. Raises ValueError."""
    if discount_type == DiscountType.percentage.value and discount_value is not None and discount_value > 100:
        raise ValueError("Percentage discount cannot exceed 100")
    if valid_from is not None and valid_until is not None and valid_from >= valid_until:
        raise ValueError("valid_from must be earlier than valid_until")


class CouponBase(BaseModel):
    @field_validator("code", check_fields=False)
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if not v:
            raise ValueError("Coupon code cannot be blank")
        return v

    @field_validator("discount_value", check_fields=False)
    @classmethod
    def value_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Discount value must be positive")
        return v

    @field_validator("max_uses", check_fields=False)
    @classmethod
    def max_uses_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_uses must be at least 1")
        return v

    @field_validator("min_purchase_amount", check_fields=False)
    @classmethod
    def min_purchase_non_negative(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("min_purchase_amount cannot be negative")
        return v

    @field_validator("valid_from", "valid_until", check_fields=False)
    @classmethod
    def window_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class CouponCreate(CouponBase):
    code: str
    discount_type: DiscountType
    discount_value: float
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    min_purchase_amount: Optional[float] = None
    course_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_terms(self) -> "CouponCreate":
        check_coupon_terms(self.discount_type.value, self.discount_value, self.valid_from, self.valid_until)
        return self


class CouponUpdate(CouponBase):
    """Partial update. current_uses is only ever changed by checkout."""
    code: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    min_purchase_amount: Optional[float] = None
    course_id: Optional[str] = None


class CouponResponse(BaseModel):
    id: str
    code: str
    discount_type: DiscountType
    discount_value: float
    is_active: bool
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    current_uses: int
    min_purchase_amount: Optional[float] = None
    course_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CouponListResponse(BaseModel):
    coupons: List[CouponResponse]
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")
    total: int

    model_config = {"populate_by_name": True}


# ─────────────── Coupon validation ───────────────

class ValidateCouponRequest(BaseModel):
    """All fields optional so that missing ones surface as `valid: false`, not a 422."""
    code: Optional[str] = None
    course_id: Optional[str] = Field(default=None, alias="courseId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    course_price: Optional[float] = Field(default=None, alias="coursePrice")

    model_config = {"populate_by_name": True}


class QuotedCoupon(BaseModel):
    id: str
    code: str
    discount_type: DiscountType
    discount_value: float
    discount_amount: float
    final_price: float


class ValidateCouponResponse(BaseModel):
    valid: bool
    coupon: Optional[QuotedCoupon] = None
    error: Optional[str] = None


# ─────────────── Razorpay ───────────────

class CreateOrderRequest(BaseModel):
    amount: float  # Major units (rupees); converted to paise for the gateway
    currency: Optional[str] = None
    receipt: str = Field(max_length=40)
    notes: Optional[Dict[str, str]] = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class CreateOrderResponse(BaseModel):
    success: bool = True
    order_id: str = Field(alias="orderId")
    amount: int  # Minor units, as returned by the gateway
    currency: str

    model_config = {"populate_by_name": True}


class CouponQuote(BaseModel):
    """The coupon a client validated before paying. Re-checked server-side at checkout."""
    coupon_id: str = Field(alias="couponId")
    discount_amount: Optional[float] = Field(default=None, alias="discountAmount")
    code: Optional[str] = None

    model_config = {"populate_by_name": True}


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    user_id: str = Field(alias="userId")
    course_id: str = Field(alias="courseId")
    coupon_data: Optional[CouponQuote] = Field(default=None, alias="couponData")

    model_config = {"populate_by_name": True}


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str
    payment_id: str = Field(alias="paymentId")
    enrollment_id: str = Field(alias="enrollmentId")

    model_config = {"populate_by_name": True}


# ─────────────── Payments ───────────────

class PaymentCreate(BaseModel):
    user_id: str
    course_id: str
    amount: float
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.pending
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Amount cannot be negative")
        return v


class PaymentUpdate(BaseModel):
    status: PaymentStatus
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    amount: float
    currency: str
    status: PaymentStatus
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")
    total: int

    model_config = {"populate_by_name": True}
