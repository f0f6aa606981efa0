"""
Shared pytest fixtures: a throwaway SQLite database, a fake Razorpay gateway
and a known gateway secret.
"""

import hashlib
import hmac

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import models
from config import settings
from database import Base
from gateway import get_gateway, to_minor_units
from main import app, get_db

TEST_DATABASE_URL = "sqlite:///./test_checkout.db"
TEST_SECRET = "rzp_test_secret_for_signatures"
API = settings.API_PREFIX

test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeGateway:
    """Stands in for RazorpayGateway; records every order it opens."""

    def __init__(self):
        self.orders = []

    def create_order(self, amount, currency, receipt, notes=None):
        order = {
            "id": f"order_test{len(self.orders) + 1:06d}",
            "entity": "order",
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders.append(order)
        return order


def sign(order_id: str, payment_id: str, secret: str = TEST_SECRET) -> str:
    """Signs the way Razorpay Checkout does: hex HMAC-SHA256 of "<order_id>|<payment_id>"."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    """Create fresh tables before each test and drop them after."""
    Base.metadata.create_all(bind=test_engine)
    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", TEST_SECRET)
    yield
    Base.metadata.drop_all(bind=test_engine)
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    return fake


@pytest.fixture
def make_course(db):
    def _make(price=1000.0, title="Python for Data Engineers"):
        course = models.Course(title=title, price=price, instructor_id="instructor01", is_published=True)
        db.add(course)
        db.commit()
        db.refresh(course)
        return course
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE20", discount_type="percentage", discount_value=20.0, **fields):
        coupon = models.Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            is_active=fields.pop("is_active", True),
            current_uses=fields.pop("current_uses", 0),
            **fields,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon
    return _make
