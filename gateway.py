"""
gateway.py
==========
Thin adapter over the Razorpay SDK. Only order creation goes through the
gateway; payment confirmation arrives from the client and is checked with
payment_engine.verify_signature.
"""

from typing import Dict, Optional

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError

from config import settings
from exceptions import ExternalServiceException, ServiceUnavailableException
from logging_config import get_logger

logger = get_logger(__name__)


def to_minor_units(amount: float) -> int:
    """Rupees -> paise."""
    return int(round(amount * 100))


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str):
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(
        self,
        amount: float,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> dict:
        options = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        if notes:
            options["notes"] = notes

        try:
            order = self.client.order.create(data=options)
        except (BadRequestError, GatewayError, ServerError) as exc:
            logger.error("Razorpay order creation failed for receipt %s: %s", receipt, exc)
            raise ExternalServiceException(f"Could not create payment order: {exc}", service="razorpay") from exc

        logger.info("Created Razorpay order %s (%s %s)", order["id"], order["amount"], order["currency"])
        return order


def get_gateway() -> RazorpayGateway:
    """FastAPI dependency. Overridden in tests."""
    if not settings.gateway_configured:
        raise ServiceUnavailableException("Payment gateway is not configured")
    return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
