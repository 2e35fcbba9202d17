# src/infrastructure/payments/gateway.py

from abc import ABC, abstractmethod
import logging
import os

import razorpay

from src.domain.exceptions import ExternalServiceError


logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    """Verifies payment callbacks. Order creation happens client side."""

    @abstractmethod
    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpayPaymentGateway(PaymentGateway):
    """
    Checkout callback verification through the Razorpay SDK.
    Keys fall back to RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET.
    """

    def __init__(self, key_id: str | None = None, key_secret: str | None = None):
        self.key_id = key_id if key_id is not None else os.getenv("RAZORPAY_KEY_ID")
        self.key_secret = key_secret if key_secret is not None else os.getenv("RAZORPAY_KEY_SECRET")

    def _client(self) -> razorpay.Client:
        if not self.key_id or not self.key_secret:
            raise ExternalServiceError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return razorpay.Client(auth=(self.key_id, self.key_secret))

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        client = self._client()
        try:
            client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature or "",
                }
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning(
                "Payment signature mismatch. order_id=%s payment_id=%s",
                order_id,
                payment_id,
            )
            return False
        return True


def get_payment_gateway() -> PaymentGateway:
    return RazorpayPaymentGateway()
