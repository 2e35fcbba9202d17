import hashlib
import hmac

import pytest

from src.domain.exceptions import ExternalServiceError
from src.infrastructure.notifications.email_sender import NotificationSender
from src.infrastructure.payments.gateway import PaymentGateway, RazorpayPaymentGateway


def _sign(secret: str, order_id: str, payment_id: str) -> str:
    return hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


def test_valid_signature():
    gateway = RazorpayPaymentGateway(key_id="rzp_test_x", key_secret="s3cret")
    signature = _sign("s3cret", "order_1", "pay_1")

    assert gateway.verify_signature("order_1", "pay_1", signature)


def test_tampered_payment_id_is_rejected():
    gateway = RazorpayPaymentGateway(key_id="rzp_test_x", key_secret="s3cret")
    signature = _sign("s3cret", "order_1", "pay_1")

    assert not gateway.verify_signature("order_1", "pay_2", signature)
    assert not gateway.verify_signature("order_1", "pay_1", "")


def test_signature_from_another_secret_is_rejected():
    gateway = RazorpayPaymentGateway(key_id="rzp_test_x", key_secret="s3cret")
    signature = _sign("other", "order_1", "pay_1")

    assert not gateway.verify_signature("order_1", "pay_1", signature)


@pytest.mark.parametrize("missing", ["RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET"])
def test_missing_keys_are_an_external_failure(monkeypatch, missing):
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_test_x")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
    monkeypatch.delenv(missing)
    gateway = RazorpayPaymentGateway()

    with pytest.raises(ExternalServiceError):
        gateway.verify_signature("order_1", "pay_1", "whatever")


def test_integration_base_classes_are_abstract():
    with pytest.raises(TypeError):
        PaymentGateway()
    with pytest.raises(TypeError):
        NotificationSender()
