"""HMAC-SHA256 signatures for Razorpay payment callbacks.

Razorpay signs ``"{razorpay_order_id}|{razorpay_payment_id}"`` with the
merchant key secret and returns the lowercase hex digest to the checkout
widget. The message format, delimiter included, is fixed by the gateway.
"""

import hashlib
import hmac

from storefront.domain.errors import GatewayConfigurationError

MESSAGE_DELIMITER = "|"


def _require_secret(secret: str) -> bytes:
    if not secret or not secret.strip():
        raise GatewayConfigurationError("Payment verification not configured")
    return secret.strip().encode("utf-8")


def sign(message: str, secret: str) -> str:
    return hmac.new(_require_secret(secret), message.encode("utf-8"), hashlib.sha256).hexdigest()


def payment_message(gateway_order_id: str, gateway_payment_id: str) -> str:
    return f"{gateway_order_id}{MESSAGE_DELIMITER}{gateway_payment_id}"


def sign_payment(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    return sign(payment_message(gateway_order_id, gateway_payment_id), secret)


def verify(gateway_order_id: str, gateway_payment_id: str, signature: str, secret: str) -> bool:
    expected = sign_payment(gateway_order_id, gateway_payment_id, secret)
    if not isinstance(signature, str):
        return False
    # bytes, so non-ASCII input compares unequal instead of raising
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
