"""Payment callback signature verification (Razorpay-style HMAC-SHA256)."""
import hashlib
import hmac
import logging

from sachetan.core.config import settings
from sachetan.core.exceptions import PaymentVerificationError

logger = logging.getLogger(__name__)


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str = None) -> None:
    """
    Recompute the signature server-side and compare in constant time.

    Raises:
        PaymentVerificationError: secret missing, fields missing, or mismatch
    """
    secret = settings.RAZORPAY_KEY_SECRET if secret is None else secret
    if not secret:
        raise PaymentVerificationError("Payment secret not configured")
    if not order_id or not payment_id or not signature:
        raise PaymentVerificationError("Missing payment fields")

    if not hmac.compare_digest(expected_signature(order_id, payment_id, secret), signature):
        logger.warning(f"[Payments] Signature mismatch for {order_id} / {payment_id}")
        raise PaymentVerificationError("Signature mismatch")
