"""
Webhook Security Module

Signature verification for payment provider notifications.
- Operates on the exact raw request bytes; a parsed-and-reserialised payload
  will not match the provider's signature
- Constant-time signature comparison (prevents timing attacks)
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256_base64(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload and return base64 encoded"""
    signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def cashfree_signed_message(raw_body: bytes, timestamp: Optional[str] = None) -> bytes:
    """
    Cashfree signs `timestamp + rawBody` when it sends x-webhook-timestamp;
    older notifications sign the body alone.
    """
    if timestamp:
        return timestamp.encode("utf-8") + raw_body
    return raw_body


def verify_notification_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    timestamp: Optional[str] = None,
) -> bool:
    """
    Verify a Cashfree webhook signature.

    Args:
        raw_body: Request body bytes exactly as received
        signature_header: Value of x-webhook-signature (base64)
        secret: Cashfree secret key
        timestamp: Value of x-webhook-timestamp, if sent

    Returns:
        True only when the signature matches
    """
    if not secret:
        logger.error("Webhook secret not configured; rejecting notification")
        return False

    if not signature_header:
        logger.warning("Missing x-webhook-signature header")
        return False

    expected = compute_hmac_sha256_base64(secret, cashfree_signed_message(raw_body, timestamp))
    if constant_time_compare(expected, signature_header.strip()):
        return True

    logger.warning(
        f"Webhook signature mismatch (body {len(raw_body)} bytes, "
        f"received {signature_header[:12]}...)"
    )
    return False
