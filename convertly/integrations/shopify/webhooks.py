"""Shopify webhook HMAC verification."""

import base64
import hashlib
import hmac
from collections.abc import Iterable


def compute_webhook_signature(data: bytes, secret: str) -> str:
    """Compute the base64 HMAC-SHA256 Shopify sends in X-Shopify-Hmac-Sha256."""
    return base64.b64encode(
        hmac.new(
            secret.encode("utf-8"),
            data,
            hashlib.sha256,
        ).digest()
    ).decode("utf-8")


def verify_webhook(data: bytes, hmac_header: str | None, secret: str) -> bool:
    """Verify a Shopify webhook's HMAC-SHA256 signature.

    Args:
        data: The raw request body bytes, exactly as received.
        hmac_header: The X-Shopify-Hmac-Sha256 header value.
        secret: The shared secret the webhook was signed with.

    Returns:
        True if the signature is valid. Missing or malformed input yields
        False rather than an exception.
    """
    if not hmac_header or not secret or not isinstance(data, bytes | bytearray):
        return False

    computed = compute_webhook_signature(bytes(data), secret)
    try:
        return hmac.compare_digest(computed.encode("ascii"), hmac_header.strip().encode("utf-8"))
    except (TypeError, UnicodeEncodeError):
        return False


def verify_webhook_any(data: bytes, hmac_header: str | None, secrets: Iterable[str]) -> bool:
    """Verify against each candidate secret in order."""
    return any(verify_webhook(data, hmac_header, secret) for secret in secrets)
