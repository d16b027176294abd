"""HMAC-SHA256 signatures for webhook payloads.

The signature covers the exact bytes sent on the wire. Subscribers verify
it by recomputing the HMAC over the raw request body with their secret and
comparing against the ``X-Webhook-Signature`` header.
"""

from __future__ import annotations

import hashlib
import hmac


def compute_signature(secret: str, body: bytes) -> str:
    """Compute HMAC-SHA256 signature for a webhook body.

    Args:
        secret: Shared secret for HMAC.
        body: Serialized request body, exactly as transmitted.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Verify a webhook signature using constant-time comparison.

    Args:
        secret: Shared secret for HMAC.
        body: Raw request body that was signed.
        signature: Hex digest received in the signature header.

    Returns:
        True if signature is valid, False otherwise.
    """
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature.strip().lower())


__all__ = ["compute_signature", "verify_signature"]
