"""
Webhook Security Module

Signature verification for incoming PayMongo webhooks:
- Constant-time signature comparison
- Timestamp validation against replays
- Verification runs on the raw request body before any JSON parsing
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import Request

from .exceptions import SignatureInvalid

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

PAYMONGO_SIGNATURE_HEADER = "paymongo-signature"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not timestamp:
        return True  # Bare digests carry no timestamp

    try:
        age = abs(int(time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


def parse_paymongo_signature(header: str) -> tuple[Optional[str], list[str]]:
    """Split ``t=...,te=...,li=...`` into (timestamp, candidate signatures).

    A header without ``=`` is treated as a bare hex digest of the body.
    """
    header = header.strip()
    if "=" not in header:
        return None, [header]

    elements: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.partition("=")
        if sep:
            elements[key.strip()] = value.strip()
    candidates = [elements[k] for k in ("li", "te") if elements.get(k)]
    return elements.get("t"), candidates


def verify_paymongo_signature(raw_body: bytes, header: Optional[str], secret: Optional[str]) -> bool:
    """Check a ``paymongo-signature`` header against the raw body"""
    if not secret:
        logger.error("❌ PAYMONGO_WEBHOOK_SECRET is not configured")
        return False
    if not header:
        logger.warning("🚫 PayMongo webhook missing signature header")
        return False

    timestamp, candidates = parse_paymongo_signature(header)
    if not candidates:
        logger.warning("🚫 PayMongo webhook invalid signature format")
        return False

    if timestamp is None:
        expected = compute_hmac_sha256(secret, raw_body)
    else:
        if not verify_timestamp(timestamp):
            return False
        expected = compute_hmac_sha256(secret, timestamp.encode("utf-8") + b"." + raw_body)

    if any(constant_time_compare(expected, candidate) for candidate in candidates):
        logger.debug("✅ PayMongo webhook signature verified")
        return True

    logger.warning("🚫 PayMongo webhook signature mismatch")
    return False


async def verify_paymongo_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify a PayMongo webhook request and return its raw body.

    Raises:
        SignatureInvalid: signature missing, stale or wrong
    """
    raw_body = await request.body()
    header = request.headers.get(PAYMONGO_SIGNATURE_HEADER)
    client_host = request.client.host if request.client else "unknown"

    if not verify_paymongo_signature(raw_body, header, secret):
        logger.warning(f"🔒 Rejected PayMongo webhook from {client_host} ({len(raw_body)} bytes)")
        raise SignatureInvalid()
    return raw_body


def create_webhook_signature(
    secret: str, payload: bytes, provider: str = "paymongo", timestamp: Optional[int] = None
) -> str:
    """
    Create a webhook signature for testing or outgoing webhooks.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: 'paymongo' (t=..,te=..,li=..) or 'generic' (bare hex digest)
        timestamp: Unix timestamp to sign with; defaults to now

    Returns:
        Signature string in provider's format
    """
    if provider == "paymongo":
        timestamp = int(time.time()) if timestamp is None else timestamp
        sig = compute_hmac_sha256(secret, f"{timestamp}.".encode("utf-8") + payload)
        return f"t={timestamp},te=,li={sig}"
    return compute_hmac_sha256(secret, payload)
