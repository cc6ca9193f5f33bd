"""Webhook signature verification (HMAC-SHA256 over the raw request body)."""

from __future__ import annotations

import hashlib
import hmac

import structlog

logger = structlog.get_logger()


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of ``raw_body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature: str | None,
    secret: str,
    *,
    allow_unsigned: bool = False,
) -> bool:
    """
    Check that a webhook was signed by the payment provider.

    Args:
        raw_body: The request body exactly as received.
        signature: Value of the ``x-signature`` / ``x-hook-signature`` header.
        secret: Shared webhook secret. Empty means verification is not configured.
        allow_unsigned: Accept everything when no secret is configured. Only
            safe for local development.

    Returns:
        True if the delivery should be accepted.
    """
    if not secret:
        if allow_unsigned:
            logger.warning("webhook_signature_disabled", reason="no secret configured")
            return True
        logger.error("webhook_signature_rejected", reason="no secret configured")
        return False

    # Query-parameter deliveries carry no body to hash.
    if not raw_body:
        logger.warning("webhook_signature_skipped", reason="empty body")
        return True

    if not signature:
        logger.warning("webhook_signature_rejected", reason="missing signature header")
        return False

    try:
        expected = compute_signature(raw_body, secret)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii"))
    except (TypeError, ValueError, UnicodeError):
        logger.exception("webhook_signature_error")
        return False
