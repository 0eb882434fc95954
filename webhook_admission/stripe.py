"""Stripe webhook signature verification (v1 scheme).

Stripe sends: Stripe-Signature header with format:
t=<timestamp>,v1=<signature>[,v1=<rotated>][,v0=<deprecated>]

Security contract:
- Expected signature: hex HMAC-SHA256 of "{t}.{raw_body}"
- Every v1 candidate compared with hmac.compare_digest() (constant-time)
- Timestamp outside tolerance -> rejected (replay protection)
- Same error taxonomy as the messaging verifier
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any

from webhook_admission.exceptions import (
    InvalidPayloadError,
    MalformedSignatureError,
    MissingSecretError,
    MissingSignatureError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

STRIPE_SIGNATURE_HEADER = "Stripe-Signature"
DEFAULT_TOLERANCE_SECONDS = 300


def parse_stripe_header(signature_header: str) -> tuple[int, list[str]]:
    """Split a Stripe-Signature header into (timestamp, v1 signatures).

    Raises:
        MalformedSignatureError: No parsable timestamp or no v1 signature
    """
    timestamp: int | None = None
    signatures: list[str] = []
    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep or not value:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise MalformedSignatureError("Invalid Stripe signature header") from None
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise MalformedSignatureError("Invalid Stripe signature header")
    return timestamp, signatures


def compute_stripe_signature(secret: str, timestamp: int, body: bytes) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_stripe(
    body: bytes,
    signature_header: str | None,
    secret: str | None,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """Verify a Stripe webhook and return the parsed event.

    Args:
        body: Raw request body bytes
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance_seconds: Maximum clock skew accepted for ``t``
        now: Current unix time (defaults to time.time())

    Returns:
        The event object
    """
    if not secret:
        logger.critical("WEBHOOK_SECURITY STRIPE_WEBHOOK_SECRET not configured -- rejecting webhook")
        raise MissingSecretError("Stripe webhook secret not configured")
    if not signature_header:
        raise MissingSignatureError(f"Missing {STRIPE_SIGNATURE_HEADER} header")
    if not body:
        raise InvalidPayloadError("Empty Stripe webhook payload")

    timestamp, candidates = parse_stripe_header(signature_header)

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        logger.warning("WEBHOOK_SECURITY Stripe timestamp outside tolerance: %s", timestamp)
        raise SignatureMismatchError("Stripe webhook timestamp outside tolerance")

    expected = compute_stripe_signature(secret, timestamp, body).encode("ascii")
    if not any(
        hmac.compare_digest(expected, candidate.encode("utf-8")) for candidate in candidates
    ):
        logger.warning("WEBHOOK_SECURITY Stripe signature mismatch t=%s", timestamp)
        raise SignatureMismatchError("Stripe signature verification failed")

    try:
        event = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise InvalidPayloadError("Invalid JSON payload") from exc
    if not isinstance(event, dict):
        raise InvalidPayloadError("Stripe event must be a JSON object")
    return event
