"""Webhook signature verification: constant-time HMAC for each provider.

Security contract:
- All comparisons use hmac.compare_digest() (constant-time, no timing attacks)
- Lengths are checked before comparing; a length mismatch is "invalid",
  never an internal error
- Every failure raises Unauthorized; the caller never reaches parsing
- Printful/Gelato secrets are optional (verification skipped when unset);
  PingPay/Stripe fail closed without a secret
- PingPay/Stripe timestamp tolerance: 300s (5 min) to prevent replay
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

from marketplace.errors import Unauthorized

logger = logging.getLogger(__name__)

# Provider -> header carrying its signature (lowercase)
SIGNATURE_HEADERS = {
    "printful": "x-pf-webhook-signature",
    "gelato": "x-gelato-webhook-secret",
    "ping": "x-ping-signature",
    "stripe": "stripe-signature",
}
PING_TIMESTAMP_HEADER = "x-ping-timestamp"

DEFAULT_TOLERANCE_SECONDS = 300


def _compare_hex(signature: str, expected_hex: str) -> None:
    """Raise Unauthorized unless ``signature`` equals ``expected_hex``."""
    if len(signature) != len(expected_hex):
        raise Unauthorized("Invalid webhook signature")
    try:
        received = bytes.fromhex(signature)
    except ValueError:
        raise Unauthorized("Invalid webhook signature") from None
    if not hmac.compare_digest(received, bytes.fromhex(expected_hex)):
        raise Unauthorized("Invalid webhook signature")


def verify_hex_signature(raw_body: bytes, secret_hex: str, signature: str | None) -> None:
    """Verify a hex HMAC-SHA256 of the raw body keyed by a hex-encoded secret.

    Args:
        raw_body: Raw request body bytes (exactly as received)
        secret_hex: Shared secret, hex-encoded
        signature: Hex digest sent by the provider

    Raises:
        Unauthorized: signature missing, malformed or not matching
    """
    if not signature:
        raise Unauthorized("Missing webhook signature")
    try:
        key = bytes.fromhex(secret_hex)
    except ValueError:
        logger.error("Webhook secret is not valid hex, rejecting webhook")
        raise Unauthorized("Webhook signature verification failed") from None

    expected = hmac.new(key, raw_body, hashlib.sha256).hexdigest()
    _compare_hex(signature, expected)


def verify_printful(raw_body: bytes, signature: str | None, secret_hex: str) -> None:
    """Printful: hex HMAC-SHA256 in X-PF-Webhook-Signature, hex-encoded secret."""
    if not secret_hex:
        logger.debug("Printful webhook secret not configured, skipping verification")
        return
    verify_hex_signature(raw_body, secret_hex, signature)


def verify_gelato(token: str | None, secret: str) -> None:
    """Gelato: the configured secret echoed back in a custom header."""
    if not secret:
        logger.debug("Gelato webhook secret not configured, skipping verification")
        return
    if not token:
        raise Unauthorized("Missing webhook signature")
    if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise Unauthorized("Invalid webhook signature")


def _check_timestamp(timestamp: str | int | None, tolerance: int, now: float | None) -> int:
    if timestamp is None or timestamp == "":
        raise Unauthorized("Missing webhook timestamp")
    try:
        ts = int(timestamp)
    except (ValueError, TypeError):
        raise Unauthorized("Invalid webhook timestamp") from None
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance:
        logger.warning("Webhook timestamp too old/future: %s", ts)
        raise Unauthorized("Webhook timestamp outside tolerance")
    return ts


def verify_ping(
    raw_body: bytes,
    signature: str | None,
    timestamp: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    """PingPay: hex HMAC-SHA256 over ``"{timestamp}." + body``.

    Headers: X-Ping-Signature, X-Ping-Timestamp (unix seconds).
    """
    if not secret:
        logger.warning("PingPay webhook secret not set, rejecting webhook")
        raise Unauthorized("Webhook secret not configured")
    if not signature:
        raise Unauthorized("Missing webhook signature")
    ts = _check_timestamp(timestamp, tolerance, now)

    signed_payload = f"{ts}.".encode("utf-8") + raw_body
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    _compare_hex(signature, expected)


def verify_stripe(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    """Stripe signature (v1 scheme).

    Stripe sends: Stripe-Signature header with format:
    t=<timestamp>,v1=<signature>[,v1=<rotated>][,v0=<deprecated>]
    """
    if not secret:
        logger.warning("Stripe webhook secret not set, rejecting webhook")
        raise Unauthorized("Webhook secret not configured")
    if not signature_header:
        raise Unauthorized("Missing webhook signature")

    timestamp = None
    v1_sigs: list[str] = []
    for item in signature_header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) != 2:
            continue
        key, value = kv
        if key == "t":
            timestamp = value
        elif key == "v1":
            v1_sigs.append(value)

    ts = _check_timestamp(timestamp, tolerance, now)
    if not v1_sigs:
        raise Unauthorized("Missing webhook signature")

    signed_payload = f"{ts}.".encode("utf-8") + raw_body
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    # Key rotation: any matching v1 signature is accepted
    for sig in v1_sigs:
        try:
            _compare_hex(sig, expected)
            return
        except Unauthorized:
            continue
    raise Unauthorized("Invalid webhook signature")
