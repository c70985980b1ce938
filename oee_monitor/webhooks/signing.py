"""Webhook payload signing.

Provides HMAC-SHA256 signatures over the exact bytes sent on the wire so
receivers can verify authenticity and detect tampering.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SOURCE_HEADER = "X-Webhook-Source"

SIGNATURE_PREFIX = "sha256="


def _json_default(value: Any) -> str:
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def serialize_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload to the bytes that are signed and transmitted.

    Call this once per delivery attempt and reuse the result for both
    signing and sending.

    Args:
        payload: JSON-serializable payload.

    Returns:
        Compact UTF-8 JSON.
    """
    return json.dumps(
        payload,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    """Compute the HMAC-SHA256 signature of a serialized body.

    Args:
        secret: Subscription secret.
        body: Exact request body bytes.

    Returns:
        Hex-encoded digest.
    """
    signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()

    logger.debug(
        "webhook_signature_generated",
        payload_length=len(body),
    )

    return signature


def format_signature(signature: str) -> str:
    """Format a hex digest for the signature header."""
    return f"{SIGNATURE_PREFIX}{signature}"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Verify a received signature against the raw request body.

    Args:
        body: Raw request body bytes as received.
        signature: Header value, with or without the ``sha256=`` prefix.
        secret: Subscription secret.

    Returns:
        True if the signature is valid.
    """
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    expected = sign_payload(secret, body)

    # Constant-time comparison
    is_valid = hmac.compare_digest(signature, expected)

    if not is_valid:
        logger.warning("webhook_signature_invalid", payload_length=len(body))

    return is_valid


def verify_from_headers(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
) -> bool:
    """Verify a webhook signature from request headers.

    Header names are matched case-insensitively.

    Args:
        body: Raw request body bytes.
        headers: Request headers.
        secret: Subscription secret.

    Returns:
        True if signature is valid.

    Raises:
        ValueError: If the signature header is missing.
    """
    normalized = {name.lower(): value for name, value in headers.items()}
    signature = normalized.get(SIGNATURE_HEADER.lower())

    if not signature:
        raise ValueError(f"Missing {SIGNATURE_HEADER} header")

    return verify_signature(body, signature, secret)
