"""
Tolgee webhook signature verification.

Tolgee sends a ``Tolgee-Signature`` header holding
``{"timestamp": <ms>, "signature": "<hex>"}`` where the signature is
HMAC-SHA256 over ``"<timestamp>.<raw body>"`` with the webhook secret.
Signatures older than the replay window are rejected.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from .errors import SignatureInvalid

logger = logging.getLogger("webhook")

SIGNATURE_HEADER = "Tolgee-Signature"

# Signature validity window (5 minutes)
TIMESTAMP_TOLERANCE_SECONDS = 300


@dataclass
class WebhookSignature:
    """Decoded signature header."""
    timestamp: int  # milliseconds since epoch
    signature: str  # lowercase hex


def parse_signature_header(raw_header: Optional[str]) -> WebhookSignature:
    """
    Decode the signature header.

    Raises:
        SignatureInvalid: If the header is missing or structurally wrong
    """
    if not raw_header:
        raise SignatureInvalid("missing signature header")
    try:
        data = json.loads(raw_header)
    except ValueError as e:
        raise SignatureInvalid(f"signature header is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise SignatureInvalid("signature header is not an object")

    timestamp = data.get("timestamp")
    signature = data.get("signature")
    # bool is an int subclass
    if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp <= 0:
        raise SignatureInvalid("signature header has no valid timestamp")
    if not isinstance(signature, str) or not signature:
        raise SignatureInvalid("signature header has no signature")
    return WebhookSignature(timestamp=timestamp, signature=signature)


def compute_signature(secret: str, timestamp: int, body: Union[bytes, str]) -> str:
    """Hex HMAC-SHA256 of ``"<timestamp>.<body>"``."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    signed = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def require_valid_signature(
    secret: Optional[str],
    raw_header: Optional[str],
    body: bytes,
    now_ms: Optional[int] = None,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
) -> WebhookSignature:
    """
    Verify a webhook request.

    Returns:
        The decoded signature on success

    Raises:
        SignatureInvalid: On missing secret, malformed header, mismatch,
            or a timestamp outside the replay window
    """
    if not secret:
        raise SignatureInvalid("webhook secret not configured")

    header = parse_signature_header(raw_header)
    expected = compute_signature(secret, header.timestamp, body)
    if not hmac.compare_digest(expected.encode("ascii"), header.signature.encode("utf-8")):
        raise SignatureInvalid("signature mismatch")

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    if header.timestamp < now_ms - tolerance_seconds * 1000:
        raise SignatureInvalid(f"signature too old ts={header.timestamp}")
    return header


def verify_signature(
    secret: Optional[str],
    raw_header: Optional[str],
    body: bytes,
    now_ms: Optional[int] = None,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
) -> bool:
    """True when the webhook request is authentic and recent."""
    try:
        require_valid_signature(secret, raw_header, body, now_ms, tolerance_seconds)
    except SignatureInvalid as e:
        logger.warning(f"[webhook] reject: {e}")
        return False
    return True
