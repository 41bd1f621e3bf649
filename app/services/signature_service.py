import base64
import binascii
import hashlib
import hmac
from enum import Enum
from typing import Mapping, Optional

from app.logging_config import get_logger

logger = get_logger("signature_service")

# Fireflies has shipped several header names over time; first present wins
SIGNATURE_HEADERS = (
    "x-hub-signature",
    "x-fireflies-signature",
    "fireflies-signature",
    "x-signature",
    "signature",
    "x-webhook-signature",
)


class SignatureCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    MISSING = "missing"
    UNCONFIGURED = "unconfigured"


def _decode_claimed(claimed: str, expected: bytes) -> Optional[bytes]:
    """Decode a hex or base64 signature whose length matches the expected digest."""
    hex_length = len(expected) * 2
    b64_length = len(base64.b64encode(expected))
    try:
        if len(claimed) == hex_length:
            return bytes.fromhex(claimed)
        if len(claimed) == b64_length:
            return base64.b64decode(claimed, validate=True)
    except (ValueError, binascii.Error):
        return None
    return None


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check an HMAC-SHA256 signature of the raw request body.

    The claimed signature may be hex or base64 and may carry a ``sha256=`` prefix.
    """
    if not signature or not secret:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()

    cleaned = signature.strip()
    if cleaned.lower().startswith("sha256="):
        cleaned = cleaned[len("sha256=") :].strip()

    claimed = _decode_claimed(cleaned, expected)
    if claimed is None:
        return False
    return hmac.compare_digest(expected, claimed)


def get_signature_header(headers: Mapping[str, str]) -> Optional[str]:
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name)
        if value:
            return value
    return None


def check_webhook_signature(raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> SignatureCheck:
    if not secret:
        return SignatureCheck.UNCONFIGURED

    signature = get_signature_header(headers)
    if not signature:
        return SignatureCheck.MISSING

    if not verify_signature(raw_body, signature, secret):
        logger.warning("Webhook signature mismatch", extra={"context": {"body_size": len(raw_body)}})
        return SignatureCheck.INVALID

    return SignatureCheck.VALID
