"""
Gateway Signature - keyed digest over the canonical payload encoding.

The gateway signs the JSON body it sends, minus the ``sign`` field:
compact JSON in the order the fields were emitted, base64-encoded, then
HMAC-MD5 with the merchant API key, hex-encoded. Keys are never re-sorted,
so the payload must be the mapping parsed from the body as received.
"""

import base64
import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

from structlog import get_logger

logger = get_logger(__name__)

SIGNATURE_FIELD = "sign"


def canonical_bytes(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload (without its signature) exactly as the gateway does."""
    unsigned = {key: value for key, value in payload.items() if key != SIGNATURE_FIELD}
    return json.dumps(unsigned, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(payload: Mapping[str, Any], secret_key: str) -> str:
    """
    Compute the signature for a payload.

    Raises:
        TypeError: If the payload contains values JSON cannot encode
    """
    encoded = base64.b64encode(canonical_bytes(payload))
    return hmac.new(secret_key.encode("utf-8"), encoded, hashlib.md5).hexdigest()


def verify_signature(payload: Any, provided_signature: Any, secret_key: str) -> bool:
    """
    Check a webhook signature in constant time.

    Never raises: any malformed input is a failed verification.
    """
    if not secret_key or not isinstance(payload, Mapping):
        return False
    if not isinstance(provided_signature, str) or not provided_signature:
        return False

    try:
        expected = sign_payload(payload, secret_key)
    except (TypeError, ValueError) as exc:
        logger.warning("signature_payload_unserializable", error_type=type(exc).__name__)
        return False

    try:
        return hmac.compare_digest(expected, provided_signature)
    except TypeError:
        # Non-ASCII signature strings cannot be compared
        return False
