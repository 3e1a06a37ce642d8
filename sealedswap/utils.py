"""
Utility functions for sealedswap.
"""
import re
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict

import base58

HEX_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
HEX_SIGNATURE_PATTERN = re.compile(r"^[0-9a-fA-F]{128}$")

# Bounded horizon for intent expiry
MAX_EXPIRY_HORIZON_SECONDS = 7 * 24 * 60 * 60


def now_ts() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def to_iso(ts: int) -> str:
    """Render a unix timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def is_valid_hash(value: Any) -> bool:
    """True for a 32-byte digest rendered as 64 hex characters."""
    return isinstance(value, str) and bool(HEX_HASH_PATTERN.match(value))


def is_valid_signature(value: Any) -> bool:
    """True for a 64-byte Ed25519 signature rendered as 128 hex characters."""
    return isinstance(value, str) and bool(HEX_SIGNATURE_PATTERN.match(value))


def is_valid_address(value: Any) -> bool:
    """True for a base58 string that decodes to exactly 32 bytes."""
    if not isinstance(value, str) or not value:
        return False
    try:
        return len(base58.b58decode(value)) == 32
    except ValueError:
        return False


def is_valid_expiry(expiry: Any, now: int = None) -> bool:
    """True when expiry is in the future and inside the 7-day horizon."""
    if isinstance(expiry, bool) or not isinstance(expiry, int):
        return False
    current = now_ts() if now is None else now
    return current < expiry <= current + MAX_EXPIRY_HORIZON_SECONDS


def generate_nonce() -> int:
    """Random 48-bit nonce, safe for JSON number round-trips."""
    return int.from_bytes(secrets.token_bytes(6), "big")


def sanitize_for_log(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a request payload with signatures redacted."""
    safe = dict(payload)
    for key in ("signature", "secretKey", "privateKey"):
        if key in safe and safe[key]:
            safe[key] = "[REDACTED]"
    return safe
