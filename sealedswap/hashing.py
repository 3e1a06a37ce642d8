"""
Canonical serialization and hashing of trade intents and routes.

The intent hash is the value the user signs and the value anchored on-chain
at commit time, so the byte-level serialization here is part of the
protocol:

    user|tokenIn|tokenOut|amountIn|minOut|expiry|nonce|routeHash|relayerFee|relayer

hashed with SHA-512 over the UTF-8 bytes and truncated to the first 32 bytes,
rendered as lowercase hex.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

import nacl.encoding
import nacl.hash
import pydantic

from .exceptions import RouteMismatch, ValidationError
from .models import Route, TradeIntent, TradeMeta
from .utils import (
    MAX_EXPIRY_HORIZON_SECONDS,
    is_valid_address,
    is_valid_hash,
    now_ts,
)

logger = logging.getLogger(__name__)

INTENT_HASH_BYTES = 32

# Serialization order of the intent fields. Changing it changes every hash.
INTENT_FIELD_ORDER = (
    "user",
    "token_in",
    "token_out",
    "amount_in",
    "min_out",
    "expiry",
    "nonce",
    "route_hash",
    "relayer_fee",
    "relayer",
)

ROUTE_FIELD_ORDER = (
    ("inputMint", "input_mint"),
    ("outputMint", "output_mint"),
    ("inAmount", "in_amount"),
    ("outAmount", "out_amount"),
    ("swapMode", "swap_mode"),
    ("routePlan", "route_plan"),
)

IntentLike = Union[TradeIntent, Mapping[str, Any]]
RouteLike = Union[Route, Mapping[str, Any]]


def digest_hex(data: str) -> str:
    """
    Hash a string the way every protocol digest is computed.

    Args:
        data: Text to hash (encoded as UTF-8)

    Returns:
        First 32 bytes of SHA-512, as 64 lowercase hex characters
    """
    raw = nacl.hash.sha512(data.encode("utf-8"), encoder=nacl.encoding.RawEncoder)
    return raw[:INTENT_HASH_BYTES].hex()


def _coerce(model_cls, data: Any):
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(dict(data))
    except pydantic.ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError(f"Invalid {model_cls.__name__}", errors=errors) from e


def as_intent(intent: IntentLike) -> TradeIntent:
    """Validate a mapping into a TradeIntent, listing every malformed field."""
    return _coerce(TradeIntent, intent)


def as_route(route: RouteLike) -> Route:
    return _coerce(Route, route)


def canonical_intent_string(intent: IntentLike) -> str:
    """Pipe-joined serialization of an intent in protocol field order."""
    model = as_intent(intent)
    parts = []
    for name in INTENT_FIELD_ORDER:
        value = getattr(model, name)
        parts.append(str(int(value)) if isinstance(value, int) else value)
    return "|".join(parts)


def hash_intent(intent: IntentLike) -> str:
    """
    Compute the intent hash.

    Args:
        intent: TradeIntent or a camelCase/snake_case mapping of its fields

    Returns:
        64-character lowercase hex digest
    """
    return digest_hex(canonical_intent_string(intent))


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def canonical_route_document(route: RouteLike) -> str:
    """
    Fixed-structure JSON document for a route.

    Top-level keys keep protocol order; objects nested in the route plan are
    emitted with sorted keys so logically equal routes serialize identically.
    """
    model = as_route(route)
    doc = {}
    for wire_name, attr in ROUTE_FIELD_ORDER:
        value = getattr(model, attr)
        doc[wire_name] = _canonical(value) if attr == "route_plan" else value
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)


def hash_route(route: RouteLike) -> str:
    """Hash the canonical subset of a route."""
    return digest_hex(canonical_route_document(route))


def validate_intent_fields(
    fields: Mapping[str, Any],
    now: Optional[int] = None,
    check_horizon: bool = True,
    check_expiry: bool = True,
) -> List[str]:
    """
    Check every trade field and collect all violations.

    Args:
        fields: snake_case mapping of trade fields
        now: Reference unix time (defaults to the current time)
        check_horizon: Whether to enforce the 7-day expiry horizon
        check_expiry: Whether to check expiry against the reference time at all

    Returns:
        List of human-readable violations, empty when the fields are valid
    """
    errors = []
    current = now_ts() if now is None else now

    for name in ("user", "token_in", "token_out", "relayer"):
        if not is_valid_address(fields.get(name)):
            errors.append(f"{name}: invalid address {fields.get(name)!r}")

    for name in ("amount_in", "min_out"):
        value = fields.get(name)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            errors.append(f"{name}: must be a positive integer (got {value!r})")

    for name in ("nonce", "relayer_fee"):
        value = fields.get(name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors.append(f"{name}: must be a non-negative integer (got {value!r})")

    expiry = fields.get("expiry")
    if isinstance(expiry, bool) or not isinstance(expiry, int):
        errors.append(f"expiry: must be an integer unix timestamp (got {expiry!r})")
    elif check_expiry:
        if expiry <= current:
            errors.append(f"expiry: {expiry} is not in the future")
        elif check_horizon and expiry > current + MAX_EXPIRY_HORIZON_SECONDS:
            errors.append(f"expiry: {expiry} is more than 7 days ahead")

    route_hash = fields.get("route_hash")
    if route_hash is not None and not is_valid_hash(route_hash):
        errors.append("route_hash: must be 64 hex characters")

    return errors


def build_intent(
    route: RouteLike,
    meta: Union[TradeMeta, Mapping[str, Any]],
    now: Optional[int] = None,
) -> TradeIntent:
    """
    Build a TradeIntent from a quoted route and the caller's trade terms.

    Args:
        route: Quoted route
        meta: Trade terms (user, tokens, amounts, expiry, nonce, relayer, fee)
        now: Reference unix time for expiry checks

    Returns:
        Validated TradeIntent carrying the route hash

    Raises:
        ValidationError: Listing every malformed field
        RouteMismatch: If the route's mints differ from the trade's tokens
    """
    route_model = as_route(route)
    meta_model = _coerce(TradeMeta, meta)
    fields: Dict[str, Any] = meta_model.model_dump()

    errors = validate_intent_fields(fields, now=now)
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    if route_model.input_mint != meta_model.token_in or route_model.output_mint != meta_model.token_out:
        raise RouteMismatch(
            "Route and tradeMeta token mismatch",
            details={
                "route": {"inputMint": route_model.input_mint, "outputMint": route_model.output_mint},
                "tradeMeta": {"tokenIn": meta_model.token_in, "tokenOut": meta_model.token_out},
            },
        )

    fields["route_hash"] = hash_route(route_model)
    intent = TradeIntent.model_validate(fields)
    logger.debug(f"Built intent for user {intent.user[:10]}... nonce={intent.nonce}")
    return intent


def time_remaining(intent: IntentLike, now: Optional[int] = None) -> int:
    """Seconds until expiry, floored at zero."""
    current = now_ts() if now is None else now
    return max(0, as_intent(intent).expiry - current)


def is_expired(intent: IntentLike, now: Optional[int] = None) -> bool:
    current = now_ts() if now is None else now
    return as_intent(intent).expiry <= current


def format_intent_for_response(intent: IntentLike, now: Optional[int] = None) -> Dict[str, Any]:
    """Intent fields plus its hash and expiry bookkeeping, for API responses."""
    model = as_intent(intent)
    body = model.to_wire()
    body["hash"] = hash_intent(model)
    body["timeRemaining"] = time_remaining(model, now=now)
    body["isExpired"] = is_expired(model, now=now)
    return body
