"""
sealedswap - commit-reveal swap intents for Solana.

Users commit only a hash of their trade intent; the full intent is revealed
and executed atomically later, so the trade cannot be front-run while it
waits.
"""
from .engine import SwapEngine, build_engine
from .exceptions import (
    AlreadyCommitted,
    AlreadyRevealed,
    ConflictError,
    ErrorCode,
    ExecutionFailed,
    IntegrityError,
    IntentExpired,
    NotCommitted,
    NotFoundError,
    SealedSwapError,
    UpstreamUnavailable,
    ValidationError,
)
from .hashing import hash_intent, hash_route
from .models import IntentStatus, Route, TradeIntent, TradeMeta
from .version import __version__

__all__ = [
    "SwapEngine",
    "build_engine",
    "hash_intent",
    "hash_route",
    "TradeIntent",
    "TradeMeta",
    "Route",
    "IntentStatus",
    "SealedSwapError",
    "ErrorCode",
    "ValidationError",
    "ConflictError",
    "AlreadyCommitted",
    "AlreadyRevealed",
    "NotFoundError",
    "NotCommitted",
    "IntentExpired",
    "IntegrityError",
    "UpstreamUnavailable",
    "ExecutionFailed",
    "__version__",
]
