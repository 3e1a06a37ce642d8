"""
Exceptions for sealedswap.

Every error carries a stable machine-readable code, a human message, a
timestamp and the HTTP status it maps to at the API boundary.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced to API clients."""
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ROUTE_MISMATCH = "ROUTE_MISMATCH"
    CONFLICT = "CONFLICT"
    ALREADY_COMMITTED = "ALREADY_COMMITTED"
    ALREADY_REVEALED = "ALREADY_REVEALED"
    ACCOUNTS_EXIST = "ACCOUNTS_EXIST"
    NOT_FOUND = "NOT_FOUND"
    INTENT_NOT_FOUND = "INTENT_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    NOT_COMMITTED = "NOT_COMMITTED"
    INTENT_EXPIRED = "INTENT_EXPIRED"
    HASH_MISMATCH = "HASH_MISMATCH"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    QUOTE_UNAVAILABLE = "QUOTE_UNAVAILABLE"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ACCOUNTS_NOT_INITIALIZED = "ACCOUNTS_NOT_INITIALIZED"
    UNAUTHORIZED = "UNAUTHORIZED"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SealedSwapError(Exception):
    """Base exception for all sealedswap errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code
        self.timestamp = _utc_now_iso()

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        """Render the error in the API's error envelope."""
        return {
            "error": {
                "message": self.message,
                "code": self.code.value,
                "details": self.details if include_details else None,
                "timestamp": self.timestamp,
            }
        }


class ConfigurationError(SealedSwapError):
    """Raised when settings are missing or malformed."""
    code = ErrorCode.CONFIGURATION_ERROR
    http_status = 500


class ValidationError(SealedSwapError):
    """Raised for malformed or out-of-range input. Lists every violation."""
    code = ErrorCode.VALIDATION_ERROR
    http_status = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        self.errors = list(errors or [])
        kwargs.setdefault("details", self.errors or None)
        super().__init__(message, **kwargs)


class RouteMismatch(ValidationError):
    """Raised when the quoted route and the trade metadata disagree on tokens."""
    code = ErrorCode.ROUTE_MISMATCH


class ConflictError(SealedSwapError):
    """Raised when an operation collides with existing state."""
    code = ErrorCode.CONFLICT
    http_status = 409

    def __init__(self, message: str, existing_ref: Optional[str] = None, **kwargs):
        self.existing_ref = existing_ref
        super().__init__(message, **kwargs)

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        body = super().to_dict(include_details)
        body["error"]["existingRef"] = self.existing_ref
        return body


class AlreadyCommitted(ConflictError):
    """Raised when a commitment already exists for (user, nonce)."""
    code = ErrorCode.ALREADY_COMMITTED


class AlreadyRevealed(ConflictError):
    """Raised when an intent has already been revealed."""
    code = ErrorCode.ALREADY_REVEALED


class NotFoundError(SealedSwapError):
    """Raised for an unknown intent hash or session id."""
    code = ErrorCode.NOT_FOUND
    http_status = 404


class NotCommitted(SealedSwapError):
    """Raised when a reveal is attempted before a commitment exists."""
    code = ErrorCode.NOT_COMMITTED
    http_status = 400


class IntentExpired(SealedSwapError):
    """Raised when an intent's expiry has elapsed."""
    code = ErrorCode.INTENT_EXPIRED
    http_status = 410


class IntegrityError(SealedSwapError):
    """Raised when a recomputed intent hash does not match the expected one."""
    code = ErrorCode.HASH_MISMATCH
    http_status = 422


class UpstreamUnavailable(SealedSwapError):
    """Raised on timeouts or connection failures against quoting, RPC or the database."""
    code = ErrorCode.SERVICE_UNAVAILABLE
    http_status = 503


class ExecutionFailed(SealedSwapError):
    """Raised when the chain rejects a submitted transaction or funds are short."""
    code = ErrorCode.EXECUTION_FAILED
    http_status = 502


class AccountsNotInitialized(SealedSwapError):
    """Raised when fee-pool accounts for a mint have not been created yet."""
    code = ErrorCode.ACCOUNTS_NOT_INITIALIZED
    http_status = 404


class AuthorizationError(SealedSwapError):
    """Raised when an operator token is missing or invalid."""
    code = ErrorCode.UNAUTHORIZED
    http_status = 401
