"""
Operator token checks for the fee-management endpoints.

Validation is tiered by environment:
- Production: HS256 only, signature and expiry verified
- Test: HMAC algorithms, signature and expiry verified
- Development: format only, no signature or expiry checks

The guard is active only when a JWT secret is configured.
"""
import logging
from typing import Any, Dict, List, Optional

import jwt
from fastapi import Request

from ..config import ENV_TIER_DEVELOPMENT, ENV_TIER_PRODUCTION, ENV_TIER_TEST, Settings
from ..exceptions import AuthorizationError

logger = logging.getLogger(__name__)

OPERATOR_ROLE = "operator"

# Unsafe algorithms that should always be rejected
UNSAFE_JWT_ALGORITHMS = ["none", ""]

ALLOWED_ALGORITHMS = {
    ENV_TIER_PRODUCTION: ["HS256"],
    ENV_TIER_TEST: ["HS256", "HS384", "HS512"],
    ENV_TIER_DEVELOPMENT: ["HS256", "HS384", "HS512", "RS256", "ES256"],
}


def is_safe_jwt_algorithm(algorithm: str) -> bool:
    return algorithm.lower() not in UNSAFE_JWT_ALGORITHMS


def verify_operator_token(
    token: str,
    env_tier: str,
    jwt_secret: Optional[str],
    allowed_algorithms: Optional[List[str]] = None
) -> Optional[Dict[str, Any]]:
    """
    Verify an operator JWT for the given environment tier.

    Args:
        token: Encoded JWT
        env_tier: production, test or development
        jwt_secret: HMAC secret
        allowed_algorithms: Override of the tier's algorithm list

    Returns:
        Decoded claims, or None if the token is unacceptable
    """
    if not token:
        return None
    allowed = allowed_algorithms or ALLOWED_ALGORITHMS.get(env_tier, ALLOWED_ALGORITHMS[ENV_TIER_PRODUCTION])

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        logger.warning("Invalid JWT format - could not decode header")
        return None

    algorithm = header.get("alg", "")
    if not is_safe_jwt_algorithm(algorithm):
        logger.warning(f"Unsafe JWT algorithm: {algorithm}. Rejecting token.")
        return None
    if algorithm not in allowed:
        logger.warning(f"JWT algorithm {algorithm} not allowed in {env_tier} environment. Allowed: {allowed}")
        return None

    try:
        if env_tier == ENV_TIER_DEVELOPMENT:
            return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
        if not jwt_secret:
            logger.warning(f"{env_tier} environment requires SEALEDSWAP_JWT_SECRET to verify tokens")
            return None
        return jwt.decode(
            token,
            jwt_secret,
            algorithms=allowed,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        logger.warning(f"JWT token has expired (environment: {env_tier})")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT token validation failed: {e}")
        return None


class OperatorGuard:
    """FastAPI dependency that admits requests carrying an operator token."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.jwt_secret)

    def __call__(self, request: Request) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise AuthorizationError("Operator token required")

        claims = verify_operator_token(token.strip(), self.settings.env_tier, self.settings.jwt_secret)
        if claims is None:
            raise AuthorizationError("Invalid operator token")
        if claims.get("role") != OPERATOR_ROLE:
            raise AuthorizationError("Token lacks the operator role")
        return claims
