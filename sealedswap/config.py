"""
Runtime settings for sealedswap, read from environment variables.
"""
import logging
import os
import re
import urllib.parse
from typing import Optional

import base58
from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM_ID = "2bgpPzHUWu9jRAMUcF2Kex4dKti6U554hkhpkBi4EpHK"
DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_QUOTE_URL = "https://quote-api.jup.ag/v6/quote"

BASE58_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

# Environment tiers
ENV_TIER_PRODUCTION = "production"
ENV_TIER_TEST = "test"
ENV_TIER_DEVELOPMENT = "development"


def normalize_env_tier(tier: Optional[str]) -> str:
    """
    Map free-form environment names onto one of the three tiers.

    Unknown values fall back to production.
    """
    tier = (tier or ENV_TIER_PRODUCTION).lower()
    if tier in ("prod", "production"):
        return ENV_TIER_PRODUCTION
    elif tier in ("test", "testing", "qa"):
        return ENV_TIER_TEST
    elif tier in ("dev", "development", "local"):
        return ENV_TIER_DEVELOPMENT
    logger.warning(f"Unknown environment tier: {tier}, defaulting to production")
    return ENV_TIER_PRODUCTION


class Settings(BaseModel):
    """Engine configuration. Build with :meth:`Settings.from_env`."""

    database_url: str = "sqlite:///sealedswap.db"
    rpc_url: str = DEFAULT_RPC_URL
    program_id: str = DEFAULT_PROGRAM_ID
    relayer_keypair_path: Optional[str] = None
    port: int = 5000
    env_tier: str = ENV_TIER_PRODUCTION

    quote_url: str = DEFAULT_QUOTE_URL
    quote_timeout: float = 10.0
    rpc_timeout: float = 30.0
    db_timeout: float = 5.0

    session_ttl: int = 3600
    session_sweep_interval: int = 900
    redis_url: Optional[str] = None

    queue_workers: int = Field(4, ge=1)
    queue_backoff_base: float = 2.0
    relay_delay_seconds: int = 30

    jwt_secret: Optional[str] = None
    cors_origins: str = "*"

    @field_validator("program_id")
    @classmethod
    def _check_program_id(cls, value: str) -> str:
        if not BASE58_PATTERN.match(value):
            raise ValueError("PROGRAM_ID must be a base58 public key")
        if len(base58.b58decode(value)) != 32:
            raise ValueError("PROGRAM_ID must decode to 32 bytes")
        return value

    @field_validator("rpc_url", "quote_url")
    @classmethod
    def _check_http_url(cls, value: str) -> str:
        parsed = urllib.parse.urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"must be an http(s) URL (got: {value})")
        return value

    @field_validator("env_tier")
    @classmethod
    def _check_tier(cls, value: str) -> str:
        return normalize_env_tier(value)

    @property
    def is_development(self) -> bool:
        return self.env_tier == ENV_TIER_DEVELOPMENT

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Validated Settings

        Raises:
            ConfigurationError: If any value is malformed
        """
        env = os.environ if environ is None else environ
        raw = {
            "database_url": env.get("DATABASE_URL"),
            "rpc_url": env.get("SOLANA_RPC"),
            "program_id": env.get("PROGRAM_ID"),
            "relayer_keypair_path": env.get("RELAYER_KEYPAIR") or env.get("ANCHOR_WALLET"),
            "port": env.get("PORT"),
            "env_tier": env.get("SEALEDSWAP_ENV_TIER") or env.get("NODE_ENV"),
            "quote_url": env.get("JUPITER_QUOTE_URL"),
            "quote_timeout": env.get("QUOTE_TIMEOUT"),
            "rpc_timeout": env.get("RPC_TIMEOUT"),
            "db_timeout": env.get("DB_TIMEOUT"),
            "session_ttl": env.get("SESSION_TTL"),
            "session_sweep_interval": env.get("SESSION_SWEEP_INTERVAL"),
            "redis_url": env.get("REDIS_URL"),
            "queue_workers": env.get("QUEUE_WORKERS"),
            "queue_backoff_base": env.get("QUEUE_BACKOFF_BASE"),
            "relay_delay_seconds": env.get("RELAY_DELAY_SECONDS"),
            "jwt_secret": env.get("SEALEDSWAP_JWT_SECRET"),
            "cors_origins": env.get("CORS_ORIGINS"),
        }
        # Unset variables keep the model defaults
        values = {k: v for k, v in raw.items() if v not in (None, "")}
        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
