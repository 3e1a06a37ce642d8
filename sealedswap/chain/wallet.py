"""
Relayer wallet loading.
"""
import json
import logging
import os
import stat
from pathlib import Path
from typing import Optional

import base58
from solders.keypair import Keypair

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"


def keypair_from_secret(raw: str) -> Keypair:
    """
    Parse a 64-byte secret key.

    Accepts the Solana CLI JSON integer array or a base58 string.

    Raises:
        ConfigurationError: If the secret is in neither format
    """
    value = raw.strip()
    if value.startswith("["):
        try:
            arr = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Keypair JSON is malformed: {e}") from e
        if not isinstance(arr, list) or len(arr) != 64:
            raise ConfigurationError("Keypair JSON must be an array of 64 integers")
        try:
            return Keypair.from_bytes(bytes(arr))
        except ValueError as e:
            raise ConfigurationError(f"Invalid keypair bytes: {e}") from e

    try:
        secret = base58.b58decode(value)
    except ValueError as e:
        raise ConfigurationError("Unsupported keypair format (expected JSON array or base58)") from e
    if len(secret) != 64:
        raise ConfigurationError(f"Base58 keypair must decode to 64 bytes (got {len(secret)})")
    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise ConfigurationError(f"Invalid keypair bytes: {e}") from e


def load_keypair(path: Optional[str] = None) -> Keypair:
    """
    Load the relayer keypair from a file.

    Args:
        path: Keypair file path (defaults to the Solana CLI location)

    Returns:
        Keypair

    Raises:
        ConfigurationError: If the file is missing or unreadable
    """
    keypair_path = Path(os.path.expanduser(path or DEFAULT_KEYPAIR_PATH))
    if not keypair_path.exists():
        raise ConfigurationError(f"Keypair file not found: {keypair_path}")

    # Warn on group/world readable key files (Unix/Linux/Mac only)
    if os.name == "posix":
        mode = keypair_path.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            logger.warning(f"Keypair file {keypair_path} is readable by other users")

    with open(keypair_path, "r") as f:
        keypair = keypair_from_secret(f.read())
    logger.info(f"Loaded relayer wallet {str(keypair.pubkey())[:10]}...")
    return keypair
