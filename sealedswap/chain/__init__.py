"""
Solana access for sealedswap: RPC client, relayer wallet and token accounts.
"""
from .client import ChainClient, program_error_from_message
from .token_accounts import SwapTokenAccounts, prepare_swap_accounts, resolve_swap_accounts, validate_swap_accounts
from .wallet import keypair_from_secret, load_keypair

__all__ = [
    "ChainClient",
    "program_error_from_message",
    "SwapTokenAccounts",
    "resolve_swap_accounts",
    "prepare_swap_accounts",
    "validate_swap_accounts",
    "keypair_from_secret",
    "load_keypair",
]
