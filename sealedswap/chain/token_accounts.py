"""
Associated token account resolution for swaps.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from solders.pubkey import Pubkey
from spl.token.instructions import create_associated_token_account

from ..derivation import PubkeyLike, to_pubkey
from .client import ChainClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapTokenAccounts:
    """The four token accounts a reveal moves funds between."""
    user_token_in: Pubkey
    user_token_out: Pubkey
    relayer_token_in: Pubkey
    relayer_token_out: Pubkey


def resolve_swap_accounts(
    chain: ChainClient,
    user: PubkeyLike,
    relayer: PubkeyLike,
    token_in: PubkeyLike,
    token_out: PubkeyLike,
) -> SwapTokenAccounts:
    """Associated token accounts for the user and relayer on both sides of a swap."""
    return SwapTokenAccounts(
        user_token_in=chain.associated_token_address(user, token_in),
        user_token_out=chain.associated_token_address(user, token_out),
        relayer_token_in=chain.associated_token_address(relayer, token_in),
        relayer_token_out=chain.associated_token_address(relayer, token_out),
    )


def prepare_swap_accounts(
    chain: ChainClient,
    user: PubkeyLike,
    token_in: PubkeyLike,
    token_out: PubkeyLike,
    create: bool = False,
) -> Dict[str, Any]:
    """
    Report the user's token accounts for a swap, optionally creating missing ones.

    Args:
        chain: Chain client (its wallet pays for any account creation)
        user: User wallet
        token_in: Input mint
        token_out: Output mint
        create: Create missing accounts in one transaction

    Returns:
        Addresses, the names of missing accounts and the creation signature if any
    """
    owner = to_pubkey(user, "user")
    mint_in = to_pubkey(token_in, "tokenIn")
    mint_out = to_pubkey(token_out, "tokenOut")

    accounts = {
        "userTokenIn": (chain.associated_token_address(owner, mint_in), mint_in),
        "userTokenOut": (chain.associated_token_address(owner, mint_out), mint_out),
    }
    missing: List[str] = [name for name, (ata, _) in accounts.items() if not chain.account_exists(ata)]

    result: Dict[str, Any] = {
        "accounts": {name: str(ata) for name, (ata, _) in accounts.items()},
        "missing": missing,
        "created": [],
        "transaction": None,
    }

    if create and missing:
        instructions = [
            create_associated_token_account(chain.wallet_pubkey, owner, accounts[name][1])
            for name in missing
        ]
        signature = chain.send_and_confirm(instructions, description="create token accounts")
        logger.info(f"Created {len(missing)} token account(s) for {str(owner)[:10]}...")
        result["created"] = missing
        result["missing"] = []
        result["transaction"] = signature

    return result


def validate_swap_accounts(
    chain: ChainClient,
    user: PubkeyLike,
    token_in: PubkeyLike,
    token_out: PubkeyLike,
    amount_in: int,
) -> Dict[str, Any]:
    """
    Check that a user can fund a swap.

    Returns:
        {valid, errors, tokenInBalance, tokenOutBalance}
    """
    owner = to_pubkey(user, "user")
    in_balance = chain.get_token_balance(chain.associated_token_address(owner, token_in))
    out_balance = chain.get_token_balance(chain.associated_token_address(owner, token_out))

    errors = []
    if in_balance is None:
        errors.append("tokenIn: associated token account does not exist")
    elif in_balance < amount_in:
        errors.append(f"tokenIn: insufficient balance ({in_balance} < {amount_in})")
    if out_balance is None:
        errors.append("tokenOut: associated token account does not exist")

    return {
        "valid": not errors,
        "errors": errors,
        "tokenInBalance": in_balance,
        "tokenOutBalance": out_balance,
    }
