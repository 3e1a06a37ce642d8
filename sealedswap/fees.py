"""
Protocol fee computation and fee-pool settlement.

Collected protocol fees are split 50/30/20 between the liquidity-staker,
treasury and MEV-bounty pools. Integer division remainders go to the
bounty pool so the three shares always sum to the total.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .derivation import FeeAccounts, PubkeyLike, derive_fee_accounts
from .exceptions import AccountsNotInitialized, ConflictError, ErrorCode, UpstreamUnavailable, ValidationError
from .instructions import find_fee_distributed, initialize_fee_accounts_instruction, settle_trade_instruction

if TYPE_CHECKING:
    from .chain.client import ChainClient

logger = logging.getLogger(__name__)

PROTOCOL_FEE_BPS = 10
BPS_DENOMINATOR = 10_000

LIQUIDITY_SHARE_PCT = 50
TREASURY_SHARE_PCT = 30


@dataclass(frozen=True)
class Distribution:
    """One fee amount split across the three pools."""
    liquidity: int
    treasury: int
    bounty: int
    transaction: Optional[str] = None

    @property
    def total(self) -> int:
        return self.liquidity + self.treasury + self.bounty

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalFee": self.total,
            "liquidityStakers": self.liquidity,
            "treasury": self.treasury,
            "mevBounty": self.bounty,
        }


def protocol_fee(amount_in: int) -> int:
    """Protocol fee charged on a trade's input amount (10 bps, floored)."""
    return amount_in * PROTOCOL_FEE_BPS // BPS_DENOMINATOR


def split_fee(fee_amount: int) -> Distribution:
    """
    Split a fee amount 50/30/20.

    Raises:
        ValidationError: If the amount is not a non-negative integer
    """
    if isinstance(fee_amount, bool) or not isinstance(fee_amount, int) or fee_amount < 0:
        raise ValidationError("Invalid fee amount", errors=[f"feeAmount: must be a non-negative integer (got {fee_amount!r})"])
    liquidity = fee_amount * LIQUIDITY_SHARE_PCT // 100
    treasury = fee_amount * TREASURY_SHARE_PCT // 100
    return Distribution(liquidity=liquidity, treasury=treasury, bounty=fee_amount - liquidity - treasury)


class FeeSettlement:
    """
    Initializes fee pools and moves collected fees into them.

    Settling the same batch twice double-spends from the collection
    account; callers must settle each batch once.
    """

    def __init__(self, chain: "ChainClient", logger: Optional[logging.Logger] = None):
        self.chain = chain
        self.logger = logger or logging.getLogger(__name__)

    def fee_accounts(self, token_mint: PubkeyLike) -> FeeAccounts:
        return derive_fee_accounts(token_mint, self.chain.program_id)

    def missing_pools(self, accounts: FeeAccounts) -> List[str]:
        return [name for name, address in accounts.pools().items() if not self.chain.account_exists(address)]

    def settle(self, token_mint: PubkeyLike, fee_amount: int) -> Distribution:
        """
        Distribute ``fee_amount`` from the collection account into the pools.

        Args:
            token_mint: Mint whose fees are settled
            fee_amount: Amount in base units, must be positive

        Returns:
            Distribution carrying the settlement transaction signature

        Raises:
            ValidationError: If fee_amount is not positive
            AccountsNotInitialized: If any of the four pool accounts is missing
            ExecutionFailed: If the chain rejects the transaction
        """
        distribution = split_fee(fee_amount)
        if fee_amount == 0:
            raise ValidationError("Invalid fee amount", errors=["feeAmount: must be positive"])

        accounts = self.fee_accounts(token_mint)
        missing = self.missing_pools(accounts)
        if missing:
            raise AccountsNotInitialized(
                "Fee accounts not initialized; run POST /fee/initialize-accounts first",
                details={"tokenMint": str(accounts.mint), "missing": missing},
            )

        ix = settle_trade_instruction(self.chain.program_id, accounts, self.chain.wallet_pubkey, fee_amount)
        signature = self.chain.send_and_confirm([ix], description="settle fees")
        self.logger.info(
            f"Settled {fee_amount} of {str(accounts.mint)[:10]}...: "
            f"liquidity={distribution.liquidity} treasury={distribution.treasury} bounty={distribution.bounty}"
        )

        try:
            logs = self.chain.get_transaction_logs(signature)
        except UpstreamUnavailable as e:
            self.logger.warning(f"Could not fetch logs for {signature[:16]}...: {e}")
            logs = []
        event = find_fee_distributed(logs)
        if event is not None and (
            event.liquidity_stakers_fee, event.treasury_fee, event.mev_bounty_fee
        ) != (distribution.liquidity, distribution.treasury, distribution.bounty):
            self.logger.warning(
                f"On-chain fee distribution differs from local split for {signature[:16]}...: "
                f"{event.liquidity_stakers_fee}/{event.treasury_fee}/{event.mev_bounty_fee}"
            )

        return Distribution(
            liquidity=distribution.liquidity,
            treasury=distribution.treasury,
            bounty=distribution.bounty,
            transaction=signature,
        )

    def initialize_accounts(self, token_mint: PubkeyLike) -> Dict[str, Any]:
        """
        Create the four fee pools for a mint.

        Returns:
            {transaction, accounts, bumps}

        Raises:
            ConflictError: If any pool already exists (code ACCOUNTS_EXIST)
        """
        accounts = self.fee_accounts(token_mint)
        existing = [name for name, address in accounts.pools().items() if self.chain.account_exists(address)]
        if existing:
            raise ConflictError(
                "Fee accounts already exist",
                existing_ref=str(accounts.collection),
                code=ErrorCode.ACCOUNTS_EXIST,
                details={"existingAccounts": existing, "addresses": accounts.addresses()},
            )

        ix = initialize_fee_accounts_instruction(self.chain.program_id, accounts, self.chain.wallet_pubkey)
        signature = self.chain.send_and_confirm([ix], description="initialize fee accounts")
        self.logger.info(f"Initialized fee accounts for {str(accounts.mint)[:10]}...: {signature[:16]}...")
        return {
            "transaction": signature,
            "accounts": accounts.addresses(),
            "bumps": accounts.bumps(),
        }

    def account_overview(self, token_mint: PubkeyLike) -> Dict[str, Any]:
        """Addresses, balances and existence of a mint's fee pools."""
        accounts = self.fee_accounts(token_mint)
        labels = {
            "collection": "feeCollection",
            "liquidity": "liquidityStakers",
            "treasury": "treasury",
            "bounty": "mevBounty",
        }
        overview: Dict[str, Any] = {
            "feeCollectionAuthority": {"address": str(accounts.authority), "type": "authority"},
        }
        total = 0
        initialized = True
        for name, address in accounts.pools().items():
            balance = self.chain.get_token_balance(address)
            exists = balance is not None
            initialized = initialized and exists
            total += balance or 0
            overview[labels[name]] = {"address": str(address), "balance": balance or 0, "exists": exists}

        return {
            "tokenMint": str(accounts.mint),
            "accounts": overview,
            "initialized": initialized,
            "totalCollected": total,
        }
