"""
RevealOrchestrator - verifies a revealed intent and executes it on-chain.

Every check runs before anything is submitted:

    a. expected hash is 64 hex characters
    b. signature is 128 hex characters
    c. the intent has not expired
    d. the recomputed hash equals the expected hash, and the user's
       Ed25519 signature over the hash bytes verifies
    e. a commitment exists for (user, nonce), holds the same hash and is
       not yet revealed
    f. the user's input token balance covers amountIn

The signature check and the swap run as one atomic transaction. The reveal,
its fee split and the status change are persisted in one database
transaction.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .chain.token_accounts import resolve_swap_accounts
from .derivation import derive_fee_accounts, derive_intent_address, to_pubkey
from .exceptions import (
    AlreadyRevealed,
    ConflictError,
    ErrorCode,
    ExecutionFailed,
    IntegrityError,
    IntentExpired,
    NotCommitted,
    UpstreamUnavailable,
    ValidationError,
)
from .fees import Distribution, protocol_fee, split_fee
from .hashing import IntentLike, as_intent, hash_intent, validate_intent_fields
from .instructions import (
    RevealAccounts,
    decode_swap_intent,
    ed25519_verify_instruction,
    find_trade_executed,
    reveal_trade_instruction,
)
from .models import IntentStatus, TradeIntent
from .utils import is_valid_hash, is_valid_signature, now_ts, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevealResult:
    transaction: str
    amount_out: Optional[int]
    protocol_fee: int
    relayer_fee: int
    distribution: Distribution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction": self.transaction,
            "execution": {
                "amountOut": self.amount_out,
                "protocolFee": self.protocol_fee,
                "relayerFee": self.relayer_fee,
            },
            "fees": {
                "liquidity": self.distribution.liquidity,
                "protocol": self.distribution.treasury,
                "bounty": self.distribution.bounty,
            },
        }


def verify_intent_signature(user: str, intent_hash: str, signature: str) -> bool:
    """Check an Ed25519 signature by ``user`` over the 32 raw hash bytes."""
    public_key = Ed25519PublicKey.from_public_bytes(bytes(to_pubkey(user, "user")))
    try:
        public_key.verify(bytes.fromhex(signature), bytes.fromhex(intent_hash))
        return True
    except InvalidSignature:
        return False


class RevealOrchestrator:
    """
    Validates reveal requests and submits the execution transaction.

    A rejected submission marks the intent ``failed``; nothing is retried
    here. An RPC outage during submission or the confirmation wait leaves the
    intent ``committed``: the transaction may still land, and the on-chain
    ``revealed`` flag guards any retry against double execution.
    """

    def __init__(self, chain, store, logger: Optional[logging.Logger] = None):
        """
        Initialize the RevealOrchestrator

        Args:
            chain: ChainClient used for lookups and submission
            store: IntentStore with the committed intents
            logger: Optional logger instance
        """
        self.chain = chain
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def _log_failure(self, kind: str, intent: TradeIntent, intent_hash: str, reason: Any, now: int) -> None:
        self.logger.error(
            f"{kind} for intent {intent_hash[:10]}... at {to_iso(now)}: {reason} | fields={intent.to_wire()}"
        )

    def reveal(self, intent: IntentLike, expected_hash: str, signature: str, now: Optional[int] = None) -> RevealResult:
        """
        Reveal and execute a committed intent.

        Args:
            intent: The full trade intent
            expected_hash: Hash the user signed and committed (64 hex)
            signature: User's Ed25519 signature over the hash bytes (128 hex)
            now: Reference unix time

        Returns:
            RevealResult

        Raises:
            ValidationError: If the hash, signature or intent fields are malformed
            IntentExpired: If the intent's expiry has elapsed
            IntegrityError: If the recomputed or committed hash differs
            NotCommitted: If no commitment exists for the intent
            AlreadyRevealed: If the intent was already revealed
            ExecutionFailed: If funds are short or the chain rejects the transaction
            UpstreamUnavailable: If RPC or the database cannot be reached
        """
        current = now_ts() if now is None else now

        # a, b
        errors = []
        if not is_valid_hash(expected_hash):
            errors.append("expectedHash: must be 64 hex characters")
        if not is_valid_signature(signature):
            errors.append("signature: must be 128 hex characters")
        if errors:
            raise ValidationError("Validation failed", errors=errors)
        expected_hash = expected_hash.lower()

        model = as_intent(intent)
        field_errors = validate_intent_fields(model.model_dump(), now=current, check_expiry=False)
        if field_errors:
            raise ValidationError("Validation failed", errors=field_errors)

        # c
        # Only an intent that hashes to the commitment may expire it
        computed = hash_intent(model)
        if model.expiry <= current:
            if computed == expected_hash:
                snapshot = self.store.get(expected_hash)
                if snapshot is not None and not snapshot.status.is_terminal:
                    self.store.mark_expired(expected_hash)
            raise IntentExpired("Intent has expired", details={"expiry": to_iso(model.expiry)})

        # d
        if computed != expected_hash:
            self._log_failure("Hash mismatch", model, expected_hash, f"computed {computed}", current)
            raise IntegrityError(
                "Intent hash mismatch",
                details={"expected": expected_hash, "computed": computed},
            )
        if not verify_intent_signature(model.user, expected_hash, signature):
            raise ValidationError("Invalid signature", errors=["signature: does not verify against the intent hash"])

        # e
        snapshot = self.store.require(expected_hash)
        if snapshot.status == IntentStatus.REVEALED:
            prior = snapshot.reveal["tx"] if snapshot.reveal else None
            raise AlreadyRevealed("Intent already revealed", existing_ref=prior, details={"revealTx": prior})
        if snapshot.status == IntentStatus.EXPIRED:
            raise IntentExpired("Intent has expired", details={"expiry": to_iso(model.expiry)})
        if snapshot.status == IntentStatus.FAILED:
            raise ConflictError("Intent previously failed", existing_ref=expected_hash, details={"error": snapshot.error})
        if snapshot.status != IntentStatus.COMMITTED:
            raise NotCommitted("Intent has not been committed")

        swap_intent, _bump = derive_intent_address(model.user, model.nonce, self.chain.program_id)
        data = self.chain.get_account_data(swap_intent)
        if data is None:
            raise NotCommitted("No on-chain commitment for this intent", details={"swapIntent": str(swap_intent)})
        try:
            account = decode_swap_intent(data)
        except ValueError as e:
            raise IntegrityError("Commitment account is not a SwapIntent", details=str(e)) from e
        if account.revealed:
            raise AlreadyRevealed(
                "Intent already revealed on-chain",
                existing_ref=str(swap_intent),
                details={"swapIntent": str(swap_intent)},
            )
        if account.intent_hash.hex() != expected_hash:
            self._log_failure("Committed hash differs", model, expected_hash, account.intent_hash.hex(), current)
            raise IntegrityError(
                "Revealed intent does not match the commitment",
                details={"expected": expected_hash, "committed": account.intent_hash.hex()},
            )

        # f
        token_accounts = resolve_swap_accounts(
            self.chain, model.user, model.relayer, model.token_in, model.token_out
        )
        balance = self.chain.get_token_balance(token_accounts.user_token_in)
        if balance is None or balance < model.amount_in:
            self._log_failure("Insufficient balance", model, expected_hash, f"balance={balance}", current)
            raise ExecutionFailed(
                "Insufficient token balance",
                code=ErrorCode.INSUFFICIENT_BALANCE,
                details={"required": model.amount_in, "available": balance or 0},
            )

        tx, logs = self._execute(model, expected_hash, signature, swap_intent, token_accounts, current)
        return self._settle(model, expected_hash, tx, logs)

    def _execute(
        self, model: TradeIntent, intent_hash: str, signature: str, swap_intent, token_accounts, now: int
    ) -> Tuple[str, List[str]]:
        fee_accounts = derive_fee_accounts(model.token_in, self.chain.program_id)
        relayer = to_pubkey(model.relayer, "relayer")
        accounts = RevealAccounts(
            swap_intent=swap_intent,
            user=to_pubkey(model.user, "user"),
            user_token_in=token_accounts.user_token_in,
            user_token_out=token_accounts.user_token_out,
            relayer=relayer,
            relayer_token_in=token_accounts.relayer_token_in,
            relayer_token_out=token_accounts.relayer_token_out,
            token_in_mint=to_pubkey(model.token_in, "tokenIn"),
            token_out_mint=to_pubkey(model.token_out, "tokenOut"),
            fee_collection=fee_accounts.collection,
            fee_authority=fee_accounts.authority,
        )
        hash_bytes = bytes.fromhex(intent_hash)
        sig_bytes = bytes.fromhex(signature)
        instructions = [
            ed25519_verify_instruction(bytes(accounts.user), hash_bytes, sig_bytes),
            reveal_trade_instruction(
                self.chain.program_id,
                accounts,
                model,
                hash_bytes,
                sig_bytes,
                relayer_signs=relayer == self.chain.wallet_pubkey,
            ),
        ]

        try:
            tx = self.chain.send_and_confirm(instructions, description="reveal")
            logs = self._fetch_logs(tx)
        except ExecutionFailed as e:
            self._log_failure("Reveal execution failed", model, intent_hash, e.details or e.message, now)
            self.store.mark_failed(intent_hash, f"{e.message}: {e.details}")
            raise
        except UpstreamUnavailable as e:
            self.logger.warning(
                f"Reveal of {intent_hash[:10]}... unconfirmed, intent left committed: {e.message} at {to_iso(now)}"
            )
            raise
        return tx, logs

    def _fetch_logs(self, tx: str) -> List[str]:
        try:
            return self.chain.get_transaction_logs(tx)
        except UpstreamUnavailable as e:
            # The transaction is confirmed; settle with local figures
            self.logger.warning(f"Could not fetch logs for {tx[:16]}...: {e}")
            return []

    def _settle(self, model: TradeIntent, intent_hash: str, tx: str, logs: List[str]) -> RevealResult:
        event = find_trade_executed(logs)
        if event is not None:
            amount_out = event.amount_out
            fee = event.protocol_fee
            relayer_fee = event.relayer_fee
            expected_fee = protocol_fee(model.amount_in)
            if fee != expected_fee:
                self.logger.warning(
                    f"Protocol fee for {intent_hash[:10]}... is {fee} on-chain, expected {expected_fee}"
                )
        else:
            self.logger.warning(f"No TradeExecuted event in {tx[:16]}...; amountOut unknown")
            amount_out = None
            fee = protocol_fee(model.amount_in)
            relayer_fee = model.relayer_fee

        distribution = split_fee(fee)
        self.store.record_reveal(intent_hash, tx, amount_out, fee, relayer_fee, distribution)
        self.logger.info(
            f"Revealed {intent_hash[:10]}...: tx={tx[:16]}... amountOut={amount_out} protocolFee={fee}"
        )
        return RevealResult(
            transaction=tx,
            amount_out=amount_out,
            protocol_fee=fee,
            relayer_fee=relayer_fee,
            distribution=distribution,
        )
