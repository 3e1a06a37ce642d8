"""
CommitCoordinator - anchors an intent hash on-chain.

At most one commitment can exist per (user, nonce): the commitment lives at
an address derived from exactly those two values, and the program refuses
to create an account that already exists. The existence check here only
turns the common duplicate case into a clean AlreadyCommitted before any
fee is spent.
"""
import logging
from typing import Optional, Sequence

from solders.keypair import Keypair

from .derivation import derive_intent_address, to_pubkey
from .exceptions import (
    AlreadyCommitted,
    ConflictError,
    ExecutionFailed,
    IntentExpired,
    UpstreamUnavailable,
    ValidationError,
)
from .instructions import commit_trade_instruction
from .models import IntentStatus
from .utils import is_valid_hash, now_ts, to_iso

logger = logging.getLogger(__name__)


class CommitCoordinator:
    """
    Builds, submits and records commit transactions.

    This component never retries; a failed submission leaves the intent in
    ``draft`` so the caller can try again.
    """

    def __init__(
        self,
        chain,
        store,
        extra_signers: Sequence[Keypair] = (),
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the CommitCoordinator

        Args:
            chain: ChainClient used for lookups and submission
            store: IntentStore holding the draft intents
            extra_signers: User keypairs held by this service besides the relayer wallet
            logger: Optional logger instance
        """
        self.chain = chain
        self.store = store
        self.extra_signers = list(extra_signers)
        self.logger = logger or logging.getLogger(__name__)

    def commit(self, user: str, intent_hash: str, nonce: int, expiry: int, now: Optional[int] = None) -> str:
        """
        Commit an intent hash for (user, nonce).

        Args:
            user: User wallet that owns the commitment
            intent_hash: 64-char hex intent hash of a stored draft
            nonce: Nonce the intent will be revealed with
            expiry: Expiry the intent will be revealed with
            now: Reference unix time

        Returns:
            Commit transaction signature

        Raises:
            ValidationError: If inputs are malformed or disagree with the stored intent
            NotFoundError: If no intent is stored under the hash
            IntentExpired: If the expiry has elapsed
            AlreadyCommitted: If a commitment already exists for (user, nonce)
            ExecutionFailed: If the chain rejects the transaction
            UpstreamUnavailable: If the RPC endpoint cannot be reached
        """
        current = now_ts() if now is None else now
        if not is_valid_hash(intent_hash):
            raise ValidationError("Invalid intent hash", errors=["intentHash: must be 64 hex characters"])
        intent_hash = intent_hash.lower()
        user_key = to_pubkey(user, "user")

        snapshot = self.store.require(intent_hash)
        errors = []
        if snapshot.intent.user != str(user_key):
            errors.append("user: does not match the stored intent")
        if snapshot.intent.nonce != nonce:
            errors.append(f"nonce: {nonce} does not match the stored intent")
        if snapshot.intent.expiry != expiry:
            errors.append(f"expiry: {expiry} does not match the stored intent")
        if errors:
            raise ValidationError("Commit parameters do not match the intent", errors=errors)

        if snapshot.status == IntentStatus.COMMITTED:
            raise AlreadyCommitted(
                "Intent already committed",
                existing_ref=snapshot.commit["tx"] if snapshot.commit else None,
                details={"commitTx": snapshot.commit["tx"] if snapshot.commit else None},
            )
        if snapshot.status == IntentStatus.EXPIRED:
            raise IntentExpired("Intent has expired", details={"expiry": to_iso(expiry)})
        if snapshot.status != IntentStatus.DRAFT:
            raise ConflictError(f"Intent is {snapshot.status.value}", existing_ref=intent_hash)

        if expiry <= current:
            self.store.mark_expired(intent_hash)
            raise IntentExpired("Intent has expired", details={"expiry": to_iso(expiry)})

        swap_intent, _bump = derive_intent_address(user_key, nonce, self.chain.program_id)
        if self.chain.account_exists(swap_intent):
            raise AlreadyCommitted(
                "Intent already committed for this nonce",
                existing_ref=str(swap_intent),
                details={"swapIntent": str(swap_intent), "nonce": nonce},
            )

        ix = commit_trade_instruction(
            self.chain.program_id, swap_intent, user_key, bytes.fromhex(intent_hash), nonce, expiry
        )
        try:
            signature = self.chain.send_and_confirm([ix], extra_signers=self.extra_signers, description="commit")
        except (ExecutionFailed, UpstreamUnavailable) as e:
            self.logger.error(
                f"Commit failed for {intent_hash[:10]}... user={str(user_key)[:10]}... nonce={nonce} "
                f"expiry={expiry} at {to_iso(current)}: {e}"
            )
            raise

        self.store.record_commit(intent_hash, signature)
        self.logger.info(f"Committed {intent_hash[:10]}... at {str(swap_intent)[:10]}...: {signature[:16]}...")
        return signature
