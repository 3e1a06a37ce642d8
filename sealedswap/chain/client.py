"""
ChainClient - thin Solana RPC wrapper used by the commit, reveal and fee components.

Every RPC call runs with a bounded timeout. Transport failures surface as
UpstreamUnavailable; rejected or unconfirmed transactions surface as
ExecutionFailed.
"""
import logging
import re
import urllib.parse
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from .._rate_limited_log import rate_limited_log
from ..derivation import PubkeyLike, to_pubkey
from ..exceptions import ExecutionFailed, UpstreamUnavailable, ValidationError
from ..instructions import describe_program_error

T = TypeVar("T")

LAMPORTS_PER_SOL = 1_000_000_000

_CUSTOM_ERROR_PATTERN = re.compile(r"custom program error: (0x[0-9a-fA-F]+|\d+)")


def program_error_from_message(message: str) -> Optional[dict]:
    """Extract a known custom program error from an RPC error message or log line."""
    match = _CUSTOM_ERROR_PATTERN.search(message or "")
    if not match:
        return None
    raw = match.group(1)
    code = int(raw, 16) if raw.startswith("0x") else int(raw)
    return describe_program_error(code) or {"code": code}


class ChainClient:
    """
    Client for the commit-reveal program's cluster.

    The relayer wallet pays fees for, and signs, every submitted transaction.
    """

    def __init__(
        self,
        rpc_url: str,
        program_id: PubkeyLike,
        wallet: Keypair,
        timeout: float = 30,
        rpc_client: Optional[Client] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the ChainClient

        Args:
            rpc_url: Solana JSON-RPC endpoint (http or https)
            program_id: Commit-reveal program id
            wallet: Relayer keypair
            timeout: Per-request timeout in seconds
            rpc_client: Pre-built solana Client (mainly for tests)
            logger: Optional logger instance

        Raises:
            ValueError: If the RPC URL is not http(s)
        """
        parsed = urllib.parse.urlparse(rpc_url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"rpc_url must use http:// or https:// (got: {parsed.scheme}://)")

        self.rpc_url = rpc_url
        self.program_id = to_pubkey(program_id, "program_id")
        self.wallet = wallet
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.client = rpc_client or Client(rpc_url, commitment=Confirmed, timeout=timeout)

    @property
    def wallet_pubkey(self) -> Pubkey:
        return self.wallet.pubkey()

    def _call(self, description: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (SolanaRpcException, httpx.HTTPError) as e:
            rate_limited_log(
                f"Solana RPC unavailable during {description}: {e}",
                level="warning",
                logger_instance=self.logger,
            )
            raise UpstreamUnavailable(f"Solana RPC unavailable: {description}", details=str(e)) from e

    def get_account_data(self, address: PubkeyLike) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        pubkey = to_pubkey(address)
        resp = self._call("getAccountInfo", lambda: self.client.get_account_info(pubkey, commitment=Confirmed))
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    def account_exists(self, address: PubkeyLike) -> bool:
        return self.get_account_data(address) is not None

    def get_token_balance(self, token_account: PubkeyLike) -> Optional[int]:
        """
        Token balance in base units.

        Returns:
            The balance, or None if the token account does not exist
        """
        pubkey = to_pubkey(token_account)
        try:
            resp = self._call(
                "getTokenAccountBalance",
                lambda: self.client.get_token_account_balance(pubkey, commitment=Confirmed),
            )
        except RPCException as e:
            self.logger.debug(f"No token account at {pubkey}: {e}")
            return None
        return int(resp.value.amount)

    def get_sol_balance(self, address: PubkeyLike) -> int:
        """Balance in lamports."""
        pubkey = to_pubkey(address)
        resp = self._call("getBalance", lambda: self.client.get_balance(pubkey, commitment=Confirmed))
        return resp.value

    def associated_token_address(self, owner: PubkeyLike, mint: PubkeyLike) -> Pubkey:
        return get_associated_token_address(to_pubkey(owner, "owner"), to_pubkey(mint, "mint"))

    @staticmethod
    def required_signers(instructions: Iterable[Instruction]) -> List[Pubkey]:
        signers = []
        for ix in instructions:
            for meta in ix.accounts:
                if meta.is_signer and meta.pubkey not in signers:
                    signers.append(meta.pubkey)
        return signers

    def send_and_confirm(
        self,
        instructions: Sequence[Instruction],
        extra_signers: Sequence[Keypair] = (),
        description: str = "transaction",
    ) -> str:
        """
        Build, sign, submit and confirm a transaction at "confirmed" level.

        Args:
            instructions: Instructions to include, in order
            extra_signers: Keypairs besides the relayer wallet
            description: Label for logs and errors

        Returns:
            Transaction signature (base58)

        Raises:
            ValidationError: If a required signer has no keypair
            ExecutionFailed: If the cluster rejects or never confirms the transaction
            UpstreamUnavailable: If the RPC endpoint cannot be reached
        """
        required = self.required_signers(instructions)
        available = {self.wallet_pubkey, *(kp.pubkey() for kp in extra_signers)}
        missing = [str(pk) for pk in required if pk not in available]
        if missing:
            raise ValidationError(
                f"Missing signatures for {description}",
                errors=[f"{pk}: signer keypair not available" for pk in missing],
            )
        # Signing with a keypair the message does not require is an error
        keypairs = [self.wallet]
        for kp in extra_signers:
            if kp.pubkey() in required and kp.pubkey() != self.wallet_pubkey and kp not in keypairs:
                keypairs.append(kp)

        latest = self._call("getLatestBlockhash", lambda: self.client.get_latest_blockhash(Confirmed))
        blockhash = latest.value.blockhash
        message = Message.new_with_blockhash(list(instructions), self.wallet_pubkey, blockhash)
        tx = Transaction(keypairs, message, blockhash)
        opts = TxOpts(
            skip_confirmation=False,
            skip_preflight=False,
            preflight_commitment=Confirmed,
            last_valid_block_height=latest.value.last_valid_block_height,
        )

        self.logger.debug(f"Submitting {description} with {len(instructions)} instruction(s)")
        try:
            resp = self._call(description, lambda: self.client.send_transaction(tx, opts=opts))
        except RPCException as e:
            message_text = str(e)
            program_error = program_error_from_message(message_text)
            self.logger.error(f"{description} rejected: {message_text}")
            raise ExecutionFailed(
                f"{description} rejected by cluster",
                details={"error": message_text, "programError": program_error},
            ) from e
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            self.logger.error(f"{description} not confirmed: {e}")
            raise ExecutionFailed(f"{description} was not confirmed", details=str(e)) from e

        signature = str(resp.value)
        self.logger.info(f"{description} confirmed: {signature[:16]}...")
        return signature

    def get_transaction_logs(self, signature: str) -> List[str]:
        """
        Log messages of a confirmed transaction.

        Raises:
            ExecutionFailed: If the transaction landed with an error
        """
        sig = Signature.from_string(signature)
        resp = self._call(
            "getTransaction",
            lambda: self.client.get_transaction(
                sig, encoding="json", commitment=Confirmed, max_supported_transaction_version=0
            ),
        )
        if resp.value is None or resp.value.transaction.meta is None:
            return []
        meta = resp.value.transaction.meta
        logs = list(meta.log_messages or [])
        if meta.err is not None:
            program_error = None
            for line in logs:
                program_error = program_error_from_message(line) or program_error
            raise ExecutionFailed(
                "Transaction failed on-chain",
                details={"signature": signature, "error": str(meta.err), "programError": program_error},
            )
        return logs

    def health_check(self) -> bool:
        try:
            self._call("getSlot", lambda: self.client.get_slot(Confirmed))
            return True
        except UpstreamUnavailable:
            return False
