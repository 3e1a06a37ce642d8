"""
Pytest fixtures for the sealedswap tests.
"""
import hashlib
import struct
import time

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from spl.token.instructions import get_associated_token_address
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sealedswap import _rate_limited_log
from sealedswap.chain.client import LAMPORTS_PER_SOL, ChainClient
from sealedswap.config import DEFAULT_PROGRAM_ID
from sealedswap.derivation import to_pubkey
from sealedswap.exceptions import ValidationError
from sealedswap.hashing import build_intent, hash_intent
from sealedswap.instructions import (
    COMMIT_TRADE_DISCRIMINATOR,
    INITIALIZE_FEE_ACCOUNTS_DISCRIMINATOR,
    REVEAL_TRADE_DISCRIMINATOR,
    SwapIntentAccount,
    TradeExecutedEvent,
    decode_swap_intent,
    encode_swap_intent,
    encode_trade_executed,
)
from sealedswap.sessions import MemoryKeyValueStore, SessionManager
from sealedswap.store import IntentStore

TOKEN_IN = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
TOKEN_OUT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"
USDT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

TEST_RPC_URL = "https://rpc.example.com"
TEST_QUOTE_URL = "https://quote.example.com/v6/quote"
TEST_WEBHOOK_URL = "https://hooks.example.com/ready"

AMOUNT_IN = 100_000_000
AMOUNT_OUT = 99_000_000


# Make time.sleep instantaneous so retries and backoff don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_rate_limited_log():
    _rate_limited_log.reset()
    yield
    _rate_limited_log.reset()


class FakeChain:
    """
    In-memory stand-in for ChainClient.

    Applies commit, reveal and fee-account instructions to an account map
    the way the program would, and records every submitted transaction.
    """

    def __init__(self, wallet: Keypair, program_id: str = DEFAULT_PROGRAM_ID):
        self.program_id = Pubkey.from_string(program_id)
        self.wallet = wallet
        self.accounts = {}
        self.balances = {}
        self.logs = {}
        self.sent = []
        self.fail_with = None
        self.amount_out = AMOUNT_OUT
        self.emit_events = True
        self.healthy = True

    @property
    def wallet_pubkey(self) -> Pubkey:
        return self.wallet.pubkey()

    def get_account_data(self, address):
        return self.accounts.get(to_pubkey(address))

    def account_exists(self, address) -> bool:
        return self.get_account_data(address) is not None

    def get_token_balance(self, token_account):
        return self.balances.get(to_pubkey(token_account))

    def get_sol_balance(self, address) -> int:
        return 2 * LAMPORTS_PER_SOL

    def associated_token_address(self, owner, mint) -> Pubkey:
        return get_associated_token_address(to_pubkey(owner), to_pubkey(mint))

    def fund(self, owner, mint, amount: int) -> Pubkey:
        ata = self.associated_token_address(owner, mint)
        self.accounts[ata] = b"\x00" * 165
        self.balances[ata] = amount
        return ata

    def send_and_confirm(self, instructions, extra_signers=(), description="transaction") -> str:
        if self.fail_with is not None:
            raise self.fail_with
        available = {self.wallet_pubkey, *(kp.pubkey() for kp in extra_signers)}
        missing = [str(pk) for pk in ChainClient.required_signers(instructions) if pk not in available]
        if missing:
            raise ValidationError(f"Missing signatures for {description}", errors=missing)

        self.sent.append((description, list(instructions)))
        signature = str(Signature.from_bytes(hashlib.sha512(f"tx-{len(self.sent)}".encode()).digest()))
        self.logs[signature] = []
        for ix in instructions:
            if ix.program_id == self.program_id:
                self._apply(ix, signature)
        return signature

    def _apply(self, ix, signature: str) -> None:
        data = bytes(ix.data)
        discriminator = data[:8]
        if discriminator == COMMIT_TRADE_DISCRIMINATOR:
            intent_hash = data[8:40]
            nonce, expiry = struct.unpack("<QQ", data[40:56])
            self.accounts[ix.accounts[0].pubkey] = encode_swap_intent(SwapIntentAccount(
                user=ix.accounts[1].pubkey,
                intent_hash=intent_hash,
                nonce=nonce,
                expiry=expiry,
                timestamp=int(time.time()),
                revealed=False,
            ))
        elif discriminator == REVEAL_TRADE_DISCRIMINATOR:
            swap_intent = ix.accounts[0].pubkey
            account = decode_swap_intent(self.accounts[swap_intent])
            self.accounts[swap_intent] = encode_swap_intent(SwapIntentAccount(
                account.user, account.intent_hash, account.nonce, account.expiry, account.timestamp, True
            ))
            if self.emit_events:
                relayer_fee = struct.unpack("<Q", data[88:96])[0]
                amount_in = struct.unpack("<Q", data[160:168])[0]
                event = TradeExecutedEvent(
                    user=Pubkey.from_bytes(data[8:40]),
                    relayer=Pubkey.from_bytes(data[56:88]),
                    token_in=Pubkey.from_bytes(data[96:128]),
                    token_out=Pubkey.from_bytes(data[128:160]),
                    amount_in=amount_in,
                    amount_out=self.amount_out,
                    protocol_fee=amount_in * 10 // 10_000,
                    relayer_fee=relayer_fee,
                    nonce=account.nonce,
                    timestamp=int(time.time()),
                )
                self.logs[signature] = [
                    f"Program {self.program_id} invoke [1]",
                    encode_trade_executed(event),
                    f"Program {self.program_id} success",
                ]
        elif discriminator == INITIALIZE_FEE_ACCOUNTS_DISCRIMINATOR:
            for meta in ix.accounts[1:5]:
                self.accounts[meta.pubkey] = b"\x00" * 165
                self.balances[meta.pubkey] = 0

    def get_transaction_logs(self, signature: str):
        return list(self.logs.get(signature, []))

    def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def user_keypair():
    return Keypair.from_seed(bytes([7] * 32))


@pytest.fixture
def relayer_keypair():
    return Keypair.from_seed(bytes([9] * 32))


@pytest.fixture
def chain(relayer_keypair):
    return FakeChain(relayer_keypair)


@pytest.fixture
def store():
    """IntentStore on a private in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    intent_store = IntentStore(engine=engine)
    intent_store.create_all()
    return intent_store


@pytest.fixture
def sessions():
    return SessionManager(MemoryKeyValueStore(), ttl=3600)


def make_route(input_mint=TOKEN_IN, output_mint=TOKEN_OUT, in_amount=AMOUNT_IN, out_amount=AMOUNT_OUT):
    """Route document shaped like a quoting service response."""
    return {
        "inputMint": input_mint,
        "outputMint": output_mint,
        "inAmount": str(in_amount),
        "outAmount": str(out_amount),
        "otherAmountThreshold": str(out_amount * 99 // 100),
        "swapMode": "ExactIn",
        "slippageBps": 100,
        "priceImpactPct": "0.0012",
        "routePlan": [
            {"swapInfo": {"ammKey": "abc", "label": "Whirlpool", "inputMint": input_mint}, "percent": 100}
        ],
    }


def make_meta(user, relayer, nonce=1, expiry=None, **overrides):
    """camelCase trade terms for ``user``, expiring an hour from now by default."""
    meta = {
        "user": str(user),
        "tokenIn": TOKEN_IN,
        "tokenOut": TOKEN_OUT,
        "amountIn": AMOUNT_IN,
        "minOut": 90_000_000,
        "expiry": expiry if expiry is not None else int(time.time()) + 3600,
        "nonce": nonce,
        "relayerFee": 1000,
        "relayer": str(relayer),
    }
    meta.update(overrides)
    return meta


def sign_hash(keypair: Keypair, intent_hash: str) -> str:
    """Ed25519 signature over the raw hash bytes, as 128 hex characters."""
    return bytes(keypair.sign_message(bytes.fromhex(intent_hash))).hex()


@pytest.fixture
def draft(store, user_keypair, relayer_keypair):
    """A stored draft intent: (intent, hash)."""
    intent = build_intent(make_route(), make_meta(user_keypair.pubkey(), relayer_keypair.pubkey()))
    intent_hash = hash_intent(intent)
    store.create_draft(intent, intent_hash)
    return intent, intent_hash
