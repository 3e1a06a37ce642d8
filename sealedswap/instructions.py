"""
Instruction builders and account/event decoders for the commit-reveal program.

Every instruction starts with an 8-byte discriminator followed by fixed-width
fields in declared order: addresses are 32 raw bytes, integers are 8-byte
little-endian.
"""
import base64
import struct
from dataclasses import dataclass
from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import INSTRUCTIONS as INSTRUCTIONS_SYSVAR_ID
from solders.sysvar import RENT as RENT_SYSVAR_ID
from spl.token.constants import TOKEN_PROGRAM_ID

from .derivation import FeeAccounts, encode_u64
from .models import TradeIntent

COMMIT_TRADE_DISCRIMINATOR = bytes([225, 172, 49, 43, 30, 198, 216, 89])
INITIALIZE_FEE_ACCOUNTS_DISCRIMINATOR = bytes([233, 63, 142, 11, 168, 28, 143, 222])
REVEAL_TRADE_DISCRIMINATOR = bytes([72, 86, 206, 182, 223, 187, 228, 226])
SETTLE_TRADE_DISCRIMINATOR = bytes([252, 176, 98, 248, 73, 123, 8, 157])

SWAP_INTENT_ACCOUNT_DISCRIMINATOR = bytes([242, 212, 249, 216, 109, 94, 238, 134])

FEE_ACCOUNTS_INITIALIZED_EVENT = bytes([24, 244, 176, 43, 165, 149, 67, 124])
FEE_DISTRIBUTED_EVENT = bytes([6, 133, 116, 50, 44, 151, 179, 65])
TRADE_EXECUTED_EVENT = bytes([41, 110, 64, 129, 60, 79, 179, 80])

ED25519_PROGRAM_ID = Pubkey.from_string("Ed25519SigVerify111111111111111111111111111")

# Custom error codes emitted by the program
PROGRAM_ERRORS = {
    6000: ("alreadyRevealed", "Intent already revealed"),
    6001: ("intentExpired", "Trade intent expired"),
    6002: ("nonceMismatch", "Nonce does not match"),
    6003: ("invalidSignature", "Signature verification failed"),
    6004: ("hashMismatch", "Hash mismatch between reveal and commit"),
    6005: ("insufficientBalance", "Insufficient token balance"),
    6006: ("mathOverflow", "Mathematical overflow occurred"),
    6007: ("slippageExceeded", "Slippage tolerance exceeded"),
    6008: ("invalidTokenMint", "Invalid token mint"),
    6009: ("relayerFeeTooHigh", "Relayer fee too high"),
    6010: ("protocolFeeError", "Protocol fee calculation failed"),
    6011: ("feeDistributionError", "Fee distribution failed"),
    6012: ("swapExecutionFailed", "Swap execution failed"),
    6013: ("invalidRelayer", "Invalid relayer"),
    6014: ("amountTooSmall", "Trade amount too small"),
    6015: ("amountTooLarge", "Trade amount too large"),
}

_ED25519_HEADER = struct.Struct("<BB")
_ED25519_OFFSETS = struct.Struct("<HHHHHHH")
_CURRENT_INSTRUCTION = 0xFFFF


def _meta(pubkey: Pubkey, is_signer: bool = False, is_writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable)


def commit_trade_data(intent_hash: bytes, nonce: int, expiry: int) -> bytes:
    if len(intent_hash) != 32:
        raise ValueError("intent hash must be 32 bytes")
    return COMMIT_TRADE_DISCRIMINATOR + intent_hash + encode_u64(nonce) + encode_u64(expiry)


def commit_trade_instruction(
    program_id: Pubkey,
    swap_intent: Pubkey,
    user: Pubkey,
    intent_hash: bytes,
    nonce: int,
    expiry: int,
) -> Instruction:
    """Instruction that creates the swap-intent account holding the hash."""
    accounts = [
        _meta(swap_intent, is_writable=True),
        _meta(user, is_signer=True, is_writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id, commit_trade_data(intent_hash, nonce, expiry), accounts)


def serialize_trade_intent(intent: TradeIntent) -> bytes:
    """
    Borsh layout of TradeIntentData: user, nonce, expiry, relayer, relayer_fee,
    token_in, token_out, amount_in, min_out.
    """
    return b"".join([
        bytes(Pubkey.from_string(intent.user)),
        encode_u64(intent.nonce),
        encode_u64(intent.expiry),
        bytes(Pubkey.from_string(intent.relayer)),
        encode_u64(intent.relayer_fee),
        bytes(Pubkey.from_string(intent.token_in)),
        bytes(Pubkey.from_string(intent.token_out)),
        encode_u64(intent.amount_in),
        encode_u64(intent.min_out),
    ])


def reveal_trade_data(intent: TradeIntent, expected_hash: bytes, signature: bytes) -> bytes:
    if len(expected_hash) != 32:
        raise ValueError("expected hash must be 32 bytes")
    if len(signature) != 64:
        raise ValueError("signature must be 64 bytes")
    return REVEAL_TRADE_DISCRIMINATOR + serialize_trade_intent(intent) + expected_hash + signature


@dataclass(frozen=True)
class RevealAccounts:
    """Accounts touched by revealTrade, resolved before building the instruction."""
    swap_intent: Pubkey
    user: Pubkey
    user_token_in: Pubkey
    user_token_out: Pubkey
    relayer: Pubkey
    relayer_token_in: Pubkey
    relayer_token_out: Pubkey
    token_in_mint: Pubkey
    token_out_mint: Pubkey
    fee_collection: Pubkey
    fee_authority: Pubkey


def reveal_trade_instruction(
    program_id: Pubkey,
    accounts: RevealAccounts,
    intent: TradeIntent,
    expected_hash: bytes,
    signature: bytes,
    relayer_signs: bool = True,
) -> Instruction:
    metas = [
        _meta(accounts.swap_intent, is_writable=True),
        _meta(accounts.user, is_writable=True),
        _meta(INSTRUCTIONS_SYSVAR_ID),
        _meta(accounts.user_token_in, is_writable=True),
        _meta(accounts.user_token_out, is_writable=True),
        _meta(accounts.relayer_token_in, is_writable=True),
        _meta(accounts.relayer_token_out, is_writable=True),
        _meta(accounts.relayer, is_signer=relayer_signs, is_writable=relayer_signs),
        _meta(accounts.token_in_mint),
        _meta(accounts.token_out_mint),
        _meta(accounts.fee_collection, is_writable=True),
        _meta(accounts.fee_authority),
        _meta(TOKEN_PROGRAM_ID),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id, reveal_trade_data(intent, expected_hash, signature), metas)


def ed25519_verify_instruction(public_key: bytes, message: bytes, signature: bytes) -> Instruction:
    """
    Native Ed25519 signature-verification instruction with all data inline.

    Layout: [num_signatures=1, padding=0], seven u16 offsets, then
    public key (32), signature (64) and message.
    """
    if len(public_key) != 32 or len(signature) != 64:
        raise ValueError("ed25519 public key must be 32 bytes and signature 64 bytes")
    data_start = _ED25519_HEADER.size + _ED25519_OFFSETS.size
    public_key_offset = data_start
    signature_offset = public_key_offset + 32
    message_offset = signature_offset + 64
    offsets = _ED25519_OFFSETS.pack(
        signature_offset,
        _CURRENT_INSTRUCTION,
        public_key_offset,
        _CURRENT_INSTRUCTION,
        message_offset,
        len(message),
        _CURRENT_INSTRUCTION,
    )
    data = _ED25519_HEADER.pack(1, 0) + offsets + public_key + signature + message
    return Instruction(ED25519_PROGRAM_ID, data, [])


def settle_trade_data(fee_amount: int) -> bytes:
    return SETTLE_TRADE_DISCRIMINATOR + encode_u64(fee_amount)


def settle_trade_instruction(
    program_id: Pubkey, fee_accounts: FeeAccounts, caller: Pubkey, fee_amount: int
) -> Instruction:
    accounts = [
        _meta(fee_accounts.authority),
        _meta(fee_accounts.collection, is_writable=True),
        _meta(fee_accounts.liquidity_pool, is_writable=True),
        _meta(fee_accounts.treasury, is_writable=True),
        _meta(fee_accounts.bounty, is_writable=True),
        _meta(fee_accounts.mint),
        _meta(caller, is_signer=True, is_writable=True),
        _meta(TOKEN_PROGRAM_ID),
    ]
    return Instruction(program_id, settle_trade_data(fee_amount), accounts)


def initialize_fee_accounts_instruction(
    program_id: Pubkey, fee_accounts: FeeAccounts, payer: Pubkey
) -> Instruction:
    accounts = [
        _meta(fee_accounts.authority, is_writable=True),
        _meta(fee_accounts.liquidity_pool, is_writable=True),
        _meta(fee_accounts.treasury, is_writable=True),
        _meta(fee_accounts.bounty, is_writable=True),
        _meta(fee_accounts.collection, is_writable=True),
        _meta(fee_accounts.mint),
        _meta(payer, is_signer=True, is_writable=True),
        _meta(TOKEN_PROGRAM_ID),
        _meta(SYSTEM_PROGRAM_ID),
        _meta(RENT_SYSVAR_ID),
    ]
    return Instruction(program_id, INITIALIZE_FEE_ACCOUNTS_DISCRIMINATOR, accounts)


@dataclass(frozen=True)
class SwapIntentAccount:
    """Decoded on-chain commitment."""
    user: Pubkey
    intent_hash: bytes
    nonce: int
    expiry: int
    timestamp: int
    revealed: bool


_SWAP_INTENT_LAYOUT = struct.Struct("<32s32sQQq?")


def decode_swap_intent(data: bytes) -> SwapIntentAccount:
    """
    Decode a SwapIntent account.

    Raises:
        ValueError: If the discriminator or length does not match
    """
    if data[:8] != SWAP_INTENT_ACCOUNT_DISCRIMINATOR:
        raise ValueError("account is not a SwapIntent")
    body = data[8:8 + _SWAP_INTENT_LAYOUT.size]
    if len(body) < _SWAP_INTENT_LAYOUT.size:
        raise ValueError("SwapIntent account data is truncated")
    user, intent_hash, nonce, expiry, timestamp, revealed = _SWAP_INTENT_LAYOUT.unpack(body)
    return SwapIntentAccount(
        user=Pubkey.from_bytes(user),
        intent_hash=intent_hash,
        nonce=nonce,
        expiry=expiry,
        timestamp=timestamp,
        revealed=revealed,
    )


def encode_swap_intent(account: SwapIntentAccount) -> bytes:
    """Inverse of :func:`decode_swap_intent`."""
    return SWAP_INTENT_ACCOUNT_DISCRIMINATOR + _SWAP_INTENT_LAYOUT.pack(
        bytes(account.user),
        account.intent_hash,
        account.nonce,
        account.expiry,
        account.timestamp,
        account.revealed,
    )


@dataclass(frozen=True)
class TradeExecutedEvent:
    user: Pubkey
    relayer: Pubkey
    token_in: Pubkey
    token_out: Pubkey
    amount_in: int
    amount_out: int
    protocol_fee: int
    relayer_fee: int
    nonce: int
    timestamp: int


@dataclass(frozen=True)
class FeeDistributedEvent:
    token_mint: Pubkey
    total_fee: int
    liquidity_stakers_fee: int
    treasury_fee: int
    mev_bounty_fee: int
    caller: Pubkey
    timestamp: int


_TRADE_EXECUTED_LAYOUT = struct.Struct("<32s32s32s32sQQQQQq")
_FEE_DISTRIBUTED_LAYOUT = struct.Struct("<32sQQQQ32sq")

PROGRAM_DATA_PREFIX = "Program data: "


def _program_data(log_messages: List[str]) -> List[bytes]:
    payloads = []
    for line in log_messages or []:
        if line.startswith(PROGRAM_DATA_PREFIX):
            try:
                payloads.append(base64.b64decode(line[len(PROGRAM_DATA_PREFIX):]))
            except ValueError:
                continue
    return payloads


def find_trade_executed(log_messages: List[str]) -> Optional[TradeExecutedEvent]:
    """Return the first TradeExecuted event emitted in a transaction's logs."""
    for raw in _program_data(log_messages):
        if raw[:8] != TRADE_EXECUTED_EVENT or len(raw) < 8 + _TRADE_EXECUTED_LAYOUT.size:
            continue
        fields = _TRADE_EXECUTED_LAYOUT.unpack(raw[8:8 + _TRADE_EXECUTED_LAYOUT.size])
        user, relayer, token_in, token_out = (Pubkey.from_bytes(b) for b in fields[:4])
        return TradeExecutedEvent(user, relayer, token_in, token_out, *fields[4:])
    return None


def find_fee_distributed(log_messages: List[str]) -> Optional[FeeDistributedEvent]:
    """Return the first FeeDistributed event emitted in a transaction's logs."""
    for raw in _program_data(log_messages):
        if raw[:8] != FEE_DISTRIBUTED_EVENT or len(raw) < 8 + _FEE_DISTRIBUTED_LAYOUT.size:
            continue
        mint, total, liquidity, treasury, bounty, caller, ts = _FEE_DISTRIBUTED_LAYOUT.unpack(
            raw[8:8 + _FEE_DISTRIBUTED_LAYOUT.size]
        )
        return FeeDistributedEvent(
            Pubkey.from_bytes(mint), total, liquidity, treasury, bounty, Pubkey.from_bytes(caller), ts
        )
    return None


def encode_trade_executed(event: TradeExecutedEvent) -> str:
    """Render a TradeExecuted event as the program logs it."""
    payload = TRADE_EXECUTED_EVENT + _TRADE_EXECUTED_LAYOUT.pack(
        bytes(event.user),
        bytes(event.relayer),
        bytes(event.token_in),
        bytes(event.token_out),
        event.amount_in,
        event.amount_out,
        event.protocol_fee,
        event.relayer_fee,
        event.nonce,
        event.timestamp,
    )
    return PROGRAM_DATA_PREFIX + base64.b64encode(payload).decode("ascii")


def describe_program_error(code: int) -> Optional[dict]:
    """Name and message for a custom program error code, if known."""
    if code in PROGRAM_ERRORS:
        name, message = PROGRAM_ERRORS[code]
        return {"code": code, "name": name, "message": message}
    return None
