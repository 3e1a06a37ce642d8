"""
Tests for instruction builders and account/event decoding.
"""
import base64
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from sealedswap.config import DEFAULT_PROGRAM_ID
from sealedswap.derivation import derive_fee_accounts, derive_intent_address
from sealedswap.instructions import (
    COMMIT_TRADE_DISCRIMINATOR,
    ED25519_PROGRAM_ID,
    FEE_DISTRIBUTED_EVENT,
    PROGRAM_DATA_PREFIX,
    REVEAL_TRADE_DISCRIMINATOR,
    SETTLE_TRADE_DISCRIMINATOR,
    RevealAccounts,
    SwapIntentAccount,
    TradeExecutedEvent,
    _FEE_DISTRIBUTED_LAYOUT,
    commit_trade_instruction,
    decode_swap_intent,
    describe_program_error,
    ed25519_verify_instruction,
    encode_swap_intent,
    encode_trade_executed,
    find_fee_distributed,
    find_trade_executed,
    initialize_fee_accounts_instruction,
    reveal_trade_instruction,
    serialize_trade_intent,
    settle_trade_instruction,
)
from sealedswap.models import TradeIntent
from conftest import TOKEN_IN, TOKEN_OUT, USDT, WSOL

PROGRAM = Pubkey.from_string(DEFAULT_PROGRAM_ID)

INTENT = TradeIntent(
    user=WSOL,
    token_in=TOKEN_IN,
    token_out=TOKEN_OUT,
    amount_in=100_000_000,
    min_out=90_000_000,
    expiry=1893456000,
    nonce=7,
    route_hash="ab" * 32,
    relayer_fee=1000,
    relayer=USDT,
)


def _reveal_accounts(relayer=USDT):
    swap_intent, _ = derive_intent_address(WSOL, 7, PROGRAM)
    fees = derive_fee_accounts(TOKEN_IN, PROGRAM)
    key = Pubkey.from_string
    return RevealAccounts(
        swap_intent=swap_intent,
        user=key(WSOL),
        user_token_in=Keypair().pubkey(),
        user_token_out=Keypair().pubkey(),
        relayer=key(relayer),
        relayer_token_in=Keypair().pubkey(),
        relayer_token_out=Keypair().pubkey(),
        token_in_mint=key(TOKEN_IN),
        token_out_mint=key(TOKEN_OUT),
        fee_collection=fees.collection,
        fee_authority=fees.authority,
    )


def test_commit_instruction_layout():
    swap_intent, _ = derive_intent_address(WSOL, 7, PROGRAM)
    intent_hash = bytes(range(32))
    ix = commit_trade_instruction(PROGRAM, swap_intent, Pubkey.from_string(WSOL), intent_hash, 7, 1893456000)

    data = bytes(ix.data)
    assert data[:8] == COMMIT_TRADE_DISCRIMINATOR
    assert data[8:40] == intent_hash
    assert struct.unpack("<QQ", data[40:56]) == (7, 1893456000)
    assert len(data) == 56
    assert ix.program_id == PROGRAM
    assert ix.accounts[0].pubkey == swap_intent and ix.accounts[0].is_writable
    assert ix.accounts[1].is_signer


def test_commit_instruction_rejects_short_hash():
    with pytest.raises(ValueError):
        commit_trade_instruction(PROGRAM, PROGRAM, PROGRAM, b"\x00" * 31, 0, 0)


def test_serialize_trade_intent_layout():
    data = serialize_trade_intent(INTENT)
    assert len(data) == 32 * 5 + 8 * 5
    assert data[:32] == bytes(Pubkey.from_string(WSOL))
    assert struct.unpack("<Q", data[32:40])[0] == 7
    assert data[48:80] == bytes(Pubkey.from_string(USDT))
    assert struct.unpack("<QQ", data[-16:]) == (100_000_000, 90_000_000)


def test_reveal_instruction_layout():
    accounts = _reveal_accounts()
    ix = reveal_trade_instruction(PROGRAM, accounts, INTENT, b"\x01" * 32, b"\x02" * 64)
    data = bytes(ix.data)
    assert data[:8] == REVEAL_TRADE_DISCRIMINATOR
    assert data[-96:-64] == b"\x01" * 32
    assert data[-64:] == b"\x02" * 64
    relayer_meta = ix.accounts[7]
    assert relayer_meta.pubkey == accounts.relayer
    assert relayer_meta.is_signer


def test_reveal_instruction_relayer_not_signing():
    ix = reveal_trade_instruction(PROGRAM, _reveal_accounts(), INTENT, b"\x01" * 32, b"\x02" * 64, relayer_signs=False)
    assert not any(meta.is_signer for meta in ix.accounts)


def test_reveal_instruction_validates_lengths():
    with pytest.raises(ValueError):
        reveal_trade_instruction(PROGRAM, _reveal_accounts(), INTENT, b"\x01" * 31, b"\x02" * 64)
    with pytest.raises(ValueError):
        reveal_trade_instruction(PROGRAM, _reveal_accounts(), INTENT, b"\x01" * 32, b"\x02" * 63)


def test_ed25519_instruction_offsets():
    public_key = bytes(range(32))
    signature = bytes(64)
    message = b"\xaa" * 32
    ix = ed25519_verify_instruction(public_key, message, signature)
    data = bytes(ix.data)

    assert ix.program_id == ED25519_PROGRAM_ID
    assert list(ix.accounts) == []
    assert data[0] == 1
    sig_offset, _, pk_offset, _, msg_offset, msg_size, _ = struct.unpack("<HHHHHHH", data[2:16])
    assert data[pk_offset:pk_offset + 32] == public_key
    assert data[sig_offset:sig_offset + 64] == signature
    assert data[msg_offset:msg_offset + msg_size] == message


def test_ed25519_instruction_rejects_bad_key():
    with pytest.raises(ValueError):
        ed25519_verify_instruction(b"\x00" * 31, b"m", b"\x00" * 64)


def test_settle_and_initialize_instructions():
    fees = derive_fee_accounts(TOKEN_IN, PROGRAM)
    caller = Keypair().pubkey()

    settle = settle_trade_instruction(PROGRAM, fees, caller, 1000)
    assert bytes(settle.data) == SETTLE_TRADE_DISCRIMINATOR + struct.pack("<Q", 1000)
    assert [m.pubkey for m in settle.accounts if m.is_signer] == [caller]

    init = initialize_fee_accounts_instruction(PROGRAM, fees, caller)
    pools = [m.pubkey for m in init.accounts[1:5]]
    assert pools == [fees.liquidity_pool, fees.treasury, fees.bounty, fees.collection]


def test_swap_intent_account_roundtrip_and_rejects_other_accounts():
    account = SwapIntentAccount(
        user=Pubkey.from_string(WSOL),
        intent_hash=b"\x05" * 32,
        nonce=42,
        expiry=1893456000,
        timestamp=1700000000,
        revealed=False,
    )
    assert decode_swap_intent(encode_swap_intent(account)) == account
    with pytest.raises(ValueError):
        decode_swap_intent(b"\x00" * 100)
    with pytest.raises(ValueError):
        decode_swap_intent(encode_swap_intent(account)[:50])


def test_find_trade_executed_in_logs():
    key = Pubkey.from_string
    event = TradeExecutedEvent(
        key(WSOL), key(USDT), key(TOKEN_IN), key(TOKEN_OUT), 100, 99, 1, 2, 7, 1700000000
    )
    logs = ["Program log: Instruction: RevealTrade", "Program data: !!!notbase64", encode_trade_executed(event)]
    assert find_trade_executed(logs) == event
    assert find_trade_executed(["Program log: nothing"]) is None
    assert find_trade_executed(None) is None


def test_find_fee_distributed_in_logs():
    mint = Pubkey.from_string(TOKEN_IN)
    caller = Pubkey.from_string(USDT)
    payload = FEE_DISTRIBUTED_EVENT + _FEE_DISTRIBUTED_LAYOUT.pack(bytes(mint), 1000, 500, 300, 200, bytes(caller), 1)
    logs = [PROGRAM_DATA_PREFIX + base64.b64encode(payload).decode()]
    event = find_fee_distributed(logs)
    assert event.token_mint == mint
    assert (event.total_fee, event.liquidity_stakers_fee, event.treasury_fee, event.mev_bounty_fee) == (1000, 500, 300, 200)


def test_describe_program_error():
    assert describe_program_error(6000)["name"] == "alreadyRevealed"
    assert describe_program_error(6015)["message"] == "Trade amount too large"
    assert describe_program_error(1) is None
