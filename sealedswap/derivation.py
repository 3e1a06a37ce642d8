"""
Program-derived address (PDA) derivation for the commit-reveal program.

The seed layouts below are a fixed protocol constant shared with the
on-chain program. A derived address that disagrees with the program is a
versioning error; it is caught by the golden-vector tests, never by trying
alternative layouts at runtime.
"""
import struct
from dataclasses import dataclass
from typing import Dict, Tuple, Union

from solders.pubkey import Pubkey

from .exceptions import ValidationError

SEED_VERSION = 1

INTENT_SEED = b"intent"
FEE_AUTHORITY_SEED = b"fee_authority"
LIQUIDITY_SEED = b"liq_stakers"
TREASURY_SEED = b"treasury"
BOUNTY_SEED = b"mev_bounty"
FEE_COLLECTION_SEED = b"fee_collection"

MAX_U64 = 2 ** 64 - 1

PubkeyLike = Union[Pubkey, str]


def to_pubkey(value: PubkeyLike, field: str = "address") -> Pubkey:
    """
    Parse a base58 string into a Pubkey.

    Raises:
        ValidationError: If the value is not a 32-byte base58 key
    """
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {field}", errors=[f"{field}: invalid address {value!r}"]) from e


def encode_u64(value: int) -> bytes:
    """Little-endian u64, as the program stores nonces and amounts."""
    if value < 0 or value > MAX_U64:
        raise ValidationError("Value out of u64 range", errors=[f"{value} does not fit in a u64"])
    return struct.pack("<Q", value)


def intent_seeds(user: PubkeyLike, nonce: int) -> Tuple[bytes, bytes, bytes]:
    return (INTENT_SEED, bytes(to_pubkey(user, "user")), encode_u64(nonce))


def derive_intent_address(user: PubkeyLike, nonce: int, program_id: PubkeyLike) -> Tuple[Pubkey, int]:
    """
    Derive the account that anchors a (user, nonce) commitment.

    Args:
        user: User wallet public key
        nonce: Per-user nonce
        program_id: Commit-reveal program id

    Returns:
        (address, bump)
    """
    return Pubkey.find_program_address(list(intent_seeds(user, nonce)), to_pubkey(program_id, "program_id"))


@dataclass(frozen=True)
class FeeAccounts:
    """The fee-pool PDAs for one token mint, with their bumps."""
    mint: Pubkey
    authority: Pubkey
    authority_bump: int
    liquidity_pool: Pubkey
    liquidity_bump: int
    treasury: Pubkey
    treasury_bump: int
    bounty: Pubkey
    bounty_bump: int
    collection: Pubkey
    collection_bump: int

    def addresses(self) -> Dict[str, str]:
        return {
            "feeCollectionAuthority": str(self.authority),
            "liquidityStakerAccount": str(self.liquidity_pool),
            "treasuryAccount": str(self.treasury),
            "bountyAccount": str(self.bounty),
            "feeCollectionAccount": str(self.collection),
        }

    def bumps(self) -> Dict[str, int]:
        return {
            "feeCollectionAuthorityBump": self.authority_bump,
            "liquidityStakerBump": self.liquidity_bump,
            "treasuryBump": self.treasury_bump,
            "bountyBump": self.bounty_bump,
            "feeCollectionBump": self.collection_bump,
        }

    def pools(self) -> Dict[str, Pubkey]:
        """Token accounts that must exist before fees can be settled."""
        return {
            "collection": self.collection,
            "liquidity": self.liquidity_pool,
            "treasury": self.treasury,
            "bounty": self.bounty,
        }


def derive_fee_authority(program_id: PubkeyLike) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([FEE_AUTHORITY_SEED], to_pubkey(program_id, "program_id"))


def derive_fee_accounts(token_mint: PubkeyLike, program_id: PubkeyLike) -> FeeAccounts:
    """
    Derive the authority and the four fee-pool accounts for a mint.

    Args:
        token_mint: SPL token mint
        program_id: Commit-reveal program id

    Returns:
        FeeAccounts
    """
    mint = to_pubkey(token_mint, "tokenMint")
    program = to_pubkey(program_id, "program_id")
    mint_bytes = bytes(mint)

    authority, authority_bump = derive_fee_authority(program)
    liquidity, liquidity_bump = Pubkey.find_program_address([LIQUIDITY_SEED, mint_bytes], program)
    treasury, treasury_bump = Pubkey.find_program_address([TREASURY_SEED, mint_bytes], program)
    bounty, bounty_bump = Pubkey.find_program_address([BOUNTY_SEED, mint_bytes], program)
    collection, collection_bump = Pubkey.find_program_address([FEE_COLLECTION_SEED, mint_bytes], program)

    return FeeAccounts(
        mint=mint,
        authority=authority,
        authority_bump=authority_bump,
        liquidity_pool=liquidity,
        liquidity_bump=liquidity_bump,
        treasury=treasury,
        treasury_bump=treasury_bump,
        bounty=bounty,
        bounty_bump=bounty_bump,
        collection=collection,
        collection_bump=collection_bump,
    )
