"""
Request and response bodies for the HTTP surface.

Every body is a closed model: unknown fields are rejected before a request
reaches the engine. Quoted routes are the exception; they are passed
through from the quoting service, and only their canonical fields are read.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import Route


class _Closed(BaseModel):
    class Config:
        populate_by_name = True
        extra = "forbid"


# Requests

class QuoteRequest(_Closed):
    from_mint: str = Field(..., alias="fromMint")
    to_mint: str = Field(..., alias="toMint")
    amount: int
    slippage_bps: int = Field(100, alias="slippageBps")


class TradeMetaBody(_Closed):
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: int = Field(..., alias="amountIn")
    min_out: int = Field(..., alias="minOut")
    expiry: int
    nonce: int
    relayer_fee: int = Field(0, alias="relayerFee")
    relayer: str


class IntentRequest(_Closed):
    route: Route
    trade_meta: TradeMetaBody = Field(..., alias="tradeMeta")
    session_id: Optional[str] = Field(None, alias="sessionId", min_length=1, max_length=128)


class CommitRequest(_Closed):
    intent_hash: str = Field(..., alias="intentHash")
    nonce: int
    expiry: int
    enable_relay: bool = Field(False, alias="enableRelay")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    session_id: Optional[str] = Field(None, alias="sessionId")


class IntentBody(_Closed):
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: int = Field(..., alias="amountIn")
    min_out: int = Field(..., alias="minOut")
    expiry: int
    nonce: int
    route_hash: str = Field(..., alias="routeHash")
    relayer_fee: int = Field(..., alias="relayerFee")
    relayer: str


class RevealRequest(_Closed):
    intent: IntentBody
    expected_hash: str = Field(..., alias="expectedHash")
    signature: str


class SessionUpdateRequest(_Closed):
    route: Optional[Dict[str, Any]] = None


class PrepareAccountsRequest(_Closed):
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    create: bool = False


class ValidateAccountsRequest(_Closed):
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: int = Field(..., alias="amountIn")


class InitializeFeeAccountsRequest(_Closed):
    token_mint: str = Field(..., alias="tokenMint")


class SettleRequest(_Closed):
    token_mint: str = Field(..., alias="tokenMint")
    fee_amount: int = Field(..., alias="feeAmount")


# Responses

class IntentResponse(_Closed):
    intent: Dict[str, Any]
    hash: str
    session_recovery: Optional[Dict[str, Any]] = Field(None, alias="sessionRecovery")


class CommitResponse(_Closed):
    tx: str
    status: str
    relay_queued: bool = Field(False, alias="relayQueued")


class ExecutionSummary(_Closed):
    amount_out: Optional[int] = Field(None, alias="amountOut")
    protocol_fee: int = Field(..., alias="protocolFee")
    relayer_fee: int = Field(..., alias="relayerFee")


class FeeSplitSummary(_Closed):
    liquidity: int
    protocol: int
    bounty: int


class RevealResponse(_Closed):
    success: bool
    transaction: str
    execution: ExecutionSummary
    fees: FeeSplitSummary


class CommitSummary(_Closed):
    tx: str
    timestamp: Optional[str] = None


class RevealSummary(_Closed):
    tx: str
    successful: bool
    amount_out: Optional[int] = Field(None, alias="amountOut")
    timestamp: Optional[str] = None


class StatusResponse(_Closed):
    intent_hash: str = Field(..., alias="intentHash")
    status: str
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: int = Field(..., alias="amountIn")
    min_out: int = Field(..., alias="minOut")
    relayer_fee: int = Field(..., alias="relayerFee")
    expiry: str
    time_remaining_seconds: int = Field(..., alias="timeRemainingSeconds")
    is_expired: bool = Field(..., alias="isExpired")
    created_at: Optional[str] = Field(None, alias="createdAt")
    commit: Optional[CommitSummary] = None
    reveal: Optional[RevealSummary] = None
    fees: Optional[FeeSplitSummary] = None
    error: Optional[str] = None


class RecoverResponse(_Closed):
    recovered: bool
    data: Dict[str, Any]


class SessionEntry(_Closed):
    session_id: str = Field(..., alias="sessionId")
    data: Dict[str, Any]


class SessionListResponse(_Closed):
    user: str
    sessions: List[SessionEntry]


class PrepareAccountsResponse(_Closed):
    accounts: Dict[str, str]
    missing: List[str]
    created: List[str]
    transaction: Optional[str] = None


class ValidateAccountsResponse(_Closed):
    valid: bool
    errors: List[str]
    token_in_balance: Optional[int] = Field(None, alias="tokenInBalance")
    token_out_balance: Optional[int] = Field(None, alias="tokenOutBalance")


class InitializeFeeAccountsResponse(_Closed):
    success: bool = True
    transaction: str
    accounts: Dict[str, str]
    bumps: Dict[str, int]


class DistributionBody(_Closed):
    total_fee: int = Field(..., alias="totalFee")
    liquidity_stakers: int = Field(..., alias="liquidityStakers")
    treasury: int
    mev_bounty: int = Field(..., alias="mevBounty")


class SettleResponse(_Closed):
    success: bool
    transaction: Optional[str] = None
    distribution: DistributionBody
    accounts: Dict[str, str]
