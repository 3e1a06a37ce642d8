"""
Data models for sealedswap.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class IntentStatus(str, Enum):
    """Lifecycle of a trade intent. Transitions only move forward."""
    DRAFT = "draft"
    COMMITTED = "committed"
    REVEALED = "revealed"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.REVEALED, IntentStatus.EXPIRED, IntentStatus.FAILED)


# Allowed forward transitions
STATUS_TRANSITIONS = {
    IntentStatus.DRAFT: {IntentStatus.COMMITTED, IntentStatus.EXPIRED, IntentStatus.FAILED},
    IntentStatus.COMMITTED: {IntentStatus.REVEALED, IntentStatus.EXPIRED, IntentStatus.FAILED},
    IntentStatus.REVEALED: set(),
    IntentStatus.EXPIRED: set(),
    IntentStatus.FAILED: set(),
}


class Route(BaseModel):
    """Quoted execution route, as returned by the quoting service"""
    input_mint: str = Field(..., alias="inputMint")
    output_mint: str = Field(..., alias="outputMint")
    in_amount: str = Field(..., alias="inAmount")
    out_amount: str = Field(..., alias="outAmount")
    other_amount_threshold: Optional[str] = Field(None, alias="otherAmountThreshold")
    swap_mode: str = Field(..., alias="swapMode")
    price_impact_pct: Optional[Union[float, str]] = Field(None, alias="priceImpactPct")
    route_plan: List[Any] = Field(default_factory=list, alias="routePlan")

    class Config:
        populate_by_name = True


class TradeMeta(BaseModel):
    """Caller-supplied trade terms used to build an intent"""
    user: str
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: int = Field(..., alias="amountIn")
    min_out: int = Field(..., alias="minOut")
    expiry: int
    nonce: int
    relayer_fee: int = Field(..., alias="relayerFee")
    relayer: str

    class Config:
        populate_by_name = True


class TradeIntent(BaseModel):
    """The economic terms of a swap, bound by the intent hash"""
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

    class Config:
        populate_by_name = True

    def to_wire(self) -> Dict[str, Any]:
        """camelCase dict, as exchanged with clients."""
        return self.model_dump(by_alias=True)


class SessionRecord(BaseModel):
    """Recovery snapshot kept for a client session"""
    intent: TradeIntent
    hash: str
    route: Optional[Dict[str, Any]] = None
    timestamp: int
    expires_at: int = Field(..., alias="expiresAt")

    class Config:
        populate_by_name = True
