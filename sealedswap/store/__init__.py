"""
Persistent intent store.
"""
from .models import Base, FeeSplitRecord, SwapCommit, SwapRevealRecord, TradeIntentRecord, User
from .repository import IntentSnapshot, IntentStore

__all__ = [
    "Base",
    "User",
    "TradeIntentRecord",
    "SwapCommit",
    "SwapRevealRecord",
    "FeeSplitRecord",
    "IntentStore",
    "IntentSnapshot",
]
