"""
Relational schema for intents, commitments, reveals and fee splits.

Token amounts and nonces are u64 values; they are stored as strings to
avoid precision loss in databases without an unsigned 64-bit type.
"""
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class User(Base):
    """Wallet that created at least one intent."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    address = Column(String(44), unique=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    intents = relationship("TradeIntentRecord", back_populates="user")


class TradeIntentRecord(Base):
    __tablename__ = "trade_intents"

    id = Column(Integer, primary_key=True)
    intent_hash = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    token_in = Column(String(44), nullable=False)
    token_out = Column(String(44), nullable=False)
    amount_in = Column(String(20), nullable=False)
    min_out = Column(String(20), nullable=False)
    expiry = Column(BigInteger, nullable=False)
    nonce = Column(String(20), nullable=False)
    route_hash = Column(String(64), nullable=False)
    relayer_fee = Column(String(20), nullable=False)
    relayer = Column(String(44), nullable=False)
    status = Column(String(16), nullable=False, default="draft", index=True)
    error = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="intents")
    commit = relationship("SwapCommit", back_populates="intent", uselist=False)
    reveal = relationship("SwapRevealRecord", back_populates="intent", uselist=False)
    fee_split = relationship("FeeSplitRecord", back_populates="intent", uselist=False)


class SwapCommit(Base):
    __tablename__ = "swap_commits"

    id = Column(Integer, primary_key=True)
    intent_id = Column(Integer, ForeignKey("trade_intents.id"), unique=True, nullable=False)
    commitment_tx = Column(String(128), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    intent = relationship("TradeIntentRecord", back_populates="commit")


class SwapRevealRecord(Base):
    __tablename__ = "swap_reveals"

    id = Column(Integer, primary_key=True)
    intent_id = Column(Integer, ForeignKey("trade_intents.id"), unique=True, nullable=False)
    reveal_tx = Column(String(128), nullable=False)
    settlement_successful = Column(Boolean, nullable=False, default=True)
    amount_out = Column(String(20))  # None when the chain reported no output
    protocol_fee = Column(String(20), nullable=False)
    relayer_fee = Column(String(20), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    intent = relationship("TradeIntentRecord", back_populates="reveal")


class FeeSplitRecord(Base):
    __tablename__ = "fee_splits"

    id = Column(Integer, primary_key=True)
    intent_id = Column(Integer, ForeignKey("trade_intents.id"), unique=True, nullable=False)
    liquidity_amount = Column(String(20), nullable=False)
    protocol_amount = Column(String(20), nullable=False)  # treasury share
    bounty_amount = Column(String(20), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    intent = relationship("TradeIntentRecord", back_populates="fee_split")
