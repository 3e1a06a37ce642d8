"""
IntentStore - durable record of intents and their commit/reveal/fee history.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, select, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import ConflictError, ErrorCode, NotFoundError, UpstreamUnavailable
from ..fees import Distribution
from ..models import STATUS_TRANSITIONS, IntentStatus, TradeIntent
from .models import Base, FeeSplitRecord, SwapCommit, SwapRevealRecord, TradeIntentRecord, User

ACTIVE_STATUSES = (IntentStatus.DRAFT.value, IntentStatus.COMMITTED.value)


@dataclass
class IntentSnapshot:
    """Detached view of one intent and everything recorded against it."""
    intent_hash: str
    intent: TradeIntent
    status: IntentStatus
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    commit: Optional[Dict[str, Any]] = None
    reveal: Optional[Dict[str, Any]] = None
    fees: Optional[Dict[str, int]] = None


def _snapshot(record: TradeIntentRecord) -> IntentSnapshot:
    intent = TradeIntent(
        user=record.user.address,
        token_in=record.token_in,
        token_out=record.token_out,
        amount_in=int(record.amount_in),
        min_out=int(record.min_out),
        expiry=record.expiry,
        nonce=int(record.nonce),
        route_hash=record.route_hash,
        relayer_fee=int(record.relayer_fee),
        relayer=record.relayer,
    )
    snapshot = IntentSnapshot(
        intent_hash=record.intent_hash,
        intent=intent,
        status=IntentStatus(record.status),
        error=record.error,
        created_at=record.created_at,
    )
    if record.commit is not None:
        snapshot.commit = {"tx": record.commit.commitment_tx, "timestamp": record.commit.created_at}
    if record.reveal is not None:
        snapshot.reveal = {
            "tx": record.reveal.reveal_tx,
            "successful": record.reveal.settlement_successful,
            "amountOut": int(record.reveal.amount_out) if record.reveal.amount_out is not None else None,
            "protocolFee": int(record.reveal.protocol_fee),
            "relayerFee": int(record.reveal.relayer_fee),
            "timestamp": record.reveal.created_at,
        }
    if record.fee_split is not None:
        snapshot.fees = {
            "liquidity": int(record.fee_split.liquidity_amount),
            "protocol": int(record.fee_split.protocol_amount),
            "bounty": int(record.fee_split.bounty_amount),
        }
    return snapshot


class IntentStore:
    """
    SQLAlchemy-backed intent store.

    Every public method runs in its own transaction. Database timeouts and
    connection failures surface as UpstreamUnavailable.
    """

    def __init__(
        self,
        database_url: str = "sqlite:///sealedswap.db",
        timeout: float = 5,
        engine: Optional[Engine] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the store

        Args:
            database_url: SQLAlchemy URL
            timeout: Connection and lock wait timeout in seconds
            engine: Pre-built engine (mainly for tests)
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self.engine = engine or self._create_engine(database_url, timeout)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str, timeout: float) -> Engine:
        if database_url.startswith("sqlite"):
            return create_engine(
                database_url,
                connect_args={"timeout": timeout, "check_same_thread": False},
            )
        return create_engine(
            database_url,
            pool_timeout=timeout,
            pool_pre_ping=True,
            connect_args={"connect_timeout": int(timeout)},
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (sa_exc.OperationalError, sa_exc.TimeoutError) as e:
            session.rollback()
            self.logger.error(f"Database unavailable: {e}")
            raise UpstreamUnavailable("Database unavailable", details=str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _load(session: Session, intent_hash: str) -> Optional[TradeIntentRecord]:
        return session.execute(
            select(TradeIntentRecord).where(TradeIntentRecord.intent_hash == intent_hash)
        ).scalar_one_or_none()

    def _require(self, session: Session, intent_hash: str) -> TradeIntentRecord:
        record = self._load(session, intent_hash)
        if record is None:
            raise NotFoundError(
                f"Intent not found: {intent_hash[:10]}...",
                code=ErrorCode.INTENT_NOT_FOUND,
            )
        return record

    @staticmethod
    def _transition(record: TradeIntentRecord, new_status: IntentStatus) -> None:
        current = IntentStatus(record.status)
        if new_status not in STATUS_TRANSITIONS[current]:
            raise ConflictError(
                f"Intent is {current.value}; cannot move to {new_status.value}",
                existing_ref=record.intent_hash,
            )
        record.status = new_status.value

    def create_draft(self, intent: TradeIntent, intent_hash: str) -> IntentSnapshot:
        """
        Persist a draft intent, creating its user on first sight.

        Re-submitting an identical intent returns the existing record.

        Raises:
            ConflictError: If another active intent holds the same (user, nonce)
        """
        try:
            with self._session() as session:
                existing = self._load(session, intent_hash)
                if existing is not None:
                    return _snapshot(existing)

                user = session.execute(select(User).where(User.address == intent.user)).scalar_one_or_none()
                if user is None:
                    user = User(address=intent.user)
                    session.add(user)
                    session.flush()

                clash = session.execute(
                    select(TradeIntentRecord).where(
                        TradeIntentRecord.user_id == user.id,
                        TradeIntentRecord.nonce == str(intent.nonce),
                        TradeIntentRecord.status.in_(ACTIVE_STATUSES),
                    )
                ).scalar_one_or_none()
                if clash is not None:
                    raise ConflictError(
                        f"Nonce {intent.nonce} already used by an active intent",
                        existing_ref=clash.intent_hash,
                        details={"intentHash": clash.intent_hash, "status": clash.status},
                    )

                record = TradeIntentRecord(
                    intent_hash=intent_hash,
                    user=user,
                    token_in=intent.token_in,
                    token_out=intent.token_out,
                    amount_in=str(intent.amount_in),
                    min_out=str(intent.min_out),
                    expiry=intent.expiry,
                    nonce=str(intent.nonce),
                    route_hash=intent.route_hash,
                    relayer_fee=str(intent.relayer_fee),
                    relayer=intent.relayer,
                    status=IntentStatus.DRAFT.value,
                )
                session.add(record)
                session.flush()
                self.logger.debug(f"Stored draft intent {intent_hash[:10]}...")
                return _snapshot(record)
        except sa_exc.IntegrityError as e:
            # A concurrent request inserted the same hash first
            raise ConflictError("Intent already stored", existing_ref=intent_hash) from e

    def get(self, intent_hash: str) -> Optional[IntentSnapshot]:
        with self._session() as session:
            record = self._load(session, intent_hash)
            return _snapshot(record) if record is not None else None

    def require(self, intent_hash: str) -> IntentSnapshot:
        """Like :meth:`get` but raises NotFoundError for unknown hashes."""
        with self._session() as session:
            return _snapshot(self._require(session, intent_hash))

    def record_commit(self, intent_hash: str, commitment_tx: str) -> IntentSnapshot:
        """Store the commit transaction and move the intent to committed."""
        with self._session() as session:
            record = self._require(session, intent_hash)
            self._transition(record, IntentStatus.COMMITTED)
            session.add(SwapCommit(intent=record, commitment_tx=commitment_tx))
            session.flush()
            return _snapshot(record)

    def record_reveal(
        self,
        intent_hash: str,
        reveal_tx: str,
        amount_out: Optional[int],
        protocol_fee: int,
        relayer_fee: int,
        distribution: Distribution,
    ) -> IntentSnapshot:
        """
        Store the reveal, its fee split and the revealed status in one transaction.
        """
        with self._session() as session:
            record = self._require(session, intent_hash)
            self._transition(record, IntentStatus.REVEALED)
            session.add(SwapRevealRecord(
                intent=record,
                reveal_tx=reveal_tx,
                settlement_successful=True,
                amount_out=str(amount_out) if amount_out is not None else None,
                protocol_fee=str(protocol_fee),
                relayer_fee=str(relayer_fee),
            ))
            session.add(FeeSplitRecord(
                intent=record,
                liquidity_amount=str(distribution.liquidity),
                protocol_amount=str(distribution.treasury),
                bounty_amount=str(distribution.bounty),
            ))
            session.flush()
            return _snapshot(record)

    def mark_failed(self, intent_hash: str, error: str) -> IntentSnapshot:
        with self._session() as session:
            record = self._require(session, intent_hash)
            self._transition(record, IntentStatus.FAILED)
            record.error = error
            session.flush()
            return _snapshot(record)

    def mark_expired(self, intent_hash: str) -> IntentSnapshot:
        with self._session() as session:
            record = self._require(session, intent_hash)
            self._transition(record, IntentStatus.EXPIRED)
            session.flush()
            return _snapshot(record)

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self._session() as session:
                session.execute(text("SELECT 1"))
            return True
        except UpstreamUnavailable:
            return False
