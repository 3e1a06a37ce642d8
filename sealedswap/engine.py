"""
SwapEngine - the intent lifecycle behind the HTTP surface.

Wires the hasher, commit coordinator, reveal orchestrator, fee settlement,
relay queue and session manager around one chain client and one store.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from solders.keypair import Keypair

from .chain.client import LAMPORTS_PER_SOL, ChainClient
from .chain.token_accounts import prepare_swap_accounts, validate_swap_accounts
from .chain.wallet import load_keypair
from .commit import CommitCoordinator
from .config import Settings
from .exceptions import SealedSwapError, ValidationError
from .fees import FeeSettlement
from .hashing import build_intent, hash_intent, is_expired, time_remaining
from .models import Route, TradeIntent
from .quotes import QuoteClient
from .relay_queue import RelayQueue
from .reveal import RevealOrchestrator
from .sessions import SessionManager, SessionSweeper, build_session_store
from .store.repository import IntentStore
from .utils import is_valid_address, now_ts, to_iso
from .version import __version__


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class SwapEngine:
    """
    Facade over every lifecycle component.

    Create with :func:`build_engine` for a configured deployment, or pass
    components directly (tests do).
    """

    def __init__(
        self,
        chain: ChainClient,
        store: IntentStore,
        sessions: SessionManager,
        relay: RelayQueue,
        quotes: QuoteClient,
        settings: Optional[Settings] = None,
        sweeper: Optional[SessionSweeper] = None,
        extra_signers: Sequence[Keypair] = (),
        logger: Optional[logging.Logger] = None
    ):
        self.chain = chain
        self.store = store
        self.sessions = sessions
        self.relay = relay
        self.quotes = quotes
        self.settings = settings or Settings()
        self.sweeper = sweeper
        self.logger = logger or logging.getLogger(__name__)

        self.committer = CommitCoordinator(chain, store, extra_signers=extra_signers)
        self.revealer = RevealOrchestrator(chain, store)
        self.fees = FeeSettlement(chain)
        self.started_at = time.time()

    def start(self) -> None:
        self.store.create_all()
        if self.sweeper is not None:
            self.sweeper.start()

    def shutdown(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
        self.relay.shutdown()

    # Intents

    def quote(self, from_mint: str, to_mint: str, amount: int, slippage_bps: int = 100) -> Dict[str, Any]:
        return self.quotes.get_quote(from_mint, to_mint, amount, slippage_bps)

    def create_intent(
        self,
        route: Dict[str, Any],
        trade_meta: Dict[str, Any],
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build, hash and persist a draft intent.

        Returns:
            {intent, hash, sessionRecovery?}
        """
        intent = build_intent(route, trade_meta)
        intent_hash = hash_intent(intent)
        self.store.create_draft(intent, intent_hash)
        self.logger.info(f"Created intent {intent_hash[:10]}... for {intent.user[:10]}... nonce={intent.nonce}")

        response: Dict[str, Any] = {"intent": intent.to_wire(), "hash": intent_hash}
        if session_id:
            route_doc = route.model_dump(by_alias=True) if isinstance(route, Route) else dict(route)
            record = self.sessions.save(session_id, intent, intent_hash, route_doc)
            response["sessionRecovery"] = {"sessionId": session_id, "expiresAt": to_iso(record.expires_at)}
        return response

    def commit(
        self,
        intent_hash: str,
        nonce: int,
        expiry: int,
        enable_relay: bool = False,
        webhook_url: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Commit a stored draft and optionally queue a reveal check.

        Returns:
            {tx, status, relayQueued}
        """
        intent_hash = intent_hash.lower()
        snapshot = self.store.require(intent_hash)
        tx = self.committer.commit(snapshot.intent.user, intent_hash, nonce, expiry)

        relay_queued = False
        if enable_relay:
            try:
                self.relay.enqueue_reveal(
                    intent_hash,
                    webhook_url=webhook_url,
                    delay_seconds=self.settings.relay_delay_seconds,
                )
                relay_queued = True
            except (SealedSwapError, RuntimeError) as e:
                self.logger.warning(f"Could not queue reveal check for {intent_hash[:10]}...: {e}")

        if session_id:
            self.sessions.remove(session_id)

        return {"tx": tx, "status": "committed", "relayQueued": relay_queued}

    def reveal(self, intent: Dict[str, Any], expected_hash: str, signature: str) -> Dict[str, Any]:
        result = self.revealer.reveal(intent, expected_hash, signature)
        self.relay.cancel_reveal(expected_hash.lower())
        body = result.to_dict()
        body["success"] = True
        return body

    def status(self, intent_hash: str) -> Dict[str, Any]:
        """Read-only projection of an intent and its commit, reveal and fee records."""
        snapshot = self.store.require(intent_hash.lower())
        intent: TradeIntent = snapshot.intent
        now = now_ts()
        body: Dict[str, Any] = {
            "intentHash": snapshot.intent_hash,
            "status": snapshot.status.value,
            "user": intent.user,
            "tokenIn": intent.token_in,
            "tokenOut": intent.token_out,
            "amountIn": intent.amount_in,
            "minOut": intent.min_out,
            "relayerFee": intent.relayer_fee,
            "expiry": to_iso(intent.expiry),
            "timeRemainingSeconds": time_remaining(intent, now=now),
            "isExpired": is_expired(intent, now=now),
            "createdAt": _iso(snapshot.created_at),
            "commit": None,
            "reveal": None,
            "fees": snapshot.fees,
        }
        if snapshot.error:
            body["error"] = snapshot.error
        if snapshot.commit:
            body["commit"] = {"tx": snapshot.commit["tx"], "timestamp": _iso(snapshot.commit["timestamp"])}
        if snapshot.reveal:
            body["reveal"] = {
                "tx": snapshot.reveal["tx"],
                "successful": snapshot.reveal["successful"],
                "amountOut": snapshot.reveal["amountOut"],
                "timestamp": _iso(snapshot.reveal["timestamp"]),
            }
        return body

    # Sessions

    def recover(self, session_id: str) -> Dict[str, Any]:
        record = self.sessions.recover(session_id)
        return {"recovered": True, "data": record.model_dump(by_alias=True)}

    def update_session(self, session_id: str, **changes: Any) -> bool:
        return self.sessions.update(session_id, **changes) is not None

    def remove_session(self, session_id: str) -> bool:
        return self.sessions.remove(session_id)

    def list_sessions(self, user: str) -> List[Dict[str, Any]]:
        if not is_valid_address(user):
            raise ValidationError("Invalid user address", errors=[f"user: invalid address {user!r}"])
        return [
            {"sessionId": session_id, "data": record.model_dump(by_alias=True)}
            for session_id, record in self.sessions.list_for_user(user)
        ]

    # Token accounts

    def prepare_accounts(self, user: str, token_in: str, token_out: str, create: bool = False) -> Dict[str, Any]:
        return prepare_swap_accounts(self.chain, user, token_in, token_out, create=create)

    def validate_accounts(self, user: str, token_in: str, token_out: str, amount_in: int) -> Dict[str, Any]:
        return validate_swap_accounts(self.chain, user, token_in, token_out, amount_in)

    # Fees

    def initialize_fee_accounts(self, token_mint: str) -> Dict[str, Any]:
        return self.fees.initialize_accounts(token_mint)

    def settle_fees(self, token_mint: str, fee_amount: int) -> Dict[str, Any]:
        distribution = self.fees.settle(token_mint, fee_amount)
        accounts = self.fees.fee_accounts(token_mint)
        return {
            "success": True,
            "transaction": distribution.transaction,
            "distribution": distribution.to_dict(),
            "accounts": {
                "liquidityStakerAccount": str(accounts.liquidity_pool),
                "treasuryAccount": str(accounts.treasury),
                "bountyAccount": str(accounts.bounty),
            },
        }

    def fee_accounts(self, token_mint: str) -> Dict[str, Any]:
        return self.fees.account_overview(token_mint)

    # Health

    def health(self) -> Dict[str, Any]:
        services = {
            "database": "connected" if self.store.ping() else "unavailable",
            "solana": "connected" if self.chain.health_check() else "unavailable",
            "queue": "healthy" if self.relay.health_check() else "unhealthy",
        }
        healthy = all(v in ("connected", "healthy") for v in services.values())
        return {
            "status": "healthy" if healthy else "unhealthy",
            "services": services,
            "version": __version__,
            "environment": self.settings.env_tier,
            "uptimeSeconds": int(time.time() - self.started_at),
            "timestamp": to_iso(now_ts()),
        }

    def swap_health(self) -> Dict[str, Any]:
        body = self.health()
        body["queue"] = self.relay.stats()
        return body

    def fee_health(self) -> Dict[str, Any]:
        """Wallet and program status for the fee operator."""
        lamports = self.chain.get_sol_balance(self.chain.wallet_pubkey)
        return {
            "status": "healthy",
            "services": {
                "solana": "connected",
                "wallet": "loaded",
                "program": str(self.chain.program_id),
            },
            "wallet": str(self.chain.wallet_pubkey),
            "walletBalance": lamports / LAMPORTS_PER_SOL,
            "timestamp": to_iso(now_ts()),
        }


def build_engine(settings: Optional[Settings] = None) -> SwapEngine:
    """
    Build a fully wired engine from settings.

    Args:
        settings: Settings (defaults to :meth:`Settings.from_env`)

    Returns:
        SwapEngine (call :meth:`SwapEngine.start` before serving)
    """
    settings = settings or Settings.from_env()
    wallet = load_keypair(settings.relayer_keypair_path)
    chain = ChainClient(settings.rpc_url, settings.program_id, wallet, timeout=settings.rpc_timeout)
    store = IntentStore(settings.database_url, timeout=settings.db_timeout)
    sessions = SessionManager(build_session_store(settings.redis_url), ttl=settings.session_ttl)
    relay = RelayQueue(store, workers=settings.queue_workers, backoff_base=settings.queue_backoff_base)
    quotes = QuoteClient(settings.quote_url, timeout=settings.quote_timeout)
    sweeper = SessionSweeper(sessions, interval=settings.session_sweep_interval)
    return SwapEngine(chain, store, sessions, relay, quotes, settings=settings, sweeper=sweeper)
