"""
Session records for client-side intent recovery.

Records live in a key-value store with explicit per-entry TTL. Two stores
are provided: an in-process cache and redis. Neither is durable.
"""
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import redis
from cachetools import TLRUCache

from .exceptions import ErrorCode, NotFoundError, UpstreamUnavailable, ValidationError
from .models import SessionRecord, TradeIntent
from .utils import now_ts

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 3600
DEFAULT_SWEEP_INTERVAL = 900


class KeyValueStore(Protocol):
    def put(self, key: str, value: Dict[str, Any], ttl: int) -> None: ...

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> List[str]: ...

    def sweep(self) -> int: ...


class _Entry:
    __slots__ = ("value", "ttl")

    def __init__(self, value: Dict[str, Any], ttl: int):
        self.value = value
        self.ttl = ttl


class MemoryKeyValueStore:
    """
    In-process store backed by a cachetools TLRUCache.

    Each entry expires ``ttl`` seconds after it was written. Expired entries
    are invisible to readers and physically removed by :meth:`sweep`.
    """

    def __init__(self, maxsize: int = 10_000, timer=time.time):
        self._cache = TLRUCache(maxsize=maxsize, ttu=lambda _key, entry, now: now + entry.ttl, timer=timer)
        self._lock = threading.RLock()

    def put(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._cache[key] = _Entry(value, ttl)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._cache.get(key)
        return entry.value if entry is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self._cache.expire()
            return [k for k in list(self._cache.keys()) if k.startswith(prefix)]

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        with self._lock:
            before = self._cache.currsize
            self._cache.expire()
            return before - self._cache.currsize

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class RedisKeyValueStore:
    """
    Store shared between processes through redis. Expiry is native (SETEX).
    """

    def __init__(self, url: str, client: Optional[redis.Redis] = None, timeout: float = 5):
        self.client = client or redis.from_url(
            url, decode_responses=True, socket_timeout=timeout, socket_connect_timeout=timeout
        )

    def _run(self, description: str, fn):
        try:
            return fn()
        except redis.RedisError as e:
            raise UpstreamUnavailable(f"Session store unavailable: {description}", details=str(e)) from e

    def put(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        payload = json.dumps(value)
        self._run("put", lambda: self.client.setex(key, ttl, payload))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._run("get", lambda: self.client.get(key))
        return json.loads(raw) if raw is not None else None

    def delete(self, key: str) -> bool:
        return bool(self._run("delete", lambda: self.client.delete(key)))

    def keys(self, prefix: str = "") -> List[str]:
        return list(self._run("keys", lambda: list(self.client.scan_iter(match=f"{prefix}*"))))

    def sweep(self) -> int:
        return 0


class SessionManager:
    """Save, recover, update and remove session records."""

    KEY_PREFIX = "sealedswap:session:"

    def __init__(
        self,
        store: KeyValueStore,
        ttl: int = DEFAULT_SESSION_TTL,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self.ttl = ttl
        self.logger = logger or logging.getLogger(__name__)

    def _key(self, session_id: str) -> str:
        if not session_id:
            raise ValidationError("Session id is required", errors=["sessionId: must not be empty"])
        return f"{self.KEY_PREFIX}{session_id}"

    def save(
        self,
        session_id: str,
        intent: TradeIntent,
        intent_hash: str,
        route: Optional[Dict[str, Any]] = None,
    ) -> SessionRecord:
        now = now_ts()
        record = SessionRecord(
            intent=intent, hash=intent_hash, route=route, timestamp=now, expires_at=now + self.ttl
        )
        self.store.put(self._key(session_id), record.model_dump(by_alias=True), self.ttl)
        self.logger.info(f"Saved session {session_id[:10]}... for intent {intent_hash[:10]}...")
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        raw = self.store.get(self._key(session_id))
        if raw is None:
            return None
        record = SessionRecord.model_validate(raw)
        if record.expires_at <= now_ts():
            self.store.delete(self._key(session_id))
            return None
        return record

    def recover(self, session_id: str) -> SessionRecord:
        """
        Raises:
            NotFoundError: If the session is unknown or expired
        """
        record = self.get(session_id)
        if record is None:
            self.logger.warning(f"Session not found: {session_id[:10]}...")
            raise NotFoundError("Session not found or expired", code=ErrorCode.SESSION_NOT_FOUND)
        return record

    def update(self, session_id: str, **changes: Any) -> Optional[SessionRecord]:
        """
        Replace intent, hash or route on a live session, keeping its expiry.

        Returns:
            The updated record, or None if the session is gone
        """
        unknown = set(changes) - {"intent", "hash", "route"}
        if unknown:
            raise ValidationError("Unknown session fields", errors=[f"{name}: not updatable" for name in sorted(unknown)])

        record = self.get(session_id)
        if record is None:
            self.logger.warning(f"Cannot update missing session {session_id[:10]}...")
            return None

        now = now_ts()
        updated = record.model_copy(update={**changes, "timestamp": now})
        self.store.put(self._key(session_id), updated.model_dump(by_alias=True), max(1, updated.expires_at - now))
        return updated

    def remove(self, session_id: str) -> bool:
        removed = self.store.delete(self._key(session_id))
        if removed:
            self.logger.info(f"Removed session {session_id[:10]}...")
        return removed

    def list_for_user(self, user: str) -> List[Tuple[str, SessionRecord]]:
        sessions = []
        for key in self.store.keys(self.KEY_PREFIX):
            session_id = key[len(self.KEY_PREFIX):]
            record = self.get(session_id)
            if record is not None and record.intent.user == user:
                sessions.append((session_id, record))
        return sessions

    def sweep(self) -> int:
        removed = self.store.sweep()
        if removed:
            self.logger.info(f"Swept {removed} expired session(s)")
        return removed


class SessionSweeper:
    """Background thread that sweeps expired sessions on a fixed interval."""

    def __init__(self, sessions: SessionManager, interval: float = DEFAULT_SWEEP_INTERVAL):
        self.sessions = sessions
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sessions.sweep()
            except UpstreamUnavailable as e:
                logger.warning(f"Session sweep skipped: {e}")

    def stop(self, timeout: Optional[float] = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def build_session_store(redis_url: Optional[str] = None) -> KeyValueStore:
    """Redis store when a URL is configured, in-process cache otherwise."""
    if redis_url:
        logger.info("Using redis session store")
        return RedisKeyValueStore(redis_url)
    return MemoryKeyValueStore()
