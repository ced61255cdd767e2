"""
auth_store.py - Process-wide cache of OAuth sessions and state tokens.

Holds three caches:
  - sessions: per-user OAuth client with its credentials (no expiry)
  - state tokens: pending authorization requests (short TTL)
  - expired tokens: state tokens whose TTL ran out, kept for a while so a
    late callback can be told "expired" instead of "invalid"

Everything lives in memory; a restart drops all sessions.
The store is injected into ``AuthFlowController`` so tests can run
isolated instances side by side.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from .constants import (
    EXPIRED_STATE_TOKEN_RETENTION,
    STATE_TOKEN_CHECK_PERIOD,
    STATE_TOKEN_EXPIRATION,
)

log = logging.getLogger(__name__)

V = TypeVar("V")


# ---------------------------------------------------------------------------
# TTL cache
# ---------------------------------------------------------------------------

class TTLCache(Generic[V]):
    """Thread-safe key/value cache with per-key expiry.

    Expired keys are evicted lazily on access and by ``sweep()``; every
    eviction caused by expiry fires ``on_expired(key, value)`` exactly once.
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_expired: Optional[Callable[[str, V], None]] = None,
    ):
        self._default_ttl = default_ttl
        self._clock = clock
        self._on_expired = on_expired
        self._items: dict[str, tuple[V, float | None]] = {}
        self._lock = threading.RLock()

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        deadline = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._items[key] = (value, deadline)

    def _evict_if_expired(self, key: str) -> bool:
        """Drop *key* if its deadline has passed. Caller holds the lock."""
        entry = self._items.get(key)
        if entry is None:
            return False
        value, deadline = entry
        if deadline is None or self._clock() < deadline:
            return False
        del self._items[key]
        self._fire_expired(key, value)
        return True

    def _fire_expired(self, key: str, value: V) -> None:
        if self._on_expired is None:
            return
        try:
            self._on_expired(key, value)
        except Exception:
            log.exception("expiry callback failed for cache key")

    def has(self, key: str) -> bool:
        with self._lock:
            self._evict_if_expired(key)
            return key in self._items

    def get(self, key: str) -> V | None:
        with self._lock:
            self._evict_if_expired(key)
            entry = self._items.get(key)
            return entry[0] if entry is not None else None

    def take(self, key: str) -> V | None:
        """Get and delete in one step (single-use read)."""
        with self._lock:
            self._evict_if_expired(key)
            entry = self._items.pop(key, None)
            return entry[0] if entry is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def sweep(self) -> int:
        """Evict every expired key. Returns how many were evicted."""
        with self._lock:
            now = self._clock()
            expired = [
                k for k, (_v, deadline) in self._items.items()
                if deadline is not None and now >= deadline
            ]
            for key in expired:
                value, _deadline = self._items.pop(key)
                self._fire_expired(key, value)
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class AuthSession:
    user_id: str
    username: str
    client: Any  # OAuth2Client

    @property
    def access_token(self) -> str | None:
        creds = getattr(self.client, "credentials", None)
        return getattr(creds, "access_token", None) if creds is not None else None

    @property
    def refresh_token(self) -> str | None:
        creds = getattr(self.client, "credentials", None)
        return getattr(creds, "refresh_token", None) if creds is not None else None

    @property
    def expiry_epoch_millis(self) -> int | None:
        creds = getattr(self.client, "credentials", None)
        return getattr(creds, "expiry_epoch_millis", None) if creds is not None else None


@dataclass(frozen=True)
class PendingAuth:
    client: Any
    user_id: str
    username: str


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class AuthSessionStore:
    """Sessions keyed by user id plus live and recently-expired state tokens."""

    def __init__(
        self,
        *,
        state_token_ttl: float = STATE_TOKEN_EXPIRATION,
        expired_token_ttl: float = EXPIRED_STATE_TOKEN_RETENTION,
        check_period: float = STATE_TOKEN_CHECK_PERIOD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state_token_ttl = state_token_ttl
        self.check_period = check_period
        self.sessions: dict[str, AuthSession] = {}
        self.expired_tokens: TTLCache[PendingAuth] = TTLCache(expired_token_ttl, clock=clock)
        self.state_tokens: TTLCache[PendingAuth] = TTLCache(
            state_token_ttl,
            clock=clock,
            on_expired=self._state_token_expired,
        )
        self._sessions_lock = threading.RLock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def _state_token_expired(self, token: str, pending: PendingAuth) -> None:
        log.debug("State token for user %s expired", pending.user_id)
        self.expired_tokens.set(token, pending)

    # -- sweeper -----------------------------------------------------------

    def start(self) -> None:
        """Start the background sweeper that moves expired tokens over."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="auth-token-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        t = self._sweeper
        if t is not None:
            t.join(timeout=max(1.0, self.check_period))
        self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.check_period):
            self.sweep()

    def sweep(self) -> None:
        moved = self.state_tokens.sweep()
        dropped = self.expired_tokens.sweep()
        if moved or dropped:
            log.debug("Token sweep: %d expired, %d dropped", moved, dropped)

    # -- sessions ----------------------------------------------------------

    def put_session(self, session: AuthSession) -> None:
        with self._sessions_lock:
            self.sessions[session.user_id] = session

    def get_session(self, user_id: str) -> AuthSession | None:
        with self._sessions_lock:
            return self.sessions.get(user_id)

    def has_session(self, user_id: str) -> bool:
        with self._sessions_lock:
            return user_id in self.sessions

    def delete_session(self, user_id: str) -> bool:
        with self._sessions_lock:
            return self.sessions.pop(user_id, None) is not None
