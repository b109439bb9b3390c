"""In-process store for after-hours dialogue sessions.

One entry per call in progress, keyed by the session key carried in each
turn's callback URL.  Everything lives in this process: running more than
one worker needs a shared store behind the same interface.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from callcatch.session import CallSession, make_session_key

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600


class SessionStore:
    """Session table with TTL eviction and per-key locking.

    ``locked(key)`` serializes every turn for one call, so a webhook
    delivered twice is processed one copy at a time and sees the first
    copy's result.  Completed keys are remembered until the TTL runs out so
    a late duplicate of the final turn cannot start a new dialogue.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, CallSession] = {}
        self._completed: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, caller_id: str = "", key: str | None = None) -> CallSession:
        now = self._clock()
        session = CallSession(
            session_key=key or make_session_key(caller_id, now),
            caller_id=caller_id,
            created_at=now,
        )
        self._sessions[session.session_key] = session
        self._completed.pop(session.session_key, None)
        return session

    def get(self, key: str) -> CallSession | None:
        session = self._sessions.get(key)
        if session is None:
            return None
        if self._expired(session.created_at):
            logger.info("Session %s expired at stage %s", key, session.stage.value)
            del self._sessions[key]
            return None
        return session

    def put(self, session: CallSession) -> None:
        self._sessions[session.session_key] = session

    def delete(self, key: str) -> None:
        self._sessions.pop(key, None)

    def complete(self, key: str) -> None:
        """Drop the session and remember that its dialogue finished."""
        self._sessions.pop(key, None)
        self._completed[key] = self._clock()

    def is_completed(self, key: str) -> bool:
        finished_at = self._completed.get(key)
        if finished_at is None:
            return False
        if self._expired(finished_at):
            del self._completed[key]
            return False
        return True

    def sweep_expired(self) -> int:
        """Evict abandoned sessions, old tombstones and idle locks."""
        stale = [k for k, s in self._sessions.items() if self._expired(s.created_at)]
        for key in stale:
            session = self._sessions.pop(key)
            logger.info("Evicted abandoned session %s at stage %s", key, session.stage.value)
        for key in [k for k, t in self._completed.items() if self._expired(t)]:
            del self._completed[key]
        for key in [k for k in self._locks if k not in self._lock_users]:
            if key not in self._sessions and key not in self._completed:
                del self._locks[key]
        return len(stale)

    @asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        # holders plus waiters; a lock is only dropped when nobody is queued on it
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]

    def _expired(self, since: float) -> bool:
        return self._clock() - since > self.ttl_seconds


class RecentEvents:
    """Best-effort duplicate filter for webhooks without a session.

    Remembers keys for ``window_seconds``; ``seen`` returns True for a key
    already recorded inside the window and records it otherwise.
    """

    def __init__(self, window_seconds: float = 120.0, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}

    def seen(self, key: str) -> bool:
        now = self._clock()
        for old in [k for k, t in self._seen.items() if now - t > self.window_seconds]:
            del self._seen[old]
        if key in self._seen:
            return True
        self._seen[key] = now
        return False
