"""Session storage for live practice sessions."""

import logging
import time
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from engines.state import OrchestratorState

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Opaque key-value store for orchestrator state."""

    def get(self, session_id: str) -> Optional[OrchestratorState]:
        ...

    def put(self, session_id: str, state: OrchestratorState) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    """Thread-safe in-process session store with TTL and size-based eviction.

    Entries not touched for ``ttl_seconds`` are dropped on access; when the
    store is full the least recently written session is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_sessions: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sessions: Dict[str, Tuple[float, OrchestratorState]] = {}
        self._access_order: List[str] = []
        self._ttl = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._lock = Lock()

    def put(self, session_id: str, state: OrchestratorState) -> None:
        """Store ``state``, evicting the oldest session when full."""
        with self._lock:
            self._evict_expired()
            if session_id in self._sessions:
                self._access_order.remove(session_id)
            elif len(self._sessions) >= self._max_sessions:
                oldest = self._access_order.pop(0)
                self._sessions.pop(oldest, None)
                logger.info("Session store full; evicted session %s", oldest)
            self._sessions[session_id] = (self._clock(), state)
            self._access_order.append(session_id)

    def get(self, session_id: str) -> Optional[OrchestratorState]:
        """Return the stored state or ``None`` when unknown or expired."""
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            stored_at, state = entry
            if self._clock() - stored_at > self._ttl:
                self._drop(session_id)
                logger.debug("Session %s expired", session_id)
                return None
            return state

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._drop(session_id)

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._sessions)

    def _drop(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            self._access_order.remove(session_id)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [sid for sid, (stored_at, _) in self._sessions.items() if now - stored_at > self._ttl]
        for sid in expired:
            self._drop(sid)
