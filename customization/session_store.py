import copy
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

from customization.entities import Document, SessionState


class SessionStateStore(ABC):
    """
    Storage for per-session customization state.

    Every state handed out is an independent copy, and `save` replaces the stored record
    (document + history) in one step. Only the engine calls `save`.
    """

    @abstractmethod
    def get_or_create(self, session_id: str, initial_document: Document) -> SessionState:
        """
        Existing state for `session_id`, or a new one seeded from `initial_document`.
        For an existing session `initial_document` is ignored.
        """

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionState]:
        ...

    @abstractmethod
    def save(self, state: SessionState) -> None:
        ...

    @abstractmethod
    def sweep_expired(self) -> int:
        """
        Delete expired sessions. Returns how many were removed.
        """


class InMemorySessionStore(SessionStateStore):
    """
    Process-local session states with:
    - sliding TTL (expires ttl_seconds after last touch; None/0 = never)
    - thread-safe operations
    Everything is lost on restart.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or None
        self._lock = threading.Lock()
        # session_id -> {"state": SessionState, "expires_at": float | None}
        self._items: dict[str, dict[str, object]] = {}

    def _expiry(self, now: float) -> Optional[float]:
        return now + self.ttl_seconds if self.ttl_seconds else None

    def _get_unlocked(self, session_id: str) -> Optional[SessionState]:
        now = time.time()
        item = self._items.get(session_id)
        if item is None:
            return None

        expires_at = item["expires_at"]
        if expires_at is not None and float(expires_at) <= now:
            # expired -> forget
            del self._items[session_id]
            return None

        item["expires_at"] = self._expiry(now)
        return item["state"]  # type: ignore[return-value]

    def get_or_create(self, session_id: str, initial_document: Document) -> SessionState:
        sid = str(session_id)
        with self._lock:
            state = self._get_unlocked(sid)
            if state is None:
                state = SessionState(
                    session_id=sid,
                    current_document=copy.deepcopy(initial_document),
                    baseline_document=copy.deepcopy(initial_document),
                    history=[],
                )
                self._items[sid] = {"state": state, "expires_at": self._expiry(time.time())}
            return state.copy()

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            state = self._get_unlocked(str(session_id))
            return state.copy() if state is not None else None

    def save(self, state: SessionState) -> None:
        stored = state.copy()
        with self._lock:
            self._items[stored.session_id] = {"state": stored, "expires_at": self._expiry(time.time())}

    def sweep_expired(self) -> int:
        now = time.time()
        with self._lock:
            expired = [
                k for k, v in self._items.items()
                if v["expires_at"] is not None and float(v["expires_at"]) <= now
            ]
            for k in expired:
                del self._items[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
