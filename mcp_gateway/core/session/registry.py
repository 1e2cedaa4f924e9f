"""
Session Registry
================

In-memory directory of MCP sessions keyed by session id, with a secondary
index of session ids per user and one reentrant lock per session.

The registry is safe to call from any thread. Map mutations happen under a
single internal lock so that a session and its user-index entry are always
added and removed together.
"""

from typing import Optional, Dict, Any, Set, List, Deque, Tuple, TYPE_CHECKING
from dataclasses import dataclass, field
from collections import deque
from enum import IntEnum
import threading
import time

from ...config.logging import get_logger

if TYPE_CHECKING:
    from ...api.sse.sink import Sink


class SessionState(IntEnum):
    """Lifecycle state of an MCP session."""

    UNINITIALIZED = 0
    INITIALIZING = 1
    INITIALIZED = 2


@dataclass(eq=False)
class Session:
    """A logical MCP client session that outlives individual HTTP streams."""

    session_id: str
    user_id: Optional[str] = None
    state: SessionState = SessionState.UNINITIALIZED
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    sink: Optional["Sink"] = None
    notification_queue: Deque[Dict[str, Any]] = field(default_factory=deque)
    subscriptions: Set[str] = field(default_factory=set)
    closed: bool = False

    def touch(self) -> None:
        self.last_activity = time.time()

    def is_active(self) -> bool:
        """Initialized and not closed."""
        return self.state == SessionState.INITIALIZED and not self.closed

    def has_active_writer(self) -> bool:
        """True while a sink is attached and has not reported an error."""
        sink = self.sink
        return sink is not None and not sink.check_error()

    def attach_sink(self, sink: "Sink") -> Optional["Sink"]:
        """Attach ``sink`` and return the one it replaced, if any."""
        previous = self.sink
        self.sink = sink
        return previous if previous is not sink else None

    def detach_sink(self, sink: Optional["Sink"] = None) -> Optional["Sink"]:
        """Detach the current sink, or only ``sink`` when given."""
        current = self.sink
        if sink is not None and current is not sink:
            return None
        self.sink = None
        return current

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.last_activity

    def to_dict(self) -> Dict[str, Any]:
        now = time.time()
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "state": self.state.name,
            "createdAt": int(self.created_at * 1000),
            "lastActivity": int(self.last_activity * 1000),
            "durationMs": int((now - self.created_at) * 1000),
            "active": self.is_active(),
            "hasActiveWriter": self.has_active_writer(),
            "queuedNotifications": len(self.notification_queue),
            "subscriptions": sorted(self.subscriptions),
        }


class SessionRegistry:
    """Thread-safe session directory with a user index and per-session locks."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__).bind(component="session_registry")
        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = {}
        self._user_sessions: Dict[str, Set[str]] = {}
        self._session_locks: Dict[str, threading.RLock] = {}

    def create_session(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        state: SessionState = SessionState.UNINITIALIZED,
    ) -> Session:
        """
        Register a new session.

        An id that is already registered is never overwritten: the existing
        session is returned unchanged.

        Raises:
            ValueError: If ``session_id`` is empty
        """
        if not session_id:
            raise ValueError("session_id must be a non-empty string")

        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                if existing.user_id != user_id:
                    self.logger.warning(
                        "Session id already registered to another user",
                        session_id=session_id,
                        owner=existing.user_id,
                        requested_user=user_id,
                    )
                else:
                    self.logger.debug("Session already registered", session_id=session_id)
                return existing

            session = Session(session_id=session_id, user_id=user_id, state=state)
            self._sessions[session_id] = session
            if user_id is not None:
                self._user_sessions.setdefault(user_id, set()).add(session_id)

        self.logger.info("Session registered", session_id=session_id, user_id=user_id)
        return session

    def close_session(self, session_id: str) -> Optional[Session]:
        """Remove a session, its user-index entry and its lock. No-op if absent."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            session.closed = True
            if session.user_id is not None:
                user_set = self._user_sessions.get(session.user_id)
                if user_set is not None:
                    user_set.discard(session_id)
                    if not user_set:
                        del self._user_sessions[session.user_id]
            self._session_locks.pop(session_id, None)

        self.logger.info("Session removed", session_id=session_id, user_id=session.user_id)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_sessions_for_user(self, user_id: Optional[str]) -> Set[str]:
        """Snapshot of the user's session ids; empty set when none."""
        if user_id is None:
            return set()
        with self._lock:
            return set(self._user_sessions.get(user_id, ()))

    def get_all_session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def get_all_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_session_lock(self, session_id: str) -> threading.RLock:
        """Return the lock guarding this session's queue and sink, creating it on demand."""
        with self._lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                self._session_locks[session_id] = lock
            return lock

    def get_session_with_lock(self, session_id: str) -> Optional[Tuple[Session, threading.RLock]]:
        """Return a registered session with its lock, or None.

        Unlike ``get_session_lock`` no lock is created for an unknown id, so a
        caller racing ``close_session`` cannot leave a lock behind.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                self._session_locks[session_id] = lock
            return session, lock

    def set_session_state(self, session_id: str, state: SessionState) -> None:
        session = self.get_session(session_id)
        if session is None:
            return
        session.state = state
        session.touch()
        self.logger.debug("Session state changed", session_id=session_id, state=state.name)

    def touch_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session is not None:
            session.touch()

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            sessions_per_user = {
                user_id: len(ids) for user_id, ids in self._user_sessions.items()
            }
            return {
                "totalSessions": len(self._sessions),
                "usersWithSessions": len(self._user_sessions),
                "sessionsPerUser": sessions_per_user,
            }
