"""
SSE Transport
=============

Delivers JSON-RPC messages and notifications to MCP sessions over
Server-Sent Events. Sessions without a live stream get their notifications
queued and drained in order as soon as a stream attaches.

All methods are synchronous and thread-safe. Work on one session happens
under that session's lock from the registry, so frames for a session are
written in the order their event ids were assigned.
"""

from typing import Optional, Dict, Any, List, Union, Iterator
from abc import ABC, abstractmethod
from contextlib import contextmanager
import itertools
import threading
import time

from pydantic import BaseModel

from ...config.logging import get_logger
from ...core.session import Session, SessionRegistry, SessionState
from ...models.schemas import JSONRPC_VERSION, NotificationMethod
from .events import SSEEventType, format_sse_event, create_close_payload, create_ping_payload
from .models import DeliveryReport, TransportStatistics
from .sink import Sink

logger = get_logger(__name__)

Notification = Union[Dict[str, Any], BaseModel]


class McpTransport(ABC):
    """Transport contract used by the server and the notification bridge."""

    @abstractmethod
    def open_session(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        state: SessionState = SessionState.UNINITIALIZED,
    ) -> Session: ...

    @abstractmethod
    def close_session(self, session_id: str) -> None: ...

    @abstractmethod
    def is_session_active(self, session_id: str) -> bool: ...

    @abstractmethod
    def send_message(self, session_id: str, message: Dict[str, Any]) -> bool: ...

    @abstractmethod
    def send_notification(self, session_id: str, notification: Notification) -> bool: ...

    @abstractmethod
    def send_notification_to_user(
        self, user_id: str, notification: Notification
    ) -> DeliveryReport: ...

    @abstractmethod
    def broadcast_notification(self, notification: Notification) -> DeliveryReport: ...


def to_jsonrpc_notification(notification: Notification) -> Dict[str, Any]:
    """Wrap a bare payload into a JSON-RPC notification envelope.

    Payloads that already carry ``jsonrpc`` are returned unchanged. Otherwise
    ``method`` defaults to ``notifications/message`` and ``params`` is taken
    as given, even when empty. A payload without ``params`` becomes the
    params itself.
    """
    if isinstance(notification, BaseModel):
        notification = notification.model_dump(mode="json", by_alias=True, exclude_none=True)
    if "jsonrpc" in notification:
        return notification
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": notification.get("method") or NotificationMethod.MESSAGE,
        "params": notification["params"] if "params" in notification else notification,
    }


class SSETransport(McpTransport):
    """
    SSE implementation of the MCP transport.

    Handles:
    - Session open/close with a goodbye frame
    - Live writes with fallback to a bounded per-session queue
    - Fan-out per user and broadcast
    - Keep-alive pings and idle session cleanup
    """

    def __init__(self, registry: SessionRegistry, max_queued_notifications: int = 1000):
        self.registry = registry
        self.max_queued_notifications = max_queued_notifications
        self.logger: Any = logger.bind(component="sse_transport")
        self._event_ids = itertools.count(1)
        self._event_id_lock = threading.Lock()
        self._last_event_id = 0

    # Session lifecycle

    def open_session(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        state: SessionState = SessionState.UNINITIALIZED,
    ) -> Session:
        existing = self.registry.get_session(session_id)
        if existing is not None:
            self.logger.info("Session already open", session_id=session_id, user_id=user_id)
            return existing
        return self.registry.create_session(session_id, user_id, state)

    def close_session(self, session_id: str) -> None:
        with self._locked_session(session_id) as session:
            if session is None:
                self.logger.debug("Close requested for unknown session", session_id=session_id)
                return

            sink = session.detach_sink()
            if sink is not None:
                try:
                    frame = format_sse_event(
                        SSEEventType.CLOSE, create_close_payload(session_id), self._next_event_id()
                    )
                    sink.write(frame)
                    sink.flush()
                except Exception as e:
                    self.logger.debug(
                        "Goodbye frame not delivered", session_id=session_id, error=str(e)
                    )
                try:
                    sink.close()
                except Exception as e:
                    self.logger.debug("Sink close failed", session_id=session_id, error=str(e))

            self.registry.close_session(session_id)

        self.logger.info("SSE session closed", session_id=session_id)

    def close_all_sessions(self) -> int:
        session_ids = self.registry.get_all_session_ids()
        for session_id in session_ids:
            self.close_session(session_id)
        return len(session_ids)

    def is_session_active(self, session_id: str) -> bool:
        session = self.registry.get_session(session_id)
        return session is not None and session.is_active() and session.has_active_writer()

    # Writers

    def register_sse_writer(self, session_id: str, sink: Sink) -> int:
        """
        Attach ``sink`` as the session's live stream and drain its queue.

        A previously attached sink is closed. When the session is unknown or
        already closed, ``sink`` is closed instead so its stream ends. Returns
        the number of queued notifications delivered before returning.
        """
        with self._locked_session(session_id) as session:
            if session is None:
                self.logger.warning("Cannot register writer for unknown session", session_id=session_id)
                self._close_quietly(sink, session_id)
                return 0

            previous = session.attach_sink(sink)
            if previous is not None:
                self._close_quietly(previous, session_id)
            session.touch()
            delivered = self._drain_locked(session)
            still_queued = len(session.notification_queue)

        self.logger.info(
            "SSE writer registered",
            session_id=session_id,
            replaced=previous is not None,
            delivered=delivered,
            still_queued=still_queued,
        )
        return delivered

    def unregister_sse_writer(self, session_id: str, sink: Optional[Sink] = None) -> None:
        """Detach the session's sink. The queue and the session are kept.

        When ``sink`` is given, only that sink is detached so a stream that
        was already replaced cannot detach its successor.
        """
        with self._locked_session(session_id) as session:
            if session is None:
                return
            detached = session.detach_sink(sink)
        if detached is not None:
            self.logger.info("SSE writer unregistered", session_id=session_id)

    def deliver_queued_notifications(self, session_id: str) -> int:
        with self._locked_session(session_id) as session:
            if session is None:
                return 0
            return self._drain_locked(session)

    def send_sse_event_with_id(
        self, sink: Sink, event_type: SSEEventType, data: Union[Dict[str, Any], str]
    ) -> bool:
        """Write one frame straight to ``sink``, outside any session queue."""
        try:
            sink.write(format_sse_event(event_type, data, self._next_event_id()))
            sink.flush()
        except Exception as e:
            self.logger.warning("Direct SSE write failed", event_type=str(event_type), error=str(e))
            return False
        return not sink.check_error()

    # Delivery

    def send_message(self, session_id: str, message: Dict[str, Any]) -> bool:
        """Write ``message`` to the live stream or queue it. Returns True if written."""
        with self._locked_session(session_id) as session:
            if session is None:
                self.logger.warning("Message for unknown session dropped", session_id=session_id)
                return False
            if session.notification_queue and session.has_active_writer():
                self._drain_locked(session)
            if not session.notification_queue and self._write_frame(
                session, SSEEventType.MESSAGE, message
            ):
                return True
            self._enqueue_locked(session, message)
            return False

    def send_notification(self, session_id: str, notification: Notification) -> bool:
        return self.send_message(session_id, to_jsonrpc_notification(notification))

    def send_notification_to_user(self, user_id: str, notification: Notification) -> DeliveryReport:
        report = DeliveryReport()
        session_ids = self.registry.get_sessions_for_user(user_id)
        if not session_ids:
            self.logger.debug("No sessions for user", user_id=user_id)
            return report

        envelope = to_jsonrpc_notification(notification)
        for session_id in session_ids:
            if self.send_message(session_id, envelope):
                report.delivered += 1
            elif self.registry.has_session(session_id):
                report.queued += 1
        return report

    def broadcast_notification(self, notification: Notification) -> DeliveryReport:
        report = DeliveryReport()
        envelope = to_jsonrpc_notification(notification)
        for session_id in self.registry.get_all_session_ids():
            if self.send_message(session_id, envelope):
                report.delivered += 1
            elif self.registry.has_session(session_id):
                report.queued += 1

        self.logger.info(
            "Notification broadcast",
            method=envelope.get("method"),
            delivered=report.delivered,
            queued=report.queued,
        )
        return report

    # Keep-alive

    def send_ping(self, session_id: str) -> bool:
        """Write a ping frame to a live stream. Nothing is queued."""
        with self._locked_session(session_id) as session:
            if session is None or not session.has_active_writer():
                return False
            return self._write_frame(
                session, SSEEventType.PING, create_ping_payload(session_id), touch=False
            )

    def ping_all_sessions(self) -> int:
        return sum(1 for session_id in self.registry.get_all_session_ids() if self.send_ping(session_id))

    def close_idle_sessions(self, max_idle_seconds: float) -> List[str]:
        """Close sessions without a live stream that have been idle too long."""
        now = time.time()
        closed: List[str] = []
        for session in self.registry.get_all_sessions():
            if session.has_active_writer():
                continue
            if session.idle_seconds(now) > max_idle_seconds:
                self.close_session(session.session_id)
                closed.append(session.session_id)

        if closed:
            self.logger.info("Idle sessions closed", count=len(closed))
        return closed

    # Introspection

    def get_active_session_count(self) -> int:
        return sum(1 for s in self.registry.get_all_session_ids() if self.is_session_active(s))

    def get_sessions_for_user(self, user_id: str) -> List[str]:
        return sorted(self.registry.get_sessions_for_user(user_id))

    def get_statistics(self) -> Dict[str, Any]:
        sessions = self.registry.get_all_sessions()
        stats = TransportStatistics(
            **self.registry.get_statistics(),
            active_writers=sum(1 for s in sessions if s.has_active_writer()),
            queued_notifications=sum(len(s.notification_queue) for s in sessions),
            event_id_counter=self._last_event_id,
        )
        return stats.model_dump(by_alias=True)

    # Internals

    def _next_event_id(self) -> int:
        with self._event_id_lock:
            self._last_event_id = next(self._event_ids)
            return self._last_event_id

    def _write_frame(
        self,
        session: Session,
        event_type: SSEEventType,
        data: Dict[str, Any],
        touch: bool = True,
    ) -> bool:
        """Write one frame to the session's sink. Caller holds the session lock."""
        sink = session.sink
        if sink is None or sink.check_error():
            return False

        frame = format_sse_event(event_type, data, self._next_event_id())
        try:
            sink.write(frame)
            sink.flush()
        except Exception as e:
            self.logger.warning("SSE write failed", session_id=session.session_id, error=str(e))
            self._drop_sink_locked(session, sink)
            return False

        if sink.check_error():
            self.logger.warning("SSE sink reported error after write", session_id=session.session_id)
            self._drop_sink_locked(session, sink)
            return False

        if touch:
            session.touch()
        return True

    def _drop_sink_locked(self, session: Session, sink: Sink) -> None:
        session.detach_sink(sink)
        try:
            sink.close()
        except Exception as e:
            self.logger.debug("Failed sink close failed", session_id=session.session_id, error=str(e))

    def _enqueue_locked(self, session: Session, message: Dict[str, Any]) -> None:
        queue = session.notification_queue
        if len(queue) >= self.max_queued_notifications:
            queue.popleft()
            self.logger.warning(
                "Notification queue full, oldest dropped",
                session_id=session.session_id,
                limit=self.max_queued_notifications,
            )
        queue.append(message)

    def _drain_locked(self, session: Session) -> int:
        delivered = 0
        queue = session.notification_queue
        while queue:
            message = queue.popleft()
            if not self._write_frame(session, SSEEventType.MESSAGE, message):
                queue.appendleft(message)
                break
            delivered += 1
        return delivered

    @contextmanager
    def _locked_session(self, session_id: str) -> Iterator[Optional[Session]]:
        """Hold the session's lock and yield it, or None when unknown or closed."""
        found = self.registry.get_session_with_lock(session_id)
        if found is None:
            yield None
            return
        session, lock = found
        with lock:
            yield None if session.closed else session

    def _close_quietly(self, sink: Sink, session_id: str) -> None:
        try:
            sink.close()
        except Exception as e:
            self.logger.debug("Sink close failed", session_id=session_id, error=str(e))
