"""
Domain Events
=============

Notification messages published by the business backend and the in-process
event bus that delivers them to listeners such as the notification bridge.
"""

from typing import Optional, Dict, Any, List, Set, Callable, Protocol
from datetime import datetime, timezone
import threading

from pydantic import BaseModel, Field

from ..config.logging import get_logger


class NotificationMessage(BaseModel):
    """A domain notification emitted by the business backend."""

    topic: str = Field(..., min_length=1, description="Notification topic")
    sub_topic: Optional[str] = Field(None, description="Optional sub-topic")
    title: Optional[str] = Field(None, description="Human readable title")
    type: Optional[str] = Field(None, description="Notification type, e.g. info or warning")
    message: Dict[str, Any] = Field(default_factory=dict, description="Message body")
    link: Optional[str] = Field(None, description="Related link")
    show_alert: Optional[bool] = Field(None, description="Whether clients should alert")
    notification_message_id: Optional[str] = Field(None, description="Backend message id")
    notify_user_ids: Set[str] = Field(default_factory=set, description="Target user ids")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Creation timestamp"
    )


EventListener = Callable[[NotificationMessage], Any]


class EventSource(Protocol):
    """Anything listeners can subscribe to for domain notifications."""

    def subscribe(self, listener: EventListener) -> None: ...

    def unsubscribe(self, listener: EventListener) -> None: ...


class InMemoryEventBus:
    """Thread-safe in-process event bus.

    ``publish`` calls every listener synchronously on the publishing thread.
    A failing listener is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__).bind(component="event_bus")
        self._lock = threading.Lock()
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event: NotificationMessage) -> int:
        """Deliver ``event`` to every listener and return how many succeeded."""
        with self._lock:
            listeners = list(self._listeners)

        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:
                self.logger.exception("Event listener failed", topic=event.topic)
        return delivered
