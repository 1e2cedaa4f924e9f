"""
Notification Bridge
===================

Bridge between the backend's domain notifications and MCP notifications.
Subscribes to an event source, converts matching events into
``notifications/message`` envelopes and pushes them to the sessions of the
targeted users through the transport.
"""

from typing import Optional, Dict, Any, Iterable, Tuple, Union

from ...config.logging import get_logger
from ...core.events import EventSource, NotificationMessage
from ...models.schemas import (
    JSONRPCNotification,
    MessageParams,
    NotificationMethod,
    ProgressParams,
)
from .models import DeliveryReport
from .transport import McpTransport

logger = get_logger(__name__)

DEFAULT_TOPIC_PREFIX = "mcp."


def build_notification(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return JSONRPCNotification(method=method, params=params or {}).to_dict()


class NotificationBridge:
    """
    Forwards domain notifications to MCP sessions.

    The bridge is usable before a transport is attached: until
    ``set_transport`` is called every operation is a no-op.
    """

    def __init__(
        self,
        topic_prefix: str = DEFAULT_TOPIC_PREFIX,
        forward_all_notifications: bool = True,
    ):
        self.logger: Any = logger.bind(component="notification_bridge")
        self.topic_prefix = topic_prefix
        self.forward_all_notifications = forward_all_notifications
        self._event_source: Optional[EventSource] = None
        self._transport: Optional[McpTransport] = None

    @property
    def transport(self) -> Optional[McpTransport]:
        return self._transport

    def init(self, event_source: EventSource) -> None:
        """Subscribe to ``event_source``. Calling it again is a no-op."""
        if self._event_source is not None:
            return
        event_source.subscribe(self.on_message)
        self._event_source = event_source
        self.logger.info(
            "Notification bridge subscribed",
            forward_all=self.forward_all_notifications,
            topic_prefix=self.topic_prefix,
        )

    def set_transport(self, transport: Optional[McpTransport]) -> None:
        self._transport = transport

    def set_forward_all_notifications(self, forward_all: bool) -> None:
        self.forward_all_notifications = forward_all

    def destroy(self) -> None:
        """Unsubscribe from the event source and drop the transport."""
        if self._event_source is not None:
            self._event_source.unsubscribe(self.on_message)
        self._event_source = None
        self._transport = None
        self.logger.info("Notification bridge destroyed")

    def on_message(self, event: NotificationMessage) -> int:
        """
        Forward one domain event to the sessions of its target users.

        Returns:
            Number of users the notification was handed to
        """
        transport = self._transport
        if transport is None:
            return 0

        if not self.forward_all_notifications and not event.topic.startswith(self.topic_prefix):
            self.logger.debug("Notification topic filtered", topic=event.topic)
            return 0

        if not event.notify_user_ids:
            self.logger.debug("Untargeted notification dropped", topic=event.topic)
            return 0

        notification = self.convert(event)
        sent, failed = self._send_to_users(transport, event.notify_user_ids, notification)
        self.logger.info(
            "Notification forwarded", topic=event.topic, sent=sent, failed=failed
        )
        return sent

    @staticmethod
    def convert(event: NotificationMessage) -> Dict[str, Any]:
        """Convert a domain event into a ``notifications/message`` envelope."""
        params = MessageParams(
            topic=event.topic,
            sub_topic=event.sub_topic,
            title=event.title,
            type=event.type,
            message=event.message,
            link=event.link,
            show_alert=event.show_alert,
            notification_message_id=event.notification_message_id,
        )
        return build_notification(NotificationMethod.MESSAGE, params.model_dump(by_alias=True))

    # Direct operations

    def send_mcp_notification(
        self,
        topic: str,
        title: Optional[str],
        message: Optional[Dict[str, Any]],
        user_ids: Iterable[str],
    ) -> int:
        """Send a custom notification to explicit users, bypassing the topic filter."""
        transport = self._transport
        if transport is None:
            return 0
        params = MessageParams(topic=topic, title=title, message=message or {})
        notification = build_notification(
            NotificationMethod.MESSAGE, params.model_dump(by_alias=True, exclude_none=True)
        )
        sent, _ = self._send_to_users(transport, set(user_ids), notification)
        return sent

    def broadcast_mcp_notification(
        self, topic: str, title: Optional[str], message: Optional[Dict[str, Any]]
    ) -> DeliveryReport:
        transport = self._transport
        if transport is None:
            return DeliveryReport()
        params = MessageParams(topic=topic, title=title, message=message or {})
        return transport.broadcast_notification(
            build_notification(
                NotificationMethod.MESSAGE, params.model_dump(by_alias=True, exclude_none=True)
            )
        )

    def notify_tools_changed(self) -> DeliveryReport:
        return self._broadcast_method(NotificationMethod.TOOLS_LIST_CHANGED)

    def notify_resources_changed(self) -> DeliveryReport:
        return self._broadcast_method(NotificationMethod.RESOURCES_LIST_CHANGED)

    def notify_prompts_changed(self) -> DeliveryReport:
        return self._broadcast_method(NotificationMethod.PROMPTS_LIST_CHANGED)

    def send_progress_notification(
        self,
        session_id: str,
        progress_token: Union[str, int],
        progress: float,
        total: Optional[float] = None,
    ) -> bool:
        transport = self._transport
        if transport is None:
            return False
        params = ProgressParams(progress_token=progress_token, progress=progress, total=total)
        return transport.send_notification(
            session_id,
            build_notification(
                NotificationMethod.PROGRESS, params.model_dump(by_alias=True, exclude_none=True)
            ),
        )

    # Internals

    def _broadcast_method(self, method: str) -> DeliveryReport:
        transport = self._transport
        if transport is None:
            return DeliveryReport()
        return transport.broadcast_notification(build_notification(method))

    def _send_to_users(
        self, transport: McpTransport, user_ids: Iterable[str], notification: Dict[str, Any]
    ) -> Tuple[int, int]:
        sent = 0
        failed = 0
        for user_id in user_ids:
            try:
                transport.send_notification_to_user(user_id, notification)
                sent += 1
            except Exception as e:
                failed += 1
                self.logger.error(
                    "Notification delivery to user failed", user_id=user_id, error=str(e)
                )
        return sent, failed
