"""Status-change fan-out handed to the webhook ingress at construction time."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from crm_delivery.constants import EVENT_MESSAGE_STATUS_UPDATED
from crm_delivery.pubsub import InMemoryPubSub, conversation_channel, user_channel

logger = logging.getLogger(__name__)


class StatusNotifier(Protocol):
    async def emit_to_conversation(self, conversation_id: str, event: str, data: Dict[str, Any]) -> None:
        ...

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        ...


class PubSubNotifier:
    """Relays events to ``conversation-<id>`` and ``user-<id>`` pub/sub rooms."""

    def __init__(self, pubsub: InMemoryPubSub):
        self.pubsub = pubsub

    async def emit_to_conversation(self, conversation_id: str, event: str, data: Dict[str, Any]) -> None:
        await self.pubsub.publish(conversation_channel(conversation_id), {"event": event, "data": data})

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        await self.pubsub.publish(user_channel(user_id), {"event": event, "data": data})


async def notify_status_change(
    notifier: Optional[StatusNotifier],
    message: Mapping[str, Any],
    status: str,
) -> None:
    """Emit ``message-status-updated`` for a message whose status just changed.

    Notification failures are logged and never propagate: the status write has
    already happened and the vendor must still get its acknowledgement.
    """

    if notifier is None:
        return

    data = {"messageId": message["message_id"], "status": status}
    conversation_id: Optional[str] = message.get("conversation_id")
    sender_id: Optional[str] = message.get("sender_id")

    try:
        if conversation_id:
            await notifier.emit_to_conversation(str(conversation_id), EVENT_MESSAGE_STATUS_UPDATED, data)
        if sender_id:
            await notifier.emit_to_user(str(sender_id), EVENT_MESSAGE_STATUS_UPDATED, data)
    except Exception:
        logger.exception(
            "Failed to emit status update",
            extra={"message_id": message["message_id"], "status": status},
        )
