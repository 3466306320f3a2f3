"""
In-memory pub/sub for SSE event broadcasting.
Channels are rooms such as ``conversation-<id>`` or ``user-<id>``; one
subscriber queue may listen on several rooms at once.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Set

logger = logging.getLogger(__name__)

# Maximum number of messages to buffer per subscriber
# Messages beyond this limit are dropped with a warning
SSE_QUEUE_SIZE = 100


def conversation_channel(conversation_id) -> str:
    return f"conversation-{conversation_id}"


def user_channel(user_id) -> str:
    return f"user-{user_id}"


class InMemoryPubSub:
    """Simple in-memory pub/sub for broadcasting events within a single process."""

    def __init__(self, queue_size: int = SSE_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def subscribe(self, *channels: str) -> asyncio.Queue:
        """Subscribe to one or more channels and return a queue for receiving messages."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            for channel in channels:
                self._subscribers[channel].add(queue)
        logger.debug("Subscriber added to channels %s", list(channels))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue, channels: Iterable[str] = ()):
        """Unsubscribe a queue from the given channels, or from every channel."""
        async with self._lock:
            names = list(channels) or list(self._subscribers)
            for channel in names:
                subscribers = self._subscribers.get(channel)
                if subscribers is None:
                    continue
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[channel]
        logger.debug("Subscriber removed from channels %s", names)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """Publish a message to all subscribers of a channel.

        Returns the number of subscriber queues that accepted the message.
        """
        async with self._lock:
            subscribers: List[asyncio.Queue] = list(self._subscribers.get(channel, ()))

        if not subscribers:
            logger.debug("No subscribers for channel '%s'", channel)
            return 0

        logger.info("Publishing to channel '%s' with %d subscribers", channel, len(subscribers))

        delivered = 0
        for queue in subscribers:
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Queue full for subscriber on channel '%s', dropping message", channel)
        return delivered


_pubsub_instance = None


def get_pubsub() -> InMemoryPubSub:
    """Get the process-wide pub/sub used by the app factory and the SSE route."""
    global _pubsub_instance
    if _pubsub_instance is None:
        _pubsub_instance = InMemoryPubSub()
    return _pubsub_instance
