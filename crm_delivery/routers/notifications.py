"""Notifications stream for real-time message status updates."""
import asyncio
import json
import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from crm_delivery.pubsub import InMemoryPubSub, conversation_channel, get_pubsub, user_channel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

HEARTBEAT_INTERVAL = 20  # seconds


def sse_frame(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def event_stream(
    pubsub: InMemoryPubSub,
    channels: List[str],
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
) -> AsyncIterator[str]:
    """Yield SSE frames for every event published on the given channels."""

    queue = await pubsub.subscribe(*channels)
    try:
        yield sse_frame("connected", {"channels": channels})

        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue

            yield sse_frame(message.get("event", "message"), message.get("data", {}))

    except asyncio.CancelledError:
        logger.info("Notification SSE connection cancelled")
        raise
    finally:
        await pubsub.unsubscribe(queue, channels)


@router.get("/sse")
async def sse_notifications(
    conversation_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
):
    """
    Server-Sent Events endpoint for real-time status updates.
    Clients join a conversation room, a user room, or both.

    Events:
        - connected: Initial connection confirmation
        - message-status-updated: {messageId, status}
    """
    channels: List[str] = []
    if conversation_id:
        channels.append(conversation_channel(conversation_id))
    if user_id:
        channels.append(user_channel(user_id))
    if not channels:
        raise HTTPException(status_code=400, detail="conversation_id or user_id is required")

    return StreamingResponse(
        event_stream(get_pubsub(), channels),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering in nginx
        },
    )
