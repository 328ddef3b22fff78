"""Message broadcast pipeline: persist a message, then fan it out to its room.

The pipeline only talks to two things: the message store, and whatever owns
the room subscriptions (the Session Manager), through ``RoomBroadcaster``.
"""
import logging
from typing import Optional, Protocol

import duckdb
from starlette.concurrency import run_in_threadpool

from app.errors import EventValidationError
from app.store.schemas import Message

logger = logging.getLogger(__name__)


class RoomBroadcaster(Protocol):
    """Delivers a frame to every connection subscribed to a room."""

    async def broadcast_room(self, room_id: int, payload: dict, exclude=None) -> None:
        ...


class MessageBroadcastPipeline:
    """Validates, persists and broadcasts chat messages.

    Args:
        store: Anything with ``create_message(room_id, sender_id, content)``.
        broadcaster: Room fan-out target.
    """

    def __init__(self, store, broadcaster: RoomBroadcaster) -> None:
        self.store = store
        self.broadcaster = broadcaster

    async def submit(self, room_id: int, sender_id: int, content: str) -> Optional[Message]:
        """Persist and broadcast a message.

        The broadcast reaches every subscriber of the room, the sender's own
        connections included. If persistence fails the error is logged and
        nothing is broadcast.

        Returns:
            The persisted message, or None if the store failed.

        Raises:
            EventValidationError: Content is empty after trimming.
        """
        text = content.strip()
        if not text:
            raise EventValidationError("empty message content")

        try:
            message = await run_in_threadpool(self.store.create_message, room_id, sender_id, text)
        except duckdb.Error as e:
            logger.error(f"[Pipeline] Failed to persist message from user {sender_id} in room {room_id}: {e}")
            return None

        logger.debug(f"[Pipeline] Message {message.id} persisted in room {room_id}")
        await self.broadcaster.broadcast_room(room_id, message.to_event())
        return message
