"""Delivered/read receipt tracking.

Each acknowledgment upserts the (message, user) receipt, touching only the
field being acknowledged, and then tells the message's room about it with a
``message_status`` frame carrying just that field.
"""
import logging
from datetime import datetime
from typing import Optional

import duckdb
from starlette.concurrency import run_in_threadpool

from app.store.schemas import MessageReceipt, isoformat, utcnow

from .broadcast import RoomBroadcaster

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
READ = "read"

# ack kind -> (store keyword, wire field)
_FIELDS = {
    DELIVERED: ("delivered_at", "deliveredAt"),
    READ: ("read_at", "readAt"),
}


class ReceiptTracker:
    """Records acknowledgments and broadcasts status updates.

    Args:
        store: Anything with ``get_message`` and ``upsert_receipt``.
        broadcaster: Room fan-out target.
    """

    def __init__(self, store, broadcaster: RoomBroadcaster) -> None:
        self.store = store
        self.broadcaster = broadcaster

    async def acknowledge_delivered(
        self, message_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Optional[MessageReceipt]:
        return await self._acknowledge(DELIVERED, message_id, user_id, now)

    async def acknowledge_read(
        self, message_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Optional[MessageReceipt]:
        return await self._acknowledge(READ, message_id, user_id, now)

    async def _acknowledge(
        self, kind: str, message_id: int, user_id: int, now: Optional[datetime]
    ) -> Optional[MessageReceipt]:
        """Upsert one receipt field and broadcast it.

        Unknown message ids are a no-op: nothing is written or broadcast.
        Re-acknowledging refreshes the timestamp.

        Returns:
            The receipt after the upsert, or None if nothing happened.
        """
        store_field, wire_field = _FIELDS[kind]
        when = now or utcnow()

        try:
            message = await run_in_threadpool(self.store.get_message, message_id)
            if message is None:
                logger.debug(f"[Receipts] {kind} ack for unknown message {message_id} ignored")
                return None
            receipt = await run_in_threadpool(
                self.store.upsert_receipt, message_id, user_id, **{store_field: when}
            )
        except duckdb.Error as e:
            logger.error(f"[Receipts] Failed to record {kind} ack of message {message_id} by user {user_id}: {e}")
            return None

        await self.broadcaster.broadcast_room(message.roomId, {
            "type": "message_status",
            "messageId": message_id,
            "userId": user_id,
            wire_field: isoformat(getattr(receipt, wire_field)),
        })
        return receipt
