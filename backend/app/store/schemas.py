"""Pydantic schemas for records persisted by the chat store.

Field names are camelCase because these records go over the wire as-is
(REST responses and WebSocket frames).
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as ISO-8601 UTC with a trailing ``Z``."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class User(BaseModel):
    """A registered user. The password hash never leaves the store."""
    id: int = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Login email (unique)")
    lastSeen: Optional[datetime] = Field(None, description="Last time the user went offline")


class Room(BaseModel):
    """A chat room.

    Attributes:
        id: Room ID.
        name: Human-readable room name.
        isPrivate: Private rooms can only be joined with the invite code.
        inviteCode: Invite code, only set for private rooms.
        createdById: User who created the room.
        createdAt: Creation time (UTC).
    """
    id: int
    name: str
    isPrivate: bool = False
    inviteCode: Optional[str] = None
    createdById: int
    createdAt: datetime


class Message(BaseModel):
    """A persisted chat message. Immutable once created."""
    id: int = Field(..., description="Monotonic message ID")
    roomId: int = Field(..., description="Room the message was sent to")
    senderId: int = Field(..., description="User who sent the message")
    content: str = Field(..., description="Trimmed message text")
    createdAt: datetime = Field(..., description="Persistence time (UTC)")

    def to_event(self) -> dict:
        """Build the ``receive_message`` frame for this message."""
        return {
            "type": "receive_message",
            "id": self.id,
            "roomId": self.roomId,
            "senderId": self.senderId,
            "content": self.content,
            "createdAt": isoformat(self.createdAt),
        }


class MessageReceipt(BaseModel):
    """Delivered/read acknowledgment of one message by one user.

    Both timestamps are independent: a client may mark a message read
    without ever sending the delivered acknowledgment.
    """
    messageId: int
    userId: int
    deliveredAt: Optional[datetime] = None
    readAt: Optional[datetime] = None


class RoomMemberInfo(BaseModel):
    """Member listing entry, enriched with live presence by the router."""
    userId: int
    name: str
    online: bool = False
    lastSeen: Optional[datetime] = None
