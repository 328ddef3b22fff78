"""Request/response schemas for the rooms API."""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.store.schemas import Message


class CreateRoomRequest(BaseModel):
    """Request body for creating a room.

    Attributes:
        name: Room name (required, checked by the endpoint).
        isPrivate: Private rooms get an invite code and can only be
            joined with it.
    """
    name: Optional[str] = None
    isPrivate: bool = False


class JoinRoomRequest(BaseModel):
    inviteCode: Optional[str] = None


class MessagePage(BaseModel):
    """One page of room history, newest first.

    Attributes:
        messages: Messages on this page.
        nextCursor: Pass as ``cursor`` to fetch the next (older) page;
            None when the page is empty.
    """
    messages: List[Message] = Field(default_factory=list)
    nextCursor: Optional[int] = None
