"""Inbound WebSocket event kinds.

Every client frame is a JSON object whose ``type`` field selects one of the
models below. The union is closed: ``parse_event`` either returns one of these
models or raises ``EventValidationError``, and the Session Manager dispatches
on the concrete class.

Protocol Message Types:
    - join_room:         {roomId}
    - leave_room:        {roomId}
    - send_message:      {roomId, content}
    - typing:            {roomId, isTyping}
    - message_delivered: {messageId}
    - message_read:      {messageId}
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.errors import EventValidationError

# Strict so that "5", 5.0 and true are not taken as ids
PositiveId = Annotated[int, Field(strict=True, gt=0)]


class JoinRoom(BaseModel):
    type: Literal["join_room"]
    roomId: PositiveId


class LeaveRoom(BaseModel):
    type: Literal["leave_room"]
    roomId: PositiveId


class SendMessage(BaseModel):
    type: Literal["send_message"]
    roomId: PositiveId
    content: str = Field(..., strict=True)


class Typing(BaseModel):
    type: Literal["typing"]
    roomId: PositiveId
    isTyping: bool = True


class MessageDelivered(BaseModel):
    type: Literal["message_delivered"]
    messageId: PositiveId


class MessageRead(BaseModel):
    type: Literal["message_read"]
    messageId: PositiveId


InboundEvent = Annotated[
    Union[JoinRoom, LeaveRoom, SendMessage, Typing, MessageDelivered, MessageRead],
    Field(discriminator="type"),
]

_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_event(data: Any) -> InboundEvent:
    """Validate a decoded client frame.

    Raises:
        EventValidationError: Not an object, unknown ``type``, or bad payload.
    """
    try:
        return _adapter.validate_python(data)
    except ValidationError as e:
        kind = data.get("type") if isinstance(data, dict) else None
        raise EventValidationError(f"invalid {kind or 'unknown'} event: {e.error_count()} error(s)") from e
