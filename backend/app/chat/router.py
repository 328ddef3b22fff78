"""Chat router providing the realtime WebSocket endpoint.

This module provides:
    - WebSocket /ws: authenticated realtime channel (rooms, messages,
      typing, receipts, presence)

Handshake:
    The identity token goes in the ``token`` query parameter or an
    ``Authorization: Bearer <token>`` header. A missing or invalid token
    closes the socket with code 4401 before anything else happens.

Protocol Flow:
    1. Client connects with a token
       → Server broadcasts (if first connection of the user):
         {type: "user_status", userId, status: "online"}
    2. Client sends: {type: "join_room", roomId}
       → subscribed if member; silent otherwise
    3. Client sends: {type: "send_message", roomId, content}
       → Server broadcasts to room:
         {type: "receive_message", id, roomId, senderId, content, createdAt}
    4. Client sends: {type: "typing", roomId, isTyping}
       → Server relays to the rest of the room: {type: "typing", roomId, userId, isTyping}
    5. Client sends: {type: "message_delivered" | "message_read", messageId}
       → Server broadcasts to the message's room:
         {type: "message_status", messageId, userId, deliveredAt | readAt}
    6. On disconnect (if last connection of the user)
       → Server broadcasts: {type: "user_status", userId, status: "offline", lastSeen}

Frames from one connection are handled one at a time, in order.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.auth.service import extract_bearer_token
from app.errors import Unauthorized

from .manager import get_session_manager

logger = logging.getLogger(__name__)

router = APIRouter()

# 4000-4999 are application close codes; 4401 mirrors HTTP 401
UNAUTHORIZED_CLOSE_CODE = 4401


def _frame_text(message: dict) -> Optional[str]:
    """Text of a ``websocket.receive`` message; binary frames must be UTF-8."""
    if message.get("text") is not None:
        return message["text"]
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Identity token"),
) -> None:
    """WebSocket endpoint for the realtime chat protocol.

    Args:
        websocket: The WebSocket connection.
        token: Identity token (falls back to the Authorization header).
    """
    session = get_session_manager()
    token = token or extract_bearer_token(websocket.headers.get("authorization"))

    try:
        user_id = session.authenticate(token)
    except Unauthorized as e:
        logger.info(f"[WS] Handshake rejected: {e}")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="unauthorized")
        return

    await websocket.accept()
    connection = await session.connect(websocket, user_id)
    logger.info(f"[WS] Connection {connection.id} accepted for user {user_id}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

            raw = _frame_text(message)
            if raw is None:
                logger.debug(f"[WS] Undecodable frame from user {user_id} dropped")
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                logger.debug(f"[WS] Non-JSON frame from user {user_id} dropped")
                continue
            await session.handle(connection, data)
    except WebSocketDisconnect as e:
        logger.info(f"[WS] Connection {connection.id} closed (code={e.code})")
    except Exception:
        logger.exception(f"[WS] Connection {connection.id} failed")
    finally:
        await session.disconnect(connection)
