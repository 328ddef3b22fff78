"""Rooms REST API router.

Endpoints:
    GET  /api/rooms                      - Rooms the caller belongs to
    POST /api/rooms                      - Create a room (caller becomes a member)
    POST /api/rooms/{room_id}/join       - Join a room (invite code for private rooms)
    GET  /api/rooms/{room_id}/messages   - Paginated history, newest first
    GET  /api/rooms/{room_id}/members    - Members with live presence

All endpoints require ``Authorization: Bearer <token>``.
"""
import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from app.auth.dependencies import require_user_id
from app.chat.manager import get_session_manager
from app.config import get_config
from app.store.schemas import Room, RoomMemberInfo
from app.store.service import get_store

from .schemas import CreateRoomRequest, JoinRoomRequest, MessagePage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def _new_invite_code() -> str:
    """8 hex characters."""
    return secrets.token_hex(4)


async def _require_member(store, room_id: int, user_id: int) -> None:
    if not await run_in_threadpool(store.is_member, room_id, user_id):
        raise HTTPException(status_code=403, detail="Not a room member")


@router.get("/api/rooms", response_model=List[Room])
async def list_rooms(user_id: int = Depends(require_user_id)) -> List[Room]:
    """List the rooms the caller is a member of."""
    store = get_store()
    return await run_in_threadpool(store.list_rooms_for_user, user_id)


@router.post("/api/rooms", response_model=Room, status_code=201)
async def create_room(
    request: CreateRoomRequest,
    user_id: int = Depends(require_user_id),
) -> Room:
    """Create a room.

    Raises:
        HTTPException 400: Name missing.
    """
    if not request.name:
        raise HTTPException(status_code=400, detail="Missing name")

    invite_code = _new_invite_code() if request.isPrivate else None
    store = get_store()
    room = await run_in_threadpool(
        store.create_room, request.name, user_id, request.isPrivate, invite_code
    )
    logger.info(f"[Rooms] User {user_id} created room {room.id} (private={room.isPrivate})")
    return room


@router.post("/api/rooms/{room_id}/join")
async def join_room(
    room_id: int,
    request: Optional[JoinRoomRequest] = None,
    user_id: int = Depends(require_user_id),
) -> dict:
    """Become a member of a room. Joining twice is harmless.

    Raises:
        HTTPException 404: Room not found.
        HTTPException 403: Private room and the invite code is missing or wrong.
    """
    store = get_store()
    room = await run_in_threadpool(store.get_room, room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    if room.isPrivate:
        invite_code = request.inviteCode if request else None
        if not invite_code or not secrets.compare_digest(invite_code, room.inviteCode or ""):
            raise HTTPException(status_code=403, detail="Invite required")

    await run_in_threadpool(store.add_member, room_id, user_id)
    return {"ok": True}


@router.get("/api/rooms/{room_id}/messages", response_model=MessagePage)
async def get_messages(
    room_id: int,
    limit: Optional[int] = Query(None, ge=1, description="Page size (capped)"),
    cursor: Optional[int] = Query(None, description="Return messages with id below this"),
    user_id: int = Depends(require_user_id),
) -> MessagePage:
    """Get a page of room history, newest first.

    Example:
        GET /api/rooms/3/messages?limit=50
        GET /api/rooms/3/messages?limit=50&cursor=120
    """
    store = get_store()
    await _require_member(store, room_id, user_id)

    pagination = get_config().pagination
    page_size = min(limit or pagination.default_page_size, pagination.max_page_size)
    messages = await run_in_threadpool(store.list_messages, room_id, page_size, cursor)
    return MessagePage(
        messages=messages,
        nextCursor=messages[-1].id if messages else None,
    )


@router.get("/api/rooms/{room_id}/members", response_model=List[RoomMemberInfo])
async def list_members(
    room_id: int,
    user_id: int = Depends(require_user_id),
) -> List[RoomMemberInfo]:
    """List room members with their live online state and last-seen time."""
    store = get_store()
    await _require_member(store, room_id, user_id)

    session = get_session_manager()
    members = await run_in_threadpool(store.list_members, room_id)
    for member in members:
        member.online = session.is_online(member.userId)
    return members
