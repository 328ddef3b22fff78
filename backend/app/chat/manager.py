"""WebSocket session manager for real-time chat rooms.

This module owns every live connection in the process: the identity bound
to it at handshake, the rooms it is subscribed to, and the fan-out of frames
to those rooms. It wires together the presence tracker, the rate limiter,
the message broadcast pipeline and the receipt tracker.

Key features:
    - Token-authenticated connections (no anonymous connection is registered)
    - Reference-counted presence with edge-triggered online/offline broadcasts
    - Room subscriptions re-checked against membership on every room action
    - Per-(user, room) sliding-window send throttle
    - Concurrent broadcasting with asyncio.gather()
    - Uniformly silent denial paths (optional local diagnostics)

Connection lifecycle:
    Unauthenticated -> Authenticated -> (Subscribed to room R)* -> Closed

Thread Safety:
    Handlers run on a single event loop. Store calls are pushed to the worker
    thread pool, so other connections' events interleave while one waits on
    the store. The connection/subscription index, the presence map and the
    rate limiter each have their own lock.
"""
import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import duckdb
from starlette.concurrency import run_in_threadpool

from app.auth.service import ConnectionAuthenticator
from app.config import AppSettings, get_config
from app.errors import AuthorizationDenied, ChatError, EventValidationError, PersistenceFailure, RateLimited
from app.store.schemas import Message, isoformat, utcnow
from app.store.service import get_store

from .broadcast import MessageBroadcastPipeline
from .events import (
    InboundEvent,
    JoinRoom,
    LeaveRoom,
    MessageDelivered,
    MessageRead,
    SendMessage,
    Typing,
    parse_event,
)
from .presence import PresenceTracker
from .rate_limiter import SlidingWindowLimiter
from .receipts import ReceiptTracker

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

ONLINE = "online"
OFFLINE = "offline"


# =============================================================================
# Data Models
# =============================================================================


@dataclass(eq=False)
class Connection:
    """One authenticated client channel.

    Attributes:
        websocket: Transport; anything with an async ``send_json(dict)``.
        user_id: Identity bound at handshake. Never changes.
        id: Process-unique connection id.
        rooms: Room ids this connection is subscribed to.
        closed: Set once cleanup has run.
    """
    websocket: Any
    user_id: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: Set[int] = field(default_factory=set)
    closed: bool = False


# =============================================================================
# Session Manager
# =============================================================================


class SessionManager:
    """Owns live connections and orchestrates every realtime chat event.

    Args:
        store: Membership/message/receipt/user store.
        authenticator: Verifies handshake tokens.
        rate_limit_max: Sends allowed per window per (user, room).
        rate_limit_window_ms: Sliding window length.
        diagnostics: Send a local ``error`` frame when an event is dropped.
    """

    def __init__(
        self,
        store,
        authenticator: ConnectionAuthenticator,
        *,
        rate_limit_max: int = 5,
        rate_limit_window_ms: int = 10000,
        diagnostics: bool = False,
    ) -> None:
        self.store = store
        self.authenticator = authenticator
        self.diagnostics = diagnostics

        self.presence = PresenceTracker()
        self.rate_limiter = SlidingWindowLimiter(rate_limit_max, rate_limit_window_ms)
        self.pipeline = MessageBroadcastPipeline(store, self)
        self.receipts = ReceiptTracker(store, self)

        # connection id -> Connection
        self.connections: Dict[str, Connection] = {}
        # room id -> connection ids subscribed to it
        self.room_subscribers: Dict[int, Set[str]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppSettings, store) -> "SessionManager":
        jwt_secrets = config.secrets.jwt
        return cls(
            store,
            ConnectionAuthenticator(jwt_secrets.secret_key, jwt_secrets.algorithm),
            rate_limit_max=config.realtime.rate_limit_max,
            rate_limit_window_ms=config.realtime.rate_limit_window_ms,
            diagnostics=config.realtime.diagnostics,
        )

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def authenticate(self, token: Optional[str]) -> int:
        """Resolve a handshake token to a user id (raises Unauthorized)."""
        return self.authenticator.authenticate(token)

    async def connect(self, websocket: Any, user_id: int) -> Connection:
        """Register an authenticated connection and count it for presence."""
        connection = Connection(websocket=websocket, user_id=user_id)
        with self._lock:
            self.connections[connection.id] = connection

        logger.info(f"[Session] User {user_id} connected (connection {connection.id})")
        if self.presence.connect(user_id):
            await self.broadcast_all({"type": "user_status", "userId": user_id, "status": ONLINE})
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Tear down a connection. Safe to call more than once.

        Runs the same way for a clean close, a network drop or a protocol
        error. When this was the user's last connection, last-seen is
        persisted and the offline edge is broadcast.
        """
        with self._lock:
            if connection.closed:
                return
            connection.closed = True
            self.connections.pop(connection.id, None)
            self._drop_subscriptions(connection)

        user_id = connection.user_id
        logger.info(f"[Session] User {user_id} disconnected (connection {connection.id})")
        if not self.presence.disconnect(user_id):
            return

        last_seen = utcnow()
        try:
            await run_in_threadpool(self.store.set_last_seen, user_id, last_seen)
        except duckdb.Error as e:
            logger.error(f"[Session] Failed to persist last-seen for user {user_id}: {e}")

        # A reconnect during the store call already broadcast online
        if self.presence.is_online(user_id):
            logger.debug(f"[Session] User {user_id} reconnected before going offline")
            return

        await self.broadcast_all({
            "type": "user_status",
            "userId": user_id,
            "status": OFFLINE,
            "lastSeen": isoformat(last_seen),
        })

    def is_online(self, user_id: int) -> bool:
        return self.presence.is_online(user_id)

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def handle(self, connection: Connection, data: Any) -> None:
        """Parse and dispatch one decoded client frame.

        Every per-event failure ends here and has no observable effect on
        other clients. With diagnostics enabled the sender alone gets an
        ``error`` frame.
        """
        try:
            event = parse_event(data)
            await self.dispatch(connection, event)
        except ChatError as e:
            kind = data.get("type") if isinstance(data, dict) else None
            logger.debug(f"[Session] Dropped {kind} from user {connection.user_id}: {e}")
            if self.diagnostics:
                await self._safe_send(connection, {"type": "error", "event": kind, "reason": e.reason})

    async def dispatch(self, connection: Connection, event: InboundEvent) -> None:
        """Route a validated event to its handler."""
        if isinstance(event, JoinRoom):
            await self.join_room(connection, event.roomId)
        elif isinstance(event, LeaveRoom):
            self.leave_room(connection, event.roomId)
        elif isinstance(event, SendMessage):
            await self.send_message(connection, event.roomId, event.content)
        elif isinstance(event, Typing):
            await self.typing(connection, event.roomId, event.isTyping)
        elif isinstance(event, MessageDelivered):
            await self.receipts.acknowledge_delivered(event.messageId, connection.user_id)
        elif isinstance(event, MessageRead):
            await self.receipts.acknowledge_read(event.messageId, connection.user_id)
        else:
            raise EventValidationError(f"unhandled event {type(event).__name__}")

    # =========================================================================
    # Room actions
    # =========================================================================

    async def join_room(self, connection: Connection, room_id: int) -> None:
        """Subscribe to a room the user belongs to. Rejoining is a no-op."""
        await self._require_member(room_id, connection.user_id)
        with self._lock:
            if connection.closed:
                return
            connection.rooms.add(room_id)
            self.room_subscribers.setdefault(room_id, set()).add(connection.id)
        logger.debug(f"[Session] Connection {connection.id} subscribed to room {room_id}")

    def leave_room(self, connection: Connection, room_id: int) -> None:
        with self._lock:
            connection.rooms.discard(room_id)
            self._unsubscribe(room_id, connection.id)

    async def send_message(self, connection: Connection, room_id: int, content: str) -> Message:
        """Check content, membership and rate limit, then hand off to the pipeline."""
        if not content.strip():
            raise EventValidationError("empty message content")
        await self._require_member(room_id, connection.user_id)
        if not self.rate_limiter.allow(connection.user_id, room_id):
            raise RateLimited(f"user {connection.user_id} over send limit in room {room_id}")

        message = await self.pipeline.submit(room_id, connection.user_id, content)
        if message is None:
            raise PersistenceFailure(f"message to room {room_id} was not persisted")
        return message

    async def typing(self, connection: Connection, room_id: int, is_typing: bool) -> None:
        """Relay a typing indicator to everyone in the room but the sender."""
        await self._require_member(room_id, connection.user_id)
        await self.broadcast_room(
            room_id,
            {"type": "typing", "roomId": room_id, "userId": connection.user_id, "isTyping": is_typing},
            exclude=connection,
        )

    async def _require_member(self, room_id: int, user_id: int) -> None:
        """Re-check membership against the store. Never cached."""
        try:
            is_member = await run_in_threadpool(self.store.is_member, room_id, user_id)
        except duckdb.Error as e:
            logger.error(f"[Session] Membership lookup failed for room {room_id}: {e}")
            raise PersistenceFailure(str(e)) from e
        if not is_member:
            raise AuthorizationDenied(f"user {user_id} is not a member of room {room_id}")

    # =========================================================================
    # Fan-out
    # =========================================================================

    def subscribers(self, room_id: int) -> List[Connection]:
        """Live connections currently subscribed to a room."""
        with self._lock:
            return [
                self.connections[cid]
                for cid in self.room_subscribers.get(room_id, ())
                if cid in self.connections
            ]

    async def broadcast_all(self, payload: dict) -> None:
        """Send a frame to every live connection in the process."""
        with self._lock:
            targets = list(self.connections.values())
        await self._send_many(targets, payload)

    async def broadcast_room(
        self, room_id: int, payload: dict, exclude: Optional[Connection] = None
    ) -> None:
        """Send a frame to every connection subscribed to a room.

        Args:
            room_id: Target room.
            payload: JSON-serializable frame.
            exclude: Connection to skip (the originator of a typing event).
        """
        targets = [conn for conn in self.subscribers(room_id) if conn is not exclude]
        await self._send_many(targets, payload)

    async def _send_many(self, targets: List[Connection], payload: dict) -> None:
        if not targets:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for conn in targets],
            return_exceptions=True
        )

        # A failed send means the socket is gone; its receive loop will run
        # disconnect(), meanwhile stop routing room traffic to it.
        failed = [conn for conn, success in zip(targets, results) if success is not True]
        if failed:
            with self._lock:
                for conn in failed:
                    self._drop_subscriptions(conn)

    async def _safe_send(self, connection: Connection, message: dict) -> bool:
        """Send a frame to one connection.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"[Session] Failed to send to connection {connection.id}: {e}")
            return False

    def _drop_subscriptions(self, connection: Connection) -> None:
        # Caller holds self._lock
        for room_id in connection.rooms:
            self._unsubscribe(room_id, connection.id)
        connection.rooms.clear()

    def _unsubscribe(self, room_id: int, connection_id: str) -> None:
        # Caller holds self._lock
        subscribers = self.room_subscribers.get(room_id)
        if subscribers is None:
            return
        subscribers.discard(connection_id)
        if not subscribers:
            del self.room_subscribers[room_id]


# =============================================================================
# Process-wide instance
# =============================================================================

_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the global session manager, building it from config on first call."""
    global _session_manager
    if _session_manager is None:
        config = get_config()
        store = get_store()
        _session_manager = SessionManager.from_config(config, store)
    return _session_manager


def set_session_manager(session_manager: SessionManager) -> None:
    global _session_manager
    _session_manager = session_manager


def reset_session_manager() -> None:
    """Forget the global session manager (for testing)."""
    global _session_manager
    _session_manager = None
