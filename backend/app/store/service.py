"""DuckDB-based chat storage service.

This module provides persistent storage for the chat backend using DuckDB,
a fast embedded database. One ``ChatStore`` plays every collaborator role
the realtime core needs:

    - Identity store:   users + password hashes
    - Membership store: rooms + room_members
    - Message store:    messages (ids from a sequence, assigned atomically)
    - Receipt store:    message_receipts, unique on (message_id, user_id)
    - User store:       users.last_seen

Database Schema:
    users(id, name, email UNIQUE, password_hash, last_seen, created_at)
    rooms(id, name, is_private, invite_code, created_by_id, created_at)
    room_members(room_id, user_id, joined_at)          PK (room_id, user_id)
    messages(id, room_id, sender_id, content, created_at)
    message_receipts(message_id, user_id, delivered_at, read_at)
                                                        PK (message_id, user_id)

Timestamps are stored as naive UTC and handed back timezone-aware.

Thread Safety:
    The DuckDB connection is NOT thread-safe. Every statement runs under a
    single lock, so the service can be called from the worker thread pool
    (the realtime core uses ``run_in_threadpool``) without interleaving.

Usage:
    store = ChatStore.get_instance()
    msg = store.create_message(room_id=1, sender_id=7, content="hello")
"""
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import duckdb

from app.config import get_config

from .schemas import Message, MessageReceipt, Room, RoomMemberInfo, User, utcnow

logger = logging.getLogger(__name__)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class ChatStore:
    """Singleton service for chat persistence in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ChatStore"] = None
    _db_path: str = "chat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to DuckDB file, or ":memory:". Defaults to "chat.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and clear the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequences and tables. Safe to call multiple times."""
        with self._lock:
            conn = self._get_connection()
            for seq in ("users_seq", "rooms_seq", "messages_seq"):
                conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {seq} START 1")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER DEFAULT nextval('users_seq') PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    email VARCHAR NOT NULL UNIQUE,
                    password_hash VARCHAR NOT NULL,
                    last_seen TIMESTAMP,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rooms (
                    id INTEGER DEFAULT nextval('rooms_seq') PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    is_private BOOLEAN NOT NULL DEFAULT FALSE,
                    invite_code VARCHAR,
                    created_by_id INTEGER NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS room_members (
                    room_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    joined_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (room_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER DEFAULT nextval('messages_seq') PRIMARY KEY,
                    room_id INTEGER NOT NULL,
                    sender_id INTEGER NOT NULL,
                    content VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS message_receipts (
                    message_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    delivered_at TIMESTAMP,
                    read_at TIMESTAMP,
                    PRIMARY KEY (message_id, user_id)
                )
            """)

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(self, name: str, email: str, password_hash: str) -> User:
        """Insert a user. Raises duckdb.ConstraintException on duplicate email."""
        with self._lock:
            row = self._get_connection().execute(
                """
                INSERT INTO users (name, email, password_hash, created_at)
                VALUES (?, ?, ?, ?)
                RETURNING id
                """,
                [name, email, password_hash, _to_db(utcnow())],
            ).fetchone()
        logger.info(f"[Store] Created user {row[0]} <{email}>")
        return User(id=row[0], name=name, email=email)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT id, name, email, last_seen FROM users WHERE id = ?",
                [user_id],
            ).fetchone()
        if row is None:
            return None
        return User(id=row[0], name=row[1], email=row[2], lastSeen=_from_db(row[3]))

    def get_credentials(self, email: str) -> Optional[Tuple[int, str]]:
        """Return (user_id, password_hash) for an email, or None."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT id, password_hash FROM users WHERE email = ?",
                [email],
            ).fetchone()
        return (row[0], row[1]) if row else None

    def set_last_seen(self, user_id: int, when: datetime) -> None:
        with self._lock:
            self._get_connection().execute(
                "UPDATE users SET last_seen = ? WHERE id = ?",
                [_to_db(when), user_id],
            )

    # =========================================================================
    # Rooms and membership
    # =========================================================================

    def create_room(
        self,
        name: str,
        created_by_id: int,
        is_private: bool = False,
        invite_code: Optional[str] = None,
    ) -> Room:
        """Create a room and make its creator the first member."""
        created_at = utcnow()
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                """
                INSERT INTO rooms (name, is_private, invite_code, created_by_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                RETURNING id
                """,
                [name, is_private, invite_code, created_by_id, _to_db(created_at)],
            ).fetchone()
            self.add_member(row[0], created_by_id)
        logger.info(f"[Store] Room {row[0]} '{name}' created by user {created_by_id}")
        return Room(
            id=row[0],
            name=name,
            isPrivate=is_private,
            inviteCode=invite_code,
            createdById=created_by_id,
            createdAt=created_at,
        )

    def get_room(self, room_id: int) -> Optional[Room]:
        with self._lock:
            row = self._get_connection().execute(
                """
                SELECT id, name, is_private, invite_code, created_by_id, created_at
                FROM rooms WHERE id = ?
                """,
                [room_id],
            ).fetchone()
        return self._row_to_room(row) if row else None

    def list_rooms_for_user(self, user_id: int) -> List[Room]:
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT r.id, r.name, r.is_private, r.invite_code, r.created_by_id, r.created_at
                FROM rooms r
                JOIN room_members m ON m.room_id = r.id
                WHERE m.user_id = ?
                ORDER BY r.id
                """,
                [user_id],
            ).fetchall()
        return [self._row_to_room(row) for row in rows]

    def add_member(self, room_id: int, user_id: int) -> None:
        """Add a membership. Idempotent."""
        with self._lock:
            self._get_connection().execute(
                """
                INSERT INTO room_members (room_id, user_id, joined_at)
                VALUES (?, ?, ?)
                ON CONFLICT (room_id, user_id) DO NOTHING
                """,
                [room_id, user_id, _to_db(utcnow())],
            )

    def remove_member(self, room_id: int, user_id: int) -> None:
        with self._lock:
            self._get_connection().execute(
                "DELETE FROM room_members WHERE room_id = ? AND user_id = ?",
                [room_id, user_id],
            )

    def is_member(self, room_id: int, user_id: int) -> bool:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT 1 FROM room_members WHERE room_id = ? AND user_id = ?",
                [room_id, user_id],
            ).fetchone()
        return row is not None

    def list_members(self, room_id: int) -> List[RoomMemberInfo]:
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT u.id, u.name, u.last_seen
                FROM room_members m
                JOIN users u ON u.id = m.user_id
                WHERE m.room_id = ?
                ORDER BY m.joined_at, u.id
                """,
                [room_id],
            ).fetchall()
        return [
            RoomMemberInfo(userId=row[0], name=row[1], lastSeen=_from_db(row[2]))
            for row in rows
        ]

    @staticmethod
    def _row_to_room(row) -> Room:
        return Room(
            id=row[0],
            name=row[1],
            isPrivate=row[2],
            inviteCode=row[3],
            createdById=row[4],
            createdAt=_from_db(row[5]),
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def create_message(self, room_id: int, sender_id: int, content: str) -> Message:
        """Persist a message; id and createdAt are assigned here."""
        created_at = utcnow()
        with self._lock:
            row = self._get_connection().execute(
                """
                INSERT INTO messages (room_id, sender_id, content, created_at)
                VALUES (?, ?, ?, ?)
                RETURNING id
                """,
                [room_id, sender_id, content, _to_db(created_at)],
            ).fetchone()
        return Message(
            id=row[0],
            roomId=room_id,
            senderId=sender_id,
            content=content,
            createdAt=created_at,
        )

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT id, room_id, sender_id, content, created_at FROM messages WHERE id = ?",
                [message_id],
            ).fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(
        self,
        room_id: int,
        limit: int = 50,
        cursor: Optional[int] = None,
    ) -> List[Message]:
        """Messages of a room, newest first.

        Args:
            room_id: The room ID.
            limit: Maximum number of messages to return.
            cursor: Exclusive upper bound on message id (the previous page's
                    last id). None starts from the newest message.
        """
        query = "SELECT id, room_id, sender_id, content, created_at FROM messages WHERE room_id = ?"
        params: list = [room_id]
        if cursor is not None:
            query += " AND id < ?"
            params.append(cursor)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [self._row_to_message(row) for row in rows]

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row[0],
            roomId=row[1],
            senderId=row[2],
            content=row[3],
            createdAt=_from_db(row[4]),
        )

    # =========================================================================
    # Receipts
    # =========================================================================

    def upsert_receipt(
        self,
        message_id: int,
        user_id: int,
        *,
        delivered_at: Optional[datetime] = None,
        read_at: Optional[datetime] = None,
    ) -> MessageReceipt:
        """Create or update the (message, user) receipt.

        Only the timestamp(s) passed in are written; the other field of an
        existing receipt is left untouched.
        """
        if delivered_at is None and read_at is None:
            raise ValueError("upsert_receipt needs delivered_at or read_at")

        updates = []
        if delivered_at is not None:
            updates.append("delivered_at = excluded.delivered_at")
        if read_at is not None:
            updates.append("read_at = excluded.read_at")

        with self._lock:
            conn = self._get_connection()
            conn.execute(
                f"""
                INSERT INTO message_receipts (message_id, user_id, delivered_at, read_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (message_id, user_id) DO UPDATE SET {", ".join(updates)}
                """,
                [message_id, user_id, _to_db(delivered_at), _to_db(read_at)],
            )
            receipt = self.get_receipt(message_id, user_id)
        return receipt

    def get_receipt(self, message_id: int, user_id: int) -> Optional[MessageReceipt]:
        with self._lock:
            row = self._get_connection().execute(
                """
                SELECT message_id, user_id, delivered_at, read_at
                FROM message_receipts WHERE message_id = ? AND user_id = ?
                """,
                [message_id, user_id],
            ).fetchone()
        if row is None:
            return None
        return MessageReceipt(
            messageId=row[0],
            userId=row[1],
            deliveredAt=_from_db(row[2]),
            readAt=_from_db(row[3]),
        )

    def list_receipts(self, message_id: int) -> List[MessageReceipt]:
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT message_id, user_id, delivered_at, read_at
                FROM message_receipts WHERE message_id = ?
                ORDER BY user_id
                """,
                [message_id],
            ).fetchall()
        return [
            MessageReceipt(
                messageId=row[0],
                userId=row[1],
                deliveredAt=_from_db(row[2]),
                readAt=_from_db(row[3]),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def get_store() -> ChatStore:
    """The process-wide store, opened at the configured database path."""
    return ChatStore.get_instance(db_path=get_config().database.path)
