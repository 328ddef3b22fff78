"""Unit tests for the DuckDB chat store."""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import duckdb
import pytest

from app.store.schemas import isoformat
from app.store.service import ChatStore


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    # DuckDB refuses to open an existing empty file, so only reserve the name
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    for path in (db_path, db_path + ".wal"):
        if os.path.exists(path):
            os.remove(path)


class TestUsers:

    def test_create_and_get(self, store):
        user = store.create_user("Ada", "ada@example.com", "hash")
        fetched = store.get_user(user.id)
        assert fetched.name == "Ada"
        assert fetched.lastSeen is None
        assert store.get_credentials("ada@example.com") == (user.id, "hash")

    def test_duplicate_email(self, store):
        store.create_user("Ada", "ada@example.com", "hash")
        with pytest.raises(duckdb.ConstraintException):
            store.create_user("Other", "ada@example.com", "hash")

    def test_unknown(self, store):
        assert store.get_user(999) is None
        assert store.get_credentials("nobody@example.com") is None

    def test_last_seen_round_trips_as_utc(self, store, make_user):
        user = make_user()
        when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone(timedelta(hours=2)))
        store.set_last_seen(user.id, when)

        last_seen = store.get_user(user.id).lastSeen
        assert last_seen.tzinfo is not None
        assert last_seen == when
        assert isoformat(last_seen) == "2024-05-01T10:30:00.000Z"


class TestRoomsAndMembership:

    def test_creator_is_member(self, store, make_user):
        owner = make_user()
        room = store.create_room("general", owner.id)
        assert store.is_member(room.id, owner.id)
        assert [r.id for r in store.list_rooms_for_user(owner.id)] == [room.id]

    def test_private_room(self, store, make_user):
        room = store.create_room("secret", make_user().id, is_private=True, invite_code="abcd1234")
        fetched = store.get_room(room.id)
        assert fetched.isPrivate
        assert fetched.inviteCode == "abcd1234"

    def test_add_member_is_idempotent(self, store, make_user):
        owner, guest = make_user(), make_user()
        room = store.create_room("general", owner.id)
        store.add_member(room.id, guest.id)
        store.add_member(room.id, guest.id)
        assert [m.userId for m in store.list_members(room.id)] == [owner.id, guest.id]

    def test_remove_member(self, store, make_user):
        owner, guest = make_user(), make_user()
        room = store.create_room("general", owner.id)
        store.add_member(room.id, guest.id)
        store.remove_member(room.id, guest.id)
        assert not store.is_member(room.id, guest.id)

    def test_unknown_room(self, store):
        assert store.get_room(404) is None
        assert not store.is_member(404, 1)


class TestMessages:

    def test_ids_increase(self, store, make_user):
        user = make_user()
        room = store.create_room("general", user.id)
        first = store.create_message(room.id, user.id, "one")
        second = store.create_message(room.id, user.id, "two")
        assert second.id > first.id
        assert first.createdAt.tzinfo is not None

    def test_to_event(self, store, make_user):
        user = make_user()
        room = store.create_room("general", user.id)
        message = store.create_message(room.id, user.id, "hello")
        event = message.to_event()
        assert event["type"] == "receive_message"
        assert event["id"] == message.id
        assert event["roomId"] == room.id
        assert event["senderId"] == user.id
        assert event["content"] == "hello"
        assert event["createdAt"].endswith("Z")

    def test_list_messages_newest_first_with_cursor(self, store, make_user):
        user = make_user()
        room = store.create_room("general", user.id)
        other = store.create_room("other", user.id)
        ids = [store.create_message(room.id, user.id, f"m{i}").id for i in range(5)]
        store.create_message(other.id, user.id, "elsewhere")

        page = store.list_messages(room.id, limit=2)
        assert [m.id for m in page] == [ids[4], ids[3]]

        page = store.list_messages(room.id, limit=2, cursor=page[-1].id)
        assert [m.id for m in page] == [ids[2], ids[1]]

        page = store.list_messages(room.id, limit=10, cursor=ids[0])
        assert page == []


class TestReceipts:

    def test_upsert_touches_only_given_field(self, store, make_user):
        user = make_user()
        room = store.create_room("general", user.id)
        message = store.create_message(room.id, user.id, "hi")

        delivered = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        read = datetime(2024, 1, 1, 9, 5, tzinfo=timezone.utc)

        receipt = store.upsert_receipt(message.id, user.id, read_at=read)
        assert receipt.readAt == read
        assert receipt.deliveredAt is None

        receipt = store.upsert_receipt(message.id, user.id, delivered_at=delivered)
        assert receipt.deliveredAt == delivered
        assert receipt.readAt == read

    def test_reacknowledge_refreshes(self, store, make_user):
        user = make_user()
        room = store.create_room("general", user.id)
        message = store.create_message(room.id, user.id, "hi")

        first = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        later = first + timedelta(minutes=1)
        store.upsert_receipt(message.id, user.id, delivered_at=first)
        store.upsert_receipt(message.id, user.id, delivered_at=later)

        receipts = store.list_receipts(message.id)
        assert len(receipts) == 1
        assert receipts[0].deliveredAt == later

    def test_upsert_requires_a_field(self, store):
        with pytest.raises(ValueError):
            store.upsert_receipt(1, 1)


class TestSingleton:

    def test_file_backed_store_persists(self, temp_db):
        store = ChatStore(db_path=temp_db)
        user = store.create_user("Ada", "ada@example.com", "hash")
        store.close()

        reopened = ChatStore(db_path=temp_db)
        assert reopened.get_user(user.id).name == "Ada"
        reopened.close()

    def test_get_instance_reuses(self, store):
        assert ChatStore.get_instance() is store
