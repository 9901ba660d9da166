"""
Tests for MessageLog.

Verifies:
- append writes the message and the room's lastMessage together
- delete repairs lastMessage from the remaining messages
- read markers and timestamp ordering
"""

import asyncio

import pytest

from chatsync.core.errors import NotFound
from chatsync.services.message_log import MessageLog


@pytest.fixture
async def room_id(rooms):
    return await rooms.create_group(["u1", "u2", "u3"], "Team", admin="u1")


class TestAppend:
    async def test_last_message_points_at_new_message(self, messages, rooms, room_id, clock):
        message_id = await messages.append(room_id, "u1", "hi")

        room = await rooms.get_room(room_id)

        assert room.last_message.id == message_id
        assert room.last_message.text == "hi"
        assert room.last_message.sender_id == "u1"
        assert room.last_message.timestamp == clock.now

    async def test_every_append_moves_the_pointer(self, messages, rooms, room_id, clock):
        for text in ("one", "two", "three"):
            clock.advance()
            message_id = await messages.append(room_id, "u2", text)
            assert (await rooms.get_room(room_id)).last_message.id == message_id

    async def test_emoji_kind_is_stored(self, messages, room_id):
        message_id = await messages.append(room_id, "u1", "🎉", kind="emoji")

        assert (await messages.get_message(room_id, message_id)).kind == "emoji"

    async def test_unknown_room_raises_not_found(self, messages):
        with pytest.raises(NotFound):
            await messages.append("missing", "u1", "hi")


class TestOrdering:
    async def test_messages_ordered_by_timestamp_not_insertion(self, messages, store, room_id):
        await store.update({
            f"chatRooms/{room_id}/messages/b": {"senderId": "u1", "text": "later", "timestamp": 20},
            f"chatRooms/{room_id}/messages/a": {"senderId": "u1", "text": "latest", "timestamp": 30},
            f"chatRooms/{room_id}/messages/c": {"senderId": "u1", "text": "first", "timestamp": 10},
        })

        listed = await messages.get_messages(room_id)

        assert [m.text for m in listed] == ["first", "later", "latest"]

    async def test_subscription_delivers_full_ordered_list(self, messages, room_id, clock):
        deliveries = []

        async def on_messages(items):
            deliveries.append([m.text for m in items])

        async with await messages.subscribe_to_messages(room_id, on_messages):
            await messages.append(room_id, "u1", "one")
            clock.advance()
            await messages.append(room_id, "u2", "two")

        assert deliveries == [[], ["one"], ["one", "two"]]


class TestDelete:
    async def test_deleting_latest_repairs_pointer_to_max_timestamp(self, messages, rooms, room_id, clock):
        first = await messages.append(room_id, "u1", "first")
        clock.advance()
        second = await messages.append(room_id, "u2", "second")
        clock.advance()
        latest = await messages.append(room_id, "u1", "latest")

        await messages.delete(room_id, latest)

        room = await rooms.get_room(room_id)
        assert room.last_message.id == second
        assert await messages.get_message(room_id, latest) is None
        assert [m.id for m in await messages.get_messages(room_id)] == [first, second]

    async def test_repair_uses_timestamp_not_insertion_order(self, messages, store, rooms, room_id):
        await store.update({
            f"chatRooms/{room_id}/messages/m1": {"senderId": "u1", "text": "newest", "timestamp": 50},
            f"chatRooms/{room_id}/messages/m2": {"senderId": "u1", "text": "older", "timestamp": 20},
            f"chatRooms/{room_id}/messages/m3": {"senderId": "u1", "text": "last", "timestamp": 60},
            f"chatRooms/{room_id}/lastMessage": {
                "id": "m3", "senderId": "u1", "text": "last", "timestamp": 60,
            },
        })

        await messages.delete(room_id, "m3")

        assert (await rooms.get_room(room_id)).last_message.id == "m1"

    async def test_deleting_sole_message_clears_pointer(self, messages, rooms, room_id):
        only = await messages.append(room_id, "u1", "alone")

        await messages.delete(room_id, only)

        assert (await rooms.get_room(room_id)).last_message is None

    async def test_deleting_older_message_keeps_pointer(self, messages, rooms, room_id, clock):
        old = await messages.append(room_id, "u1", "old")
        clock.advance()
        new = await messages.append(room_id, "u1", "new")

        await messages.delete(room_id, old)

        assert (await rooms.get_room(room_id)).last_message.id == new

    async def test_missing_message_raises_not_found(self, messages, room_id):
        with pytest.raises(NotFound):
            await messages.delete(room_id, "nope")

    async def test_serialized_append_waits_for_delete_repair(self, store, rooms, room_id, clock, serialized_locks):
        log = MessageLog(store, locks=serialized_locks)
        await log.append(room_id, "u1", "first")
        clock.advance()
        doomed = await log.append(room_id, "u1", "doomed")
        clock.advance()

        real_get = store.get

        async def slow_get(path):
            value = await real_get(path)
            await asyncio.sleep(0)
            return value

        store.get = slow_get
        _, appended = await asyncio.gather(
            log.delete(room_id, doomed),
            log.append(room_id, "u2", "racing"),
        )

        assert (await rooms.get_room(room_id)).last_message.id == appended


class TestReadMarkers:
    async def test_mark_read_sets_only_reader(self, messages, room_id, clock):
        message_id = await messages.append(room_id, "u1", "hi")
        clock.advance()

        await messages.mark_read(room_id, message_id, "u2")

        message = await messages.get_message(room_id, message_id)
        assert message.read_by == {"u2": clock.now}
        assert "u1" not in message.read_by

    async def test_mark_read_on_missing_message_raises(self, messages, room_id, store):
        with pytest.raises(NotFound):
            await messages.mark_read(room_id, "nope", "u2")

        assert await store.get(f"chatRooms/{room_id}/messages") is None
