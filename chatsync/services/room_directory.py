# chatsync/services/room_directory.py

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from chatsync.core.errors import InvalidState, NotFound
from chatsync.models.models import Room
from chatsync.services.document_store import DocumentStore, Subscription, sort_children
from chatsync.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

ROOMS_PATH = "chatRooms"
PAIR_INDEX_PATH = "privateRoomIndex"


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for a pair of users."""
    return "|".join(sorted([user_a, user_b]))


def rooms_for_user(user_id: str, snapshot: Optional[Dict[str, Any]]) -> List[Room]:
    """
    Filter a full ``chatRooms`` snapshot down to the user's rooms, most
    recently active first (last message time, else creation time).
    """
    rooms = [
        Room.from_store(room_id, data)
        for room_id, data in sort_children(snapshot or {})
        if isinstance(data, dict) and "kind" in data and (data.get("participants") or {}).get(user_id)
    ]
    return sorted(rooms, key=lambda room: room.activity_time, reverse=True)


# ============================================================================
# ROOM DIRECTORY
# ============================================================================
class RoomDirectory:
    """
    Resolves, creates and lists chat rooms.

    Rooms live under ``chatRooms/{roomId}``. Membership is stored with the
    presence-flag encoding and translated to a list at this boundary:

        chatRooms/-Nx1...: {
            "kind": "group",
            "participants": {"alice": true, "bob": true, "carol": false},
            "name": "Team",
            "admin": "alice",
            "createdAt": 1732996800000,
            "updatedAt": 1732996800000,
            "lastMessage": {...} | absent
        }

    Private rooms are deduplicated per unordered pair. Without the pair index
    the lookup is a linear scan of every room (O(n), no secondary index).
    With ``use_pair_index`` a ``privateRoomIndex/{a|b} -> roomId`` entry is
    written in the same update that creates the room, and the scan is only the
    fallback for rooms created before the index existed.

    The dedup is a read-then-write: two near-simultaneous calls for the same
    pair can both miss and create two rooms. Passing enabled ``KeyedLocks``
    serializes the calls made through this process.

    Usage:
        rooms = RoomDirectory(store)
        room_id = await rooms.create_or_get_private_room("alice", "bob")
        handle = await rooms.subscribe("alice", on_rooms)
        ...
        handle.close()
    """

    def __init__(
        self,
        store: DocumentStore,
        locks: Optional[KeyedLocks] = None,
        use_pair_index: bool = False,
    ) -> None:
        self.store = store
        self.locks = locks if locks is not None else KeyedLocks()
        self.use_pair_index = use_pair_index

    async def create_or_get_private_room(self, user_a: str, user_b: str) -> str:
        """
        Return the id of the private room for ``{user_a, user_b}``, creating
        it when none exists.

        Raises:
            InvalidState: both ids are the same user
        """
        if user_a == user_b:
            raise InvalidState("A private room needs two distinct users")

        key = pair_key(user_a, user_b)
        async with self.locks.hold(f"private-room:{key}"):
            existing = await self.find_private_room(user_a, user_b)
            if existing is not None:
                return existing.id

            logger.debug("No private room for %s, creating (unguarded read-then-write)", key)
            now = self.store.now()
            room_id = self.store.push_key(ROOMS_PATH)
            updates: Dict[str, Any] = {
                f"{ROOMS_PATH}/{room_id}": {
                    "kind": "private",
                    "participants": {user_a: True, user_b: True},
                    "createdAt": now,
                    "updatedAt": now,
                    "lastMessage": None,
                }
            }
            if self.use_pair_index:
                updates[f"{PAIR_INDEX_PATH}/{key}"] = room_id
            await self.store.update(updates)

        logger.info("✓ Created private room %s for %s", room_id, key)
        return room_id

    async def find_private_room(self, user_a: str, user_b: str) -> Optional[Room]:
        wanted = {user_a, user_b}

        if self.use_pair_index:
            room_id = await self.store.get(f"{PAIR_INDEX_PATH}/{pair_key(user_a, user_b)}")
            if room_id:
                room = await self.get_room(room_id)
                if room is not None and room.kind == "private" and set(room.participants) == wanted:
                    return room

        for room_id, data in await self.store.query(ROOMS_PATH):
            if not isinstance(data, dict) or data.get("kind") != "private":
                continue
            flags = data.get("participants") or {}
            if {uid for uid, present in flags.items() if present} == wanted:
                return Room.from_store(room_id, data)
        return None

    async def create_group(self, members: Iterable[str], name: str, admin: str) -> str:
        """
        Create a group room. Never deduplicated; the admin is always a member.

        Returns:
            str: id of the new room
        """
        participants = {uid: True for uid in members}
        participants[admin] = True

        now = self.store.now()
        room_id = self.store.push_key(ROOMS_PATH)
        await self.store.set(
            f"{ROOMS_PATH}/{room_id}",
            {
                "kind": "group",
                "participants": participants,
                "name": name,
                "admin": admin,
                "createdAt": now,
                "updatedAt": now,
                "lastMessage": None,
            },
        )
        logger.info("✓ Created group '%s' (%s) with %d members", name, room_id, len(participants))
        return room_id

    async def get_room(self, room_id: str) -> Optional[Room]:
        data = await self.store.get(f"{ROOMS_PATH}/{room_id}")
        if not isinstance(data, dict) or "kind" not in data:
            return None
        return Room.from_store(room_id, data)

    async def _require_group(self, room_id: str) -> Room:
        room = await self.get_room(room_id)
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        if room.kind != "group":
            raise InvalidState(f"Room {room_id} is private; its members cannot change")
        return room

    async def add_members(self, room_id: str, user_ids: Iterable[str]) -> None:
        """Set the membership flag of every user to true. Idempotent."""
        await self._require_group(room_id)
        updates = {f"{ROOMS_PATH}/{room_id}/participants/{uid}": True for uid in user_ids}
        await self.store.update(updates)
        logger.info("→ Added %d members to room %s", len(updates), room_id)

    async def remove_member(self, room_id: str, user_id: str) -> None:
        """
        Set the user's membership flag to false. Idempotent.

        The key is kept as a tombstone so historical membership stays readable.
        """
        await self._require_group(room_id)
        await self.store.update({f"{ROOMS_PATH}/{room_id}/participants/{user_id}": False})
        logger.info("← Removed %s from room %s", user_id, room_id)

    async def rename_group(self, room_id: str, name: str) -> None:
        await self._require_group(room_id)
        await self.store.update({f"{ROOMS_PATH}/{room_id}/name": name})
        logger.info("✓ Renamed room %s to '%s'", room_id, name)

    async def list_rooms_for_user(self, user_id: str) -> List[Room]:
        """
        Rooms where ``user_id`` is a current member, most recently active
        first. Linear scan of all rooms.
        """
        return rooms_for_user(user_id, await self.store.get(ROOMS_PATH))

    async def subscribe(
        self, user_id: str, on_change: Callable[[List[Room]], Awaitable[None]]
    ) -> Subscription:
        """
        Deliver the user's full sorted room list on every change to any room.
        No incremental diff is computed.
        """

        async def _on_rooms(snapshot: Any) -> None:
            await on_change(rooms_for_user(user_id, snapshot))

        return await self.store.subscribe(ROOMS_PATH, _on_rooms)

    async def subscribe_room(
        self, room_id: str, on_change: Callable[[Optional[Room]], Awaitable[None]]
    ) -> Subscription:
        """Deliver one room on every change, or None once it no longer exists."""

        async def _on_room(data: Any) -> None:
            if not isinstance(data, dict) or "kind" not in data:
                await on_change(None)
                return
            await on_change(Room.from_store(room_id, data))

        return await self.store.subscribe(f"{ROOMS_PATH}/{room_id}", _on_room)
