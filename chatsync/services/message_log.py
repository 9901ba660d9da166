# chatsync/services/message_log.py

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional

from chatsync.core.errors import NotFound
from chatsync.models.models import Message, MessageKind
from chatsync.services.document_store import DocumentStore, Subscription, sort_children
from chatsync.services.locks import KeyedLocks
from chatsync.services.room_directory import ROOMS_PATH

logger = logging.getLogger(__name__)


def ordered_messages(snapshot: Any) -> List[Message]:
    """Messages sorted by timestamp (ties by key), not by insertion order."""
    if not isinstance(snapshot, dict):
        return []
    return [
        Message.from_store(message_id, data)
        for message_id, data in sort_children(snapshot, order_by="timestamp")
    ]


# ============================================================================
# MESSAGE LOG
# ============================================================================
class MessageLog:
    """
    Appends, deletes and marks messages in a room.

    Messages live under ``chatRooms/{roomId}/messages/{messageId}``; the room's
    ``lastMessage`` holds a copy of the newest message (with its id).

    ``append`` writes the message and the new ``lastMessage`` in one
    multi-path update. ``delete`` reads first and repairs ``lastMessage``
    afterwards, so an append landing between the read and the write can leave
    ``lastMessage`` stale. Enabled ``KeyedLocks`` serialize appends and
    deletes per room within this process.
    """

    def __init__(self, store: DocumentStore, locks: Optional[KeyedLocks] = None) -> None:
        self.store = store
        self.locks = locks if locks is not None else KeyedLocks()

    def _messages_path(self, room_id: str) -> str:
        return f"{ROOMS_PATH}/{room_id}/messages"

    async def _require_room(self, room_id: str) -> None:
        if await self.store.get(f"{ROOMS_PATH}/{room_id}/kind") is None:
            raise NotFound(f"Room {room_id} not found")

    async def append(
        self, room_id: str, sender_id: str, text: str, kind: MessageKind = "text"
    ) -> str:
        """
        Append a message and point the room's ``lastMessage`` at it.

        Returns:
            str: store-generated message id

        Raises:
            NotFound: the room does not exist
        """
        await self._require_room(room_id)

        async with self.locks.hold(f"room-messages:{room_id}"):
            message_id = self.store.push_key(self._messages_path(room_id))
            message = Message(
                id=message_id,
                sender_id=sender_id,
                text=text,
                kind=kind,
                timestamp=self.store.now(),
            )
            await self.store.update(
                {
                    f"{self._messages_path(room_id)}/{message_id}": message.to_store(),
                    f"{ROOMS_PATH}/{room_id}/lastMessage": message.model_dump(by_alias=True),
                }
            )

        logger.info("📨 %s posted %s in room %s", sender_id, message_id, room_id)
        return message_id

    async def delete(self, room_id: str, message_id: str) -> None:
        """
        Delete a message.

        If it was the room's ``lastMessage``, the remaining message with the
        highest timestamp takes its place (O(n) scan of the room), or
        ``lastMessage`` is cleared when none remain.

        Raises:
            NotFound: the message does not exist
        """
        message_path = f"{self._messages_path(room_id)}/{message_id}"

        async with self.locks.hold(f"room-messages:{room_id}"):
            if await self.store.get(message_path) is None:
                raise NotFound(f"Message {message_id} not found in room {room_id}")

            updates = {message_path: None}
            last_message = await self.store.get(f"{ROOMS_PATH}/{room_id}/lastMessage")
            if isinstance(last_message, dict) and last_message.get("id") == message_id:
                logger.debug("Repairing lastMessage of room %s (unguarded read-then-write)", room_id)
                remaining = [
                    message
                    for message in ordered_messages(await self.store.get(self._messages_path(room_id)))
                    if message.id != message_id
                ]
                updates[f"{ROOMS_PATH}/{room_id}/lastMessage"] = (
                    remaining[-1].model_dump(by_alias=True) if remaining else None
                )

            await self.store.update(updates)

        logger.info("🗑 Deleted message %s from room %s", message_id, room_id)

    async def mark_read(self, room_id: str, message_id: str, user_id: str) -> None:
        """Record when ``user_id`` read the message. No aggregate receipt is kept."""
        message_path = f"{self._messages_path(room_id)}/{message_id}"
        if await self.store.get(message_path) is None:
            raise NotFound(f"Message {message_id} not found in room {room_id}")
        await self.store.update({f"{message_path}/readBy/{user_id}": self.store.now()})

    async def get_message(self, room_id: str, message_id: str) -> Optional[Message]:
        data = await self.store.get(f"{self._messages_path(room_id)}/{message_id}")
        if not isinstance(data, dict):
            return None
        return Message.from_store(message_id, data)

    async def get_messages(self, room_id: str) -> List[Message]:
        return ordered_messages(await self.store.get(self._messages_path(room_id)))

    async def subscribe_to_messages(
        self, room_id: str, on_change: Callable[[List[Message]], Awaitable[None]]
    ) -> Subscription:
        """Deliver the room's full ordered message list on every change."""

        async def _on_messages(snapshot: Any) -> None:
            await on_change(ordered_messages(snapshot))

        return await self.store.subscribe(self._messages_path(room_id), _on_messages)
