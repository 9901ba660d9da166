# chatsync/core/state.py
from __future__ import annotations

from datetime import datetime, timezone

from chatsync.core.config import settings
from chatsync.services.connection_manager import ConnectionManager
from chatsync.services.document_store import DocumentStore, InMemoryDocumentStore
from chatsync.services.friend_graph import FriendGraph
from chatsync.services.locks import KeyedLocks
from chatsync.services.message_log import MessageLog
from chatsync.services.presence import PresenceTracker
from chatsync.services.room_directory import RoomDirectory
from chatsync.services.user_directory import UserDirectory

# Global singletons for app state, rebuilt by init_services() on startup
store: DocumentStore
locks: KeyedLocks
users: UserDirectory
rooms: RoomDirectory
messages: MessageLog
friends: FriendGraph
presence: PresenceTracker

connection_manager = ConnectionManager()

app_start_time: datetime = datetime.now(timezone.utc)


def init_services(new_store: DocumentStore) -> None:
    """Bind every core service to ``new_store`` and start with no connections."""
    global store, locks, users, rooms, messages, friends, presence, connection_manager

    store = new_store
    locks = KeyedLocks(enabled=settings.SERIALIZE_WRITES)
    users = UserDirectory(store)
    rooms = RoomDirectory(store, locks=locks, use_pair_index=settings.PRIVATE_ROOM_INDEX)
    messages = MessageLog(store, locks=locks)
    friends = FriendGraph(store, users, locks=locks)
    presence = PresenceTracker(store)
    connection_manager = ConnectionManager()


init_services(InMemoryDocumentStore())
