"""
Shared pytest fixtures.

Core services run against an in-memory document store with a manual clock
so timestamps and ordering are deterministic.
"""

import pytest

from chatsync.services.document_store import InMemoryDocumentStore
from chatsync.services.friend_graph import FriendGraph
from chatsync.services.locks import KeyedLocks
from chatsync.services.message_log import MessageLog
from chatsync.services.presence import PresenceTracker
from chatsync.services.room_directory import RoomDirectory
from chatsync.services.user_directory import UserDirectory


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def users(store):
    return UserDirectory(store)


@pytest.fixture
def rooms(store):
    return RoomDirectory(store)


@pytest.fixture
def messages(store):
    return MessageLog(store)


@pytest.fixture
def friends(store, users):
    return FriendGraph(store, users)


@pytest.fixture
def presence(store):
    return PresenceTracker(store)


@pytest.fixture
def serialized_locks():
    return KeyedLocks(enabled=True)


@pytest.fixture
async def people(users):
    """Three registered users: u1 (Ada), u2 (Grace), u3 (Alan)."""
    await users.create_user("u1", "ada@example.com", "Ada", "Lovelace")
    await users.create_user("u2", "grace@example.com", "Grace", "Hopper")
    await users.create_user("u3", "alan@example.com", "Alan", "Turing")
    return ["u1", "u2", "u3"]
