"""
Tests for the Redis document store.

The store runs against ``FakeRedis``, an in-memory stand-in for the parts of
the ``redis.asyncio`` client it uses: GET, SCAN, transactional pipelines with
WATCH, PUBLISH and a Pub/Sub listener fed from a list.
"""

import json
from fnmatch import fnmatch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from chatsync.core.errors import StoreUnavailable
from chatsync.services.redis_store import MAX_WATCH_RETRIES, RedisDocumentStore


class FakePipeline:
    def __init__(self, server):
        self.server = server
        self.queued = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.queued = None

    async def watch(self, *keys):
        self.server.watch_calls += 1

    async def mget(self, *keys):
        return [self.server.data.get(key) for key in keys]

    def multi(self):
        self.queued = []

    def set(self, key, value):
        self.queued.append(("set", key, value))
        return self

    def delete(self, key):
        self.queued.append(("delete", key, None))
        return self

    async def execute(self):
        queued, self.queued = self.queued, None
        if self.server.execute_error is not None:
            raise self.server.execute_error
        if self.server.conflicts:
            self.server.conflicts -= 1
            raise WatchError("Watched variable changed.")
        for op, key, value in queued:
            if op == "set":
                self.server.data[key] = value
            else:
                self.server.data.pop(key, None)
        return [True] * len(queued)


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.channels = []
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.extend(channels)

    async def listen(self):
        for message in self.messages:
            yield message

    async def unsubscribe(self, *channels):
        self.channels = []

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.published = []
        self.incoming = []
        self.watch_calls = 0
        self.conflicts = 0
        self.execute_error = None
        self.read_error = None
        self.ping_error = None
        self.closed = False

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def get(self, key):
        if self.read_error is not None:
            raise self.read_error
        return self.data.get(key)

    async def scan_iter(self, match=None):
        for key in sorted(self.data):
            if match is None or fnmatch(key, match):
                yield key

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    def pubsub(self):
        return FakePubSub(self.incoming)

    async def aclose(self):
        self.closed = True


def change(origin, *paths):
    return {"type": "message", "data": json.dumps({"origin": origin, "paths": list(paths)})}


@pytest.fixture
def server():
    return FakeRedis()


@pytest.fixture
def redis_store(server, clock):
    return RedisDocumentStore("redis://fake:6379", prefix="test", clock=clock, client=server)


class TestReadsAndWrites:
    async def test_one_json_document_per_collection(self, redis_store, server):
        await redis_store.update({"users/u1/status": "online", "chatRooms/r1/name": "Team"})

        assert json.loads(server.data["test:doc:users"]) == {"u1": {"status": "online"}}
        assert json.loads(server.data["test:doc:chatRooms"]) == {"r1": {"name": "Team"}}
        assert await redis_store.get("users/u1/status") == "online"

    async def test_root_read_assembles_every_collection(self, redis_store, server):
        await redis_store.update({"users/u1/status": "online", "chatRooms/r1/name": "Team"})
        server.data["other:doc:users"] = json.dumps({"ghost": True})

        assert await redis_store.get("") == {
            "chatRooms": {"r1": {"name": "Team"}},
            "users": {"u1": {"status": "online"}},
        }

    async def test_emptied_collection_deletes_its_key(self, redis_store, server):
        await redis_store.set("users/u1/status", "online")

        await redis_store.set("users/u1", None)

        assert "test:doc:users" not in server.data
        assert await redis_store.get("users") is None

    async def test_root_writes_are_refused(self, redis_store):
        with pytest.raises(ValueError):
            await redis_store.set("", {"users": {}})


class TestTransactions:
    async def test_watch_conflicts_are_retried(self, redis_store, server):
        server.conflicts = 2

        await redis_store.set("chatRooms/r1/name", "Team")

        assert server.watch_calls == 3
        assert await redis_store.get("chatRooms/r1/name") == "Team"

    async def test_gives_up_after_max_retries(self, redis_store, server):
        server.conflicts = MAX_WATCH_RETRIES

        with pytest.raises(StoreUnavailable):
            await redis_store.set("chatRooms/r1/name", "Team")

        assert server.watch_calls == MAX_WATCH_RETRIES
        assert server.data == {}
        assert server.published == []

    async def test_redis_write_error_becomes_store_unavailable(self, redis_store, server):
        server.execute_error = RedisConnectionError("connection reset")

        with pytest.raises(StoreUnavailable):
            await redis_store.set("chatRooms/r1/name", "Team")

    async def test_redis_read_error_becomes_store_unavailable(self, redis_store, server):
        server.read_error = RedisConnectionError("connection reset")

        with pytest.raises(StoreUnavailable):
            await redis_store.get("chatRooms")

    async def test_connect_failure_becomes_store_unavailable(self, redis_store, server):
        server.ping_error = RedisConnectionError("refused")

        with pytest.raises(StoreUnavailable):
            await redis_store.connect()


class TestChangeFanOut:
    async def test_write_publishes_changed_paths(self, redis_store, server):
        await redis_store.update({"users/u1/status": "online"})

        assert server.published == [
            ("test:changes", {"origin": redis_store.instance_id, "paths": ["users/u1/status"]})
        ]

    async def test_publishes_even_when_local_delivery_fails(self, redis_store, server):
        async def on_change(value):
            pass

        await redis_store.subscribe("users", on_change)
        server.read_error = RedisConnectionError("connection reset")

        await redis_store.update({"users/u1/status": "online"})

        assert len(server.published) == 1
        assert json.loads(server.data["test:doc:users"]) == {"u1": {"status": "online"}}

    async def test_listener_delivers_remote_changes_and_skips_own(self, redis_store, server):
        seen = []

        async def on_change(value):
            seen.append(value)

        await redis_store.subscribe("chatRooms/r1", on_change)
        server.data["test:doc:chatRooms"] = json.dumps({"r1": {"name": "Remote"}})
        server.incoming.extend(
            [
                {"type": "subscribe", "data": 1},
                change(redis_store.instance_id, "chatRooms/r1"),
                {"type": "message", "data": "{not json"},
                change("other-instance", "users/u9"),
                change("other-instance", "chatRooms/r1/name"),
            ]
        )

        await redis_store.listen()

        assert redis_store.pubsub.channels == ["test:changes"]
        assert seen == [None, {"name": "Remote"}]

    async def test_close_releases_subscriptions_and_connections(self, redis_store, server):
        async def on_change(value):
            pass

        await redis_store.subscribe("users", on_change)
        await redis_store.listen()

        await redis_store.close()

        assert redis_store.subscription_count == 0
        assert redis_store.pubsub.closed
        assert server.closed
