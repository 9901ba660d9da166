# chatsync/services/redis_store.py
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from chatsync.core.errors import StoreUnavailable
from chatsync.services.document_store import DocumentStore, split_path, tree_get, tree_set

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 10


class RedisDocumentStore(DocumentStore):
    """
    Document store backed by Redis.

    Each top-level collection ("users", "chatRooms", ...) is one JSON document
    stored under ``<prefix>:doc:<collection>``. Multi-path updates run in a
    WATCH/MULTI/EXEC transaction over the touched collections, so they are
    atomic across instances.

    Change fan-out uses Redis Pub/Sub: every write publishes the changed
    paths on ``<prefix>:changes`` and each instance's listener re-reads and
    delivers to its own subscribers. Writes made by this instance are
    delivered locally right away and skipped when they come back from Redis.
    """

    def __init__(self, url: str, prefix: str = "chatsync", clock=None, client=None):
        super().__init__(clock=clock)
        self.url = url
        self.prefix = prefix
        self.channel = f"{prefix}:changes"
        self.instance_id = uuid.uuid4().hex
        self.client = client
        self.pubsub = None
        self._listener: Optional[asyncio.Task] = None

    def _key(self, collection: str) -> str:
        return f"{self.prefix}:doc:{collection}"

    async def connect(self) -> None:
        """Establish async connection to Redis."""
        try:
            if self.client is None:
                self.client = redis.from_url(self.url, decode_responses=True)
            await self.client.ping()
        except RedisError as e:
            logger.error("Redis connection failed: %s", e)
            raise StoreUnavailable(f"Redis unavailable: {e}") from e
        logger.info("✓ Connected to Redis document store (prefix=%s)", self.prefix)

    def start_listener(self) -> asyncio.Task:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self.listen())
        return self._listener

    async def get(self, path: str) -> Any:
        segments = split_path(path)
        try:
            if segments:
                raw = await self.client.get(self._key(segments[0]))
                return tree_get(json.loads(raw) if raw else None, segments[1:])

            tree = {}
            async for key in self.client.scan_iter(match=self._key("*")):
                raw = await self.client.get(key)
                if raw:
                    tree[key.split(":doc:", 1)[1]] = json.loads(raw)
            return tree or None
        except RedisError as e:
            logger.error("Redis read failed for '%s': %s", path, e)
            raise StoreUnavailable(f"Read failed for {path!r}: {e}") from e

    async def _write(self, updates: Dict[Tuple[str, ...], Any]) -> None:
        if any(not segments for segments in updates):
            raise ValueError("Root writes are not supported by the Redis store")

        collections = sorted({segments[0] for segments in updates})
        keys = [self._key(collection) for collection in collections]

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(*keys)
                        raw_values = await pipe.mget(*keys)
                        trees = {
                            collection: json.loads(raw) if raw else None
                            for collection, raw in zip(collections, raw_values)
                        }
                        for segments, value in updates.items():
                            trees[segments[0]] = tree_set(trees[segments[0]] or {}, segments[1:], value)

                        pipe.multi()
                        for collection, tree in trees.items():
                            if tree is None:
                                pipe.delete(self._key(collection))
                            else:
                                pipe.set(self._key(collection), json.dumps(tree))
                        await pipe.execute()
                        return
                    except WatchError:
                        logger.debug("Concurrent write on %s, retrying", collections)
                        continue
        except RedisError as e:
            logger.error("Redis write failed for %s: %s", collections, e)
            raise StoreUnavailable(f"Write failed: {e}") from e

        raise StoreUnavailable(f"Gave up writing {collections} after {MAX_WATCH_RETRIES} conflicts")

    async def _after_write(self, paths: List[Tuple[str, ...]]) -> None:
        try:
            await self._notify(paths)
        finally:
            await self._publish(paths)

    async def _publish(self, paths: List[Tuple[str, ...]]) -> None:
        message = {"origin": self.instance_id, "paths": ["/".join(p) for p in paths]}
        try:
            await self.client.publish(self.channel, json.dumps(message))
        except RedisError as e:
            # The write itself succeeded; remote instances just miss this change
            logger.error("Failed to publish change notification: %s", e)

    async def listen(self) -> None:
        """
        Listen for change notifications from other instances and deliver them
        to local subscribers.
        """
        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(self.channel)
        logger.info("✓ Subscribed to Redis channel '%s'", self.channel)

        async for message in self.pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                data = json.loads(message["data"])
                if data.get("origin") == self.instance_id:
                    continue
                paths = [split_path(p) for p in data.get("paths", [])]
                logger.debug("➡ Redis: change on %s from %s", data.get("paths"), data.get("origin"))
                await self._notify(paths)
            except Exception as e:
                logger.error("Error processing Redis change message: %s", e)

    async def close(self) -> None:
        """Close subscriptions, the listener and the connection."""
        await super().close()
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self.pubsub:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        if self.client:
            await self.client.aclose()
        logger.info("Redis connection closed")
