# chatsync/services/document_store.py

from __future__ import annotations

import copy
import logging
import random
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any], Awaitable[None]]

# Push keys sort lexicographically in creation order with this alphabet
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
INVALID_SEGMENT_CHARS = set(".#$[]")


# ============================================================================
# PATH HELPERS
# ============================================================================

def split_path(path: str) -> Tuple[str, ...]:
    """
    Split a slash separated store path into its segments.

    The empty string (or "/") is the root. Empty inner segments and segments
    containing any of ``. # $ [ ]`` are rejected.
    """
    stripped = path.strip("/")
    if not stripped:
        return ()
    segments = tuple(stripped.split("/"))
    for segment in segments:
        if not segment or INVALID_SEGMENT_CHARS.intersection(segment):
            raise ValueError(f"Invalid path segment {segment!r} in {path!r}")
    return segments


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def is_related(a: Tuple[str, ...], b: Tuple[str, ...]) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


def prune(value: Any) -> Any:
    """Drop None leaves and empty mappings; an emptied mapping becomes None."""
    if isinstance(value, Mapping):
        pruned = {}
        for key, child in value.items():
            child = prune(child)
            if child is not None:
                pruned[str(key)] = child
        return pruned or None
    return value


def tree_get(tree: Any, segments: Iterable[str]) -> Any:
    node = tree
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return node


def tree_set(tree: dict, segments: Tuple[str, ...], value: Any) -> Any:
    """
    Write ``value`` at ``segments`` below ``tree`` and return the new tree.

    A None value deletes the path and prunes parents left empty. The returned
    tree is None when the whole tree became empty.
    """
    if not segments:
        return prune(copy.deepcopy(value))

    head, rest = segments[0], segments[1:]
    node = dict(tree) if isinstance(tree, dict) else {}
    child = node.get(head)
    if rest:
        new_child = tree_set(child if isinstance(child, dict) else {}, rest, value)
    else:
        new_child = prune(copy.deepcopy(value))

    if new_child is None:
        node.pop(head, None)
    else:
        node[head] = new_child
    return node or None


def check_disjoint(paths: List[Tuple[str, ...]]) -> None:
    for i, first in enumerate(paths):
        for second in paths[i + 1:]:
            if is_related(first, second):
                raise ValueError(
                    f"Overlapping paths in one update: {'/'.join(first)!r} and {'/'.join(second)!r}"
                )


def sort_children(
    children: Mapping[str, Any],
    order_by: Optional[str] = None,
    equal_to: Any = None,
) -> List[Tuple[str, Any]]:
    """
    Return ``(key, value)`` pairs of a node's children.

    With ``equal_to`` only children whose ``order_by`` field equals it are kept.
    Children missing the field sort first; ties fall back to key order.
    """
    items = sorted(children.items(), key=lambda item: item[0])
    if order_by is None:
        return items

    def field(value: Any) -> Any:
        return value.get(order_by) if isinstance(value, dict) else None

    if equal_to is not None:
        items = [item for item in items if field(item[1]) == equal_to]

    def sort_key(item: Tuple[str, Any]):
        current = field(item[1])
        if current is None:
            return (0, 0, "", item[0])
        if isinstance(current, bool):
            return (1, int(current), "", item[0])
        if isinstance(current, (int, float)):
            return (2, current, "", item[0])
        return (3, 0, str(current), item[0])

    return sorted(items, key=sort_key)


# ============================================================================
# SUBSCRIPTION HANDLE
# ============================================================================

class Subscription:
    """
    Handle for a live subscription to one store path.

    The caller owns the handle and must close it on teardown. It can also be
    used as an async context manager:

        async with await store.subscribe("chatRooms", on_rooms):
            ...
    """

    def __init__(self, store: "DocumentStore", path: str, callback: ChangeCallback) -> None:
        self.id = uuid.uuid4().hex
        self.path = path
        self.segments = split_path(path)
        self.callback = callback
        self.closed = False
        self._store = store

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._remove_subscription(self)

    # Alias matching the "unsubscribe handle" vocabulary of the UI layer
    unsubscribe = close

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# DOCUMENT STORE CONTRACT
# ============================================================================

class DocumentStore(ABC):
    """
    Hierarchical key-value store with push keys and per-path subscriptions.

    Subclasses implement the raw read (``get``) and the atomic multi-path
    write (``_write``). Change fan-out to local subscribers lives here.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._subscriptions: Dict[str, Subscription] = {}
        self._last_push_time = 0
        self._last_rand_chars: List[int] = []

    def now(self) -> int:
        """Server-observed timestamp in milliseconds."""
        return self._clock()

    def push_key(self, path: str = "") -> str:
        """
        Generate a unique child key that sorts after earlier keys.

        8 characters encode the timestamp, 12 characters are random. Keys
        generated within the same millisecond increment the random part.
        """
        split_path(path)
        now = self.now()
        duplicate_time = now == self._last_push_time
        self._last_push_time = now

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        key = "".join(reversed(time_chars))

        if not duplicate_time or not self._last_rand_chars:
            self._last_rand_chars = [random.randrange(64) for _ in range(12)]
        else:
            i = 11
            while i >= 0 and self._last_rand_chars[i] == 63:
                self._last_rand_chars[i] = 0
                i -= 1
            if i >= 0:
                self._last_rand_chars[i] += 1

        return key + "".join(PUSH_CHARS[c] for c in self._last_rand_chars)

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Point read. Returns None when nothing is stored at ``path``."""

    @abstractmethod
    async def _write(self, updates: Dict[Tuple[str, ...], Any]) -> None:
        """Apply all updates atomically."""

    async def set(self, path: str, value: Any) -> None:
        await self.update({path: value})

    async def update(self, updates: Mapping[str, Any]) -> None:
        """
        Multi-path write applied as one atomic operation.

        Keys are absolute paths; a None value removes that path.
        """
        if not updates:
            return
        normalized = {split_path(path): value for path, value in updates.items()}
        check_disjoint(list(normalized))
        await self._write(normalized)
        await self._after_write(list(normalized))

    async def query(
        self,
        path: str,
        order_by: Optional[str] = None,
        equal_to: Any = None,
    ) -> List[Tuple[str, Any]]:
        node = await self.get(path)
        if not isinstance(node, dict):
            return []
        return sort_children(node, order_by=order_by, equal_to=equal_to)

    async def subscribe(self, path: str, callback: ChangeCallback) -> Subscription:
        """
        Register ``callback`` for changes at ``path``.

        The current value is delivered before this returns, then again after
        every write to ``path``, one of its ancestors or descendants.
        A failing initial read is raised to the caller; later delivery
        failures are only logged.
        """
        subscription = Subscription(self, path, callback)
        self._subscriptions[subscription.id] = subscription
        try:
            initial = await self.get(path)
        except Exception:
            subscription.close()
            raise
        logger.debug("Subscribed %s to '%s'", subscription.id, path)

        try:
            await callback(initial)
        except Exception:
            logger.exception("Initial delivery to subscriber of '%s' failed", path)
        return subscription

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.close()

    def _remove_subscription(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        logger.debug("Unsubscribed %s from '%s'", subscription.id, subscription.path)

    async def _after_write(self, paths: List[Tuple[str, ...]]) -> None:
        await self._notify(paths)

    async def _notify(self, paths: List[Tuple[str, ...]]) -> None:
        for subscription in list(self._subscriptions.values()):
            if any(is_related(subscription.segments, changed) for changed in paths):
                await self._deliver(subscription)

    async def _deliver(self, subscription: Subscription) -> None:
        """
        Re-read the subscribed path and hand it to the callback.

        Runs after a write has committed, so a failing read or callback is
        logged and skipped; it never reaches the writer.
        """
        if subscription.closed:
            return
        try:
            value = await self.get(subscription.path)
            await subscription.callback(value)
        except Exception:
            logger.exception("Delivery to subscriber of '%s' failed", subscription.path)


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryDocumentStore(DocumentStore):
    """
    Process-local document store.

    Used for development, tests and single-instance deployments. All writes
    happen inside one event loop step, so every ``update`` is atomic.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        super().__init__(clock=clock)
        self._root: Optional[dict] = None

    async def get(self, path: str) -> Any:
        return copy.deepcopy(tree_get(self._root, split_path(path)))

    async def _write(self, updates: Dict[Tuple[str, ...], Any]) -> None:
        root = self._root
        for segments, value in updates.items():
            root = tree_set(root or {}, segments, value)
        self._root = root
