# chatsync/services/friend_graph.py

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Literal, Optional

from chatsync.core.errors import AlreadyRequested, InvalidState, NotFound
from chatsync.models.models import FriendRequest, FriendSnapshot, Notification
from chatsync.services.document_store import DocumentStore, Subscription, sort_children
from chatsync.services.locks import KeyedLocks
from chatsync.services.room_directory import pair_key
from chatsync.services.user_directory import USERS_PATH, UserDirectory

logger = logging.getLogger(__name__)

REQUESTS_PATH = "friendRequests"
NOTIFICATIONS_PATH = "notifications"


def _requests_matching(snapshot: Any, status: str, field: str, uid: str) -> List[FriendRequest]:
    requests = [
        FriendRequest.from_store(request_id, data)
        for request_id, data in sort_children(snapshot if isinstance(snapshot, dict) else {})
        if isinstance(data, dict)
    ]
    return [r for r in requests if r.status == status and getattr(r, field) == uid]


def _friends_from_snapshot(snapshot: Any) -> List[FriendSnapshot]:
    if not isinstance(snapshot, dict):
        return []
    return [
        FriendSnapshot.model_validate({**data, "uid": friend_id})
        for friend_id, data in sort_children(snapshot)
        if isinstance(data, dict)
    ]


def _notifications_from_snapshot(snapshot: Any) -> List[Notification]:
    if not isinstance(snapshot, dict):
        return []
    return [
        Notification.from_store(notification_id, data)
        for notification_id, data in sort_children(snapshot, order_by="timestamp")
        if isinstance(data, dict)
    ]


# ============================================================================
# FRIEND GRAPH
# ============================================================================
class FriendGraph:
    """
    Friend request state machine per unordered pair of users.

        no relation --send--> pending (from A or from B)
        pending --accept--> friends (symmetric edge)
        pending --reject--> rejected (terminal for that request)

    Only a *pending* request blocks a new one, so a rejected pair may request
    again. Requests are kept as history under ``friendRequests/{id}``; the
    edge is a pair of denormalized snapshots under ``users/{uid}/friends``.

    The duplicate check reads the pending requests and then writes, so two
    users requesting each other at the same moment can both succeed. Enabled
    ``KeyedLocks`` serialize sends per pair within this process.

    Self-targeted requests are not rejected here; the API layer refuses them.
    """

    def __init__(
        self,
        store: DocumentStore,
        users: UserDirectory,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.store = store
        self.users = users
        self.locks = locks if locks is not None else KeyedLocks()

    async def has_pending_request(self, uid_a: str, uid_b: str) -> bool:
        pending = await self.store.query(REQUESTS_PATH, order_by="status", equal_to="pending")
        return any(
            {data.get("from"), data.get("to")} == {uid_a, uid_b}
            for _, data in pending
            if isinstance(data, dict)
        )

    async def send_request(self, from_uid: str, to_uid: str) -> str:
        """
        Create a pending request and notify the recipient.

        Returns:
            str: the request id

        Raises:
            AlreadyRequested: a pending request exists for the pair, either direction
            NotFound: either user has no profile
        """
        async with self.locks.hold(f"friend-pair:{pair_key(from_uid, to_uid)}"):
            if await self.has_pending_request(from_uid, to_uid):
                raise AlreadyRequested(f"A friend request between {from_uid} and {to_uid} is already pending")

            logger.debug("No pending request for %s -> %s (unguarded read-then-write)", from_uid, to_uid)
            from_user = await self.users.require_user(from_uid)
            to_user = await self.users.require_user(to_uid)

            now = self.store.now()
            request_id = self.store.push_key(REQUESTS_PATH)
            request = FriendRequest(
                id=request_id,
                from_uid=from_uid,
                to_uid=to_uid,
                status="pending",
                from_user=from_user.snapshot(),
                to_user=to_user.snapshot(),
                timestamp=now,
            )
            notification = Notification(
                id=request_id,
                type="friendRequest",
                from_uid=from_uid,
                timestamp=now,
                read=False,
                request_id=request_id,
            )
            await self.store.update(
                {
                    f"{REQUESTS_PATH}/{request_id}": request.to_store(),
                    f"{NOTIFICATIONS_PATH}/{to_uid}/{request_id}": notification.to_store(),
                }
            )

        logger.info("✉ Friend request %s: %s -> %s", request_id, from_uid, to_uid)
        return request_id

    async def get_request(self, request_id: str) -> Optional[FriendRequest]:
        data = await self.store.get(f"{REQUESTS_PATH}/{request_id}")
        if not isinstance(data, dict):
            return None
        return FriendRequest.from_store(request_id, data)

    async def respond(self, request_id: str, action: Literal["accept", "reject"]) -> FriendRequest:
        """
        Accept or reject a pending request.

        Accepting marks the request, writes both friend snapshots and notifies
        the original sender in one multi-path update. Rejecting only marks it.

        Raises:
            NotFound: unknown request id, or a user profile is gone (accept)
            InvalidState: the request is no longer pending
        """
        if action not in ("accept", "reject"):
            raise InvalidState(f"Unknown action {action!r}")

        async with self.locks.hold(f"friend-request:{request_id}"):
            request = await self.get_request(request_id)
            if request is None:
                raise NotFound(f"Friend request {request_id} not found")
            if request.status != "pending":
                raise InvalidState(f"Friend request {request_id} is already {request.status}")

            if action == "reject":
                await self.store.update({f"{REQUESTS_PATH}/{request_id}/status": "rejected"})
                logger.info("✗ Friend request %s rejected", request_id)
                return request.model_copy(update={"status": "rejected"})

            from_user = await self.users.require_user(request.from_uid)
            to_user = await self.users.require_user(request.to_uid)
            notification = Notification(
                id=request_id,
                type="friendAccepted",
                from_uid=request.to_uid,
                timestamp=self.store.now(),
                read=False,
            )
            await self.store.update(
                {
                    f"{REQUESTS_PATH}/{request_id}/status": "accepted",
                    f"{USERS_PATH}/{request.to_uid}/friends/{request.from_uid}": from_user.friend_snapshot().to_store(),
                    f"{USERS_PATH}/{request.from_uid}/friends/{request.to_uid}": to_user.friend_snapshot().to_store(),
                    f"{NOTIFICATIONS_PATH}/{request.from_uid}/{request_id}": notification.to_store(),
                }
            )

        logger.info("✓ Friend request %s accepted: %s <-> %s", request_id, request.from_uid, request.to_uid)
        return request.model_copy(update={"status": "accepted"})

    async def remove_friend(self, uid_a: str, uid_b: str) -> None:
        """Delete both sides of the edge at once. Request history is untouched."""
        await self.store.update(
            {
                f"{USERS_PATH}/{uid_a}/friends/{uid_b}": None,
                f"{USERS_PATH}/{uid_b}/friends/{uid_a}": None,
            }
        )
        logger.info("✗ %s and %s are no longer friends", uid_a, uid_b)

    async def friends(self, uid: str) -> List[FriendSnapshot]:
        return _friends_from_snapshot(await self.store.get(f"{USERS_PATH}/{uid}/friends"))

    async def pending_requests(self, uid: str) -> List[FriendRequest]:
        """Pending requests addressed to ``uid``."""
        return _requests_matching(await self.store.get(REQUESTS_PATH), "pending", "to_uid", uid)

    async def sent_requests(self, uid: str) -> List[FriendRequest]:
        """Pending requests sent by ``uid``."""
        return _requests_matching(await self.store.get(REQUESTS_PATH), "pending", "from_uid", uid)

    async def subscribe_requests(
        self, uid: str, on_change: Callable[[List[FriendRequest]], Awaitable[None]]
    ) -> Subscription:
        async def _on_requests(snapshot: Any) -> None:
            await on_change(_requests_matching(snapshot, "pending", "to_uid", uid))

        return await self.store.subscribe(REQUESTS_PATH, _on_requests)

    async def subscribe_friends(
        self, uid: str, on_change: Callable[[List[FriendSnapshot]], Awaitable[None]]
    ) -> Subscription:
        async def _on_friends(snapshot: Any) -> None:
            await on_change(_friends_from_snapshot(snapshot))

        return await self.store.subscribe(f"{USERS_PATH}/{uid}/friends", _on_friends)

    # ------------------------------------------------------------------------
    # Notifications (written by the state machine, read only by clients)
    # ------------------------------------------------------------------------

    async def notifications(self, uid: str) -> List[Notification]:
        return _notifications_from_snapshot(await self.store.get(f"{NOTIFICATIONS_PATH}/{uid}"))

    async def mark_notification_read(self, uid: str, notification_id: str) -> None:
        path = f"{NOTIFICATIONS_PATH}/{uid}/{notification_id}"
        if await self.store.get(f"{path}/type") is None:
            raise NotFound(f"Notification {notification_id} not found")
        await self.store.update({f"{path}/read": True})

    async def subscribe_notifications(
        self, uid: str, on_change: Callable[[List[Notification]], Awaitable[None]]
    ) -> Subscription:
        async def _on_notifications(snapshot: Any) -> None:
            await on_change(_notifications_from_snapshot(snapshot))

        return await self.store.subscribe(f"{NOTIFICATIONS_PATH}/{uid}", _on_notifications)
