# chatsync/services/presence.py

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable

from chatsync.models.models import PresenceStatus, User
from chatsync.services.document_store import DocumentStore, Subscription
from chatsync.services.user_directory import USERS_PATH, UserDirectory

logger = logging.getLogger(__name__)


class PresenceTracker:
    """
    Online/offline flag plus last-seen time per user.

    Writes are unconditional overwrites with no reference counting: a user
    open in two tabs flips to whatever the last tab wrote.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def set_status(self, user_id: str, status: PresenceStatus) -> None:
        await self.store.update(
            {
                f"{USERS_PATH}/{user_id}/status": status,
                f"{USERS_PATH}/{user_id}/lastSeen": self.store.now(),
            }
        )
        logger.info("● %s is %s", user_id, status)

    async def get_statuses(self, user_ids: Iterable[str]) -> Dict[str, User]:
        return UserDirectory.users_from_snapshot(await self.store.get(USERS_PATH), list(user_ids))

    async def subscribe_statuses(
        self, user_ids: Iterable[str], on_change: Callable[[Dict[str, User]], Awaitable[None]]
    ) -> Subscription:
        """
        Deliver the records of ``user_ids`` whenever anything under ``users``
        changes. Filtering happens here, not in the store.
        """
        wanted = list(dict.fromkeys(user_ids))

        async def _on_users(snapshot: Any) -> None:
            await on_change(UserDirectory.users_from_snapshot(snapshot, wanted))

        return await self.store.subscribe(USERS_PATH, _on_users)
