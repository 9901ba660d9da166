# chatsync/services/user_directory.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from chatsync.core.errors import AlreadyExists, NotFound
from chatsync.models.models import User
from chatsync.services.document_store import DocumentStore, sort_children

logger = logging.getLogger(__name__)

USERS_PATH = "users"

PROFILE_FIELDS = ("first_name", "last_name", "display_name", "date_of_birth", "photo_url")


class UserDirectory:
    """Profile records under ``users/{uid}``. The uid comes from the identity provider."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create_user(
        self,
        uid: str,
        email: str,
        first_name: str,
        last_name: str,
        date_of_birth: Optional[str] = None,
    ) -> User:
        if await self.store.get(f"{USERS_PATH}/{uid}/email") is not None:
            raise AlreadyExists(f"User {uid} already exists")

        user = User(
            uid=uid,
            email=email,
            first_name=first_name,
            last_name=last_name,
            display_name=f"{first_name} {last_name}",
            date_of_birth=date_of_birth,
            status="online",
            last_seen=self.store.now(),
        )
        # update() keeps a presence flag written before the profile existed
        await self.store.update(
            {f"{USERS_PATH}/{uid}/{key}": value for key, value in user.to_store(exclude={"uid"}).items()}
        )
        logger.info("✓ Created user %s", uid)
        return user

    async def get_user(self, uid: str) -> Optional[User]:
        data = await self.store.get(f"{USERS_PATH}/{uid}")
        if not isinstance(data, dict):
            return None
        return User.from_store(uid, data)

    async def require_user(self, uid: str) -> User:
        user = await self.get_user(uid)
        if user is None:
            raise NotFound(f"User {uid} not found")
        return user

    async def update_profile(self, uid: str, **fields: Any) -> User:
        """
        Update profile fields of an existing user.

        ``display_name`` follows first/last name changes unless it is given
        explicitly. Friend snapshots elsewhere are not touched.
        """
        user = await self.require_user(uid)
        changes = {key: value for key, value in fields.items() if key in PROFILE_FIELDS and value is not None}
        if not changes:
            return user

        if "display_name" not in changes and ("first_name" in changes or "last_name" in changes):
            changes["display_name"] = "{} {}".format(
                changes.get("first_name", user.first_name), changes.get("last_name", user.last_name)
            )

        updated = user.model_copy(update=changes)
        stored = updated.to_store(exclude={"uid"})
        aliases = {name: User.model_fields[name].alias for name in changes}
        await self.store.update({f"{USERS_PATH}/{uid}/{aliases[name]}": stored[aliases[name]] for name in changes})
        logger.info("✓ Updated profile of %s (%s)", uid, ", ".join(sorted(changes)))
        return updated

    async def search_users(self, query: str) -> List[User]:
        """
        Case-insensitive substring search over email, first, last and display
        name. An empty query returns every user with a complete profile.
        """
        users = [
            User.from_store(uid, data)
            for uid, data in sort_children(await self.store.get(USERS_PATH) or {})
            if isinstance(data, dict) and data.get("email") and data.get("firstName") and data.get("lastName")
        ]
        needle = query.strip().lower()
        if not needle:
            return users

        return [
            user
            for user in users
            if any(
                needle in value.lower()
                for value in (user.email, user.first_name, user.last_name, user.display_name)
            )
        ]

    @staticmethod
    def users_from_snapshot(snapshot: Any, user_ids: List[str]) -> Dict[str, User]:
        snapshot = snapshot if isinstance(snapshot, dict) else {}
        return {
            uid: User.from_store(uid, snapshot[uid])
            for uid in user_ids
            if isinstance(snapshot.get(uid), dict)
        }
