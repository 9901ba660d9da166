# chatsync/models/models.py
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RoomKind = Literal["private", "group"]
MessageKind = Literal["text", "emoji"]
RequestStatus = Literal["pending", "accepted", "rejected"]
PresenceStatus = Literal["online", "offline"]
NotificationType = Literal["friendRequest", "friendAccepted"]


class StoreRecord(BaseModel):
    """
    Base for records kept in the document store.

    Attributes are snake_case in Python and camelCase in the store and in
    API responses. The record ``id`` is the store key, never part of the body.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self, exclude: Optional[set] = None) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id", *(exclude or set())})


# ============================================================================
# USERS
# ============================================================================

class UserSnapshot(StoreRecord):
    """Denormalized copy of a user's public profile, taken at write time."""

    uid: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""


class FriendSnapshot(UserSnapshot):
    status: PresenceStatus = "offline"
    last_seen: int = 0
    photo_url: Optional[str] = Field(default=None, alias="photoURL")


class User(StoreRecord):
    uid: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    date_of_birth: Optional[str] = None
    status: PresenceStatus = "offline"
    last_seen: int = 0
    photo_url: Optional[str] = Field(default=None, alias="photoURL")

    @classmethod
    def from_store(cls, uid: str, data: Dict[str, Any]) -> "User":
        # The "friends" subtree lives under the user record and is ignored here
        return cls.model_validate({**data, "uid": uid})

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot(
            uid=self.uid,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            display_name=self.display_name or f"{self.first_name} {self.last_name}",
        )

    def friend_snapshot(self) -> FriendSnapshot:
        return FriendSnapshot(
            **self.snapshot().model_dump(),
            status=self.status,
            last_seen=self.last_seen,
            photo_url=self.photo_url,
        )


# ============================================================================
# ROOMS + MESSAGES
# ============================================================================

class Message(StoreRecord):
    id: str
    sender_id: str
    text: str
    kind: MessageKind = "text"
    timestamp: int
    read_by: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_store(cls, message_id: str, data: Dict[str, Any]) -> "Message":
        return cls.model_validate({**data, "id": message_id})


class Room(StoreRecord):
    """
    A chat room.

    ``participants`` is a list here; in the store it is a mapping of user id
    to a boolean flag, where False marks a member who was removed.
    """

    id: str
    kind: RoomKind
    participants: List[str]
    name: Optional[str] = None
    admin: Optional[str] = None
    created_at: int
    updated_at: int
    last_message: Optional[Message] = None

    @classmethod
    def from_store(cls, room_id: str, data: Dict[str, Any]) -> "Room":
        flags = data.get("participants") or {}
        last_message = data.get("lastMessage")
        return cls(
            id=room_id,
            kind=data["kind"],
            participants=sorted(uid for uid, present in flags.items() if present),
            name=data.get("name"),
            admin=data.get("admin"),
            created_at=data.get("createdAt", 0),
            updated_at=data.get("updatedAt", 0),
            last_message=(
                Message.from_store(last_message["id"], last_message) if last_message else None
            ),
        )

    @property
    def activity_time(self) -> int:
        if self.last_message is not None:
            return self.last_message.timestamp
        return self.created_at


# ============================================================================
# FRIENDS + NOTIFICATIONS
# ============================================================================

class FriendRequest(StoreRecord):
    id: str
    from_uid: str = Field(alias="from")
    to_uid: str = Field(alias="to")
    status: RequestStatus = "pending"
    from_user: UserSnapshot
    to_user: UserSnapshot
    timestamp: int

    @classmethod
    def from_store(cls, request_id: str, data: Dict[str, Any]) -> "FriendRequest":
        return cls.model_validate({**data, "id": request_id})

    def involves(self, uid_a: str, uid_b: str) -> bool:
        return {self.from_uid, self.to_uid} == {uid_a, uid_b}


class Notification(StoreRecord):
    id: str
    type: NotificationType
    from_uid: str = Field(alias="from")
    timestamp: int
    read: bool = False
    request_id: Optional[str] = None

    @classmethod
    def from_store(cls, notification_id: str, data: Dict[str, Any]) -> "Notification":
        return cls.model_validate({**data, "id": notification_id})


# ============================================================================
# API REQUEST BODIES
# ============================================================================

class CreateUserRequest(BaseModel):
    email: str
    first_name: str
    last_name: str
    date_of_birth: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    photo_url: Optional[str] = None


class StatusRequest(BaseModel):
    status: PresenceStatus


class CreatePrivateRoomRequest(BaseModel):
    user_id: str


class CreateGroupRequest(BaseModel):
    name: str
    members: List[str] = Field(default_factory=list)


class AddMembersRequest(BaseModel):
    user_ids: List[str]


class RenameRoomRequest(BaseModel):
    name: str


class SendMessageRequest(BaseModel):
    text: str
    kind: MessageKind = "text"


class SendFriendRequest(BaseModel):
    to: str


class RespondFriendRequest(BaseModel):
    action: Literal["accept", "reject"]
