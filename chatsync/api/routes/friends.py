# chatsync/api/routes/friends.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from chatsync.api.auth import get_current_user_id
from chatsync.core import state
from chatsync.core.errors import InvalidState
from chatsync.models.models import (
    FriendRequest,
    FriendSnapshot,
    Notification,
    RespondFriendRequest,
    SendFriendRequest,
)

router = APIRouter(tags=["Friends"])


@router.get("/friends", response_model=List[FriendSnapshot])
async def list_friends(uid: str = Depends(get_current_user_id)):
    return await state.friends.friends(uid)


@router.get("/friends/requests", response_model=List[FriendRequest])
async def incoming_requests(uid: str = Depends(get_current_user_id)):
    return await state.friends.pending_requests(uid)


@router.get("/friends/requests/sent", response_model=List[FriendRequest])
async def sent_requests(uid: str = Depends(get_current_user_id)):
    return await state.friends.sent_requests(uid)


@router.post("/friends/requests", response_model=FriendRequest, status_code=201)
async def send_request(request: SendFriendRequest, uid: str = Depends(get_current_user_id)):
    """
    Send a friend request.

    Raises:
        InvalidState: the caller targets themselves
        AlreadyRequested: a request between the two users is already pending
    """
    if request.to == uid:
        raise InvalidState("You cannot send a friend request to yourself")

    request_id = await state.friends.send_request(uid, request.to)
    return await state.friends.get_request(request_id)


@router.post("/friends/requests/{request_id}/respond", response_model=FriendRequest)
async def respond(request_id: str, body: RespondFriendRequest, uid: str = Depends(get_current_user_id)):
    """Accept or reject a request addressed to the caller."""
    friend_request = await state.friends.get_request(request_id)
    if friend_request is not None and friend_request.to_uid != uid:
        raise HTTPException(status_code=403, detail="Only the recipient can respond")

    return await state.friends.respond(request_id, body.action)


@router.delete("/friends/{friend_uid}")
async def remove_friend(friend_uid: str, uid: str = Depends(get_current_user_id)):
    await state.friends.remove_friend(uid, friend_uid)
    return {"status": "removed", "friend": friend_uid}


@router.get("/notifications", response_model=List[Notification])
async def list_notifications(uid: str = Depends(get_current_user_id)):
    return await state.friends.notifications(uid)


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str, uid: str = Depends(get_current_user_id)):
    await state.friends.mark_notification_read(uid, notification_id)
    return {"status": "read", "notification_id": notification_id}
