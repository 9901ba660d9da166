# chatsync/api/routes/rooms.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from chatsync.api.auth import get_current_user_id
from chatsync.core import state
from chatsync.models.models import (
    AddMembersRequest,
    CreateGroupRequest,
    CreatePrivateRoomRequest,
    Message,
    RenameRoomRequest,
    Room,
    SendMessageRequest,
)

router = APIRouter(prefix="/rooms", tags=["Rooms"])


async def room_for_member(room_id: str, uid: str) -> Room:
    """
    Load a room the caller currently belongs to.

    Raises:
        HTTPException: 404 if the room does not exist, 403 if the caller is not a member
    """
    room = await state.rooms.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    if uid not in room.participants:
        raise HTTPException(status_code=403, detail="Not a member of this room")
    return room

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@router.get("", response_model=List[Room])
async def list_rooms(uid: str = Depends(get_current_user_id)):
    """
    List the caller's rooms, most recently active first.

    Returns:
        List[Room]: rooms where the caller is a current member
    """
    return await state.rooms.list_rooms_for_user(uid)


@router.post("/private", response_model=Room)
async def open_private_room(request: CreatePrivateRoomRequest, uid: str = Depends(get_current_user_id)):
    """
    Return the private room shared with another user, creating it if needed.

    Repeated calls for the same pair return the same room.
    """
    room_id = await state.rooms.create_or_get_private_room(uid, request.user_id)
    return await state.rooms.get_room(room_id)


@router.post("/group", response_model=Room, status_code=201)
async def create_group(request: CreateGroupRequest, uid: str = Depends(get_current_user_id)):
    """
    Create a group room with the caller as admin.

    Raises:
        HTTPException: 400 if name is empty
    """
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Group name required")

    room_id = await state.rooms.create_group(request.members, request.name.strip(), admin=uid)
    return await state.rooms.get_room(room_id)


@router.get("/{room_id}", response_model=Room)
async def get_room(room_id: str, uid: str = Depends(get_current_user_id)):
    return await room_for_member(room_id, uid)


@router.patch("/{room_id}", response_model=Room)
async def rename_group(room_id: str, request: RenameRoomRequest, uid: str = Depends(get_current_user_id)):
    """Rename a group. Only the group admin may do this."""
    room = await room_for_member(room_id, uid)
    if room.kind == "group" and room.admin != uid:
        raise HTTPException(status_code=403, detail="Only the group admin can rename it")
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Group name required")

    await state.rooms.rename_group(room_id, request.name.strip())
    return await state.rooms.get_room(room_id)


@router.post("/{room_id}/members", response_model=Room)
async def add_members(room_id: str, request: AddMembersRequest, uid: str = Depends(get_current_user_id)):
    await room_for_member(room_id, uid)
    await state.rooms.add_members(room_id, request.user_ids)
    return await state.rooms.get_room(room_id)


@router.delete("/{room_id}/members/{user_id}")
async def remove_member(room_id: str, user_id: str, uid: str = Depends(get_current_user_id)):
    """
    Remove a member from a group. Members may remove themselves (leave);
    the admin may remove anyone.
    """
    room = await room_for_member(room_id, uid)
    if user_id != uid and room.admin != uid:
        raise HTTPException(status_code=403, detail="Only the group admin can remove other members")

    await state.rooms.remove_member(room_id, user_id)
    return {"status": "removed", "room_id": room_id, "user_id": user_id}

# ============================================================================
# MESSAGE ENDPOINTS
# ============================================================================

@router.get("/{room_id}/messages", response_model=List[Message])
async def list_messages(room_id: str, uid: str = Depends(get_current_user_id)):
    await room_for_member(room_id, uid)
    return await state.messages.get_messages(room_id)


@router.post("/{room_id}/messages", response_model=Message, status_code=201)
async def send_message(room_id: str, request: SendMessageRequest, uid: str = Depends(get_current_user_id)):
    """
    Append a message to a room.

    Side Effects:
        - The room's lastMessage points at the new message
        - Subscribers of the room's messages and of the room list are notified
    """
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Message text required")

    await room_for_member(room_id, uid)
    message_id = await state.messages.append(room_id, uid, request.text, request.kind)
    return await state.messages.get_message(room_id, message_id)


@router.delete("/{room_id}/messages/{message_id}")
async def delete_message(room_id: str, message_id: str, uid: str = Depends(get_current_user_id)):
    """Delete one of the caller's own messages."""
    await room_for_member(room_id, uid)
    message = await state.messages.get_message(room_id, message_id)
    if message is not None and message.sender_id != uid:
        raise HTTPException(status_code=403, detail="Only the sender can delete a message")

    await state.messages.delete(room_id, message_id)
    return {"status": "deleted", "room_id": room_id, "message_id": message_id}


@router.post("/{room_id}/messages/{message_id}/read")
async def mark_read(room_id: str, message_id: str, uid: str = Depends(get_current_user_id)):
    await room_for_member(room_id, uid)
    await state.messages.mark_read(room_id, message_id, uid)
    return {"status": "read", "message_id": message_id}
