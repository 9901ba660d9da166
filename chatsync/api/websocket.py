# chatsync/api/websocket.py

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from chatsync.api.auth import websocket_user_id
from chatsync.core import state
from chatsync.core.errors import ChatSyncError
from chatsync.models.models import Room

logger = logging.getLogger(__name__)

router = APIRouter()


def _encode(data: Any) -> Any:
    return jsonable_encoder(data, by_alias=True)


async def _is_member(websocket: WebSocket, room_id: str, user_id: str) -> bool:
    """Check room membership, reporting a failure in-band."""
    room = await state.rooms.get_room(room_id)
    if room is None:
        await websocket.send_json({"type": "error", "error": "NotFound", "message": f"Room {room_id} not found"})
        return False
    if user_id not in room.participants:
        await websocket.send_json({"type": "error", "error": "Forbidden", "message": "Not a member of this room"})
        return False
    return True


async def _lists_member(room: Optional[Room], user_id: str) -> bool:
    return room is not None and user_id in room.participants


async def _still_member(room_id: str, user_id: str) -> bool:
    return await _lists_member(await state.rooms.get_room(room_id), user_id)


async def _subscribe(websocket: WebSocket, kind: str, subscribe_fn, *args, allowed=None) -> None:
    """
    Open a store subscription whose updates are pushed to ``websocket``.

    The store delivers the current value while subscribing; that first push
    is held back until the "subscribed" reply carrying the id has been sent.

    ``allowed`` is awaited with each value before it is pushed. Once it
    returns False the subscription is closed and the client gets a
    "revoked" message instead.
    """
    holder = {}

    async def _push(data: Any) -> None:
        if allowed is not None and not await allowed(data):
            subscription_id = holder.get("id")
            if state.connection_manager.untrack(websocket, subscription_id):
                await state.connection_manager.send(
                    websocket,
                    {"type": "revoked", "subscription_id": subscription_id, "message": "No longer a member of this room"},
                )
            return
        await state.connection_manager.send(
            websocket,
            {"type": kind, "subscription_id": holder.get("id"), "data": _encode(data)},
        )

    async def _push_after_ack(data: Any) -> None:
        if "id" in holder:
            await _push(data)
        else:
            holder["pending"] = data

    subscription = await subscribe_fn(*args, _push_after_ack)
    holder["id"] = subscription.id
    if not state.connection_manager.track(websocket, subscription):
        return

    await state.connection_manager.send(
        websocket, {"type": "subscribed", "kind": kind, "subscription_id": subscription.id}
    )
    if "pending" in holder:
        await _push(holder.pop("pending"))


# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for live subscriptions.

    Protocol:
    =========

    Connect with ``/ws?token=<jwt>``; the token's subject is the user id.

    Client -> Server Actions:
    -------------------------
    Subscribe to own room list:
        {"action": "subscribe_rooms"}
    Subscribe to one room:
        {"action": "subscribe_room", "room_id": "..."}
    Subscribe to a room's messages:
        {"action": "subscribe_messages", "room_id": "..."}
    Subscribe to presence of users:
        {"action": "subscribe_statuses", "user_ids": ["u1", "u2"]}
    Subscribe to own friends / incoming requests / notifications:
        {"action": "subscribe_friends"}
        {"action": "subscribe_requests"}
        {"action": "subscribe_notifications"}
        Response: {"type": "subscribed", "kind": "...", "subscription_id": "..."}

    Unsubscribe:
        {"action": "unsubscribe", "subscription_id": "..."}
        Response: {"type": "unsubscribed", "subscription_id": "..."}

    Enter / leave a room view (presence online / offline):
        {"action": "enter_room", "room_id": "..."}
        {"action": "leave_room", "room_id": "..."}

    Server -> Client Messages:
    -------------------------
    Update (full value, not a diff):
        {"type": "rooms" | "room" | "messages" | "statuses" | "friends"
                 | "requests" | "notifications",
         "subscription_id": "...", "data": ...}

    Error:
        {"type": "error", "error": "NotFound", "message": "..."}

    Room and message subscriptions require the caller to be a current member
    of the room ("NotFound" / "Forbidden" errors otherwise). A member who
    leaves or is removed gets {"type": "revoked", "subscription_id": "..."}
    on the next update and the subscription is closed.

    Lifecycle:
    ==========
    On disconnect every subscription of the connection is closed and, if
    the user had entered a room, they are marked offline.
    """
    user_id = websocket_user_id(websocket)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await state.connection_manager.connect(websocket, user_id)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                action = message.get("action")
                logger.info("Websocket input from %s: action=%s", user_id, action)

                if action == "subscribe_rooms":
                    await _subscribe(websocket, "rooms", state.rooms.subscribe, user_id)

                elif action == "subscribe_room":
                    room_id = message["room_id"]
                    if await _is_member(websocket, room_id, user_id):
                        await _subscribe(
                            websocket, "room", state.rooms.subscribe_room, room_id,
                            allowed=lambda room: _lists_member(room, user_id),
                        )

                elif action == "subscribe_messages":
                    room_id = message["room_id"]
                    if await _is_member(websocket, room_id, user_id):
                        await _subscribe(
                            websocket, "messages", state.messages.subscribe_to_messages, room_id,
                            allowed=lambda _messages, room_id=room_id: _still_member(room_id, user_id),
                        )

                elif action == "subscribe_statuses":
                    await _subscribe(
                        websocket, "statuses", state.presence.subscribe_statuses, list(message["user_ids"])
                    )

                elif action == "subscribe_friends":
                    await _subscribe(websocket, "friends", state.friends.subscribe_friends, user_id)

                elif action == "subscribe_requests":
                    await _subscribe(websocket, "requests", state.friends.subscribe_requests, user_id)

                elif action == "subscribe_notifications":
                    await _subscribe(
                        websocket, "notifications", state.friends.subscribe_notifications, user_id
                    )

                elif action == "unsubscribe":
                    subscription_id = message.get("subscription_id", "")
                    if state.connection_manager.untrack(websocket, subscription_id):
                        await websocket.send_json({"type": "unsubscribed", "subscription_id": subscription_id})
                    else:
                        await websocket.send_json(
                            {"type": "error", "error": "NotFound", "message": "Unknown subscription"}
                        )

                elif action == "enter_room":
                    state.connection_manager.enter_room(websocket, message["room_id"])
                    await state.presence.set_status(user_id, "online")

                elif action == "leave_room":
                    state.connection_manager.leave_room(websocket, message["room_id"])
                    await state.presence.set_status(user_id, "offline")

                else:
                    await websocket.send_json(
                        {
                            "type": "error",
                            "error": "UnknownAction",
                            "message": f"Unknown action: {action}",
                        }
                    )

            except json.JSONDecodeError:
                await websocket.send_json(
                    {
                        "type": "error",
                        "error": "InvalidJSON",
                        "message": "Invalid JSON",
                    }
                )
            except KeyError as e:
                await websocket.send_json(
                    {"type": "error", "error": "MissingField", "message": f"Missing field: {e.args[0]}"}
                )
            except ChatSyncError as e:
                await websocket.send_json(
                    {"type": "error", "error": type(e).__name__, "message": e.message}
                )

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await state.connection_manager.disconnect(websocket, state.presence)
