# chatsync/services/connection_manager.py

from __future__ import annotations

from typing import Dict, Optional, Set
from fastapi import WebSocket
import logging

from chatsync.services.document_store import Subscription
from chatsync.services.presence import PresenceTracker

logger = logging.getLogger(__name__)

# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Owns the live store subscriptions opened on behalf of each WebSocket.

    Every subscription a client opens is registered against its connection,
    so nothing outlives the socket: on disconnect all handles are closed and,
    if the user had entered rooms, they are marked offline.

    Data Structures:
        connection_users: Maps WebSocket -> user_id
        subscriptions: Maps WebSocket -> {subscription_id: Subscription}
        entered_rooms: Maps WebSocket -> Set of room_ids the client is viewing
    """

    def __init__(self) -> None:
        """Initialize connection manager with empty data structures."""
        self.connection_users: Dict[WebSocket, str] = {}
        self.subscriptions: Dict[WebSocket, Dict[str, Subscription]] = {}
        self.entered_rooms: Dict[WebSocket, Set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        """
        Accept a new WebSocket connection.

        The client opens subscriptions explicitly afterwards.
        """
        await websocket.accept()

        self.connection_users[websocket] = user_id
        self.subscriptions[websocket] = {}
        self.entered_rooms[websocket] = set()

        logger.info("✓ User %s connected. Total: %d", user_id, len(self.connection_users))

    async def disconnect(self, websocket: WebSocket, presence: Optional[PresenceTracker] = None) -> None:
        """
        Handle WebSocket disconnection and cleanup.

        Cleanup:
            1. Close every subscription owned by the connection
            2. Mark the user offline if they were viewing a room
            3. Remove from tracking dictionaries
        """
        if websocket not in self.connection_users:
            return

        user_id = self.connection_users.pop(websocket)
        for subscription in self.subscriptions.pop(websocket, {}).values():
            subscription.close()
        rooms = self.entered_rooms.pop(websocket, set())

        if rooms and presence is not None:
            await presence.set_status(user_id, "offline")

        logger.info("✗ User %s disconnected. Total: %d", user_id, len(self.connection_users))

    def user_for(self, websocket: WebSocket) -> Optional[str]:
        return self.connection_users.get(websocket)

    def track(self, websocket: WebSocket, subscription: Subscription) -> bool:
        """
        Register a subscription against its connection.

        If the connection is already gone the subscription is closed at once
        and False is returned.
        """
        if websocket not in self.subscriptions:
            subscription.close()
            return False
        self.subscriptions[websocket][subscription.id] = subscription
        return True

    def untrack(self, websocket: WebSocket, subscription_id: str) -> bool:
        """Close one subscription owned by the connection."""
        subscription = self.subscriptions.get(websocket, {}).pop(subscription_id, None)
        if subscription is None:
            return False
        subscription.close()
        return True

    def enter_room(self, websocket: WebSocket, room_id: str) -> None:
        if websocket in self.entered_rooms:
            self.entered_rooms[websocket].add(room_id)

    def leave_room(self, websocket: WebSocket, room_id: str) -> None:
        if websocket in self.entered_rooms:
            self.entered_rooms[websocket].discard(room_id)

    async def send(self, websocket: WebSocket, message: dict) -> None:
        """
        Send one JSON message to a connection.

        A failed send means the socket is closing; the receive loop performs
        the cleanup, so the error is only logged here.
        """
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error("Send error to %s: %s", self.connection_users.get(websocket, "unknown"), e)

    def get_stats(self) -> Dict[str, int]:
        """Connection and subscription counts, used by the /health endpoint."""
        return {
            "connections": len(self.connection_users),
            "subscriptions": sum(len(subs) for subs in self.subscriptions.values()),
        }
