# chatsync/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "chatsync - rooms, messages and friends over a document store",
        "version": "1.0",
        "features": ["private_rooms", "groups", "messages", "friends", "presence", "live_subscriptions"],
        "endpoints": {
            "websocket": "/ws",
            "users": "/users",
            "rooms": "/rooms",
            "friends": "/friends",
            "notifications": "/notifications",
            "health": "/health",
        },
    }
