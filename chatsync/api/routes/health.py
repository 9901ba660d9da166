# chatsync/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter

from chatsync.core import state
from chatsync.core.config import settings

router = APIRouter()

@router.get("/health")
async def health():
    """
    Health check endpoint.

    Returns current system status, store backend and live connection counts.

    Returns:
        dict: Status, backend, connection count, subscription counts, uptime
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    return {
        "status": "healthy",
        "store_backend": settings.STORE_BACKEND,
        **state.connection_manager.get_stats(),
        "store_subscriptions": state.store.subscription_count,
        "uptime_hours": round(uptime_seconds / 3600, 2),
    }
