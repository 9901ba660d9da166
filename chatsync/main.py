# chatsync/main.py

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatsync.core import state
from chatsync.core.config import settings
from chatsync.core.errors import ChatSyncError
from chatsync.core.logging import setup_logging, get_logger
from chatsync.services.document_store import InMemoryDocumentStore
from chatsync.services.redis_store import RedisDocumentStore
from chatsync.api.routes import root, health, users, rooms, friends
from chatsync.api import websocket as websocket_module

# Configure logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Application starting - store backend: %s", settings.STORE_BACKEND)

    if settings.STORE_BACKEND == "redis":
        store = RedisDocumentStore(settings.redis_url, prefix=settings.REDIS_KEY_PREFIX)
        await store.connect()
        # Deliver changes written by other instances
        store.start_listener()
    else:
        store = InMemoryDocumentStore()
    state.init_services(store)

    yield

    await state.store.close()
    logger.info("Application stopped")


# FastAPI app
app = FastAPI(title="chatsync", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatSyncError)
async def chat_error_handler(request: Request, exc: ChatSyncError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(users.router)
app.include_router(rooms.router)
app.include_router(friends.router)

# WebSocket routes
app.include_router(websocket_module.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chatsync.main:app", host="0.0.0.0", port=8000)
