# chatsync/core/config.py
import os
from typing import List, Literal
from dotenv import load_dotenv


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Setup environment variables.
        - STORE_BACKEND the document store to use: "memory" or "redis"
        - PRIVATE_ROOM_INDEX keep a pair-key -> room id index for private rooms
        - SERIALIZE_WRITES serialize read-then-write operations per key in-process
        - AUTH_SECRET / AUTH_ALGORITHM used to verify identity-provider tokens
        - LOG_LEVEL root log level, CHATSYNC_LOG_LEVEL level of the chatsync loggers
    """

    # Load environment variables from the .env file
    load_dotenv()

    STORE_BACKEND: Literal["memory", "redis"] = os.getenv("STORE_BACKEND", "memory")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
    REDIS_SSL: bool = _env_flag("REDIS_SSL")
    REDIS_KEY_PREFIX: str = os.getenv("REDIS_KEY_PREFIX", "chatsync")

    PRIVATE_ROOM_INDEX: bool = _env_flag("PRIVATE_ROOM_INDEX")
    SERIALIZE_WRITES: bool = _env_flag("SERIALIZE_WRITES")

    AUTH_SECRET: str = os.getenv("AUTH_SECRET", "change-me")
    AUTH_ALGORITHM: str = os.getenv("AUTH_ALGORITHM", "HS256")
    AUTH_AUDIENCE: str = os.getenv("AUTH_AUDIENCE", "")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CHATSYNC_LOG_LEVEL: str = os.getenv("CHATSYNC_LOG_LEVEL", LOG_LEVEL).upper()

    CORS_ORIGINS: List[str] = [
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
    ]

    @property
    def redis_url(self) -> str:
        scheme = "rediss" if self.REDIS_SSL else "redis"
        return f"{scheme}://:{self.REDIS_ACCESS_KEY}@{self.REDIS_HOST}:{self.REDIS_PORT}"


settings = Settings()
