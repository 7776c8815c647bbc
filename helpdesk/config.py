from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Campus Helpdesk"
    LOG_LEVEL: str = "INFO"

    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "helpdesk"

    # unset -> in-process bus, good for a single worker only
    REDIS_URL: Optional[str] = None

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    MEDIA_ROOT: str = "media"
    MEDIA_URL: str = "/media"
    AVATAR_MAX_BYTES: int = 2 * 1024 * 1024

    PRESENCE_CHANNEL: str = "online-users"
    PRESENCE_HEARTBEAT_SECONDS: float = 30.0
    PRESENCE_STALE_SECONDS: float = 60.0
    TYPING_TIMEOUT_SECONDS: float = 3.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
