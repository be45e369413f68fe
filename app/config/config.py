import os
from typing import Optional
from pydantic_settings import BaseSettings
from redis import asyncio as aioredis

class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Pydantic automatically loads these from env vars - no need for os.getenv()!
    """

    # Application settings
    APP_NAME: str = "Fast Haazir"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # LOGFIRE
    LOGFIRE_TOKEN: Optional[str] = None

    # SUPABASE
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
    SUPABASE_PUBLISHABLE_KEY: str = os.getenv("SUPABASE_PUBLISHABLE_KEY", "")
    SUPABASE_SECRET_KEY: str = os.getenv("SUPABASE_SECRET_KEY", "")

    # REDIS
    REDIS_URL: str = "redis://localhost:6379/0"

    # ONESIGNAL
    ONESIGNAL_APP_ID: Optional[str] = None
    ONESIGNAL_REST_API_KEY: Optional[str] = None
    ONESIGNAL_API_URL: str = "https://onesignal.com/api/v1/notifications"
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # ROUTING (OSRM compatible)
    ROUTING_BASE_URL: str = "https://router.project-osrm.org"
    ROUTING_TIMEOUT_SECONDS: float = 5.0
    DISTANCE_CACHE_SECONDS: int = 86400
    REDIS_TIMEOUT_SECONDS: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

settings = Settings()

# Redis initialization
redis = aioredis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
    socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
)
