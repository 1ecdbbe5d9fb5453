from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./shortlinks.db"
    REDIS_URL: Optional[str] = None
    ENVIRONMENT: str = "development"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Public prefix for short URLs
    BASE_URL: str = "http://localhost:3000"

    # Applied to link creation only
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    GEO_LOOKUP_ENABLED: bool = True
    GEO_LOOKUP_URL: str = "https://ipapi.co/{ip}/country/"
    GEO_LOOKUP_TIMEOUT: float = 2.0
    GEO_CACHE_SIZE: int = 10000

    class Config:
        env_file = ".env"

settings = Settings()
