from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DB_URL: str = "sqlite+aiosqlite:///./pos_sync.db"

    REMOTE_BASE_URL: str = "http://localhost:8000"
    REMOTE_API_KEY: Optional[str] = None
    REMOTE_TIMEOUT: float = 10.0

    # 0 disables the reachability probe; state then only changes via set_online
    CONNECTIVITY_POLL_INTERVAL: float = 15.0
    START_ONLINE: bool = False

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()
