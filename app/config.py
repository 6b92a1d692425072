from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os

class Settings(BaseSettings):
    # Database - Railway provides DATABASE_URL, fallback to SQLite for local
    database_url: str = None

    # Redis - REDIS_URL wins, otherwise host/port/db
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    # External execution service (category pages backend)
    backend_api_url: str = "http://localhost:8000"

    # Bulk assignment pipeline
    enable_assignment_worker: bool = True
    assignment_queue_key: str = "assignment-queue"
    assignment_status_ttl_seconds: int = 3600
    assignment_batch_size: int = 500
    execution_timeout_seconds: float = 300.0  # 5 minutes per batch
    preview_timeout_seconds: float = 30.0
    worker_poll_timeout_seconds: float = 5.0
    worker_error_backoff_seconds: float = 1.0
    reconcile_timeout_seconds: float = 15.0

    # App Settings
    app_name: str = "SnippetAdmin"
    app_version: str = "1.0.0"
    debug: bool = False
    allowed_origins: str = "http://localhost:3000"

    # API Settings
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "3001"))

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect database URL
        if self.database_url is None:
            self.database_url = "sqlite+aiosqlite:///./snippet_admin.db"
        elif self.database_url.startswith("postgres://"):
            # SQLAlchemy async needs postgresql+asyncpg://
            self.database_url = self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.database_url.startswith("postgresql://"):
            self.database_url = self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if not self.redis_url:
            self.redis_url = f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
