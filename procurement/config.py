from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Procurement Ledger"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    DATABASE_URL: str = "sqlite+aiosqlite:///./procurement.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300

    # Bounds on a single ledger transaction. Lock/statement timeouts are
    # applied with SET LOCAL on PostgreSQL only.
    DB_LOCK_TIMEOUT_MS: int = 5000
    DB_STATEMENT_TIMEOUT_MS: int = 15000
    LEDGER_OPERATION_TIMEOUT_SECONDS: float = 20.0

    JWT_PUBLIC_KEY_PATH: Optional[str] = "keys/public.pem"
    JWT_ALGORITHM: str = "RS256"

    BREVO_API_KEY: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "noreply@procurement.example.com"
    CORS_ORIGINS: str = "http://localhost:3000"

    # Shared secret for scheduler-triggered /internal/jobs endpoints
    INTERNAL_JOB_SECRET: Optional[str] = None

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
