from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Barbershop Settlement Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Payment Gateway (Asaas-compatible REST API)
    GATEWAY_API_URL: str = "https://www.asaas.com/api/v3"
    GATEWAY_API_KEY: str = ""
    GATEWAY_ENVIRONMENT: str = "sandbox"  # sandbox | production
    GATEWAY_WEBHOOK_TOKEN: Optional[str] = None  # Shared token sent in asaas-access-token header
    GATEWAY_USER_AGENT: str = "StylloBarber/1.0"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0  # Per attempt, independent of retry budget

    # Gateway retry policy
    GATEWAY_RETRY_MAX_ATTEMPTS: int = 3
    GATEWAY_RETRY_INITIAL_DELAY_MS: int = 1000
    GATEWAY_RETRY_BACKOFF_MULTIPLIER: float = 2.0
    GATEWAY_RETRY_MAX_DELAY_MS: int = 10000

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/Sao_Paulo"
    PAYMENT_SYNC_INTERVAL_MINUTES: int = 15  # How often stale mirrors are pulled from the gateway
    PAYMENT_SYNC_MIN_AGE_MINUTES: int = 30  # Only mirrors not synced for this long
    PAYMENT_SYNC_BATCH_SIZE: int = 50
    WEBHOOK_REPROCESS_INTERVAL_MINUTES: int = 10
    WEBHOOK_REPROCESS_MAX_ATTEMPTS: int = 5  # Failed events beyond this wait for an operator

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('GATEWAY_ENVIRONMENT')
    @classmethod
    def validate_gateway_environment(cls, v):
        if v not in ("sandbox", "production"):
            raise ValueError("GATEWAY_ENVIRONMENT must be 'sandbox' or 'production'")
        return v

    @property
    def is_gateway_sandbox(self) -> bool:
        return self.GATEWAY_ENVIRONMENT == "sandbox"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
