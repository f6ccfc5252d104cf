"""
Test Buddy - Core Configuration
Pydantic Settings for application configuration with environment variable support
"""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "Test Buddy"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Backing store
    STORE_BACKEND: Literal["firestore", "sql"] = "sql"
    DATABASE_URL: str = "sqlite+aiosqlite:///./testbuddy.db"

    # Firebase
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CREDENTIALS_FILE: str = ""
    FIREBASE_API_KEY: str = ""
    FIREBASE_AUTH_TIMEOUT_SECONDS: float = 15.0

    # Local auth (sql backend)
    SECRET_KEY: str = "your-super-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Retry defaults (seconds)
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 10.0
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_JITTER: bool = True
    RETRY_TIMEOUT: float = 30.0

    # Query cache
    QUERY_CACHE_MAX_SIZE: int = 100
    QUERY_CACHE_DEFAULT_TTL: float = 300.0
    QUERY_CACHE_CLEANUP_INTERVAL: float = 600.0
    QUERY_SLOW_THRESHOLD: float = 2.0
    QUERY_COALESCE_REQUESTS: bool = False

    # LLM Configuration
    LLM_PROVIDER: Literal["openrouter", "openai", "anthropic"] = "openrouter"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"

    # LLM Performance
    LLM_TIMEOUT_SECONDS: int = 60
    LLM_MAX_RETRIES: int = 3

    # CORS - stored as comma-separated string
    CORS_ORIGINS_STR: str = "http://localhost:3000"

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(",") if origin.strip()]

    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
