"""
Application Configuration for Snake Arena Server
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

# Get the project root directory (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Snake Arena Server"
    DEBUG: bool = True

    # CORS Configuration
    ALLOWED_ORIGINS: str = "*"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from string"""
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # Rate limit applied to the REST endpoints
    RATE_LIMIT: str = "60/minute"

    # Room / session lifecycle
    ROOM_IDLE_TIMEOUT_MINUTES: int = 30
    SESSION_IDLE_TIMEOUT_MINUTES: int = 10
    ROOM_CLEANUP_INTERVAL_MINUTES: int = 5
    SESSION_CLEANUP_INTERVAL_MINUTES: int = 1

    # Snapshot broadcast rate (frames per second), independent of the tick rate
    BROADCAST_FPS: int = 60

    # Environment
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


# Global settings instance
settings = Settings()
