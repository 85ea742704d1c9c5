from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database
    DATABASE_URI: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "messages"
    DATABASE_TIMEOUT_MS: int = 5000

    # Authentication - required
    JWT_SECRET_KEY: str
    AUTH_COOKIE_NAME: str = "access_token"

    # Listeners
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    HEALTH_PORT: int = 8081

    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    # External authorization service (SpiceDB HTTP gateway)
    AUTHZ_ENDPOINT: Optional[str] = None
    AUTHZ_TOKEN: str = ""
    AUTHZ_TIMEOUT_SECONDS: float = 5.0
    # Development fallback: grant every permission when no endpoint is set
    AUTHZ_ALLOW_ALL: bool = False

    # Outbound event routing keys
    ROUTING_CONFIG_PATH: Path = Path("config/routing.yaml")

    @model_validator(mode="after")
    def check_allow_all_outside_production(self) -> "Settings":
        if self.AUTHZ_ALLOW_ALL and self.ENVIRONMENT == "production":
            raise ValueError("AUTHZ_ALLOW_ALL cannot be enabled when ENVIRONMENT=production")
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
