"""Core application configuration and settings.

Handles environment variables, storage backend selection and JWT settings.
"""
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


# Load environment variables
ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT / ".env")
load_dotenv()

DEV_SECRET_KEY = "development-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    storage_backend: str = Field(default="redis", alias="STORAGE_BACKEND")  # redis | memory

    # Redis Configuration
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_key_prefix: str = Field(default="library:", alias="REDIS_KEY_PREFIX")

    # JWT Authentication
    jwt_secret_key: str = Field(default=DEV_SECRET_KEY, alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")  # 1 hour
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS")

    # Application Settings
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # API Settings
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000"
        ],
        alias="CORS_ORIGINS"
    )

    class Config:
        case_sensitive = False
        env_file = ".env"
        populate_by_name = True
        extra = "ignore"

    def validate_required_settings(self):
        """Validate that required settings are present."""
        if self.storage_backend not in ("redis", "memory"):
            raise ValueError(
                f"STORAGE_BACKEND must be 'redis' or 'memory', got '{self.storage_backend}'."
            )
        if self.environment == "production" and self.jwt_secret_key == DEV_SECRET_KEY:
            raise ValueError(
                "JWT_SECRET_KEY must be set to a secure value in production."
            )


# Global settings instance
settings = Settings()


# Validate settings on module import (only in non-test environments)
if settings.environment != "test":
    try:
        settings.validate_required_settings()
    except ValueError as e:
        print(f"Configuration Error: {e}")
        # Don't raise in development to allow partial setup
        if settings.environment == "production":
            raise
