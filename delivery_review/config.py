"""
Configuration management for the Delivery Review engine.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Delivery Review Engine", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_workers: int = Field(default=1, env="API_WORKERS")
    cors_allow_origins: str = Field(
        default="*",
        env="CORS_ALLOW_ORIGINS",
        description="Comma-separated list of allowed origins.",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./delivery_review.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # Delivery batching
    batch_window_seconds: int = Field(
        default=120,
        env="BATCH_WINDOW_SECONDS",
        description="Deliveries of one sub-item submitted within this many seconds of the latest one form a single batch.",
    )
    version_retry_attempts: int = Field(default=3, env="VERSION_RETRY_ATTEMPTS")

    # Review links
    review_link_ttl_days: int = Field(default=7, env="REVIEW_LINK_TTL_DAYS")
    review_link_token_bytes: int = Field(default=32, env="REVIEW_LINK_TOKEN_BYTES")
    review_base_url: Optional[str] = Field(
        default=None,
        env="REVIEW_BASE_URL",
        description="Public base URL used to build shareable review URLs (e.g., 'https://review.example.com').",
    )

    # Work items
    default_video_duration_minutes: Optional[int] = Field(
        default=300, env="DEFAULT_VIDEO_DURATION_MINUTES"
    )

    # Feedback
    max_revision_images: int = Field(default=5, env="MAX_REVISION_IMAGES")
    max_revision_audio_seconds: int = Field(
        default=120, env="MAX_REVISION_AUDIO_SECONDS"
    )
    feedback_requires_review_link: bool = Field(
        default=True, env="FEEDBACK_REQUIRES_REVIEW_LINK"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
