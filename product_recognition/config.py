"""
Configuration management using environment variables.

Service-level settings only. Algorithm constants (canvas size, bins,
thresholds, weights) live next to the code that uses them and read
their own environment overrides.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    API_TITLE: str = "Product Recognition API"
    API_DESCRIPTION: str = "Image-feature product detection and per-product model training"
    API_VERSION: str = "1.0.0"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    DATABASE_URL: str = "sqlite:///./product_recognition.db"

    # File Upload Settings
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Per-image feature extraction budget, in seconds
    EXTRACTION_TIMEOUT: Optional[float] = 10.0


settings = Settings()
