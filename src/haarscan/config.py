"""Environment-based configuration for HaarScan."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from HAARSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HAARSCAN_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # Cascades
    cascades_dir: str = "cascades"
    default_cascade: str = "frontalface"
    cascade_ttl: int = Field(default=300, ge=0)

    # Scan defaults
    scale_factor: float = Field(default=1.1, gt=1.0)
    min_window_size: int = Field(default=1, ge=1)
    max_window_size: int | None = Field(default=None, ge=1)
    step_fraction: float = Field(default=0.1, gt=0.0, le=1.0)
    overlap_threshold: float = Field(default=0.3, gt=0.0, le=1.0)
    min_neighbors: int = Field(default=0, ge=0)
    variance_epsilon: float = Field(default=1e-6, ge=0.0)
    scan_workers: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    detection_timeout: float = Field(default=30.0, gt=0.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
