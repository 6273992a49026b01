"""Settings. Environment variables prefixed with ``GALLERY_`` and ``.env`` override these values."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from prompt_gallery.models import SortOption


class Settings(BaseSettings):
    # Storage
    db_path: Path = Path(".prompt_gallery/gallery.db")

    # Gallery listing
    page_size: int = Field(default=20, ge=1, le=100)
    default_sort: SortOption = "newest"

    # Rating submissions per client per hour
    rating_limit_per_hour: int = Field(default=20, ge=1)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="GALLERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def load_settings() -> Settings:
    return Settings()
