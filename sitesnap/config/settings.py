"""Configuration settings for SiteSnap with caching utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SiteSnap application settings"""

    model_config = SettingsConfigDict(
        env_prefix="SITESNAP_",
        env_file=[".env.test", ".env"],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Snapshot destination
    backup_root: Path = Path("./backup")
    default_prefix: str = "backup"
    collision_policy: Literal["suffix", "fail"] = "suffix"

    # Named snapshot profiles (YAML)
    profiles_file: Path = Path("./sitesnap.yaml")

    # Report
    report_filename: str = "changelog.txt"
    report_output_limit: int = Field(default=4000, ge=0)
    embed_report_in_archive: bool = True

    # Build step
    build_timeout_seconds: float | None = 600.0

    # Archive
    compression_level: int = Field(default=9, ge=0, le=9)
    copy_chunk_size: int = Field(default=1024 * 1024, gt=0)

    # Watch mode
    watch_interval_minutes: float = Field(default=20.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"
    log_dir: Path | None = None


_SETTINGS_LOCK = RLock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, refresh: bool = False) -> Settings:
    """Return a cached ``Settings`` instance.

    Parameters
    ----------
    refresh:
        When ``True`` the cached instance is discarded and a new one is created.
    """

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        if refresh or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear the cached settings instance."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


@contextmanager
def override_settings(**overrides: Any) -> Iterator[Settings]:
    """Temporarily override the cached settings within a context."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        previous_settings = _SETTINGS_CACHE

    base_settings = previous_settings or Settings()
    patched_settings = base_settings.model_copy(update=overrides)

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = patched_settings

    try:
        yield patched_settings
    finally:
        with _SETTINGS_LOCK:
            _SETTINGS_CACHE = previous_settings
