"""Configuration settings for webpaste.

Settings are resolved in this order (first wins): values from the TOML
config file passed on the command line, ``WEBPASTE_*`` environment
variables, a ``.env`` file, then the defaults below. Durations accept
either integer seconds or humantime strings such as ``"30days"``.

The resulting ``Settings`` object is built once at startup and handed to
every component that needs it; core logic never looks it up globally.
"""

from __future__ import annotations

import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Final

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from webpaste.utils.durations import parse_duration

_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="WEBPASTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # HTTP
    listen_addr: str = "127.0.0.1:3000"
    base_url: str = "http://127.0.0.1:3000"

    # Storage
    upload_file_dir: Path = Path("./uploads")
    database_file: Path = Path("webpaste.db")
    database_echo: bool = False

    # Tails
    gen_tail_max_attempts: int = 16
    default_tail_len: int = 4

    # ── Retention (seconds) ───────────────────────────────────────────────────
    # Small files are kept close to max_expire_duration, files near
    # max_file_size close to min_expire_duration.
    min_expire_duration: int = 30 * _DAY
    max_expire_duration: int = 365 * _DAY
    max_file_size: int = 512 * 1024 * 1024

    # ── Garbage collection intervals (seconds) ────────────────────────────────
    cleanup_urls_duration: int = 30
    cleanup_files_duration: int = 60

    # Remote "url" uploads
    fetch_timeout: int = 30

    @field_validator(
        "min_expire_duration",
        "max_expire_duration",
        "cleanup_urls_duration",
        "cleanup_files_duration",
        "fetch_timeout",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip()
            if not (text.isascii() and text.isdigit()):
                return parse_duration(text)
        return value

    @field_validator(
        "gen_tail_max_attempts",
        "default_tail_len",
        "max_file_size",
        "cleanup_urls_duration",
        "cleanup_files_duration",
        "fetch_timeout",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @model_validator(mode="after")
    def _check_retention_bounds(self) -> Settings:
        if self.min_expire_duration < 0:
            raise ValueError("min_expire_duration must not be negative")
        if self.min_expire_duration > self.max_expire_duration:
            raise ValueError("min_expire_duration must not exceed max_expire_duration")
        return self

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.database_file}"


# Misspelled key accepted by older config files
_LEGACY_KEYS: Final[dict[str, str]] = {"gen_tail_max_attamps": "gen_tail_max_attempts"}


def load_settings(config_file: Path | None = None) -> Settings:
    """Build settings, layering an optional TOML config file on top.

    Legacy key spellings are mapped to their field names; the current
    spelling wins when a file has both.
    """
    if config_file is None:
        return Settings()
    with config_file.open("rb") as f:
        data = tomllib.load(f)
    for legacy, name in _LEGACY_KEYS.items():
        if legacy in data:
            value = data.pop(legacy)
            data.setdefault(name, value)
    return Settings(**data)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings for the HTTP app and CLI entry points."""
    return load_settings()
