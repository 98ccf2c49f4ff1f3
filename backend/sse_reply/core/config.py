from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _dotenv_override_enabled() -> bool:
    v = os.getenv("DOTENV_OVERRIDE", "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def env_file_candidates(root: Path) -> list[Path]:
    """
    Resolution order:
    1) env var SSE_REPLY_ENV_FILE (relative paths are taken from `root`)
    2) backend/.env
    3) backend/env
    """
    candidates: list[Path] = []
    explicit = os.getenv("SSE_REPLY_ENV_FILE", "").strip()
    if explicit:
        p = Path(explicit)
        candidates.append(p if p.is_absolute() else root / p)
    candidates.append(root / "backend" / ".env")
    candidates.append(root / "backend" / "env")
    return candidates


def load_env_files(*, repo_root: Path | None = None) -> list[Path]:
    """
    Load environment variables from local env files using python-dotenv.

    OS environment variables win unless DOTENV_OVERRIDE=true.
    Returns the env files that were found and loaded.
    """
    root = repo_root or Path(__file__).resolve().parents[3]

    loaded: list[Path] = []
    for p in env_file_candidates(root):
        if p.is_file() and p not in loaded:
            load_dotenv(dotenv_path=p, override=_dotenv_override_enabled())
            loaded.append(p)
    return loaded


class Settings(BaseSettings):
    # Config is sourced from:
    # 1) python-dotenv loaded env vars (see load_env_files)
    # 2) OS environment variables
    model_config = SettingsConfigDict(extra="ignore")

    env: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    allowed_origins: str = "http://localhost:5173"

    # Capacity of push channels; a full channel suspends (or rejects) the producer.
    channel_max_size: int = Field(default=64, ge=1)
    # Whether `event: end` is still written after a source fails mid-stream.
    terminal_event_on_source_error: bool = False
    gzip_minimum_size: int = Field(default=500, ge=0)

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Ensure local env files are loaded before instantiating Settings.
    load_env_files()
    return Settings()
