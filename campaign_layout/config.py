from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parent.parent / ".env"

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime configuration read from the environment (and an optional .env file)."""

    storage_dir: Path
    # Worker pool size for batch image analysis; None means one per CPU core.
    analysis_max_workers: int | None
    max_upload_bytes: int
    log_level: str


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %r", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %r", name, raw, default)
        return default
    return value


def load_settings(env_path: Path | None = ENV_PATH) -> Settings:
    """Load a .env file if present, then build Settings from the environment."""
    if env_path is not None and env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
        logger.info("Loaded environment from %s", env_path)

    return Settings(
        storage_dir=Path(os.getenv("CAMPAIGN_STORAGE_DIR", "storage/sessions")),
        analysis_max_workers=_int_env("ANALYSIS_MAX_WORKERS", None),
        max_upload_bytes=_int_env("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES) or DEFAULT_MAX_UPLOAD_BYTES,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the process-wide settings.

    Cached so every module sees the same values; tests call
    `get_settings.cache_clear()` after changing the environment.
    """
    return load_settings()
