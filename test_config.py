"""Tests for environment-driven settings."""

import os
from pathlib import Path

import pytest

from campaign_layout.config import DEFAULT_MAX_UPLOAD_BYTES, get_settings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CAMPAIGN_STORAGE_DIR", "ANALYSIS_MAX_WORKERS", "MAX_UPLOAD_BYTES", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = load_settings(env_path=None)

    assert settings.storage_dir == Path("storage/sessions")
    assert settings.analysis_max_workers is None
    assert settings.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("CAMPAIGN_STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("ANALYSIS_MAX_WORKERS", "3")
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "1024")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings(env_path=None)

    assert settings.storage_dir == tmp_path
    assert settings.analysis_max_workers == 3
    assert settings.max_upload_bytes == 1024
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("raw", ["many", "0", "-2", "  "])
def test_invalid_integers_fall_back_to_defaults(monkeypatch, raw):
    monkeypatch.setenv("ANALYSIS_MAX_WORKERS", raw)
    monkeypatch.setenv("MAX_UPLOAD_BYTES", raw)

    settings = load_settings(env_path=None)

    assert settings.analysis_max_workers is None
    assert settings.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES


def test_dotenv_file_does_not_override_environment(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("ANALYSIS_MAX_WORKERS=7\nLOG_LEVEL=warning\n", encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL", "ERROR")

    try:
        settings = load_settings(env_path=env_file)
    finally:
        # load_dotenv writes straight into os.environ.
        os.environ.pop("ANALYSIS_MAX_WORKERS", None)

    assert settings.analysis_max_workers == 7
    assert settings.log_level == "ERROR"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
