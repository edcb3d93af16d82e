"""Tests for environment-driven settings."""

import pytest

from src.config import Settings, settings


@pytest.mark.parametrize(
    ("environment", "expected"),
    [("production", True), ("Production", True), ("development", False), ("staging", False)],
)
def test_is_production_follows_environment(monkeypatch, environment, expected):
    monkeypatch.setattr(settings, "ENVIRONMENT", environment)

    assert settings.is_production is expected


def test_settings_expose_environment_and_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    configured = Settings()

    assert configured.log_level == "WARNING"
    assert configured.ENVIRONMENT == Settings.ENVIRONMENT
    assert configured.max_chunk_chars == int(
        configured.MAX_TOKENS_PER_CHUNK * configured.CHARS_PER_TOKEN
    )
