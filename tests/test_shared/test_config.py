"""
Tests for environment configuration.
"""

import pytest
from pydantic import ValidationError

from shared.config import Settings


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("NOTIFY_DEFAULT_TIMEZONE", "Europe/Lisbon")
    monkeypatch.setenv("NOTIFY_LOG_LEVEL", " debug ")

    settings = Settings()

    assert settings.default_timezone == "Europe/Lisbon"
    assert settings.log_level == "DEBUG"


def test_unknown_default_timezone_rejected():
    with pytest.raises(ValidationError):
        Settings(default_timezone="Mars/Olympus")
