"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from radaccess.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("RA_DB_PATH", "RA_DB_TIMEOUT", "RA_LOG_FORMAT", "RA_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings()
        assert settings.db_path == "radaccess.db"
        assert settings.db_timeout == 30.0
        assert settings.log_format == "text"
        assert settings.log_level == "INFO"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RA_DB_PATH", "/var/lib/radaccess/accounts.db")
        monkeypatch.setenv("RA_DB_TIMEOUT", "5")
        monkeypatch.setenv("RA_LOG_FORMAT", "JSON")
        monkeypatch.setenv("RA_LOG_LEVEL", "debug")
        settings = Settings()
        assert settings.db_path == "/var/lib/radaccess/accounts.db"
        assert settings.db_timeout == 5.0
        assert settings.log_format == "json"
        assert settings.log_level == "DEBUG"

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("RA_LOG_FORMAT", "xml")
        with pytest.raises(ValidationError, match="RA_LOG_FORMAT"):
            Settings()

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("RA_LOG_LEVEL", "LOUD")
        with pytest.raises(ValidationError, match="RA_LOG_LEVEL"):
            Settings()

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_timeout_must_be_positive(self, monkeypatch, value):
        monkeypatch.setenv("RA_DB_TIMEOUT", value)
        with pytest.raises(ValidationError):
            Settings()
