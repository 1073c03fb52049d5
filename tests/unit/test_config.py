"""Unit tests for settings and logging setup."""
import logging

import pytest

from unmute.core import logging as logging_setup
from unmute.core.config import Settings
from unmute.db.database import to_async_url


class TestSettings:
    """Test derived configuration flags."""

    def test_configured_flags(self, test_settings):
        assert test_settings.openai_configured is True
        assert test_settings.twilio_configured is True

    def test_missing_credentials(self):
        settings = Settings(database_url="sqlite:///:memory:", openai_api_key=None, twilio_auth_token=None)

        assert settings.openai_configured is False
        assert settings.twilio_configured is False

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgresql://u:p@db/unmute", "postgresql+asyncpg://u:p@db/unmute"),
            ("sqlite:///./unmute.db", "sqlite+aiosqlite:///./unmute.db"),
            ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ],
    )
    def test_async_database_url(self, url, expected):
        assert to_async_url(url) == expected


class TestLoggingSetup:
    """Test logging configuration."""

    def test_level_by_name(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging_setup.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        logging_setup.setup_logging("debug")

        assert calls[0]["level"] == logging.DEBUG

    def test_unknown_level_defaults_to_info(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging_setup.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        logging_setup.setup_logging("chatty")

        assert calls[0]["level"] == logging.INFO

    def test_vendor_loggers_quieted(self, monkeypatch):
        monkeypatch.setattr(logging_setup.logging, "basicConfig", lambda **kwargs: None)

        logging_setup.setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING
