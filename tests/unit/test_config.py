"""Tests for settings."""

import pytest

from laneq.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Defaults match the queue's documented behavior."""
        for name in ("REDIS_URL", "SCRIPT", "LANEQ_ENV", "LANEQ_CONCURRENCY"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.env == "dev"
        assert settings.concurrency == 50
        assert settings.default_attempts == 3
        assert settings.backoff_type == "exponential"
        assert settings.backoff_delay == 1000
        assert settings.script is False
        assert settings.is_dev is True

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unprefixed names are read for shared variables."""
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("SCRIPT", "1")
        monkeypatch.setenv("LANEQ_ENV", "production")
        monkeypatch.setenv("LANEQ_CONCURRENCY", "8")

        settings = Settings(_env_file=None)

        assert settings.redis_url == "redis://cache:6379/2"
        assert settings.script is True
        assert settings.concurrency == 8
        assert settings.is_dev is False
        assert settings.key_prefix == "production:{mq}"

    def test_namespace_override(self) -> None:
        """An explicit namespace replaces the default prefix."""
        assert Settings(namespace="acme:{q}").key_prefix == "acme:{q}"
