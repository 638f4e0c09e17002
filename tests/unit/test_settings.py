"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from medreg.config.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MEDREG_REGISTRY_BACKEND", raising=False)
        settings = Settings(_env_file=None)

        assert settings.registry_backend == "postgres"
        assert settings.inbox_poll_interval_seconds == 10.0
        assert settings.inbox_max_attempts == 6
        assert settings.prover_url == ""
        assert settings.bootstrap_super_admins == []
        assert not settings.organization_requires_approval

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MEDREG_REGISTRY_BACKEND", "memory")
        monkeypatch.setenv("MEDREG_INBOX_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("MEDREG_BOOTSTRAP_SUPER_ADMINS", '["0xroot"]')

        settings = Settings(_env_file=None)

        assert settings.registry_backend == "memory"
        assert settings.inbox_max_attempts == 3
        assert settings.bootstrap_super_admins == ["0xroot"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"registry_backend": "sqlite"},
            {"inbox_poll_interval_seconds": 0},
            {"inbox_max_attempts": 0},
            {"session_ttl_seconds": 5},
        ],
    )
    def test_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)
