"""Tests for configuration loading."""

from __future__ import annotations

import pytest

from buildrelay.config import RelayConfig, load_config
from buildrelay.scm import GITHUB_API


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("BUILDRELAY_DATABASE_PATH", raising=False)
    monkeypatch.delenv("BUILDRELAY_SCM_API_URL", raising=False)


class TestLoadConfig:
    def test_defaults_without_file(self):
        config = load_config()
        assert config.database_path == "buildrelay.db"
        assert config.scm.api_url == GITHUB_API
        assert config.secrets.key_env == "BUILDRELAY_TOKEN_KEY"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "relay.yaml"
        path.write_text(
            "database_path: /var/lib/relay.db\n"
            "scm:\n"
            "  api_url: https://ghe.example.com/api/v3\n"
            "  timeout: 5\n"
            "secrets:\n"
            "  key_env: RELAY_KEY\n"
        )

        config = load_config(path)

        assert config.database_path == "/var/lib/relay.db"
        assert config.scm.api_url == "https://ghe.example.com/api/v3"
        assert config.scm.timeout == 5.0
        assert config.secrets.key_env == "RELAY_KEY"

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "relay.yaml"
        path.write_text("")
        assert load_config(path) == RelayConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_timeout(self, tmp_path):
        path = tmp_path / "relay.yaml"
        path.write_text("scm:\n  timeout: 0\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "relay.yaml"
        path.write_text("database_path: from-file.db\n")
        monkeypatch.setenv("BUILDRELAY_DATABASE_PATH", "from-env.db")
        monkeypatch.setenv("BUILDRELAY_SCM_API_URL", "http://localhost:9999")

        config = load_config(path)

        assert config.database_path == "from-env.db"
        assert config.scm.api_url == "http://localhost:9999"
