"""Tests for token sealing."""

from __future__ import annotations

import pytest

from buildrelay.errors import CredentialError
from buildrelay.secrets import TokenSealer


class TestTokenSealer:
    def test_seal_hides_token(self):
        sealer = TokenSealer(TokenSealer.generate_key())
        sealed = sealer.seal("ghp_secret")
        assert "ghp_secret" not in sealed
        assert sealer.unseal(sealed) == "ghp_secret"

    def test_wrong_key(self):
        sealed = TokenSealer(TokenSealer.generate_key()).seal("t")
        with pytest.raises(CredentialError):
            TokenSealer(TokenSealer.generate_key()).unseal(sealed)

    def test_garbage(self):
        with pytest.raises(CredentialError):
            TokenSealer(TokenSealer.generate_key()).unseal("not-a-fernet-token")

    def test_empty_token(self):
        with pytest.raises(CredentialError, match="No stored token"):
            TokenSealer(TokenSealer.generate_key()).unseal("")

    def test_invalid_key(self):
        with pytest.raises(CredentialError):
            TokenSealer("too-short")


class TestFromEnv:
    def test_reads_named_variable(self, monkeypatch):
        key = TokenSealer.generate_key()
        monkeypatch.setenv("RELAY_TEST_KEY", key)
        sealer = TokenSealer.from_env("RELAY_TEST_KEY")
        assert sealer.unseal(TokenSealer(key).seal("x")) == "x"

    def test_missing_variable(self, monkeypatch):
        monkeypatch.delenv("RELAY_TEST_KEY", raising=False)
        with pytest.raises(CredentialError, match="RELAY_TEST_KEY"):
            TokenSealer.from_env("RELAY_TEST_KEY")
