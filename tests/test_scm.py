"""Contract tests for GitHubScm — verify commit lookup request shapes.

Uses `respx` to intercept httpx requests at the transport level.
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from buildrelay.errors import SourceControlError
from buildrelay.scm import GitHubScm, ScmUri, parse_scm_uri

SHA = "d" * 40
COMMIT_URL = "https://api.github.com/repositories/123456/commits/main"


@pytest.fixture
async def scm():
    client = GitHubScm()
    await client.start()
    yield client
    await client.close()


class TestParseScmUri:
    def test_parts(self):
        assert parse_scm_uri("github.com:123456:main") == ScmUri("github.com", "123456", "main")

    def test_branch_with_colon(self):
        assert parse_scm_uri("github.com:1:release:v2").branch == "release:v2"

    @pytest.mark.parametrize("uri", ["", "github.com", "github.com:123", "github.com::main"])
    def test_malformed(self, uri):
        with pytest.raises(SourceControlError):
            parse_scm_uri(uri)


class TestGetCommitSha:
    @respx.mock
    async def test_request_shape(self, scm):
        route = respx.get(COMMIT_URL).mock(return_value=httpx.Response(200, json={"sha": SHA}))

        sha = await scm.get_commit_sha(
            scm_context="github:github.com", scm_uri="github.com:123456:main", token="ghp_abc"
        )

        assert sha == SHA
        assert route.called
        request = route.calls[0].request
        assert request.headers["Authorization"] == "token ghp_abc"
        assert request.headers["Accept"] == "application/vnd.github.v3+json"

    @respx.mock
    async def test_http_error(self, scm):
        respx.get(COMMIT_URL).mock(return_value=httpx.Response(404, json={"message": "Not Found"}))

        with pytest.raises(SourceControlError, match="404"):
            await scm.get_commit_sha(
                scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
            )

    @respx.mock
    async def test_transport_error(self, scm):
        respx.get(COMMIT_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(SourceControlError):
            await scm.get_commit_sha(
                scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
            )

    @respx.mock
    async def test_response_without_sha(self, scm):
        respx.get(COMMIT_URL).mock(return_value=httpx.Response(200, json={"commit": {}}))

        with pytest.raises(SourceControlError):
            await scm.get_commit_sha(
                scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
            )

    async def test_context_host_mismatch(self, scm):
        with pytest.raises(SourceControlError, match="does not match"):
            await scm.get_commit_sha(
                scm_context="github:ghe.example.com", scm_uri="github.com:123456:main", token="t"
            )

    @respx.mock
    async def test_custom_api_url(self):
        route = respx.get("https://ghe.example.com/api/v3/repositories/9/commits/dev").mock(
            return_value=httpx.Response(200, json={"sha": SHA})
        )

        async with GitHubScm(api_url="https://ghe.example.com/api/v3") as client:
            sha = await client.get_commit_sha(
                scm_context="github:ghe.example.com", scm_uri="ghe.example.com:9:dev", token="t"
            )

        assert route.called
        assert sha == SHA

    async def test_not_started(self):
        with pytest.raises(RuntimeError, match="not started"):
            await GitHubScm().get_commit_sha(
                scm_context="github:github.com", scm_uri="github.com:1:main", token="t"
            )

    @respx.mock
    async def test_tracks_rate_limit(self, scm):
        respx.get(COMMIT_URL).mock(
            return_value=httpx.Response(
                200,
                json={"sha": SHA},
                headers={"X-RateLimit-Remaining": "42", "X-RateLimit-Reset": "1700000000"},
            )
        )

        await scm.get_commit_sha(
            scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
        )

        assert scm._rate_limit_remaining == 42

    @respx.mock
    async def test_exhausted_quota_waits_for_reset(self, scm, monkeypatch):
        respx.get(COMMIT_URL).mock(return_value=httpx.Response(200, json={"sha": SHA}))
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        scm._rate_limit_remaining = 0
        scm._rate_limit_reset = time.time() + 30

        sha = await scm.get_commit_sha(
            scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
        )

        assert sha == SHA
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] > 29

    @respx.mock
    async def test_remaining_quota_does_not_wait(self, scm, monkeypatch):
        respx.get(COMMIT_URL).mock(return_value=httpx.Response(200, json={"sha": SHA}))
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)

        await scm.get_commit_sha(
            scm_context="github:github.com", scm_uri="github.com:123456:main", token="t"
        )

        sleep.assert_not_awaited()
