"""Source-control client for commit resolution.

Resolves the head commit of a pipeline's branch through the GitHub REST
API via httpx. The caller supplies the user token per request; the client
never stores or logs it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import NamedTuple, Protocol

import httpx

from buildrelay.errors import SourceControlError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


class ScmClient(Protocol):
    async def get_commit_sha(self, *, scm_context: str, scm_uri: str, token: str) -> str: ...


class ScmUri(NamedTuple):
    host: str
    repo_id: str
    branch: str


def parse_scm_uri(scm_uri: str) -> ScmUri:
    """Split ``<host>:<repo id>:<branch>``. Branch names may contain colons."""
    parts = scm_uri.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise SourceControlError(f"Malformed scm uri: {scm_uri!r}")
    return ScmUri(*parts)


class GitHubScm:
    """Async GitHub client that answers "what is the current commit" questions."""

    def __init__(
        self,
        *,
        api_url: str = GITHUB_API,
        timeout: float = 30.0,
        user_agent: str = "buildrelay/0.1.0",
    ):
        self.api_url = api_url
        self.timeout = timeout
        self.user_agent = user_agent

        self._rate_limit_remaining: int = 5000
        self._rate_limit_reset: float = 0

        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": self.user_agent,
            },
            timeout=self.timeout,
        )
        logger.info("GitHub SCM client started (%s)", self.api_url)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitHubScm:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitHub SCM client not started")
        return self._client

    # ── Rate Limit Tracking ──────────────────────────────────────────────

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Track rate limits from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining:
            self._rate_limit_remaining = int(remaining)
        if reset:
            self._rate_limit_reset = float(reset)

        if self._rate_limit_remaining < 100:
            logger.warning(
                "GitHub API rate limit low: %d remaining (resets at %s)",
                self._rate_limit_remaining,
                datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc).isoformat(),
            )

    async def _wait_for_rate_limit_reset(self) -> None:
        """Sleep until the reset window when the quota is exhausted."""
        if self._rate_limit_remaining > 0:
            return
        wait = max(0.0, self._rate_limit_reset - time.time()) + 1
        logger.warning("GitHub API rate limit exhausted, sleeping %.1fs until reset", wait)
        await asyncio.sleep(wait)
        self._rate_limit_remaining = 100  # optimistic until the next response

    # ── Commits ──────────────────────────────────────────────────────────

    async def get_commit_sha(self, *, scm_context: str, scm_uri: str, token: str) -> str:
        """Return the head commit sha of the branch named in ``scm_uri``.

        Args:
            scm_context: Provider context, e.g. ``github:github.com``. Its host
                must match the host in ``scm_uri``.
            scm_uri: ``<host>:<repo id>:<branch>``.
            token: Raw user token, used for this request only.

        Raises:
            SourceControlError: On a malformed uri, a context mismatch, an
                HTTP failure, or a response without a sha.
        """
        uri = parse_scm_uri(scm_uri)
        _, _, context_host = scm_context.partition(":")
        if context_host and context_host != uri.host:
            raise SourceControlError(
                f"scm context {scm_context!r} does not match uri host {uri.host!r}"
            )

        await self._wait_for_rate_limit_reset()
        try:
            resp = await self.client.get(
                f"/repositories/{uri.repo_id}/commits/{uri.branch}",
                headers={"Authorization": f"token {token}"},
            )
            self._update_rate_limit(resp)
            resp.raise_for_status()
            sha = resp.json()["sha"]
        except httpx.HTTPStatusError as exc:
            raise SourceControlError(
                f"Commit lookup for {uri.repo_id}:{uri.branch} failed "
                f"with {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceControlError(
                f"Commit lookup for {uri.repo_id}:{uri.branch} failed: {exc}"
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceControlError(
                f"Unexpected commit response for {uri.repo_id}:{uri.branch}"
            ) from exc

        logger.debug("Resolved %s:%s to %s", uri.repo_id, uri.branch, sha)
        return sha
