"""Async GitHub App client for repository content.

Authenticates as the GitHub App (RS256 JWT), exchanges that for an
installation access token, and lists repository trees through the Git
Trees API.

Reference: https://docs.github.com/en/rest/git/trees
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
import jwt

from mantle.config import Settings, get_settings
from mantle.ops.retry_policy import compute_jittered_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 60.0


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubRateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded."""

    pass


class GitHubNotFoundError(GitHubAPIError):
    """Raised when requested resource is not found."""

    pass


class GitHubAppNotConfiguredError(GitHubAPIError):
    """Raised when the App id or private key is missing."""

    pass


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a Git tree listing."""

    path: str
    sha: str
    size: int
    type: str = "blob"
    mode: str = "100644"


@dataclass(frozen=True)
class FileTree:
    files: list[TreeEntry]
    sha: str
    truncated: bool


def build_app_jwt(app_id: str, private_key: str, *, now: int | None = None) -> str:
    """Sign a GitHub App JWT valid for nine minutes."""
    issued = int(now if now is not None else time.time())
    payload = {
        # Allow for clock drift between us and GitHub
        "iat": issued - 60,
        "exp": issued + 540,
        "iss": app_id,
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


async def with_rate_limiting(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying rate-limited responses with jittered backoff."""
    attempt = 0
    while True:
        try:
            return await operation()
        except GitHubRateLimitError as e:
            if attempt >= max_retries:
                raise
            delay = compute_jittered_backoff(
                attempt=attempt,
                base=base_delay,
                maximum=MAX_BACKOFF_SECONDS,
            )
            logger.warning(
                "GitHub rate limit hit, backing off",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 2),
                    "status_code": e.status_code,
                },
            )
            await sleep(delay)
            attempt += 1


class GitHubContentClient:
    """
    GitHub App client scoped to one installation.

    Usage:
        async with GitHubContentClient(installation_id) as client:
            tree = await client.fetch_file_tree("owner", "repo", "main")
    """

    def __init__(
        self,
        installation_id: int,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    ):
        self.settings = settings or get_settings()
        self.installation_id = installation_id
        self.base_url = self.settings.github_api_base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._transport = transport
        self._token: str | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GitHubContentClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an API request with error handling.

        Raises:
            GitHubRateLimitError: If rate limit exceeded
            GitHubNotFoundError: If resource not found
            GitHubAPIError: For other API errors
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        response = await self._client.request(
            method,
            path,
            headers={"Authorization": f"Bearer {token}"},
            **kwargs,
        )

        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining", "") == "0"
        ):
            reset_time = response.headers.get("X-RateLimit-Reset", "unknown")
            raise GitHubRateLimitError(
                f"GitHub API rate limit exceeded. Resets at {reset_time}",
                status_code=response.status_code,
            )

        if response.status_code == 404:
            raise GitHubNotFoundError(f"Resource not found: {path}", status_code=404)

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        return response

    async def _installation_token(self) -> str:
        if self._token is not None:
            return self._token

        if not self.settings.github_app_id or not self.settings.github_app_private_key:
            raise GitHubAppNotConfiguredError("GitHub App credentials are not configured")

        app_jwt = build_app_jwt(
            self.settings.github_app_id,
            self.settings.github_app_private_key_pem,
        )
        response = await self._request(
            "POST",
            f"/app/installations/{self.installation_id}/access_tokens",
            token=app_jwt,
        )
        self._token = response.json()["token"]
        return self._token

    async def _get_json(self, path: str, **kwargs: Any) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            token = await self._installation_token()
            response = await self._request("GET", path, token=token, **kwargs)
            return response.json()

        return await with_rate_limiting(
            call,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
        )

    async def get_commit_sha(self, owner: str, repo: str, ref: str = "HEAD") -> str:
        data = await self._get_json(f"/repos/{owner}/{repo}/commits/{ref}")
        return data["sha"]

    async def fetch_file_tree(self, owner: str, repo: str, ref: str = "HEAD") -> FileTree:
        """
        List every file (blob) in the repository at ``ref``.

        The ref is resolved to a commit first so the returned sha names
        exactly the tree that was listed.
        """
        commit_sha = await self.get_commit_sha(owner, repo, ref)
        data = await self._get_json(
            f"/repos/{owner}/{repo}/git/trees/{commit_sha}",
            params={"recursive": "1"},
        )

        files = [
            TreeEntry(
                path=item["path"],
                sha=item["sha"],
                size=item.get("size") or 0,
                type="blob",
                mode=item.get("mode") or "100644",
            )
            for item in data.get("tree") or []
            if item.get("type") == "blob" and item.get("path") and item.get("sha")
        ]

        logger.debug(
            "Fetched file tree",
            extra={"repo": f"{owner}/{repo}", "ref": ref, "files": len(files)},
        )
        return FileTree(files=files, sha=commit_sha, truncated=bool(data.get("truncated")))


async def fetch_file_tree(
    installation_id: int,
    owner: str,
    repo: str,
    ref: str = "HEAD",
) -> FileTree:
    """Fetch a repository tree through a short-lived installation client."""
    async with GitHubContentClient(installation_id) as client:
        return await client.fetch_file_tree(owner, repo, ref)
