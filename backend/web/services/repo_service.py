"""Repository metadata service (GitHub REST API)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from sandbox.errors import RepositoryError

logger = logging.getLogger(__name__)


@dataclass
class RepoMetadata:
    owner: str
    name: str
    full_name: str
    default_branch: str
    clone_url: str
    is_private: bool = False


class GitHubClient:
    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        timeout_sec: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "repobox",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout_sec,
            transport=transport,
        )

    def _get_repo(self, owner: str, repo: str) -> dict | None:
        try:
            r = self._client.get(f"/repos/{owner}/{repo}")
        except httpx.TransportError as e:
            raise RepositoryError(f"GitHub unreachable: {e}", status_code=503) from e
        if r.status_code == 404:
            return None
        if r.status_code == 403 and r.headers.get("x-ratelimit-remaining") == "0":
            raise RepositoryError("GitHub API rate limit exceeded", status_code=429)
        if r.status_code >= 400:
            raise RepositoryError(f"GitHub API error {r.status_code} for {owner}/{repo}", status_code=502)
        return r.json()

    def validate(self, owner: str, repo: str) -> bool:
        return self._get_repo(owner, repo) is not None

    def get_default_branch(self, owner: str, repo: str) -> str:
        return self.get_metadata(owner, repo).default_branch

    def get_metadata(self, owner: str, repo: str) -> RepoMetadata:
        data = self._get_repo(owner, repo)
        if data is None:
            raise RepositoryError(f"Repository not found: {owner}/{repo}", status_code=404)
        return RepoMetadata(
            owner=data.get("owner", {}).get("login", owner),
            name=data.get("name", repo),
            full_name=data.get("full_name", f"{owner}/{repo}"),
            default_branch=data.get("default_branch") or "main",
            clone_url=data.get("clone_url") or f"https://github.com/{owner}/{repo}.git",
            is_private=bool(data.get("private", False)),
        )

    def close(self) -> None:
        self._client.close()


def resolve_repository(client: GitHubClient, owner: str, repo: str) -> RepoMetadata | None:
    """Look up repository metadata for a create request.

    Unknown repositories raise RepositoryError(404). When GitHub itself is
    unreachable or erroring, returns None and creation proceeds without it.
    """
    try:
        return client.get_metadata(owner, repo)
    except RepositoryError as e:
        if e.status_code == 404:
            raise
        logger.warning("Repository lookup for %s/%s failed, continuing without metadata: %s", owner, repo, e)
        return None
