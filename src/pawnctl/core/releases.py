"""
GitHub release API client.

Used for version discovery by the tagless pinner. Every call returns an
``Ok``/``Err`` result: an unreachable API or a repository without
releases is an expected outcome, not an exception.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..config import GITHUB_API_URL
from .deadline import Deadline
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ReleaseAsset:
    name: str
    download_url: str
    size: int = 0


@dataclass(frozen=True)
class Release:
    """A published release."""

    tag_name: str
    name: str = ""
    draft: bool = False
    prerelease: bool = False
    assets: List[ReleaseAsset] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            tag_name=str(data.get("tag_name") or ""),
            name=str(data.get("name") or ""),
            draft=bool(data.get("draft")),
            prerelease=bool(data.get("prerelease")),
            assets=[
                ReleaseAsset(
                    name=str(a.get("name") or ""),
                    download_url=str(a.get("browser_download_url") or ""),
                    size=int(a.get("size") or 0),
                )
                for a in data.get("assets") or []
            ],
        )


class ReleaseSource(Protocol):
    def latest_stable_tag(self, owner: str, repo: str) -> Result[Optional[str], str]: ...


def pick_latest_tag(releases: List[Release]) -> Optional[str]:
    """
    Newest non-draft, non-prerelease tag; else the newest non-draft one.

    The API lists releases newest first.
    """
    for release in releases:
        if not release.draft and not release.prerelease and release.tag_name:
            return release.tag_name
    for release in releases:
        if not release.draft and release.tag_name:
            return release.tag_name
    return None


class GitHubReleases:
    """Thin synchronous wrapper around the GitHub releases endpoints."""

    def __init__(
        self,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        base_url: str = GITHUB_API_URL,
        deadline: Optional[Deadline] = None,
    ) -> None:
        resolved_token = token or os.environ.get("GITHUB_TOKEN")
        headers: Dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if resolved_token:
            headers["Authorization"] = f"token {resolved_token}"
        self._client = client or httpx.Client(base_url=base_url, headers=headers, timeout=_DEFAULT_TIMEOUT)
        self.deadline = deadline or Deadline()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubReleases":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def list_releases(self, owner: str, repo: str) -> Result[List[Release], str]:
        def parse(data: Any) -> Result[List[Release], str]:
            if not isinstance(data, list):
                return Err(f"unexpected response listing releases for {owner}/{repo}")
            return Ok([Release.from_api(item) for item in data if isinstance(item, dict)])

        return self._get(f"/repos/{owner}/{repo}/releases", params={"per_page": 100}).and_then(parse)

    def get_release_by_tag(self, owner: str, repo: str, tag: str) -> Result[Release, str]:
        result = self._get(f"/repos/{owner}/{repo}/releases/tags/{tag}")
        if result.is_err():
            return result
        if not isinstance(result.value, dict):
            return Err(f"unexpected response for release {tag} of {owner}/{repo}")
        return Ok(Release.from_api(result.value))

    def latest_stable_tag(self, owner: str, repo: str) -> Result[Optional[str], str]:
        """The tag of the newest usable release, Ok(None) when there are none."""
        return self.list_releases(owner, repo).map(pick_latest_tag)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Result[Any, str]:
        if self.deadline.expired:
            return Err("deadline exceeded")
        try:
            response = self._client.get(path, params=params, timeout=self.deadline.timeout(_DEFAULT_TIMEOUT))
        except httpx.HTTPError as e:
            logger.debug(f"GitHub API request {path} failed: {e}")
            return Err(f"request failed: {e}")

        if response.status_code == 404:
            return Err(f"not found: {path}")
        if response.status_code != 200:
            return Err(f"HTTP {response.status_code} for {path}")
        try:
            return Ok(response.json())
        except ValueError as e:
            return Err(f"invalid JSON from {path}: {e}")
