"""
Dependency Override Table.

Redirects dependency strings whose upstream repository has moved or died.
Three layers are merged in increasing precedence:

    1. Built-in redirects shipped with pawnctl
    2. The remote override feed, cached on disk for 24 hours
    3. The user's local override file (highest precedence)

Both files share the shape ``{"overrides": {"original": "replacement"}}``.
The remote feed is best-effort: any failure degrades to layers 1 and 3.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import httpx

from ..config import (
    DEFAULT_SITE,
    LOCAL_OVERRIDES_FILE,
    OVERRIDES_TTL,
    OVERRIDES_URL,
    REMOTE_OVERRIDES_CACHE_FILE,
    get_config_dir,
)
from .atomic import atomic_write
from .deadline import Deadline
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

BUILTIN_OVERRIDES: Dict[str, str] = {
    "github.com/Zeex/samp-plugin-crashdetect": "github.com/AmyrAhmady/samp-plugin-crashdetect",
    "Zeex/samp-plugin-crashdetect": "AmyrAhmady/samp-plugin-crashdetect",
}

_PROTOCOL = re.compile(r"^https?://")
_VERSION_SEPARATOR = re.compile(r"[:@#]")
_SCHEME_PREFIX = re.compile(r"^(?:plugin|includes|filterscript|component)://")
_SSH_PREFIX = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*@[a-zA-Z0-9.-]+:(?!//)")


class OverrideLayer(StrEnum):
    """Where an override entry came from."""

    BUILTIN = "builtin"
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class OverrideEntry:
    original: str
    replacement: str
    layer: OverrideLayer


def read_overrides_file(path: Path) -> Result[Dict[str, str], str]:
    """Read an ``{"overrides": {...}}`` document from disk."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Err(f"{path} does not exist")
    except (OSError, ValueError) as e:
        return Err(f"failed to read {path}: {e}")

    overrides = data.get("overrides") if isinstance(data, dict) else None
    if not isinstance(overrides, dict):
        return Err(f"{path} has no 'overrides' object")
    return Ok({str(k): str(v) for k, v in overrides.items()})


def save_local_overrides(overrides: Mapping[str, str], path: Optional[Path] = None) -> Path:
    """
    Write the user's local override file.

    Args:
        overrides: Mapping of original to replacement strings.
        path: Destination, defaults to the config directory.

    Returns:
        The path written.
    """
    path = path or get_config_dir() / LOCAL_OVERRIDES_FILE
    atomic_write(path, json.dumps({"overrides": dict(overrides)}, indent=2) + "\n", mode=0o644)
    return path


class RemoteOverrideFeed:
    """
    Fetches the shared override list and caches it on disk.

    The cache counts as fresh while its modification time is within the
    TTL. A stale cache is still used when the network is unavailable.
    """

    def __init__(
        self,
        url: str = OVERRIDES_URL,
        cache_path: Optional[Path] = None,
        ttl: timedelta = OVERRIDES_TTL,
        client: Optional[httpx.Client] = None,
        deadline: Optional[Deadline] = None,
    ):
        self.url = url
        self.cache_path = cache_path or get_config_dir() / REMOTE_OVERRIDES_CACHE_FILE
        self.ttl = ttl
        self._client = client
        self.deadline = deadline or Deadline()

    def is_cache_fresh(self) -> bool:
        try:
            mtime = self.cache_path.stat().st_mtime
        except OSError:
            return False
        return time.time() - mtime < self.ttl.total_seconds()

    def load(self) -> Result[Dict[str, str], str]:
        """Return the feed's overrides, refreshing the on-disk cache when stale."""
        if self.is_cache_fresh():
            cached = read_overrides_file(self.cache_path)
            if cached.is_ok():
                logger.debug(f"Using cached override feed at {self.cache_path}")
                return cached

        fetched = self.fetch()
        if fetched.is_ok():
            return fetched

        logger.warning(f"Override feed unavailable: {fetched.error}")
        stale = read_overrides_file(self.cache_path)
        if stale.is_ok():
            logger.debug("Falling back to stale override feed cache")
            return stale
        return fetched

    def fetch(self) -> Result[Dict[str, str], str]:
        """Download the feed and store it in the cache file."""
        if self.deadline.expired:
            return Err("deadline exceeded before fetching override feed")

        try:
            response = self._get()
        except httpx.HTTPError as e:
            return Err(f"failed to download overrides: {e}")

        if response.status_code != 200:
            return Err(f"failed to download overrides: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            return Err(f"override feed is not valid JSON: {e}")

        overrides = data.get("overrides") if isinstance(data, dict) else None
        if not isinstance(overrides, dict):
            return Err("override feed has no 'overrides' object")

        try:
            atomic_write(self.cache_path, response.content, mode=0o644)
        except OSError as e:
            logger.warning(f"Failed to cache override feed: {e}")

        return Ok({str(k): str(v) for k, v in overrides.items()})

    def clear_cache(self) -> bool:
        """Remove the cached feed. Returns True if a file was removed."""
        try:
            self.cache_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _get(self) -> httpx.Response:
        timeout = self.deadline.timeout(30.0)
        if self._client is not None:
            return self._client.get(self.url, timeout=timeout)
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            return client.get(self.url)


class OverrideTable:
    """
    Merged override table with an idempotent ``rewrite``.

    Example:
        ```python
        table = OverrideTable(local={"old/pkg": "new/pkg:4.22"})
        table.rewrite("old/pkg:4.20")  # -> "new/pkg:4.22"
        ```
    """

    def __init__(
        self,
        builtin: Optional[Mapping[str, str]] = None,
        remote: Optional[Mapping[str, str]] = None,
        local: Optional[Mapping[str, str]] = None,
    ):
        self._entries: Dict[str, OverrideEntry] = {}
        layers = (
            (OverrideLayer.BUILTIN, builtin),
            (OverrideLayer.REMOTE, remote),
            (OverrideLayer.LOCAL, local),
        )
        for layer, mapping in layers:
            for original, replacement in (mapping or {}).items():
                self._entries[original] = OverrideEntry(original, replacement, layer)

    @classmethod
    def load(
        cls,
        config_dir: Optional[Path] = None,
        feed: Optional[RemoteOverrideFeed] = None,
        use_remote: bool = True,
    ) -> "OverrideTable":
        """
        Build the table from the built-in list, the remote feed and the local file.

        Args:
            config_dir: Directory holding the override files.
            feed: Remote feed to use, a default one is created when omitted.
            use_remote: Skip the remote layer entirely when False.
        """
        config_dir = config_dir or get_config_dir()

        remote: Dict[str, str] = {}
        if use_remote:
            feed = feed or RemoteOverrideFeed(cache_path=config_dir / REMOTE_OVERRIDES_CACHE_FILE)
            remote = feed.load().unwrap_or({})

        local_path = config_dir / LOCAL_OVERRIDES_FILE
        local_result = read_overrides_file(local_path)
        if local_result.is_err() and local_path.exists():
            logger.warning(f"Ignoring local overrides: {local_result.error}")

        return cls(builtin=BUILTIN_OVERRIDES, remote=remote, local=local_result.unwrap_or({}))

    @classmethod
    def empty(cls) -> "OverrideTable":
        return cls()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, original: str) -> bool:
        return original in self._entries

    def entries(self) -> List[OverrideEntry]:
        return sorted(self._entries.values(), key=lambda e: e.original.lower())

    def lookup(self, original: str) -> Optional[str]:
        entry = self._entries.get(original)
        return entry.replacement if entry else None

    def rewrite(self, spec: str) -> str:
        """
        Apply overrides to a dependency string.

        Redirect chains are followed to a fixed point. A cycle, or a chain
        that never settles, leaves the input unchanged.
        """
        if not self._entries:
            return spec

        current = spec
        seen = {spec}
        for _ in range(len(self._entries) + 1):
            rewritten = self._rewrite_once(current)
            if rewritten == current:
                break
            if rewritten in seen:
                logger.warning(f"Override cycle detected for '{spec}', leaving it unchanged")
                return spec
            seen.add(rewritten)
            current = rewritten
        else:
            logger.warning(f"Overrides for '{spec}' do not settle, leaving it unchanged")
            return spec

        if current != spec:
            logger.info(f"dependency '{spec}' was overridden by '{current}'")
        return current

    def _rewrite_once(self, spec: str) -> str:
        # 1. Exact match
        replacement = self.lookup(spec)
        if replacement is not None:
            return replacement

        # 2. Without http(s)://
        stripped = _PROTOCOL.sub("", spec)
        if stripped != spec:
            replacement = self.lookup(stripped)
            if replacement is not None:
                return replacement

        # 3. owner/repo portion, carrying the sub-path and version suffix over
        prefix, body = _split_prefix(stripped)
        if prefix.endswith("://") and body.startswith("local/"):
            return spec
        base, version = _split_version(body)
        for key, sub_path in _candidate_keys(base):
            replacement = self.lookup(key)
            if replacement is None:
                continue
            target, own_version = _split_version(_PROTOCOL.sub("", replacement))
            return _attach_prefix(prefix, target + sub_path + (own_version or version))

        return spec


def _split_prefix(spec: str) -> Tuple[str, str]:
    """Split off a leading `<scheme>://` or SSH `user@host:` from the path."""
    match = _SCHEME_PREFIX.match(spec) or _SSH_PREFIX.match(spec)
    if not match:
        return "", spec
    return spec[: match.end()], spec[match.end():]


def _split_version(spec: str) -> Tuple[str, str]:
    """Split `owner/repo[/sub]` from a `:tag`, `@branch` or `#commit` suffix after the last slash."""
    head, slash, tail = spec.rpartition("/")
    match = _VERSION_SEPARATOR.search(tail)
    if not match:
        return spec, ""
    cut = len(head) + len(slash) + match.start()
    return spec[:cut], spec[cut:]


def _attach_prefix(prefix: str, target: str) -> str:
    if not prefix or not prefix.endswith(":") or prefix.endswith("://"):
        return prefix + target
    # SSH shorthand: a replacement naming its own host moves the host too
    parts = target.split("/")
    if len(parts) >= 3 and "." in parts[0]:
        user = prefix.split("@", 1)[0]
        path = "/".join(parts[1:])
        return f"{user}@{parts[0]}:{path}"
    return prefix + target


def _candidate_keys(base: str) -> Iterator[Tuple[str, str]]:
    """Yield (lookup key, trailing sub-path) pairs from most to least specific."""
    yield base, ""

    parts = [p for p in base.split("/") if p]
    if len(parts) >= 3 and "." in parts[0]:
        parts = parts[1:]
        yield "/".join(parts), ""

    if len(parts) < 2:
        return

    owner_repo = "/".join(parts[:2])
    sub_path = "/" + "/".join(parts[2:]) if len(parts) > 2 else ""
    if sub_path:
        yield owner_repo, sub_path
    yield f"{DEFAULT_SITE}/{owner_repo}", sub_path
