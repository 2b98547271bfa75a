"""
Inspection and housekeeping for the repository cache.

Each cache entry is a clone at::

    <cache dir>/packages/<site>/<owner>/<repo>/<branch>/

where ``<branch>`` is ``default`` for the repository's default branch.
Interrupted clones leave ``<branch>.partial-<uuid>`` siblings behind;
``clean`` always removes them and ``verify_integrity`` reports them.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .git_fetcher import GitCacheStore, GitFetchError

logger = logging.getLogger(__name__)

PARTIAL_MARKER = ".partial-"
DEFAULT_BRANCH_DIR = "default"

_MB = 1024 * 1024
_AGE_UNITS = ((365, "year"), (30, "month"), (7, "week"))


def _human_size(size: float) -> str:
    units = ["B", "KB", "MB", "GB"]
    for unit in units:
        if size < 1024:
            break
        size /= 1024
    else:
        unit = "TB"
    return f"{size:.1f} {unit}"


def _dir_size(path: Path) -> int:
    try:
        return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
    except OSError:
        return 0


def _updated_at(path: Path) -> datetime:
    # FETCH_HEAD moves on every pull; HEAD on every checkout
    for candidate in (path / ".git" / "FETCH_HEAD", path / ".git" / "HEAD", path):
        try:
            return datetime.fromtimestamp(candidate.stat().st_mtime, tz=timezone.utc)
        except OSError:
            continue
    return datetime.now(timezone.utc)


@dataclass
class CacheItem:
    """One cached clone."""

    site: str
    owner: str
    repo: str
    branch: str
    path: Path
    commit: str
    updated_at: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        base = f"{self.site}/{self.owner}/{self.repo}"
        return base if self.branch == DEFAULT_BRANCH_DIR else f"{base}@{self.branch}"

    @property
    def age_days(self) -> int:
        return (datetime.now(timezone.utc) - self.updated_at).days

    @property
    def size_human(self) -> str:
        return _human_size(self.size_bytes)

    @property
    def short_sha(self) -> str:
        return self.commit[:8] if self.commit else "unknown"

    @property
    def age_human(self) -> str:
        days = self.age_days
        if days < 2:
            return "today" if days == 0 else "yesterday"
        for span, unit in _AGE_UNITS:
            if days >= span:
                count = days // span
                return f"{count} {unit}{'s' if count > 1 else ''} ago"
        return f"{days} days ago"

    def matches(self, name: str) -> bool:
        """Match ``owner/repo``, ``site/owner/repo`` or the full item name."""
        return name in (self.name, f"{self.owner}/{self.repo}", f"{self.site}/{self.owner}/{self.repo}")


@dataclass
class CacheStats:
    total_repos: int = 0
    total_size_bytes: int = 0
    oldest_update: Optional[datetime] = None
    newest_update: Optional[datetime] = None

    @classmethod
    def from_items(cls, items: List[CacheItem]) -> "CacheStats":
        if not items:
            return cls()
        dates = [i.updated_at for i in items]
        return cls(
            total_repos=len(items),
            total_size_bytes=sum(i.size_bytes for i in items),
            oldest_update=min(dates),
            newest_update=max(dates),
        )

    @property
    def total_size_human(self) -> str:
        return _human_size(self.total_size_bytes)


class CacheManager:
    """
    Lists, cleans and verifies cached clones.

    Example:
        ```python
        manager = CacheManager()
        for item in manager.list():
            print(item.name, item.short_sha, item.age_human)
        manager.invalidate("pawn-lang/samp-stdlib")
        ```
    """

    def __init__(self, cache_dir: Optional[Path] = None, store: Optional[GitCacheStore] = None):
        self.store = store or GitCacheStore(cache_dir)
        self.cache_dir = self.store.cache_dir

    @property
    def packages_dir(self) -> Path:
        return self.cache_dir / "packages"

    def list(self) -> List[CacheItem]:
        """All cached clones, sorted by name."""
        entries, _ = self._scan()
        return sorted((self._item(path) for path in entries), key=lambda i: i.name.lower())

    def get_stats(self) -> CacheStats:
        return CacheStats.from_items(self.list())

    def get_item(self, name: str) -> Optional[CacheItem]:
        return next((item for item in self.list() if item.matches(name)), None)

    def clean(
        self,
        older_than_days: Optional[int] = None,
        larger_than_mb: Optional[float] = None,
        dry_run: bool = False,
    ) -> List[str]:
        """
        Remove stale or oversized clones plus leftovers of interrupted clones.

        Returns:
            Names of the entries that were (or would be) removed.
        """

        def expired(item: CacheItem) -> bool:
            if older_than_days is not None and item.age_days > older_than_days:
                return True
            return larger_than_mb is not None and item.size_bytes / _MB > larger_than_mb

        stale = [item for item in self.list() if expired(item)]
        _, partials = self._scan()
        names = [item.name for item in stale] + [self._relative(p) for p in partials]

        if not dry_run:
            self._remove([item.path for item in stale] + partials)
        return names

    def invalidate(self, name: str) -> int:
        """Remove every cached branch of ``name``; returns how many were removed."""
        return self._remove_matching(lambda item: item.matches(name))

    def invalidate_all(self) -> int:
        return self._remove_matching(lambda item: True)

    def verify_integrity(self) -> List[str]:
        """Health-check every clone and describe each problem found."""
        _, partials = self._scan()
        issues = []
        for item in self.list():
            issues.extend(f"{item.name}: {problem}" for problem in self.store.diagnose(item.path))
        issues.extend(f"{self._relative(p)}: leftover partial clone" for p in partials)
        return issues

    def _item(self, path: Path) -> CacheItem:
        site, owner, repo, branch = path.relative_to(self.packages_dir).parts
        try:
            commit = self.store.open(path).head_commit()
        except GitFetchError as e:
            logger.debug(f"No HEAD for {path}: {e}")
            commit = ""
        return CacheItem(
            site=site,
            owner=owner,
            repo=repo,
            branch=branch,
            path=path,
            commit=commit,
            updated_at=_updated_at(path),
            size_bytes=_dir_size(path),
        )

    def _scan(self) -> Tuple[List[Path], List[Path]]:
        """Split the branch-level directories into clones and partial clones."""
        entries: List[Path] = []
        partials: List[Path] = []
        if self.packages_dir.is_dir():
            for path in self.packages_dir.glob("*/*/*/*"):
                if path.is_dir():
                    (partials if PARTIAL_MARKER in path.name else entries).append(path)
        return entries, partials

    def _relative(self, path: Path) -> str:
        return str(path.relative_to(self.packages_dir))

    def _remove_matching(self, predicate: Callable[[CacheItem], bool]) -> int:
        return self._remove([item.path for item in self.list() if predicate(item)])

    @staticmethod
    def _remove(paths: Iterable[Path]) -> int:
        count = 0
        for path in paths:
            logger.debug(f"🗑️ Removing {path}")
            shutil.rmtree(path, ignore_errors=True)
            count += 1
        return count
