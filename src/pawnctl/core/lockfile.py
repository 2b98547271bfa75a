"""
Lockfile Management.

``pawn.lock`` records, for every dependency in the resolved tree, the
constraint it was declared with and the exact commit it resolved to, so a
later resolution on another machine checks out the same code.

Format (JSON, tab-indented):
    {
        "version": 1,
        "generated": "2026-01-01T00:00:00Z",
        "tool_version": "0.1.0",
        "dependencies": {
            "github.com/pawn-lang/samp-stdlib": {
                "constraint": ":0.3.7-R2-2-1",
                "resolved": "0.3.7-R2-2-1",
                "commit": "7a13c662e3d5d5d5d5d5d5d5d5d5d5d5d5d5d5d5",
                "integrity": "commit:7a13c662e3d5d5d5d5d5d5d5d5d5d5d5d5d5d5d5",
                "site": "github.com",
                "owner": "pawn-lang",
                "repo": "samp-stdlib"
            }
        }
    }

YAML lockfiles are accepted on load.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .. import __version__
from ..config import DEFAULT_SITE, LOCKFILE_NAME
from .atomic import atomic_write
from .errors import PawnctlError
from .integrity import calculate_commit_integrity
from .specifier import DependencyDescriptor

logger = logging.getLogger(__name__)

LOCKFILE_VERSION = 1


class LockfileError(PawnctlError):
    """Base class for lockfile problems."""


class LockfileVersionError(LockfileError):
    """The lockfile was written by a newer pawnctl."""


class LockfileCorruptError(LockfileError):
    """The lockfile is malformed."""


class LockedDependency(BaseModel):
    """A single locked dependency and the commit it resolved to."""

    constraint: str = ""
    resolved: str = ""
    commit: str = ""
    integrity: str = ""
    site: str = ""
    owner: str = ""
    repo: str = ""
    path: str = ""
    branch: str = ""
    transitive: bool = False
    required_by: List[str] = Field(default_factory=list)
    scheme: str = ""
    local: str = ""

    model_config = ConfigDict(extra="ignore")


class Lockfile(BaseModel):
    """The whole lockfile document."""

    version: int = LOCKFILE_VERSION
    generated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tool_version: str = __version__
    dependencies: Dict[str, LockedDependency] = Field(default_factory=dict)
    runtime: Optional[Dict[str, Any]] = None
    build: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def new(cls, tool_version: str = __version__) -> "Lockfile":
        return cls(tool_version=tool_version)

    def validate_version(self) -> None:
        """
        Raises:
            LockfileCorruptError: If the version is missing or zero.
            LockfileVersionError: If the version is newer than supported.
        """
        if self.version <= 0:
            raise LockfileCorruptError("lockfile is corrupt: lockfile version is not set")
        if self.version > LOCKFILE_VERSION:
            raise LockfileVersionError(
                f"lockfile version {self.version} is newer than supported version "
                f"{LOCKFILE_VERSION}; upgrade pawnctl"
            )

    def get(self, key: str) -> Optional[LockedDependency]:
        return self.dependencies.get(key)

    def to_json(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        return json.dumps(data, indent="\t") + "\n"

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False)


def dependency_key(descriptor: DependencyDescriptor) -> str:
    """
    Stable lockfile key for a descriptor.

    ``<scheme>://local/<path>`` for local scheme dependencies,
    ``<scheme>://<owner>/<repo>`` for remote ones and
    ``<site>/<owner>/<repo>`` otherwise.
    """
    if descriptor.scheme is not None:
        if descriptor.local:
            return f"{descriptor.scheme}://local/{descriptor.local}"
        return f"{descriptor.scheme}://{descriptor.owner}/{descriptor.repo}"
    return f"{descriptor.site or DEFAULT_SITE}/{descriptor.owner}/{descriptor.repo}"


def resolved_version(descriptor: DependencyDescriptor, commit: str, tag: Optional[str] = None) -> str:
    """Human-readable version: the checked-out tag, else the constraint, else the short commit."""
    if tag:
        return tag
    if descriptor.tag:
        return descriptor.tag
    if descriptor.branch:
        return descriptor.branch
    if descriptor.commit:
        return descriptor.commit[:8]
    if commit:
        return commit[:8]
    return "HEAD"


def load(directory: Path) -> Optional[Lockfile]:
    """
    Load ``pawn.lock`` from a directory.

    Returns:
        The lockfile, or None when there is none.

    Raises:
        LockfileVersionError: If it was written by a newer version.
        LockfileCorruptError: If it cannot be parsed.
    """
    path = directory / LOCKFILE_NAME
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise LockfileCorruptError(f"failed to read lockfile {path}: {e}")

    try:
        if text.lstrip().startswith("{"):
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise LockfileCorruptError(f"lockfile is corrupt: failed to parse {path}: {e}")

    if not isinstance(data, dict):
        raise LockfileCorruptError(f"lockfile is corrupt: {path} is not a mapping")

    data.setdefault("version", 0)
    try:
        lockfile = Lockfile.model_validate(data)
    except ValidationError as e:
        raise LockfileCorruptError(f"lockfile is corrupt: {e}")

    lockfile.validate_version()
    return lockfile


def save(directory: Path, lockfile: Lockfile, fmt: str = "json") -> Path:
    """
    Write ``pawn.lock`` atomically, stamping the generation time.

    Returns:
        The path written.
    """
    lockfile.generated = datetime.now(timezone.utc)
    if lockfile.version == 0:
        lockfile.version = LOCKFILE_VERSION
    content = lockfile.to_yaml() if fmt == "yaml" else lockfile.to_json()
    path = directory / LOCKFILE_NAME
    atomic_write(path, content, mode=0o644)
    return path


class LockfileSession:
    """
    Lockfile state for one resolution run.

    Loaded once, mutated as dependencies resolve and written at most
    once at the end, only if something actually changed.

    Example:
        ```python
        session = LockfileSession.open(project_dir)
        pinned, found = session.locked_ref_for(descriptor)
        ...
        session.record_resolution(descriptor, commit, transitive=False)
        session.save()
        ```
    """

    def __init__(self, directory: Path, lockfile: Optional[Lockfile] = None, tool_version: str = __version__):
        self.directory = directory
        self.existed = lockfile is not None
        self.lockfile = lockfile or Lockfile.new(tool_version)
        self.tool_version = tool_version
        self.dirty = False
        # keys recorded during this run; their requirers are already current
        self._recorded: Set[str] = set()

    @classmethod
    def open(cls, directory: Path, tool_version: str = __version__) -> "LockfileSession":
        return cls(directory, load(directory), tool_version=tool_version)

    @property
    def path(self) -> Path:
        return self.directory / LOCKFILE_NAME

    def get(self, descriptor: DependencyDescriptor) -> Optional[LockedDependency]:
        return self.lockfile.get(dependency_key(descriptor))

    def locked_ref_for(self, descriptor: DependencyDescriptor) -> Tuple[DependencyDescriptor, bool]:
        """
        Apply the locked commit to a descriptor.

        Returns:
            The descriptor pinned to the recorded commit with tag and branch
            cleared, and True; or the descriptor unchanged and False.
        """
        entry = self.get(descriptor)
        if entry is None or not entry.commit:
            return descriptor, False
        return descriptor.pinned_to(entry.commit), True

    def is_outdated(self, descriptor: DependencyDescriptor) -> bool:
        """True when there is no entry or the declared constraint changed."""
        entry = self.get(descriptor)
        if entry is None:
            return True
        return entry.constraint != descriptor.constraint

    def record_resolution(
        self,
        descriptor: DependencyDescriptor,
        commit: str,
        transitive: bool = False,
        required_by: Sequence[str] = (),
        tag: Optional[str] = None,
        integrity: Optional[str] = None,
    ) -> None:
        """
        Insert or update the entry for a successfully resolved dependency.

        Args:
            descriptor: The dependency as declared (not the lock-pinned copy).
            commit: The commit that was checked out.
            transitive: Whether it was pulled in by another dependency.
            required_by: Keys of the requiring dependencies, for transitive ones.
            tag: Tag at the checked-out commit, if any.
            integrity: Integrity string; defaults to the commit integrity.
        """
        if not commit:
            raise LockfileError(f"cannot lock {descriptor}: no commit resolved")

        key = dependency_key(descriptor)
        existing = self.lockfile.dependencies.get(key)

        if existing is not None and existing.commit == commit:
            self._merge_existing(key, existing, descriptor, transitive, required_by)
            self._recorded.add(key)
            return

        requirers: List[str] = []
        if transitive:
            previous = existing.required_by if existing is not None and key in self._recorded else []
            requirers = _union(previous, required_by)
        self._recorded.add(key)

        self.lockfile.dependencies[key] = LockedDependency(
            constraint=descriptor.constraint,
            resolved=resolved_version(descriptor, commit, tag),
            commit=commit,
            integrity=integrity or calculate_commit_integrity(commit),
            site=descriptor.site,
            owner=descriptor.owner,
            repo=descriptor.repo,
            path=descriptor.path,
            branch=descriptor.branch,
            transitive=transitive,
            required_by=requirers,
            scheme=str(descriptor.scheme or ""),
        )
        self.dirty = True
        logger.debug(f"Locked {key} at {commit[:8]}")

    def record_local_dependency(self, descriptor: DependencyDescriptor) -> None:
        key = dependency_key(descriptor)
        entry = LockedDependency(
            constraint="",
            resolved="local",
            scheme=str(descriptor.scheme or ""),
            local=descriptor.local,
        )
        if self.lockfile.dependencies.get(key) != entry:
            self.lockfile.dependencies[key] = entry
            self.dirty = True

    def record_runtime(self, runtime: Dict[str, Any]) -> None:
        if self.lockfile.runtime != runtime:
            self.lockfile.runtime = dict(runtime)
            self.dirty = True

    def record_build(self, build: Dict[str, Any]) -> None:
        if self.lockfile.build != build:
            self.lockfile.build = dict(build)
            self.dirty = True

    def prune_missing(self, keep: Iterable[str]) -> List[str]:
        """Drop entries whose key is not in ``keep``; returns the removed keys."""
        wanted = set(keep)
        removed = [key for key in self.lockfile.dependencies if key not in wanted]
        for key in removed:
            del self.lockfile.dependencies[key]
            logger.info(f"🗑️  Pruned {key} from lockfile")
        if removed:
            self.dirty = True
        return removed

    def force_update(self) -> None:
        """Forget every entry so the next resolution re-locks from scratch."""
        if self.lockfile.dependencies:
            self.lockfile.dependencies.clear()
            self.dirty = True

    def save(self, force: bool = False) -> bool:
        """Persist if dirty. Returns True when the file was written."""
        if not (self.dirty or force):
            logger.debug("Lockfile unchanged, not writing")
            return False
        self.lockfile.tool_version = self.tool_version
        save(self.directory, self.lockfile)
        self.dirty = False
        logger.info(f"🔒 Wrote {self.path}")
        return True

    def _merge_existing(
        self,
        key: str,
        entry: LockedDependency,
        descriptor: DependencyDescriptor,
        transitive: bool,
        required_by: Sequence[str],
    ) -> None:
        changed = False
        direct_this_run = key in self._recorded and not entry.transitive

        if entry.constraint != descriptor.constraint:
            entry.constraint = descriptor.constraint
            changed = True

        if not transitive:
            # A direct declaration wins over any earlier transitive sighting
            if entry.transitive or entry.required_by:
                entry.transitive = False
                entry.required_by = []
                changed = True
        elif not direct_this_run:
            # The first sighting in a run replaces requirers from earlier runs
            previous = entry.required_by if key in self._recorded else []
            requirers = _union(previous, required_by)
            if not entry.transitive or requirers != entry.required_by:
                entry.transitive = True
                entry.required_by = requirers
                changed = True

        if changed:
            self.dirty = True


def _union(first: Sequence[str], second: Sequence[str]) -> List[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged
