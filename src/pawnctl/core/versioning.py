"""
Version Resolver.

Maps a descriptor's constraint onto a concrete git reference in a
repository:

    tag     semver range against the semver-valid tags (highest first),
            falling back to an exact tag-name match
    branch  exact branch-name match
    commit  exact commit-hash match
    none    no ref; the caller pulls the default branch tip

Every "not found" error lists the candidates that were seen.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

from semantic_version import NpmSpec, SimpleSpec, Version
from semantic_version.base import BaseSpec

from .errors import PawnctlError
from .specifier import ConstraintKind, DependencyDescriptor

_SEMVER = re.compile(r"^v?\d+(\.\d+){0,2}([-+][0-9A-Za-z.+-]*)?$")
_LEADING_V = re.compile(r"(?<![0-9A-Za-z])v(?=\d)")
_OPERATOR_SPACE = re.compile(r"(<=|>=|==|!=|~=|[<>=^~])\s+")
_COMMA = re.compile(r"\s*,\s*")

MAX_LISTED_CANDIDATES = 20


@dataclass(frozen=True)
class TagRef:
    """A tag with the commit it points at and that commit's timestamp."""

    name: str
    commit: str
    committed_at: int = 0


@dataclass(frozen=True)
class BranchRef:
    name: str
    commit: str


@dataclass(frozen=True)
class GitRef:
    """A resolved reference, ready to check out."""

    kind: ConstraintKind
    name: str
    commit: str


class RefSource(Protocol):
    """What the resolver needs from a repository handle."""

    def tags(self) -> List[TagRef]: ...

    def branches(self) -> List[BranchRef]: ...

    def commits(self) -> List[str]: ...


class RefNotFoundError(PawnctlError):
    """
    Raised when no reference satisfies a constraint.

    Attributes:
        dependency: Descriptor string of the dependency.
        kind: Which constraint kind was searched.
        wanted: The constraint value.
        candidates: Names seen during the scan.
    """

    def __init__(self, dependency: str, kind: ConstraintKind, wanted: str, candidates: Sequence[str]):
        self.dependency = dependency
        self.kind = kind
        self.wanted = wanted
        self.candidates = list(candidates)
        shown = ", ".join(self.candidates[:MAX_LISTED_CANDIDATES]) or "none"
        if len(self.candidates) > MAX_LISTED_CANDIDATES:
            shown += f", ... ({len(self.candidates) - MAX_LISTED_CANDIDATES} more)"
        super().__init__(f"no {kind} matching '{wanted}' for {dependency} (candidates: {shown})")


def parse_version(name: str) -> Optional[Version]:
    """
    Parse a tag name as a semantic version.

    Accepts a leading ``v`` and partial versions (``1.2`` -> ``1.2.0``).
    Returns None for anything else.
    """
    if not _SEMVER.match(name.strip()):
        return None
    try:
        return Version.coerce(name.strip().lstrip("v"))
    except ValueError:
        return None


def parse_constraint(constraint: str) -> Optional[BaseSpec]:
    """
    Parse a tag constraint as a semver range.

    npm-style ranges are tried first (`1.x`, `^1.2`, `~1.1`, `1.2 - 2.0`,
    `1.x || 2.x`, `>=1.2 <2.0`); comma lists and `~=` fall back to
    `SimpleSpec`. Returns None when the string is not a range.
    """
    text = _LEADING_V.sub("", constraint.strip())
    text = _OPERATOR_SPACE.sub(r"\1", text)
    if not text:
        return None
    try:
        return NpmSpec(_COMMA.sub(" ", text))
    except ValueError:
        pass
    try:
        return SimpleSpec(re.sub(r"\s+", "", _COMMA.sub(",", text)))
    except ValueError:
        return None


def sort_versions_desc(tags: Iterable[TagRef]) -> List[tuple]:
    """Return (Version, TagRef) pairs for the semver tags, highest first."""
    versioned = []
    for tag in tags:
        version = parse_version(tag.name)
        if version is not None:
            versioned.append((version, tag))
    versioned.sort(key=lambda pair: pair[0], reverse=True)
    return versioned


def resolve_tag(dependency: str, constraint: str, tags: Sequence[TagRef]) -> GitRef:
    spec = parse_constraint(constraint)
    if spec is not None:
        for version, tag in sort_versions_desc(tags):
            if spec.match(version):
                return GitRef(ConstraintKind.TAG, tag.name, tag.commit)

    for tag in tags:
        if tag.name == constraint:
            return GitRef(ConstraintKind.TAG, tag.name, tag.commit)

    raise RefNotFoundError(dependency, ConstraintKind.TAG, constraint, [t.name for t in tags])


def resolve_ref(descriptor: DependencyDescriptor, repository: RefSource) -> Optional[GitRef]:
    """
    Resolve the descriptor's constraint against a repository.

    Args:
        descriptor: Dependency with at most one constraint.
        repository: Source of tags, branches and commits.

    Returns:
        The matching ref, or None when the descriptor is unconstrained.

    Raises:
        RefNotFoundError: If nothing matches.
    """
    kind = descriptor.constraint_kind
    dependency = str(descriptor)

    if kind is ConstraintKind.TAG:
        return resolve_tag(dependency, descriptor.tag, repository.tags())

    if kind is ConstraintKind.BRANCH:
        branches = repository.branches()
        for branch in branches:
            if branch.name == descriptor.branch:
                return GitRef(ConstraintKind.BRANCH, branch.name, branch.commit)
        raise RefNotFoundError(
            dependency, kind, descriptor.branch, sorted({b.name for b in branches})
        )

    if kind is ConstraintKind.COMMIT:
        commits = repository.commits()
        for commit in commits:
            if commit == descriptor.commit:
                return GitRef(ConstraintKind.COMMIT, commit, commit)
        raise RefNotFoundError(dependency, kind, descriptor.commit, [c[:8] for c in commits])

    return None


def latest_tag(tags: Sequence[TagRef]) -> Optional[TagRef]:
    """
    Pick the newest tag.

    Highest semantic version wins. Equal versions, or a tag set with no
    semver tags at all, fall back to the most recent commit time and then
    to the greatest tag name.
    """
    if not tags:
        return None

    floor = Version("0.0.0")

    def key(tag: TagRef):
        version = parse_version(tag.name)
        return (version is not None, version or floor, tag.committed_at, tag.name)

    return max(tags, key=key)
