"""
Dependency Specifier Parser.

Turns a free-form dependency string into an immutable
``DependencyDescriptor``.

Accepted forms:
    owner/repo[/sub/path][:tag | @branch | #commit]
    site/owner/repo[...]                      (e.g. github.com/owner/repo)
    https://site/owner/repo[.git][...]        (full URLs, fragment = commit)
    git@site:owner/repo[...]                  (SSH shorthand)
    plugin://local/<path>                     (workspace-local scheme dependency)
    includes://owner/repo[...]                (remote scheme dependency)

The override table, when given, is applied to the raw string before
any of the matching below, so everything downstream sees the redirected
target.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Optional

from ..config import DEFAULT_SITE
from .errors import PawnctlError

if TYPE_CHECKING:
    from .overrides import OverrideTable

COMMIT_LENGTH = 40

SCHEME_PATTERN = re.compile(r"^(plugin|includes|filterscript|component)://(.+)$")
URL_PATTERN = re.compile(r"^(https?|git|ssh)://(?:([^@/]+)@)?([^/:]+)(?::\d+)?/(.+)$")
SSH_PATTERN = re.compile(
    r"^([a-zA-Z][a-zA-Z0-9_]+)@((?:[a-zA-Z][a-zA-Z0-9\-]*\.)*[a-zA-Z][a-zA-Z0-9\-]*):(.+)$"
)
DEPENDENCY_PATTERN = re.compile(
    r"^/?([a-zA-Z0-9-]+)/([a-zA-Z0-9._-]+)/?([a-zA-Z0-9_$\[\]{}().,/-]*)([@:#])?(.+)?$"
)
HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class MalformedSpecifierError(PawnctlError, ValueError):
    """
    Raised when a dependency string cannot be parsed.

    Attributes:
        specifier: The offending string.
        reason: Why it was rejected.
    """

    def __init__(self, specifier: str, reason: str):
        self.specifier = specifier
        self.reason = reason
        super().__init__(f"malformed dependency string '{specifier}': {reason}")


class SchemeKind(StrEnum):
    """URL-scheme prefixes for specially-typed dependencies."""

    PLUGIN = "plugin"
    INCLUDES = "includes"
    FILTERSCRIPT = "filterscript"
    COMPONENT = "component"


class DependencyKind(StrEnum):
    """The three shapes a descriptor can take."""

    GIT = "git"
    LOCAL_SCHEME = "local_scheme"
    REMOTE_SCHEME = "remote_scheme"


class ConstraintKind(StrEnum):
    """Which version-selection rule a descriptor carries."""

    TAG = "tag"
    BRANCH = "branch"
    COMMIT = "commit"
    NONE = "none"


@dataclass(frozen=True)
class DependencyDescriptor:
    """
    Parsed, structured form of a dependency specifier.

    Attributes:
        owner: Repository owner (user or organisation).
        repo: Repository name.
        site: Hosting site, defaults to github.com.
        path: Optional sub-path inside the repository.
        tag: Tag or semver constraint.
        branch: Branch name.
        commit: Full 40-character commit hash.
        ssh_user: User part of an SSH shorthand, clone over SSH when set.
        scheme: URL-scheme kind for plugin/includes/filterscript/component.
        local: Workspace-relative path for local scheme dependencies.
    """

    owner: str = ""
    repo: str = ""
    site: str = DEFAULT_SITE
    path: str = ""
    tag: str = ""
    branch: str = ""
    commit: str = ""
    ssh_user: str = ""
    scheme: Optional[SchemeKind] = None
    local: str = ""

    @property
    def kind(self) -> DependencyKind:
        if self.scheme is None:
            return DependencyKind.GIT
        if self.local:
            return DependencyKind.LOCAL_SCHEME
        return DependencyKind.REMOTE_SCHEME

    @property
    def is_local(self) -> bool:
        return self.kind is DependencyKind.LOCAL_SCHEME

    @property
    def constraint_kind(self) -> ConstraintKind:
        if self.tag:
            return ConstraintKind.TAG
        if self.branch:
            return ConstraintKind.BRANCH
        if self.commit:
            return ConstraintKind.COMMIT
        return ConstraintKind.NONE

    @property
    def constraint(self) -> str:
        """The version suffix exactly as it would be written in a specifier."""
        if self.tag:
            return f":{self.tag}"
        if self.branch:
            return f"@{self.branch}"
        if self.commit:
            return f"#{self.commit}"
        return ""

    @property
    def version(self) -> str:
        return self.tag or self.branch or self.commit

    @property
    def name(self) -> str:
        """Short ``owner/repo`` identity."""
        return f"{self.owner}/{self.repo}"

    def url(self) -> str:
        """Clone URL for the repository."""
        if self.ssh_user:
            return f"{self.ssh_user}@{self.site}:{self.owner}/{self.repo}"
        return f"https://{self.site}/{self.owner}/{self.repo}"

    def render(self, include_site: bool = False) -> str:
        """
        Render back to a specifier string.

        The default site is omitted unless ``include_site`` is set, so
        ``parse_specifier(s).render() == s`` for canonical strings.
        """
        if self.scheme is not None:
            if self.local:
                return f"{self.scheme}://local/{self.local}"
            base = f"{self.scheme}://{self.owner}/{self.repo}"
        else:
            base = f"{self.owner}/{self.repo}"
            if include_site or self.site != DEFAULT_SITE:
                base = f"{self.site}/{base}"
        if self.path:
            base = f"{base}/{self.path}"
        return base + self.constraint

    def __str__(self) -> str:
        return self.render()

    def as_git(self) -> "DependencyDescriptor":
        """Strip the scheme, leaving the plain git dependency."""
        return replace(self, scheme=None)

    def pinned_to(self, commit: str) -> "DependencyDescriptor":
        """Return a copy pinned to ``commit`` with tag and branch cleared."""
        return replace(self, tag="", branch="", commit=commit)

    def with_tag(self, tag: str) -> "DependencyDescriptor":
        return replace(self, tag=tag, branch="", commit="")

    def validate(self) -> None:
        """
        Check the structural invariants.

        Raises:
            MalformedSpecifierError: If the descriptor is inconsistent.
        """
        spec = self.render()
        if self.scheme is not None:
            has_remote = bool(self.owner and self.repo)
            if self.local and (self.owner or self.repo):
                raise MalformedSpecifierError(spec, "scheme dependency has both a local path and a repository")
            if not self.local and not has_remote:
                raise MalformedSpecifierError(spec, "scheme dependency needs a local path or owner/repo")
        else:
            if self.local:
                raise MalformedSpecifierError(spec, "local path requires a URL scheme")
            if not self.owner:
                raise MalformedSpecifierError(spec, "dependency string does not contain a user/owner")
            if not self.repo:
                raise MalformedSpecifierError(spec, "dependency string does not contain a repository")

        if sum(1 for v in (self.tag, self.branch, self.commit) if v) > 1:
            raise MalformedSpecifierError(spec, "only one of tag, branch or commit may be set")


def parse_specifier(
    raw: str,
    overrides: Optional["OverrideTable"] = None,
) -> DependencyDescriptor:
    """
    Parse a dependency string into a descriptor.

    Args:
        raw: The dependency string as written in a package definition.
        overrides: Optional override table applied before parsing.

    Returns:
        A validated DependencyDescriptor.

    Raises:
        MalformedSpecifierError: If the string cannot be parsed.
    """
    spec = raw.strip()
    if not spec:
        raise MalformedSpecifierError(raw, "empty dependency string")

    if overrides is not None:
        spec = overrides.rewrite(spec)

    match = SCHEME_PATTERN.match(spec)
    if match:
        descriptor = _parse_scheme(spec, SchemeKind(match.group(1)), match.group(2))
    else:
        descriptor = _parse_git(spec)

    descriptor.validate()
    return descriptor


def canonical_form(raw: str) -> str:
    """Render ``raw`` the way pawnctl would write it back."""
    return parse_specifier(raw).render()


def _parse_scheme(spec: str, scheme: SchemeKind, rest: str) -> DependencyDescriptor:
    if rest.startswith("local/"):
        local = rest[len("local/"):].strip("/")
        if not local:
            raise MalformedSpecifierError(spec, "local scheme dependency has an empty path")
        return DependencyDescriptor(site="", scheme=scheme, local=local)

    return replace(_explode_path(spec, rest), scheme=scheme)


def _parse_git(spec: str) -> DependencyDescriptor:
    match = URL_PATTERN.match(spec)
    if match:
        protocol, user, host, rest = match.groups()
        descriptor = replace(_explode_path(spec, rest), site=host)
        if protocol == "ssh" and user:
            descriptor = replace(descriptor, ssh_user=user)
        return descriptor

    match = SSH_PATTERN.match(spec)
    if match:
        user, host, rest = match.groups()
        return replace(_explode_path(spec, rest), site=host, ssh_user=user)

    head, sep, rest = spec.partition("/")
    if sep and "." in head and not any(c in head for c in ":@#"):
        return replace(_explode_path(spec, rest), site=head)

    return _explode_path(spec, spec)


def _explode_path(spec: str, path: str) -> DependencyDescriptor:
    match = DEPENDENCY_PATTERN.match(path)
    if not match:
        raise MalformedSpecifierError(spec, "expected owner/repo[/path][:tag|@branch|#commit]")

    owner, repo, sub_path, separator, version = match.groups()
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    sub_path = (sub_path or "").strip("/")

    if version and not separator:
        raise MalformedSpecifierError(spec, "invalid version specifier")
    if separator and not version:
        raise MalformedSpecifierError(spec, f"empty version after '{separator}'")

    fields = {"owner": owner, "repo": repo, "path": sub_path}
    if separator == ":":
        fields["tag"] = version
    elif separator == "@":
        fields["branch"] = version
    elif separator == "#":
        if len(version) != COMMIT_LENGTH:
            raise MalformedSpecifierError(
                spec,
                f"dependency string specifies a commit hash with an incorrect length ({len(version)})",
            )
        if not HEX_PATTERN.match(version):
            raise MalformedSpecifierError(spec, "commit hash must be hexadecimal")
        fields["commit"] = version

    return DependencyDescriptor(**fields)
