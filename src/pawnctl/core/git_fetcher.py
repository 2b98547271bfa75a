"""
Git Cache Store.

Owns one cached clone per repository identity and the project-local
vendored copies made from those clones.

Cache Structure:
    ~/.pawnctl/cache/
    └── packages/
        └── <site>/<owner>/<repo>/<branch or "default">/
            ├── .git/
            └── ...

Clones are made into a sibling ``*.partial-<id>`` directory and only
renamed into place once they validate, so an interrupted clone never
leaves a half-populated cache path behind.

Recovery escalates: validate -> repair (clean + hard reset) -> delete and
re-clone, with a bounded number of re-clone attempts.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from ..config import CLONE_DEPTH, GIT_TIMEOUT_SECONDS, MAX_RECOVERY_ATTEMPTS, get_cache_dir
from .deadline import Deadline
from .errors import DependencyError, OperationCancelled, PawnctlError
from .specifier import ConstraintKind, DependencyDescriptor
from .versioning import BranchRef, GitRef, RefNotFoundError, TagRef, resolve_ref

logger = logging.getLogger(__name__)


class GitFetchError(PawnctlError):
    """
    Raised when a git operation fails.

    Attributes:
        message: Human-readable error message.
        stderr: Raw stderr output from git command.
    """

    def __init__(self, message: str, stderr: str = ""):
        self.message = message
        self.stderr = stderr
        super().__init__(f"{message}: {stderr}" if stderr else message)


class CacheCorruptedError(PawnctlError):
    """Raised when a cache entry stays invalid after every recovery step."""


def classify_git_error(error: GitFetchError) -> str:
    """Turn a git failure into a short, readable reason."""
    text = f"{error.message}\n{error.stderr}".lower()
    if any(s in text for s in ("authentication", "could not read username", "permission denied")):
        return "authentication required"
    if any(s in text for s in ("repository not found", "not found", "does not exist")):
        return "repository not found"
    if "403" in text or "blocked" in text:
        return "repository access blocked"
    if any(s in text for s in ("could not resolve host", "unable to access", "timed out", "connection")):
        return "network error"
    return str(error)


def wrap_git_error(descriptor: DependencyDescriptor, error: GitFetchError) -> DependencyError:
    return DependencyError(descriptor.name, classify_git_error(error))


def run_git(*args: str, cwd: Optional[Path] = None, deadline: Optional[Deadline] = None) -> str:
    """
    Run a git command and return stdout.

    Args:
        *args: Git command arguments.
        cwd: Working directory for the command.
        deadline: Caller deadline; bounds the subprocess timeout.

    Returns:
        Stdout output stripped of whitespace.

    Raises:
        GitFetchError: If the command fails.
        OperationCancelled: If the deadline expires.
    """
    deadline = deadline or Deadline()
    deadline.check(f"git {args[0] if args else ''}")

    cmd = ["git"] + list(args)
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=deadline.timeout(GIT_TIMEOUT_SECONDS),
            env=_git_env(),
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitFetchError(f"Git command failed: {' '.join(args)}", (e.stderr or "").strip())
    except subprocess.TimeoutExpired:
        if deadline.expired:
            raise OperationCancelled(f"git {' '.join(args)} cancelled: deadline exceeded")
        raise GitFetchError(f"Git command timed out: {' '.join(args)}")
    except FileNotFoundError:
        raise GitFetchError("git executable not found")


def _git_env() -> dict:
    env = dict(os.environ)
    # Never block on an interactive credential prompt
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    return env


@dataclass
class ValidationResult:
    valid: bool
    reason: str = ""


class RepositoryHandle(Protocol):
    """Operations the resolver performs on one working-tree clone."""

    path: Path

    def head_commit(self) -> str: ...

    def tags(self) -> List[TagRef]: ...

    def branches(self) -> List[BranchRef]: ...

    def commits(self) -> List[str]: ...

    def current_tag(self) -> Optional[str]: ...

    def checkout(self, commit: str) -> None: ...

    def pull(self, branch: str = "") -> None: ...

    def fetch_tags(self) -> None: ...

    def clean_and_reset(self) -> None: ...

    def validate(self) -> ValidationResult: ...


class CachedRepository:
    """
    Handle to one on-disk git working tree.

    Attributes:
        path: Working-tree directory.
        depth: History depth used for pulls.
    """

    def __init__(self, path: Path, deadline: Optional[Deadline] = None, depth: int = CLONE_DEPTH):
        self.path = path
        self.deadline = deadline or Deadline()
        self.depth = depth

    def __repr__(self) -> str:
        return f"CachedRepository({str(self.path)!r})"

    def git(self, *args: str) -> str:
        return run_git(*args, cwd=self.path, deadline=self.deadline)

    def head_commit(self) -> str:
        return self.git("rev-parse", "HEAD")

    def tags(self) -> List[TagRef]:
        output = self.git(
            "for-each-ref",
            "--format=%(refname)%09%(objectname)%09%(*objectname)%09%(committerdate:unix)%09%(*committerdate:unix)",
            "refs/tags",
        )
        tags = []
        for line in output.splitlines():
            fields = (line.split("\t") + [""] * 5)[:5]
            refname, obj, peeled, date, peeled_date = fields
            if not refname:
                continue
            timestamp = peeled_date or date
            tags.append(
                TagRef(
                    name=refname[len("refs/tags/"):],
                    commit=peeled or obj,
                    committed_at=int(timestamp) if timestamp.isdigit() else 0,
                )
            )
        return tags

    def branches(self) -> List[BranchRef]:
        output = self.git("for-each-ref", "--format=%(refname)%09%(objectname)", "refs/heads", "refs/remotes")
        seen = {}
        for line in output.splitlines():
            refname, _, commit = line.partition("\t")
            if refname.startswith("refs/heads/"):
                name = refname[len("refs/heads/"):]
            elif refname.startswith("refs/remotes/"):
                name = refname[len("refs/remotes/"):].partition("/")[2]
            else:
                continue
            if name and name != "HEAD":
                seen.setdefault(name, commit)
        return [BranchRef(name, commit) for name, commit in seen.items()]

    def commits(self) -> List[str]:
        return self.git("rev-list", "--all").splitlines()

    def current_tag(self) -> Optional[str]:
        try:
            return self.git("describe", "--tags", "--exact-match", "HEAD") or None
        except GitFetchError:
            return None

    def checkout(self, commit: str) -> None:
        logger.debug(f"Checking out {commit[:8]} in {self.path}")
        self.git("checkout", "--force", "--detach", commit)

    def pull(self, branch: str = "") -> None:
        """Fetch ``branch`` (or the remote HEAD) and hard-reset onto it."""
        self.git("fetch", "--depth", str(self.depth), "origin", branch or "HEAD")
        self.git("reset", "--hard", "FETCH_HEAD")

    def fetch_tags(self) -> None:
        self.git("fetch", "--tags", "--force", "origin")

    def clean_and_reset(self) -> None:
        self.git("clean", "-fd")
        self.git("reset", "--hard", "HEAD")

    def validate(self) -> ValidationResult:
        """Run the health checks, stopping at the first failure."""
        for problem in self._problems(stop_early=True):
            return ValidationResult(False, problem)
        return ValidationResult(True)

    def diagnose(self) -> List[str]:
        """Run every health check and return all problems found."""
        return list(self._problems(stop_early=False))

    def _problems(self, stop_early: bool):
        git_dir = self.path / ".git"
        if not git_dir.exists():
            yield ".git directory does not exist"
            return
        if not git_dir.is_dir():
            yield ".git is not a directory"
            return

        head = None
        try:
            head = self.git("rev-parse", "--verify", "HEAD^{commit}")
        except GitFetchError:
            yield "HEAD does not resolve to a commit"
            if stop_early:
                return

        if head:
            try:
                self.git("cat-file", "-e", f"{head}^{{commit}}")
            except GitFetchError:
                yield f"HEAD commit {head[:8]} is not reachable"
                if stop_early:
                    return

        try:
            self.git("status", "--porcelain")
        except GitFetchError:
            yield "cannot read working tree status"
            if stop_early:
                return

        try:
            if not self.git("rev-list", "-n", "1", "--all"):
                yield "repository has no commits"
                if stop_early:
                    return
        except GitFetchError:
            yield "cannot list commits"
            if stop_early:
                return

        for sub in ("objects", "refs"):
            if not (git_dir / sub).is_dir():
                yield f".git/{sub} directory is missing"
                if stop_early:
                    return


class GitCacheStore:
    """
    Cache of repository clones keyed by {site, owner, repo, branch}.

    Attributes:
        cache_dir: Root of the cache.
        depth: Shallow clone depth.
        max_recovery_attempts: Upper bound on delete-and-reclone attempts.

    Example:
        ```python
        store = GitCacheStore()
        repo = store.ensure(parse_specifier("pawn-lang/samp-stdlib"))
        print(repo.head_commit())
        ```
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        depth: int = CLONE_DEPTH,
        max_recovery_attempts: int = MAX_RECOVERY_ATTEMPTS,
        url_for: Optional[Callable[[DependencyDescriptor], str]] = None,
        deadline: Optional[Deadline] = None,
    ):
        self.cache_dir = cache_dir or get_cache_dir()
        self.depth = depth
        self.max_recovery_attempts = max_recovery_attempts
        self.url_for = url_for or (lambda descriptor: descriptor.url())
        self.deadline = deadline or Deadline()

    def cache_path(self, descriptor: DependencyDescriptor) -> Path:
        """Deterministic, human-readable cache path for a descriptor."""
        return (
            self.cache_dir
            / "packages"
            / descriptor.site
            / descriptor.owner
            / descriptor.repo
            / (descriptor.branch or "default")
        )

    def open(self, path: Path) -> CachedRepository:
        return CachedRepository(path, deadline=self.deadline, depth=self.depth)

    def is_cached(self, descriptor: DependencyDescriptor) -> bool:
        path = self.cache_path(descriptor)
        return path.is_dir() and self.open(path).validate().valid

    def ensure(self, descriptor: DependencyDescriptor, force_update: bool = False) -> CachedRepository:
        """
        Make sure a valid cache entry exists for ``descriptor``.

        Args:
            descriptor: The dependency to cache.
            force_update: Pull the latest changes when already cached.

        Returns:
            Handle to the cached clone.

        Raises:
            DependencyError: If the repository cannot be cloned or recovered.
        """
        path = self.cache_path(descriptor)
        url = self.url_for(descriptor)

        def reclone() -> CachedRepository:
            return self._clone(url, path, branch=descriptor.branch, depth=self.depth)

        try:
            if not path.exists():
                return reclone()

            repo = self.open(path)
            result = repo.validate()
            if not result.valid:
                logger.warning(f"Cached repository for {descriptor} is invalid: {result.reason}")
                repo = self._recover(repo, reclone)
            else:
                logger.debug(f"Cache hit for {descriptor} at {path}")

            if force_update:
                repo = self._update(repo, descriptor.branch, reclone)
            return repo
        except GitFetchError as e:
            raise wrap_git_error(descriptor, e) from e
        except CacheCorruptedError as e:
            raise DependencyError.wrap(descriptor.name, e) from e

    def ensure_vendored(
        self,
        descriptor: DependencyDescriptor,
        dest: Path,
        force_update: bool = False,
    ) -> CachedRepository:
        """
        Make sure a project-local working copy of ``descriptor`` exists at ``dest``.

        The copy is cloned from the cache entry, which is ensured first.
        """
        cached = self.ensure(descriptor, force_update=force_update)

        def reclone() -> CachedRepository:
            return self._clone(str(cached.path), dest, branch="", depth=None)

        try:
            if not dest.exists():
                return reclone()

            repo = self.open(dest)
            result = repo.validate()
            if not result.valid:
                logger.warning(f"Vendored copy of {descriptor} is invalid: {result.reason}")
                repo = self._recover(repo, reclone)
            return repo
        except GitFetchError as e:
            raise wrap_git_error(descriptor, e) from e
        except CacheCorruptedError as e:
            raise DependencyError.wrap(descriptor.name, e) from e

    def checkout_constraint(
        self,
        repo: CachedRepository,
        descriptor: DependencyDescriptor,
        reclone: Optional[Callable[[], CachedRepository]] = None,
    ) -> Optional[GitRef]:
        """
        Move ``repo`` to the reference selected by the descriptor's constraint.

        A git failure is retried once after a repair and, if ``reclone``
        is given, once more on a fresh clone.

        Returns:
            The ref checked out, or None for an unconstrained descriptor.

        Raises:
            RefNotFoundError: If the constraint matches nothing.
            DependencyError: If git keeps failing.
        """
        try:
            return self._checkout(repo, descriptor)
        except GitFetchError as first:
            logger.warning(f"Checkout of {descriptor} failed ({first.message}), repairing")

        try:
            if self.repair(repo):
                return self._checkout(repo, descriptor)
        except GitFetchError as e:
            logger.warning(f"Checkout of {descriptor} failed after repair: {e.message}")

        if reclone is None:
            raise DependencyError(str(descriptor), "failed to check out after repairing the repository")

        shutil.rmtree(repo.path, ignore_errors=True)
        try:
            return self._checkout(reclone(), descriptor)
        except GitFetchError as e:
            raise wrap_git_error(descriptor, e) from e

    def repair(self, repo: CachedRepository) -> bool:
        """Clean untracked files and hard-reset; True if the clone is valid afterwards."""
        logger.info(f"🔧 Repairing repository at {repo.path}")
        try:
            repo.clean_and_reset()
        except GitFetchError as e:
            logger.warning(f"Repair failed for {repo.path}: {e.message}")
            return False
        return repo.validate().valid

    def validate(self, path: Path) -> ValidationResult:
        return self.open(path).validate()

    def diagnose(self, path: Path) -> List[str]:
        return self.open(path).diagnose()

    def invalidate(self, descriptor: DependencyDescriptor) -> bool:
        path = self.cache_path(descriptor)
        if path.exists():
            shutil.rmtree(path)
            return True
        return False

    def _checkout(self, repo: CachedRepository, descriptor: DependencyDescriptor) -> Optional[GitRef]:
        kind = descriptor.constraint_kind

        if kind is ConstraintKind.NONE:
            repo.pull()
            return None
        if kind is ConstraintKind.BRANCH:
            repo.pull(descriptor.branch)
        elif kind is ConstraintKind.COMMIT:
            repo.pull()

        try:
            ref = resolve_ref(descriptor, repo)
        except RefNotFoundError:
            if kind is not ConstraintKind.TAG:
                raise
            # The tag may have been published after the clone was made
            repo.fetch_tags()
            ref = resolve_ref(descriptor, repo)

        if ref is not None:
            repo.checkout(ref.commit)
        return ref

    def _update(
        self,
        repo: CachedRepository,
        branch: str,
        reclone: Callable[[], CachedRepository],
    ) -> CachedRepository:
        logger.info(f"🔄 Updating {repo.path}")
        try:
            repo.pull(branch)
            return repo
        except GitFetchError as e:
            logger.warning(f"Pull failed for {repo.path}: {e.message}")

        if self.repair(repo):
            try:
                repo.pull(branch)
                return repo
            except GitFetchError as e:
                logger.warning(f"Pull failed again after repair: {e.message}")

        logger.info("Re-cloning due to update failure...")
        shutil.rmtree(repo.path, ignore_errors=True)
        return reclone()

    def _recover(
        self,
        repo: CachedRepository,
        reclone: Callable[[], CachedRepository],
    ) -> CachedRepository:
        if repo.path.joinpath(".git").is_dir() and self.repair(repo):
            return repo

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_recovery_attempts + 1):
            logger.warning(f"Re-cloning {repo.path} (attempt {attempt}/{self.max_recovery_attempts})")
            shutil.rmtree(repo.path, ignore_errors=True)
            try:
                return reclone()
            except (GitFetchError, CacheCorruptedError) as e:
                last_error = e

        raise CacheCorruptedError(f"could not recover {repo.path}: {last_error}")

    def _clone(self, url: str, dest: Path, branch: str = "", depth: Optional[int] = None) -> CachedRepository:
        """
        Clone ``url`` into ``dest`` through a temporary sibling directory.

        Raises:
            GitFetchError: If git fails.
            CacheCorruptedError: If the fresh clone does not validate.
        """
        logger.info(f"🌐 Cloning {url} (ref: {branch or 'default'})...")
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(f"{dest.name}.partial-{uuid.uuid4().hex[:8]}")

        args = ["clone"]
        if depth:
            args += ["--depth", str(depth), "--no-single-branch"]
        if branch:
            args += ["--branch", branch]
        args += [url, str(partial)]

        try:
            run_git(*args, deadline=self.deadline)
            result = self.open(partial).validate()
            if not result.valid:
                raise CacheCorruptedError(f"fresh clone of {url} is invalid: {result.reason}")
            if dest.exists():
                shutil.rmtree(dest)
            partial.rename(dest)
        finally:
            if partial.exists():
                shutil.rmtree(partial, ignore_errors=True)

        return self.open(dest)
