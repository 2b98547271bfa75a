"""
Shared fixtures for the pawnctl test suite.

``FakeRepository`` and ``FakeCacheStore`` stand in for git so that graph,
resolver and pinner behaviour can be tested without cloning anything.
``git_source`` builds a real local repository for the git-backed tests.
"""

import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from pawnctl.core.errors import DependencyError
from pawnctl.core.git_fetcher import ValidationResult
from pawnctl.core.specifier import ConstraintKind
from pawnctl.core.versioning import BranchRef, TagRef, resolve_ref


def sha(n: int) -> str:
    """A deterministic 40-character commit hash."""
    return f"{n:040x}"


class FakeRepository:
    def __init__(
        self,
        path: Path,
        tags: Optional[Dict[str, str]] = None,
        branches: Optional[Dict[str, str]] = None,
        tip: str = "",
    ):
        self.path = path
        self._tags = dict(tags or {})
        self._branches = dict(branches or {})
        self.tip = tip or sha(999)
        self.head = self.tip
        self.checkouts: List[str] = []
        self.pulls: List[str] = []

    def head_commit(self) -> str:
        return self.head

    def tags(self) -> List[TagRef]:
        return [TagRef(name, commit, i) for i, (name, commit) in enumerate(self._tags.items())]

    def branches(self) -> List[BranchRef]:
        return [BranchRef(name, commit) for name, commit in self._branches.items()]

    def commits(self) -> List[str]:
        return sorted({self.tip, *self._tags.values(), *self._branches.values()})

    def current_tag(self) -> Optional[str]:
        for name, commit in self._tags.items():
            if commit == self.head:
                return name
        return None

    def checkout(self, commit: str) -> None:
        self.checkouts.append(commit)
        self.head = commit

    def pull(self, branch: str = "") -> None:
        self.pulls.append(branch)
        self.head = self._branches.get(branch, self.tip)

    def fetch_tags(self) -> None:
        pass

    def clean_and_reset(self) -> None:
        pass

    def validate(self) -> ValidationResult:
        return ValidationResult(True)


class FakeCacheStore:
    """In-memory cache store keyed by ``owner/repo``."""

    def __init__(self, root: Path):
        self.root = root
        self.repos: Dict[str, FakeRepository] = {}
        self.ensured: List[str] = []
        self.failures: Dict[str, int] = {}

    def add(
        self,
        name: str,
        package: Optional[dict] = None,
        tags: Optional[Dict[str, str]] = None,
        branches: Optional[Dict[str, str]] = None,
        tip: str = "",
    ) -> FakeRepository:
        path = self.root / name
        path.mkdir(parents=True, exist_ok=True)
        if package is not None:
            (path / "pawn.json").write_text(json.dumps(package))
        repo = FakeRepository(path, tags=tags, branches=branches, tip=tip)
        self.repos[name] = repo
        return repo

    def fail_times(self, name: str, count: int) -> None:
        """Make the next ``count`` ensure calls for ``name`` fail."""
        self.failures[name] = count

    def ensure(self, descriptor, force_update: bool = False) -> FakeRepository:
        self.ensured.append(descriptor.name)
        if self.failures.get(descriptor.name, 0) > 0:
            self.failures[descriptor.name] -= 1
            raise DependencyError(descriptor.name, "network error")
        repo = self.repos.get(descriptor.name)
        if repo is None:
            raise DependencyError(descriptor.name, "repository not found")
        return repo

    def ensure_vendored(self, descriptor, dest: Path, force_update: bool = False) -> FakeRepository:
        repo = self.ensure(descriptor, force_update=force_update)
        dest.mkdir(parents=True, exist_ok=True)
        return repo

    def checkout_constraint(self, repo, descriptor, reclone=None):
        if descriptor.constraint_kind in (ConstraintKind.BRANCH, ConstraintKind.NONE):
            repo.pull(descriptor.branch)
        ref = resolve_ref(descriptor, repo)
        if ref is not None:
            repo.checkout(ref.commit)
        return ref


@pytest.fixture
def fake_store(tmp_path):
    return FakeCacheStore(tmp_path / "cache")


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


def write_package(directory: Path, **fields) -> Path:
    path = directory / "pawn.json"
    path.write_text(json.dumps(fields, indent="\t"))
    return path


# --- Real git ---

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


@pytest.fixture
def git_env(monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def git_source(tmp_path, git_env):
    """
    A local repository with three tagged commits on ``main``:
    v1.0.0, v1.1.0 and v2.0.0 (the tip).
    """
    source = tmp_path / "source" / "lib"
    source.mkdir(parents=True)
    git(source, "init", "-q", "-b", "main")

    commits = {}
    for tag in ("v1.0.0", "v1.1.0", "v2.0.0"):
        (source / "lib.inc").write_text(f"// {tag}\n")
        git(source, "add", "lib.inc")
        git(source, "commit", "-q", "-m", f"release {tag}")
        git(source, "tag", tag)
        commits[tag] = git(source, "rev-parse", "HEAD")

    return source, commits
