"""
Dependency Resolver.

Top-level orchestration for a project directory:

    1. Load the package definition (pawn.json / pawn.yaml)
    2. Optionally pin tagless dependencies
    3. Build the dependency graph (ensures every repository is cached)
    4. For each dependency: apply the locked commit, vendor it into
       ``dependencies/<repo>``, check out its constraint and record the
       resolution in the lockfile
    5. Prune lockfile entries that left the tree and save if changed

Each per-dependency ensure is retried once with a constant backoff to
ride out a single transient network failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Set, TypeVar

from .. import __version__
from ..config import ENSURE_RETRIES, ENSURE_RETRY_DELAY, VENDOR_DIR
from .deadline import Deadline
from .errors import DependencyError, OperationCancelled, PawnctlError
from .git_fetcher import GitCacheStore
from .graph import DependencyGraph, GraphBuilder
from .lockfile import LockfileSession, dependency_key
from .manifest import PackageDefinition, PackageDefinitionError
from .overrides import OverrideTable
from .releases import ReleaseSource
from .specifier import ConstraintKind, DependencyDescriptor, MalformedSpecifierError, parse_specifier
from .tagless import TaglessPinner
from .versioning import RefNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that a retry cannot fix
_PERMANENT_ERRORS = (RefNotFoundError, MalformedSpecifierError, OperationCancelled)


@dataclass
class ResolvedDependency:
    """
    A dependency vendored and checked out.

    Attributes:
        descriptor: The dependency as declared.
        commit: Checked-out commit.
        version: Human-readable version (tag, branch or short commit).
        path: Vendored working copy.
        transitive: Pulled in by another dependency.
        required_by: Lockfile keys of the declaring packages.
        from_lockfile: The commit came from the lockfile.
    """

    descriptor: DependencyDescriptor
    commit: str
    version: str
    path: Path
    transitive: bool = False
    required_by: List[str] = field(default_factory=list)
    from_lockfile: bool = False

    @property
    def key(self) -> str:
        return dependency_key(self.descriptor)


@dataclass
class ResolutionResult:
    """
    Result container for the resolution process.

    Attributes:
        graph: The dependency graph that was walked.
        dependencies: Successfully vendored dependencies.
        failures: Dependencies that failed after retries.
        pruned: Lockfile keys removed because they left the tree.
        lockfile_written: Whether pawn.lock was rewritten.
    """

    graph: DependencyGraph
    dependencies: List[ResolvedDependency] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    lockfile_written: bool = False

    @property
    def warnings(self) -> List[str]:
        return self.graph.skipped + self.failures

    @property
    def success(self) -> bool:
        return not self.failures


class DependencyResolver:
    """
    Resolves and vendors the dependencies of a project.

    Attributes:
        project_root: Directory containing the package definition.
        force_update: Ignore locked commits and pull the latest changes.
        use_lockfile: Read and write pawn.lock.

    Example:
        ```python
        resolver = DependencyResolver(Path("./my-gamemode"))
        result = resolver.ensure()
        for dep in result.dependencies:
            print(f"{dep.descriptor}: {dep.version} ({dep.commit[:8]})")
        ```
    """

    def __init__(
        self,
        project_root: Path,
        store: Optional[GitCacheStore] = None,
        overrides: Optional[OverrideTable] = None,
        releases: Optional[ReleaseSource] = None,
        platform: Optional[str] = None,
        force_update: bool = False,
        use_lockfile: bool = True,
        retries: int = ENSURE_RETRIES,
        retry_delay: float = ENSURE_RETRY_DELAY,
        deadline: Optional[Deadline] = None,
        tool_version: str = __version__,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.project_root = project_root.resolve()
        self.deadline = deadline or Deadline()
        self.store = store or GitCacheStore(deadline=self.deadline)
        self.overrides = overrides if overrides is not None else OverrideTable.load()
        self.releases = releases
        self.platform = platform
        self.force_update = force_update
        self.use_lockfile = use_lockfile
        self.retries = retries
        self.retry_delay = retry_delay
        self.tool_version = tool_version
        self._sleep = sleep

    def close(self) -> None:
        """Close the release source's HTTP client, if it holds one."""
        close = getattr(self.releases, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "DependencyResolver":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def vendor_dir(self) -> Path:
        return self.project_root / VENDOR_DIR

    def load_package(self) -> PackageDefinition:
        """
        Raises:
            PackageDefinitionError: If there is no definition or it is invalid.
        """
        package = PackageDefinition.load(self.project_root)
        if package is None:
            raise PackageDefinitionError(f"no package definition (pawn.json or pawn.yaml) in {self.project_root}")
        package.validate()
        return package

    def graph_builder(self) -> GraphBuilder:
        return GraphBuilder(
            self.store,
            project_dir=self.project_root,
            platform=self.platform,
            overrides=self.overrides,
            force_update=self.force_update,
            deadline=self.deadline,
        )

    def build_graph(self, package: Optional[PackageDefinition] = None) -> DependencyGraph:
        return self.graph_builder().build(package or self.load_package())

    def pin_tagless(self, package: Optional[PackageDefinition] = None) -> bool:
        """Pin tagless dependencies and refresh the cache; see ``TaglessPinner``."""
        pinner = TaglessPinner(
            self.store,
            releases=self.releases,
            refresh=self.build_graph,
            overrides=self.overrides,
        )
        return pinner.pin_unconstrained(package or self.load_package())

    def install(self, targets: List[str], dev: bool = False) -> Optional[ResolutionResult]:
        """
        Add dependencies to the package definition and ensure them.

        Targets without a tag, branch or commit are pinned to their latest
        tag when one can be found. Targets already declared (in either list)
        are skipped with a warning.

        Returns:
            The ensure result, or None if nothing was added.

        Raises:
            MalformedSpecifierError: If a target cannot be parsed.
        """
        package = self.load_package()
        declared = _declared_keys(package.all_dependencies())
        pinner = TaglessPinner(self.store, releases=self.releases, overrides=self.overrides)
        added = []

        for target in targets:
            descriptor = parse_specifier(target)
            key = dependency_key(descriptor)
            if key in declared:
                logger.warning(f"{descriptor.name} is already a dependency of {package.path.name}")
                continue
            if not descriptor.is_local and descriptor.constraint_kind is ConstraintKind.NONE:
                tag = pinner.latest_tag(descriptor)
                if tag:
                    descriptor = descriptor.with_tag(tag)
                else:
                    logger.info(f"No tags found for {descriptor.name}, adding it unpinned")
            declared.add(key)
            added.append(descriptor.render())

        if not added:
            return None

        if dev:
            package.dev_dependencies.extend(added)
        else:
            package.dependencies.extend(added)
        package.write()
        logger.info(f"➕ Added {', '.join(added)} to {package.path.name}")
        return self.ensure()

    def uninstall(self, targets: List[str], dev: bool = False) -> List[str]:
        """
        Remove dependencies from the package definition.

        A target matches a declared dependency with the same repository,
        whatever its constraint. Only the list selected by ``dev`` is searched.

        Returns:
            The declared strings that were removed.
        """
        package = self.load_package()
        declared = package.dev_dependencies if dev else package.dependencies
        removed = []

        for target in targets:
            key = dependency_key(parse_specifier(target))
            matches = [raw for raw in declared if _declared_key(raw) == key]
            if not matches:
                logger.warning(f"{target} is not a {'development ' if dev else ''}dependency of {package.path.name}")
                continue
            declared[:] = [raw for raw in declared if raw not in matches]
            removed.extend(matches)

        if removed:
            package.write()
            logger.info(f"➖ Removed {', '.join(removed)} from {package.path.name}")
        return removed

    def outdated(self, package: Optional[PackageDefinition] = None) -> List[DependencyDescriptor]:
        """Declared dependencies whose constraint changed since the last lock."""
        package = package or self.load_package()
        session = LockfileSession.open(self.project_root, tool_version=self.tool_version)
        result = []
        for raw in package.all_dependencies():
            descriptor = parse_specifier(raw, self.overrides)
            if not descriptor.is_local and session.is_outdated(descriptor):
                result.append(descriptor)
        return result

    def ensure(self, pin_tagless: bool = False) -> ResolutionResult:
        """
        Resolve, vendor and lock every dependency.

        Returns:
            ResolutionResult with the vendored dependencies and any failures.

        Raises:
            PackageDefinitionError: If the project has no usable definition.
            GraphBuildError: If one of the root's own dependencies fails.
            LockfileError: If pawn.lock is unreadable.
        """
        package = self.load_package()
        if pin_tagless:
            self.pin_tagless(package)

        lock = LockfileSession.open(self.project_root, self.tool_version) if self.use_lockfile else None
        graph = self.build_graph(package)
        result = ResolutionResult(graph=graph)

        for descriptor in graph.dependencies:
            try:
                resolved = self._with_retry(descriptor, lambda d=descriptor: self.ensure_package(d, graph, lock))
            except OperationCancelled:
                raise
            except PawnctlError as e:
                message = str(DependencyError.wrap(descriptor, e))
                logger.warning(f"Failed to ensure {message}")
                result.failures.append(message)
                continue
            result.dependencies.append(resolved)

        if lock is not None:
            for descriptor in graph.local_dependencies:
                lock.record_local_dependency(descriptor)
            if not result.failures and not graph.skipped:
                result.pruned = lock.prune_missing(graph.keys())
            result.lockfile_written = lock.save()

        return result

    def ensure_package(
        self,
        descriptor: DependencyDescriptor,
        graph: DependencyGraph,
        lock: Optional[LockfileSession] = None,
    ) -> ResolvedDependency:
        """
        Vendor one dependency and check out its constraint.

        The locked commit, when present, replaces the declared tag or
        branch unless ``force_update`` is set or the declared constraint
        changed since it was locked.
        """
        effective, from_lock = descriptor, False
        if lock is not None and not self.force_update and not lock.is_outdated(descriptor):
            effective, from_lock = lock.locked_ref_for(descriptor)
            if from_lock:
                logger.debug(f"Using locked commit {effective.commit[:8]} for {descriptor}")

        dest = self.vendor_dir / descriptor.repo
        repo = self.store.ensure_vendored(descriptor.as_git(), dest, force_update=self.force_update)
        self.store.checkout_constraint(
            repo,
            effective.as_git(),
            reclone=lambda: self.store.ensure_vendored(descriptor.as_git(), dest),
        )

        commit = repo.head_commit()
        tag = repo.current_tag()
        transitive = graph.is_transitive(descriptor)
        required_by = graph.required_by(descriptor) if transitive else []

        if lock is not None:
            lock.record_resolution(
                descriptor,
                commit,
                transitive=transitive,
                required_by=required_by,
                tag=tag,
            )

        version = tag or descriptor.version or commit[:8]
        logger.info(f"✅ {descriptor} -> {version} ({commit[:8]})")
        return ResolvedDependency(
            descriptor=descriptor,
            commit=commit,
            version=version,
            path=dest,
            transitive=transitive,
            required_by=required_by,
            from_lockfile=from_lock,
        )

    def _with_retry(self, descriptor: DependencyDescriptor, func: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return func()
            except _PERMANENT_ERRORS:
                raise
            except PawnctlError as e:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.warning(f"Retrying {descriptor} ({attempt}/{self.retries}) after error: {e}")
                self._sleep(self.retry_delay)


def _declared_key(raw: str) -> Optional[str]:
    try:
        return dependency_key(parse_specifier(raw))
    except MalformedSpecifierError:
        return None


def _declared_keys(raw_dependencies: List[str]) -> Set[str]:
    return {key for key in map(_declared_key, raw_dependencies) if key is not None}
