"""
Dependency Graph Builder.

Walks a package's declared dependencies depth-first, ensuring each git
dependency is cached and recursing into the package definition found in
the cached copy. The result is flattened into three lists:

    dependencies   every resolved dependency, each repository once
    plugins        the subset that are plugin binaries
    include_paths  extra include directories (scheme includes, resources)

Walk rules:
    - The visited set is keyed by repository name and seeded with the
      root package, so cycles and self-references terminate.
    - The root contributes runtime + development dependencies; nested
      packages contribute runtime dependencies only.
    - A failure on one of the root's own dependencies aborts the build;
      deeper failures are logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Set

from ..config import VENDOR_DIR, binary_extension, current_platform
from .deadline import Deadline
from .errors import DependencyError, PawnctlError
from .lockfile import dependency_key
from .manifest import PackageDefinition, PackageDefinitionError
from .overrides import OverrideTable
from .specifier import DependencyDescriptor, MalformedSpecifierError, SchemeKind, parse_specifier

logger = logging.getLogger(__name__)


class GraphBuildError(PawnctlError):
    """Raised when the root package's dependencies cannot be resolved."""


class CacheStore(Protocol):
    def ensure(self, descriptor: DependencyDescriptor, force_update: bool = False): ...


@dataclass
class DependencyGraph:
    """
    Flattened result of one walk.

    Attributes:
        root: Name of the root package.
        dependencies: Every resolved dependency in visit order.
        plugins: Dependencies that provide plugin binaries.
        include_paths: Extra include search paths.
        local_dependencies: Workspace-local scheme dependencies.
        direct: Lockfile keys declared by the root package itself.
        requirers: Lockfile key -> keys of the packages that declared it.
        skipped: Messages for nested dependencies that failed and were skipped.
    """

    root: str
    dependencies: List[DependencyDescriptor] = field(default_factory=list)
    plugins: List[DependencyDescriptor] = field(default_factory=list)
    include_paths: List[Path] = field(default_factory=list)
    local_dependencies: List[DependencyDescriptor] = field(default_factory=list)
    direct: Set[str] = field(default_factory=set)
    requirers: Dict[str, List[str]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    def is_transitive(self, descriptor: DependencyDescriptor) -> bool:
        return dependency_key(descriptor) not in self.direct

    def required_by(self, descriptor: DependencyDescriptor) -> List[str]:
        return list(self.requirers.get(dependency_key(descriptor), []))

    def keys(self) -> Set[str]:
        """Lockfile keys of everything the walk reached."""
        return {dependency_key(d) for d in self.dependencies + self.local_dependencies}

    def add_plugin(self, descriptor: DependencyDescriptor) -> None:
        if descriptor not in self.plugins:
            self.plugins.append(descriptor)

    def add_include_path(self, path: Path) -> None:
        if path not in self.include_paths:
            self.include_paths.append(path)


class ResolutionSession:
    """Mutable state for one walk; never shared between builds."""

    def __init__(self, root: PackageDefinition):
        self.graph = DependencyGraph(root=root.name)
        self.visited: Set[str] = {root.repo or root.directory.name}

    def add_requirer(self, key: str, requirer: str) -> None:
        requirers = self.graph.requirers.setdefault(key, [])
        if requirer not in requirers:
            requirers.append(requirer)


SchemeHandler = Callable[["GraphBuilder", ResolutionSession, DependencyDescriptor], None]


def _record_plugin(builder: "GraphBuilder", session: ResolutionSession, descriptor: DependencyDescriptor) -> None:
    session.graph.add_plugin(descriptor)


def _record_includes(builder: "GraphBuilder", session: ResolutionSession, descriptor: DependencyDescriptor) -> None:
    if descriptor.is_local:
        session.graph.add_include_path(builder.project_dir / descriptor.local)
        return
    path = builder.vendor_dir / descriptor.repo
    if descriptor.path:
        path = path / descriptor.path
    session.graph.add_include_path(path)


def _record_filterscript(builder: "GraphBuilder", session: ResolutionSession, descriptor: DependencyDescriptor) -> None:
    logger.debug(f"Filterscript dependency {descriptor} adds no include paths or plugins")


SCHEME_HANDLERS: Dict[SchemeKind, SchemeHandler] = {
    SchemeKind.PLUGIN: _record_plugin,
    SchemeKind.COMPONENT: _record_plugin,
    SchemeKind.INCLUDES: _record_includes,
    SchemeKind.FILTERSCRIPT: _record_filterscript,
}


class GraphBuilder:
    """
    Builds the flattened dependency graph for a root package.

    Example:
        ```python
        builder = GraphBuilder(GitCacheStore(), project_dir=Path("."))
        graph = builder.build(PackageDefinition.load(Path(".")))
        for dep in graph.dependencies:
            print(dep)
        ```
    """

    def __init__(
        self,
        store: CacheStore,
        project_dir: Optional[Path] = None,
        platform: Optional[str] = None,
        overrides: Optional[OverrideTable] = None,
        force_update: bool = False,
        deadline: Optional[Deadline] = None,
    ):
        self.store = store
        self.project_dir = project_dir or Path.cwd()
        self.vendor_dir = self.project_dir / VENDOR_DIR
        self.platform = platform or current_platform()
        self.overrides = overrides
        self.force_update = force_update
        self.deadline = deadline or Deadline()

    def build(self, root: PackageDefinition) -> DependencyGraph:
        """
        Walk the root package's dependency tree.

        Raises:
            GraphBuildError: If one of the root's own dependencies fails.
            OperationCancelled: If the deadline expires mid-walk.
        """
        session = ResolutionSession(root)
        logger.info(f"📦 Resolving dependencies for {root.name}")

        for raw in root.all_dependencies():
            self._visit(session, raw, requirer=None)

        graph = session.graph
        logger.info(
            f"Resolved {len(graph.dependencies)} dependencies "
            f"({len(graph.plugins)} plugins, {len(graph.include_paths)} include paths)"
        )
        return graph

    def _visit(self, session: ResolutionSession, raw: str, requirer: Optional[str]) -> None:
        self.deadline.check(f"resolving {raw}")
        is_root_level = requirer is None

        try:
            descriptor = parse_specifier(raw, self.overrides)
        except MalformedSpecifierError as e:
            self._fail(session, raw, requirer, e)
            return

        key = dependency_key(descriptor)
        if is_root_level:
            session.graph.direct.add(key)
        else:
            session.add_requirer(key, requirer)

        handler = SCHEME_HANDLERS.get(descriptor.scheme) if descriptor.scheme else None

        if descriptor.is_local:
            if descriptor not in session.graph.local_dependencies:
                session.graph.local_dependencies.append(descriptor)
            if handler is not None:
                handler(self, session, descriptor)
            return

        if self._visit_git(session, descriptor, requirer) and handler is not None:
            handler(self, session, descriptor)

    def _visit_git(
        self,
        session: ResolutionSession,
        descriptor: DependencyDescriptor,
        requirer: Optional[str],
    ) -> bool:
        if descriptor.repo in session.visited:
            logger.debug(f"Already visited {descriptor.repo}, skipping")
            return False
        session.visited.add(descriptor.repo)

        try:
            repo = self.store.ensure(descriptor.as_git(), force_update=self.force_update)
        except PawnctlError as e:
            self._fail(session, str(descriptor), requirer, e)
            return False

        session.graph.dependencies.append(descriptor)

        try:
            package = PackageDefinition.load(Path(repo.path))
        except PackageDefinitionError as e:
            logger.warning(f"Ignoring package definition of {descriptor}: {e}")
            return True

        if package is None:
            return True

        self._collect_resources(session, descriptor, package)

        key = dependency_key(descriptor)
        for raw in package.dependencies:
            self._visit(session, raw, requirer=key)
        return True

    def _collect_resources(
        self,
        session: ResolutionSession,
        descriptor: DependencyDescriptor,
        package: PackageDefinition,
    ) -> None:
        extension = binary_extension(self.platform)
        for resource in package.resources:
            if not resource.matches_platform(self.platform):
                continue
            if resource.includes:
                session.graph.add_include_path(self.vendor_dir / resource.path(descriptor.repo))
            if resource.is_plugin(extension):
                session.graph.add_plugin(descriptor)

    def _fail(
        self,
        session: ResolutionSession,
        dependency: str,
        requirer: Optional[str],
        error: Exception,
    ) -> None:
        if requirer is None:
            raise GraphBuildError(str(DependencyError.wrap(dependency, error))) from error

        message = f"{dependency} (required by {requirer}): {error}"
        logger.warning(f"Skipping dependency {message}")
        session.graph.skipped.append(message)
