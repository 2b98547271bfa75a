"""
pawnctl Core Module.

Dependency resolution and caching engine:

Parsing:
    - parse_specifier, DependencyDescriptor: Dependency strings
    - OverrideTable: Redirects for moved or dead repositories
    - PackageDefinition: pawn.json / pawn.yaml

Resolution:
    - GitCacheStore: Cached clones, validation and repair
    - resolve_ref: Constraint -> git reference
    - GraphBuilder: Recursive, cycle-safe dependency walk
    - TaglessPinner: Pin unconstrained dependencies to the latest tag
    - DependencyResolver: Orchestration with retry and vendoring

Persistence:
    - LockfileSession: pawn.lock read/record/save
    - CacheManager: Inspect and clean the cache
"""

from .cache import CacheItem, CacheManager, CacheStats
from .deadline import Deadline
from .errors import DependencyError, OperationCancelled, PawnctlError
from .git_fetcher import (
    CacheCorruptedError,
    CachedRepository,
    GitCacheStore,
    GitFetchError,
    ValidationResult,
)
from .graph import DependencyGraph, GraphBuildError, GraphBuilder
from .lockfile import (
    LOCKFILE_VERSION,
    LockedDependency,
    Lockfile,
    LockfileCorruptError,
    LockfileError,
    LockfileSession,
    LockfileVersionError,
    dependency_key,
)
from .manifest import PackageDefinition, PackageDefinitionError, Resource
from .overrides import OverrideTable, RemoteOverrideFeed
from .releases import GitHubReleases
from .resolver import DependencyResolver, ResolutionResult, ResolvedDependency
from .result import Err, Ok, Result
from .specifier import (
    ConstraintKind,
    DependencyDescriptor,
    DependencyKind,
    MalformedSpecifierError,
    SchemeKind,
    parse_specifier,
)
from .tagless import TaglessPinError, TaglessPinner
from .versioning import GitRef, RefNotFoundError, TagRef, latest_tag, resolve_ref

__all__ = [
    "CacheCorruptedError",
    "CacheItem",
    "CacheManager",
    "CacheStats",
    "CachedRepository",
    "ConstraintKind",
    "Deadline",
    "DependencyDescriptor",
    "DependencyError",
    "DependencyGraph",
    "DependencyKind",
    "DependencyResolver",
    "Err",
    "GitCacheStore",
    "GitFetchError",
    "GitHubReleases",
    "GitRef",
    "GraphBuildError",
    "GraphBuilder",
    "LOCKFILE_VERSION",
    "LockedDependency",
    "Lockfile",
    "LockfileCorruptError",
    "LockfileError",
    "LockfileSession",
    "LockfileVersionError",
    "MalformedSpecifierError",
    "Ok",
    "OperationCancelled",
    "OverrideTable",
    "PackageDefinition",
    "PackageDefinitionError",
    "PawnctlError",
    "RefNotFoundError",
    "RemoteOverrideFeed",
    "ResolutionResult",
    "ResolvedDependency",
    "Resource",
    "Result",
    "SchemeKind",
    "TagRef",
    "TaglessPinError",
    "TaglessPinner",
    "ValidationResult",
    "dependency_key",
    "latest_tag",
    "parse_specifier",
    "resolve_ref",
]
