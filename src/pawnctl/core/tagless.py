"""
Tagless Pinner.

Rewrites unconstrained dependencies (``owner/repo`` with no tag, branch or
commit) to the latest tag that can be found, then persists the package
definition.

Latest tag lookup order:
    1. The hosting site's release API (newest stable release)
    2. The tags of the cached clone (see ``versioning.latest_tag``)

If the dependency refresh that follows the rewrite fails, the definition
file is restored to its original bytes and the in-memory lists are put
back before the error is raised, so disk and memory never disagree.
"""

from __future__ import annotations

import copy
import logging
from typing import Callable, List, Optional

from ..config import DEFAULT_SITE
from .atomic import atomic_write
from .errors import PawnctlError
from .manifest import PackageDefinition
from .overrides import OverrideTable
from .releases import ReleaseSource
from .specifier import ConstraintKind, DependencyDescriptor, MalformedSpecifierError, parse_specifier
from .versioning import latest_tag

logger = logging.getLogger(__name__)


class TaglessPinError(PawnctlError):
    """
    Raised when pinning wrote the definition but the refresh failed.

    Attributes:
        rolled_back: True if the definition file was restored.
    """

    def __init__(self, message: str, rolled_back: bool):
        self.rolled_back = rolled_back
        super().__init__(message)


class TaglessPinner:
    """
    Pins tagless dependencies of a root package to their latest tag.

    Attributes:
        store: Cache store used for the tag scan fallback.
        releases: Release API, or None to rely on the cache alone.
        refresh: Called with the rewritten package to rebuild derived state.
    """

    def __init__(
        self,
        store,
        releases: Optional[ReleaseSource] = None,
        refresh: Optional[Callable[[PackageDefinition], object]] = None,
        overrides: Optional[OverrideTable] = None,
    ):
        self.store = store
        self.releases = releases
        self.refresh = refresh
        self.overrides = overrides

    def pin_unconstrained(self, package: PackageDefinition) -> bool:
        """
        Pin every unconstrained dependency of ``package``.

        Returns:
            True if the definition was rewritten.

        Raises:
            TaglessPinError: If the refresh after writing failed.
        """
        dependencies = self._pin_list(package.dependencies)
        dev_dependencies = self._pin_list(package.dev_dependencies)

        if dependencies == package.dependencies and dev_dependencies == package.dev_dependencies:
            logger.debug("No tagless dependencies to pin")
            return False

        path = package.path
        original_bytes = path.read_bytes() if path.exists() else None
        original_mode = path.stat().st_mode & 0o777 if path.exists() else None
        original_lists = (list(package.dependencies), list(package.dev_dependencies))
        original_raw = copy.deepcopy(package.raw)

        package.dependencies = dependencies
        package.dev_dependencies = dev_dependencies
        package.write()
        logger.info(f"✏️  Updated {path.name} with pinned versions")

        if self.refresh is None:
            return True

        try:
            self.refresh(package)
        except PawnctlError as e:
            package.dependencies, package.dev_dependencies = original_lists
            package.raw = original_raw
            try:
                if original_bytes is None:
                    path.unlink(missing_ok=True)
                else:
                    atomic_write(path, original_bytes, mode=original_mode)
            except OSError as restore_error:
                raise TaglessPinError(
                    f"failed to refresh dependency tree after tagging ({e}) and could not "
                    f"restore {path.name}: {restore_error}",
                    rolled_back=False,
                ) from e
            raise TaglessPinError(
                f"failed to refresh dependency tree after tagging, rolled back changes: {e}",
                rolled_back=True,
            ) from e

        return True

    def latest_tag(self, descriptor: DependencyDescriptor) -> Optional[str]:
        """Find the latest tag for a dependency, or None."""
        if self.releases is not None and descriptor.site == DEFAULT_SITE:
            result = self.releases.latest_stable_tag(descriptor.owner, descriptor.repo)
            if result.is_ok() and result.value:
                logger.debug(f"Latest release of {descriptor.name} is {result.value}")
                return result.value
            if result.is_err():
                logger.debug(f"Release lookup for {descriptor.name} failed: {result.error}")

        try:
            repo = self.store.ensure(descriptor.as_git())
        except PawnctlError as e:
            logger.warning(f"Cannot scan tags of {descriptor.name}: {e}")
            return None

        tag = latest_tag(repo.tags())
        return tag.name if tag else None

    def _pin_list(self, raw_dependencies: List[str]) -> List[str]:
        return [self._pin(raw) for raw in raw_dependencies]

    def _pin(self, raw: str) -> str:
        try:
            descriptor = parse_specifier(raw, self.overrides)
        except MalformedSpecifierError as e:
            logger.warning(f"Not pinning '{raw}': {e}")
            return raw

        if descriptor.is_local or descriptor.constraint_kind is not ConstraintKind.NONE:
            return raw

        tag = self.latest_tag(descriptor)
        if not tag:
            logger.info(f"No tags found for {descriptor.name}, leaving it unpinned")
            return raw

        pinned = descriptor.with_tag(tag).render()
        logger.info(f"🏷️  Pinned {raw} to {pinned}")
        return pinned
