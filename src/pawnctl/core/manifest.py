"""
Package Definition Parser.

Reads and writes ``pawn.json`` / ``pawn.yaml`` package definitions.

Example pawn.json:
    ```json
    {
        "user": "Southclaws",
        "repo": "samp-logger",
        "entry": "test.pwn",
        "output": "test.amx",
        "dependencies": ["pawn-lang/samp-stdlib", "Southclaws/pawn-errors:1.2.3"],
        "dev_dependencies": ["pawn-lang/YSI-Includes@5.x"],
        "resources": [
            {"name": "^plugin-(.*)\\\\.zip$", "platform": "linux", "archive": true,
             "includes": ["include"], "plugins": ["plugins/logger.so"]}
        ]
    }
    ```

Unknown fields are kept verbatim so a rewrite only touches the
dependency lists and preserves the order of everything else.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..config import PACKAGE_DEFINITION_FILES, RESOURCES_DIR
from .atomic import atomic_write
from .errors import PawnctlError

logger = logging.getLogger(__name__)


class PackageDefinitionError(PawnctlError):
    """Raised when a package definition cannot be read or written."""


@dataclass
class Resource:
    """
    A release asset declared by a package.

    Attributes:
        name: Filename pattern of the asset.
        platform: Target platform; empty means every platform.
        version: Runtime version the asset belongs to.
        archive: Whether the asset is an archive.
        includes: Include directories inside the archive.
        plugins: Plugin binaries inside the archive.
        files: Extra archive paths mapped to extraction paths.
    """

    name: str
    platform: str = ""
    version: str = ""
    archive: bool = False
    includes: List[str] = field(default_factory=list)
    plugins: List[str] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            name=str(data.get("name", "")),
            platform=str(data.get("platform", "")),
            version=str(data.get("version", "")),
            archive=bool(data.get("archive", False)),
            includes=[str(p) for p in data.get("includes") or []],
            plugins=[str(p) for p in data.get("plugins") or []],
            files={str(k): str(v) for k, v in (data.get("files") or {}).items()},
        )

    def matches_platform(self, platform: str) -> bool:
        return not self.platform or self.platform == platform

    def path(self, repo: str) -> Path:
        """Vendor-relative extraction directory for this resource."""
        digest = hashlib.md5(self.name.encode("utf-8")).hexdigest()[:6]
        return Path(RESOURCES_DIR) / f"{repo}-{digest}"

    def is_plugin(self, extension: str) -> bool:
        """
        Whether the resource looks like a binary plugin.

        Archives qualify when they list a shared library; single files
        qualify when their name carries the platform's binary extension.
        """
        if self.archive:
            return any(p.endswith((".so", ".dll", ".dylib")) for p in self.plugins)
        return "." + extension.lstrip(".") in self.name


@dataclass
class PackageDefinition:
    """
    A parsed package definition file.

    Attributes:
        directory: Directory containing the definition.
        format: "json" or "yaml".
        owner: Package owner (the ``user`` field).
        repo: Package repository name.
        entry: Entry script.
        output: Compiled output file.
        dependencies: Runtime dependency strings.
        dev_dependencies: Development dependency strings (not transitive).
        resources: Declared release assets.
        include_path: Sub-path holding the include files.
        raw: The full decoded document, in file order.
    """

    directory: Path
    format: str = "json"
    owner: str = ""
    repo: str = ""
    entry: str = ""
    output: str = ""
    dependencies: List[str] = field(default_factory=list)
    dev_dependencies: List[str] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    include_path: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> Path:
        return self.directory / f"pawn.{self.format}"

    @property
    def name(self) -> str:
        if self.owner and self.repo:
            return f"{self.owner}/{self.repo}"
        return self.repo or self.directory.name

    def all_dependencies(self) -> List[str]:
        """Runtime and development dependencies, in that order."""
        return list(self.dependencies) + list(self.dev_dependencies)

    def validate(self) -> None:
        if self.entry and self.entry == self.output:
            raise PackageDefinitionError("package entry and output point to the same file")

    @classmethod
    def find(cls, directory: Path) -> Optional[Path]:
        """Return the definition file in ``directory``, preferring pawn.json."""
        for filename in PACKAGE_DEFINITION_FILES:
            candidate = directory / filename
            if candidate.is_file():
                return candidate
        return None

    @classmethod
    def load(cls, directory: Path) -> Optional["PackageDefinition"]:
        """
        Load the package definition from a directory.

        Args:
            directory: Package directory.

        Returns:
            The definition, or None when the directory has none.

        Raises:
            PackageDefinitionError: If the file exists but cannot be parsed.
        """
        path = cls.find(directory)
        if path is None:
            logger.debug(f"No package definition (pawn.{{json|yaml}}) in {directory}")
            return None
        return cls.load_file(path)

    @classmethod
    def load_file(cls, path: Path) -> "PackageDefinition":
        fmt = path.suffix.lstrip(".")
        try:
            text = path.read_text(encoding="utf-8")
            data = json.loads(text) if fmt == "json" else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise PackageDefinitionError(f"failed to parse configuration from '{path}': {e}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise PackageDefinitionError(f"'{path}' must contain a mapping at the top level")

        return cls.from_dict(path.parent, fmt, data)

    @classmethod
    def from_dict(cls, directory: Path, fmt: str, data: Dict[str, Any]) -> "PackageDefinition":
        return cls(
            directory=directory,
            format=fmt,
            owner=str(data.get("user", "")),
            repo=str(data.get("repo", "")),
            entry=str(data.get("entry", "")),
            output=str(data.get("output", "")),
            dependencies=[str(d) for d in data.get("dependencies") or []],
            dev_dependencies=[str(d) for d in data.get("dev_dependencies") or []],
            resources=[Resource.from_dict(r) for r in data.get("resources") or [] if isinstance(r, dict)],
            include_path=str(data.get("include_path", "")),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        """The document to write, with dependency lists taken from the fields."""
        data = dict(self.raw)
        for key, values in (("dependencies", self.dependencies), ("dev_dependencies", self.dev_dependencies)):
            if values:
                data[key] = list(values)
            else:
                data.pop(key, None)
        return data

    def serialize(self) -> str:
        data = self.to_dict()
        if self.format == "json":
            return json.dumps(data, indent="\t", ensure_ascii=False) + "\n"
        if self.format == "yaml":
            return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        raise PackageDefinitionError("package has no format associated with it")

    def write(self) -> Path:
        """
        Write the definition back to disk atomically.

        Returns:
            The path written.
        """
        content = self.serialize()
        try:
            atomic_write(self.path, content)
        except OSError as e:
            raise PackageDefinitionError(f"failed to write {self.path.name}: {e}")
        self.raw = self.to_dict()
        return self.path
