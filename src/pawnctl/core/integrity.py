"""
Integrity strings for lockfile entries.

Format is ``<kind>:<value>``:
    sha256:<64 hex>   content hash of a dependency's relevant files
    commit:<40 hex>   identity of the resolved commit
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Optional, Tuple

RELEVANT_SUFFIXES = {".inc", ".pwn", ".json", ".yaml", ".yml", ".md", ".txt"}

SHA256 = "sha256"
COMMIT = "commit"

_HEX = re.compile(r"^[0-9a-f]+$")
_EXPECTED_LENGTH = {SHA256: 64, COMMIT: 40}


def calculate_directory_integrity(directory: Path) -> str:
    """
    Hash the relevant files of a directory.

    Files are visited in sorted relative-path order; hidden files and
    directories are skipped. Both the path and the content feed the hash
    so renames change the result.
    """
    digest = hashlib.sha256()
    files = sorted(
        p for p in directory.rglob("*")
        if p.is_file()
        and p.suffix.lower() in RELEVANT_SUFFIXES
        and not any(part.startswith(".") for part in p.relative_to(directory).parts)
    )
    for path in files:
        digest.update(path.relative_to(directory).as_posix().encode("utf-8"))
        digest.update(path.read_bytes())
    return f"{SHA256}:{digest.hexdigest()}"


def calculate_commit_integrity(commit: str) -> str:
    return f"{COMMIT}:{commit}"


def parse_integrity(value: str) -> Optional[Tuple[str, str]]:
    """Split an integrity string into (kind, value), or None if malformed."""
    kind, sep, rest = value.partition(":")
    if not sep or not kind or not rest:
        return None
    return kind, rest


def is_valid_integrity(value: str) -> bool:
    parsed = parse_integrity(value)
    if parsed is None:
        return False
    kind, rest = parsed
    expected = _EXPECTED_LENGTH.get(kind)
    return expected is not None and len(rest) == expected and bool(_HEX.match(rest))


def verify_directory_integrity(directory: Path, expected: str) -> bool:
    """Check a directory against a recorded ``sha256:`` integrity string."""
    parsed = parse_integrity(expected)
    if parsed is None or parsed[0] != SHA256:
        return False
    return calculate_directory_integrity(directory) == expected
