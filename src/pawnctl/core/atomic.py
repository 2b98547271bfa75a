"""Atomic file writes (write to a temp file, then rename over the target)."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional, Union


def atomic_write(path: Path, data: Union[bytes, str], mode: Optional[int] = None) -> None:
    """
    Replace ``path`` with ``data`` without ever exposing a truncated file.

    Args:
        path: Destination file.
        data: Content; str is encoded as UTF-8.
        mode: Optional permission bits for the new file.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
