"""
Global Configuration and Defaults.

This module centralizes the paths and tuning constants used by the
resolution engine. Components take these as constructor defaults so that
tests can point them somewhere else without touching module state.

Environment:
    PAWNCTL_HOME       Config directory (default: ~/.pawnctl)
    PAWNCTL_CACHE_DIR  Repository cache directory (default: <home>/cache)
    GITHUB_TOKEN       Optional token for the release API
"""

import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Dict, Tuple

# --- Hosting ---
DEFAULT_SITE = "github.com"
GITHUB_API_URL = "https://api.github.com"

# --- Git ---
# Deep enough to reach typical release tags without pulling full history
CLONE_DEPTH = 1000
GIT_TIMEOUT_SECONDS = 300
MAX_RECOVERY_ATTEMPTS = 2

# --- Outer retry ---
ENSURE_RETRIES = 1
ENSURE_RETRY_DELAY = 0.1  # seconds, constant backoff

# --- Overrides ---
OVERRIDES_URL = (
    "https://raw.githubusercontent.com/sampctl/plugins/refs/heads/master/dependency-overrides.json"
)
OVERRIDES_TTL = timedelta(hours=24)
LOCAL_OVERRIDES_FILE = "dependency-overrides.json"
REMOTE_OVERRIDES_CACHE_FILE = "remote-dependency-overrides.json"

# --- Project files ---
PACKAGE_DEFINITION_FILES: Tuple[str, ...] = ("pawn.json", "pawn.yaml")
LOCKFILE_NAME = "pawn.lock"
VENDOR_DIR = "dependencies"
RESOURCES_DIR = ".resources"

BINARY_EXTENSIONS: Dict[str, str] = {
    "linux": ".so",
    "windows": ".dll",
    "darwin": ".dylib",
}


def get_config_dir() -> Path:
    """Return the pawnctl config directory."""
    env = os.environ.get("PAWNCTL_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".pawnctl"


def get_cache_dir() -> Path:
    """Return the repository cache directory."""
    env = os.environ.get("PAWNCTL_CACHE_DIR")
    if env:
        return Path(env).expanduser()
    return get_config_dir() / "cache"


def current_platform() -> str:
    """Return the platform name used by resource manifests."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def binary_extension(platform: str) -> str:
    """Return the shared-library extension for a platform."""
    return BINARY_EXTENSIONS.get(platform, ".so")
