"""
tabpilot - Filesystem Locations

- Per-platform cache root (where Playwright keeps its profiles)
- Default persistent profile directory
- Output file naming for downloads, traces and snapshots
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import sys
import tempfile
import time
from pathlib import Path

from tabpilot.errors import ConfigurationError

logger = logging.getLogger("tabpilot.paths")

# Everything outside [0-9A-Za-z-] in the ASCII range
_UNSAFE_CHARS = re.compile(r"[\x00-\x2C\x2E-\x2F\x3A-\x40\x5B-\x60\x7B-\x7F]+")


def sanitize_for_file_path(name: str) -> str:
    """Replace path-unsafe characters with '-', keeping the last extension."""
    base, sep, ext = name.rpartition(".")
    if not sep:
        return _UNSAFE_CHARS.sub("-", name)
    return _UNSAFE_CHARS.sub("-", base) + "." + _UNSAFE_CHARS.sub("-", ext)


def cache_directory() -> Path:
    """Return the platform cache root."""
    if sys.platform.startswith("linux"):
        return Path(os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache")
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches"
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA") or Path.home() / "AppData" / "Local")
    raise ConfigurationError(f"Unsupported platform: {sys.platform}")


def profiles_root() -> Path:
    """Profiles we are allowed to delete live under this directory."""
    return cache_directory() / "ms-playwright"


def default_user_data_dir(browser_name: str, channel: str | None = None) -> Path:
    """Profile directory used when the config does not name one."""
    return profiles_root() / f"mcp-{channel or browser_name}-profile"


def create_user_data_dir(browser_name: str, channel: str | None = None) -> Path:
    """
    Create (or repair) the default profile directory.

    A plain file in the way is removed, an unwritable directory is wiped.
    If the directory cannot be created at all, a temporary one is used.
    """
    result = default_user_data_dir(browser_name, channel)
    try:
        if result.exists() and not result.is_dir():
            result.unlink()
        elif result.is_dir():
            marker = result / ".write-test"
            try:
                marker.write_text("test")
                marker.unlink()
            except OSError:
                logger.warning(f"Profile directory {result} is not writable, cleaning it")
                shutil.rmtree(result, ignore_errors=True)

        result.mkdir(parents=True, exist_ok=True, mode=0o755)
        return result
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / f"mcp-{int(time.time() * 1000)}-profile"
        logger.warning(f"Could not create profile directory {result} ({e}), using {fallback}")
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def is_under(path: Path, root: Path) -> bool:
    """True if ``path`` resolves strictly below ``root``; the root itself is not under itself."""
    try:
        resolved, resolved_root = path.resolve(), root.resolve()
        return resolved != resolved_root and resolved.is_relative_to(resolved_root)
    except OSError:
        return False


def output_file(output_dir: Path, name: str) -> Path:
    """Path for an artifact inside the output directory (created on demand)."""
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir / sanitize_for_file_path(name)
