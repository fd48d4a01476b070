"""
Filesystem predicates shared by every discovery strategy.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

logger = logging.getLogger(__name__)


def file_exists(path: Path) -> bool:
    """True if `path` is a regular file (symlinks are followed)."""
    try:
        return path.is_file()
    except OSError as e:
        logger.debug(f"Error verifying if file exists: {path}: {e}")
        return False


def dir_exists(path: Path) -> bool:
    """True if `path` is a directory."""
    try:
        return path.is_dir()
    except OSError as e:
        logger.debug(f"Error verifying if dir exists: {path}: {e}")
        return False


def is_executable(path: Path) -> bool:
    """True if `path` is a regular file the current user may execute."""
    return file_exists(path) and os.access(path, os.X_OK)


def make_executable(path: Path) -> None:
    """Set rwxr-xr-x on `path`."""
    os.chmod(path, stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
