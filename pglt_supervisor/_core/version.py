"""
Version constants and compatibility checking for pglt-supervisor.

pglt-supervisor is versioned independently from the pglt worker binary:
- SUPERVISOR_VERSION: User-facing package version
- WORKER_MIN_VERSION / WORKER_MAX_VERSION: Worker range known to work
"""

from __future__ import annotations

import re
from typing import Tuple

from pglt_supervisor.errors import StagingError

# pglt-supervisor version (user-facing, independent semver)
SUPERVISOR_VERSION = "0.1.0"

# Worker versions this supervisor has been exercised against
WORKER_MIN_VERSION = "0.1.0"
WORKER_MAX_VERSION = "1.0.0"  # exclusive

# GitHub repository for release listing and binary downloads
GITHUB_REPO = "supabase-community/postgres_lsp"
BINARY_NAME = "pglt"

# npm distribution: a main package plus one optional package per platform
NPM_PACKAGE_NAME = "@pglt/pglt"
NPM_PLATFORM_PACKAGE_PREFIX = "@pglt/cli"

# Release assets are named after Rust target triples
_ASSET_ARCH = {
    "x64": "x86_64",
    "arm64": "aarch64",
}
_ASSET_TARGET = {
    "darwin": "apple-darwin",
    "linux": "unknown-linux-gnu",
    "win32": "pc-windows-msvc",
}

_VERSION_TOKEN = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._+-]*$")


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse a semver version string into (major, minor, patch) tuple.

    Args:
        version: Version string like "0.2.0" or "v0.2.0"

    Returns:
        Tuple of (major, minor, patch)

    Raises:
        ValueError: If version string is invalid
    """
    version = version.lstrip("v")

    match = re.match(r"^(\d+)\.(\d+)\.(\d+)", version)
    if not match:
        raise ValueError(f"Invalid version string: {version}")

    return (int(match.group(1)), int(match.group(2)), int(match.group(3)))


def is_worker_compatible(worker_version: str) -> bool:
    """
    Check if a worker version is inside the supported range.

    Args:
        worker_version: Worker version string (e.g., "0.2.0")

    Returns:
        True if compatible, False otherwise (including unparsable versions)
    """
    try:
        worker = parse_version(worker_version)
        min_ver = parse_version(WORKER_MIN_VERSION)
        max_ver = parse_version(WORKER_MAX_VERSION)

        return min_ver <= worker < max_ver
    except ValueError:
        return False


def parse_version_output(output: str) -> str:
    """
    Extract the version token from `pglt --version` output.

    The worker prints "Version: 0.2.0"; a bare "0.2.0" is accepted too.
    The token ends up in a file name, so it must be filename-safe.

    Args:
        output: Raw stdout of the version query

    Returns:
        The version token

    Raises:
        StagingError: If no usable token can be extracted
    """
    text = output.strip()
    if ":" in text:
        text = text.split(":", 1)[1]
    lines = text.strip().splitlines()
    token = lines[0].strip() if lines else ""

    if not token or not _VERSION_TOKEN.match(token):
        raise StagingError(f"Unexpected version output: {output!r}")

    return token


def get_platform_binary_name(os_name: str) -> str:
    """File name of the worker executable on the given OS."""
    return f"{BINARY_NAME}.exe" if os_name == "win32" else BINARY_NAME


def get_platform_package_name(os_name: str, arch_name: str) -> str:
    """npm package carrying the binary for a platform, e.g. @pglt/cli-linux-x64."""
    return f"{NPM_PLATFORM_PACKAGE_PREFIX}-{os_name}-{arch_name}"


def get_release_asset_name(os_name: str, arch_name: str) -> str:
    """
    Get the release asset name for a platform.

    Args:
        os_name: OS name (darwin, linux, win32)
        arch_name: Architecture (x64, arm64)

    Returns:
        Asset name such as "pglt_x86_64-unknown-linux-gnu"
    """
    return f"{BINARY_NAME}_{_ASSET_ARCH[arch_name]}-{_ASSET_TARGET[os_name]}"


def get_download_url(version: str, os_name: str, arch_name: str) -> str:
    """
    Get the download URL for a specific release tag and platform.

    Args:
        version: Release tag exactly as published (e.g., "0.2.0")
        os_name: OS name (darwin, linux, win32)
        arch_name: Architecture (x64, arm64)

    Returns:
        GitHub release download URL
    """
    asset = get_release_asset_name(os_name, arch_name)
    return f"https://github.com/{GITHUB_REPO}/releases/download/{version}/{asset}"


def get_releases_url() -> str:
    """GitHub API endpoint listing the worker's releases."""
    return f"https://api.github.com/repos/{GITHUB_REPO}/releases"
