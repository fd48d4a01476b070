"""
Binary lifecycle management for pglt-supervisor.

Handles:
- Platform detection
- Cache directories for staged and downloaded binaries
- Release listing and binary download from GitHub releases
- Remembering (and forgetting) the downloaded version
- Interactive install: version pick list, download, result messages
"""

from __future__ import annotations

import asyncio
import logging
import platform
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from platformdirs import user_cache_dir

from pglt_supervisor._core.probe import dir_exists, file_exists, make_executable
from pglt_supervisor._core.version import (
    get_download_url,
    get_platform_binary_name,
    get_releases_url,
)
from pglt_supervisor.errors import FetchError
from pglt_supervisor.host import KeyValueStore, QuickPickItem, Window

logger = logging.getLogger(__name__)

STAGING_FOLDER = "tmp-bin"
DOWNLOAD_FOLDER = "global-bin"
DOWNLOADED_VERSION_KEY = "downloadedVersion"

RELEASES_PER_PAGE = 100
MAX_RELEASE_PAGES = 30


def get_platform_info() -> Tuple[str, str]:
    """
    Determine the OS and architecture.

    Identifiers follow the naming used by the worker's npm packages and
    by the platform-keyed `pglt.bin` setting (e.g. "linux", "x64").

    Returns:
        Tuple of (os_name, arch_name)

    Raises:
        RuntimeError: If platform is unsupported
    """
    system = platform.system().lower()
    machine = platform.machine().lower()

    if system == "darwin":
        os_name = "darwin"
    elif system == "linux":
        os_name = "linux"
    elif system == "windows":
        os_name = "win32"
    else:
        raise RuntimeError(f"Unsupported operating system: {system}")

    if machine in ("x86_64", "amd64"):
        arch_name = "x64"
    elif machine in ("arm64", "aarch64"):
        arch_name = "arm64"
    else:
        raise RuntimeError(f"Unsupported architecture: {machine}")

    return os_name, arch_name


def get_cache_dir() -> Path:
    """Get the directory where staged and downloaded binaries are kept."""
    cache_dir = Path(user_cache_dir("pglt-supervisor", "pglt"))
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_staging_dir() -> Path:
    """Version-keyed copies of discovered binaries."""
    return get_cache_dir() / STAGING_FOLDER


def get_download_dir() -> Path:
    """Binaries downloaded from GitHub releases."""
    return get_cache_dir() / DOWNLOAD_FOLDER


def get_installed_binary_path() -> Path:
    """Location of the downloaded binary for the current platform."""
    os_name, _ = get_platform_info()
    return get_download_dir() / get_platform_binary_name(os_name)


# =============================================================================
# Releases
# =============================================================================


@dataclass(frozen=True)
class Release:
    """A GitHub release of the worker."""
    tag_name: str
    published_at: str
    draft: bool = False
    prerelease: bool = False

    @property
    def published(self) -> datetime:
        return datetime.fromisoformat(self.published_at.replace("Z", "+00:00"))


def get_all_releases(with_prereleases: bool = False, timeout: float = 30.0) -> List[Release]:
    """
    List published worker releases, newest first.

    Drafts are always dropped; prereleases only when `with_prereleases` is
    False. Pages are fetched until a short page or the page cap is reached.

    Args:
        with_prereleases: Keep prereleases in the result
        timeout: Per-request timeout in seconds

    Returns:
        Releases sorted by publication date, newest first

    Raises:
        FetchError: If the GitHub API cannot be reached or answers non-2xx
    """
    url = get_releases_url()
    releases: List[Release] = []

    for page in range(1, MAX_RELEASE_PAGES + 1):
        try:
            response = requests.get(
                url,
                params={"page": page, "per_page": RELEASES_PER_PAGE},
                headers={"X-GitHub-Api-Version": "2022-11-28"},
                timeout=timeout,
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Could not fetch releases from {url}: {e}", url=url) from e

        if not response.ok:
            raise FetchError(
                f"Could not fetch releases from {url}: received status code "
                f"{response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        results = response.json()
        releases.extend(
            Release(
                tag_name=item["tag_name"],
                published_at=item.get("published_at") or "1970-01-01T00:00:00Z",
                draft=bool(item.get("draft")),
                prerelease=bool(item.get("prerelease")),
            )
            for item in results
        )

        if len(results) < RELEASES_PER_PAGE:
            break

    filtered = [
        r for r in releases
        if not r.draft and (with_prereleases or not r.prerelease)
    ]
    return sorted(filtered, key=lambda r: r.published, reverse=True)


# =============================================================================
# Download
# =============================================================================


def download_binary(version: str, target_path: Optional[Path] = None) -> Path:
    """
    Download the pglt binary for the current platform.

    Args:
        version: Release tag to download
        target_path: Where to write the binary (default: download area)

    Returns:
        Path to the downloaded binary

    Raises:
        FetchError: If the download or the write fails
    """
    target_path = target_path or get_installed_binary_path()
    os_name, arch_name = get_platform_info()
    url = get_download_url(version, os_name, arch_name)

    logger.info(f"Downloading pglt {version} for {os_name}/{arch_name}...")

    response = None
    try:
        response = requests.get(
            url,
            stream=True,
            timeout=60,
            headers={"Accept": "application/octet-stream"},
        )
        response.raise_for_status()

        target_path.parent.mkdir(parents=True, exist_ok=True)

        with open(target_path, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)

        if os_name != "win32":
            make_executable(target_path)

        logger.info(f"Downloaded pglt {version} to {target_path}")
        return target_path

    except requests.exceptions.HTTPError as e:
        if target_path.exists():
            target_path.unlink()
        source = e.response if e.response is not None else response
        status = getattr(source, "status_code", None)
        raise FetchError(
            f"Failed to download binary version {version} from {url} (status {status})",
            url=url,
            status_code=status,
        ) from e
    except requests.exceptions.RequestException as e:
        if target_path.exists():
            target_path.unlink()
        raise FetchError(f"Failed to download binary from {url}: {e}", url=url) from e
    except OSError as e:
        if target_path.exists():
            target_path.unlink()
        raise FetchError(f"Failed to save binary to {target_path}: {e}", url=url) from e


async def download_binary_async(version: str, target_path: Optional[Path] = None) -> Path:
    """Run download_binary in the default executor to avoid blocking the loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, download_binary, version, target_path)


# =============================================================================
# Downloaded version memory
# =============================================================================


@dataclass(frozen=True)
class DownloadedVersion:
    """The release installed in the download area."""
    version: str
    bin_path: Path


def get_downloaded_version(store: KeyValueStore) -> Optional[DownloadedVersion]:
    """
    Look up the remembered downloaded version.

    Args:
        store: Host key/value storage

    Returns:
        DownloadedVersion if a version is remembered and its binary exists
    """
    version = store.get(DOWNLOADED_VERSION_KEY)
    if not version:
        logger.debug("No downloaded version stored in global state.")
        return None

    bin_path = get_installed_binary_path()
    if file_exists(bin_path):
        logger.debug(f"Found downloaded version {version} at {bin_path}")
        return DownloadedVersion(version=version, bin_path=bin_path)

    logger.info(
        f"Downloaded version {version} found in global state, "
        f"but binary does not exist at {bin_path}"
    )
    return None


def remember_downloaded_version(store: KeyValueStore, version: Optional[str]) -> None:
    """Persist (or with None, forget) the downloaded version."""
    store.update(DOWNLOADED_VERSION_KEY, version)


# =============================================================================
# Cache clearing
# =============================================================================


def clear_directory(path: Path) -> bool:
    """
    Recursively delete a cache subtree.

    Returns:
        True if something was deleted
    """
    if not dir_exists(path):
        return False
    shutil.rmtree(path)
    logger.debug(f"Cleared {path}")
    return True


def clear_downloaded_binaries() -> bool:
    """Delete every downloaded binary."""
    logger.debug("Clearing downloaded binaries")
    return clear_directory(get_download_dir())


# =============================================================================
# Interactive install
# =============================================================================

VERSION_PICK_TITLE = "Select pglt version to download"


def build_version_items(
    releases: List[Release],
    installed_version: Optional[str] = None,
) -> List[QuickPickItem]:
    """
    Turn releases into pick-list entries.

    The first release is tagged "latest", prereleases are tagged
    "prerelease", and the remembered version is marked as installed.
    """
    items = []
    for index, release in enumerate(releases):
        descriptions = []
        if index == 0:
            descriptions.append("latest")
        if release.prerelease:
            descriptions.append("prerelease")

        items.append(
            QuickPickItem(
                label=release.tag_name,
                description=", ".join(descriptions),
                detail="(currently installed)" if release.tag_name == installed_version else "",
                always_show=index < 3,
            )
        )
    return items


async def prompt_version_to_download(
    window: Window,
    store: KeyValueStore,
    with_prereleases: bool = False,
) -> Optional[str]:
    """
    Let the user pick a release to install.

    Returns:
        The chosen tag, or None if nothing could be listed or nothing was picked
    """
    logger.debug("Prompting user to select pglt version to download")

    downloaded = get_downloaded_version(store)
    loop = asyncio.get_running_loop()
    try:
        releases = await loop.run_in_executor(None, get_all_releases, with_prereleases)
    except FetchError as e:
        logger.error(f"Could not list pglt releases: {e}")
        await window.show_error_message(f"Could not list pglt releases.\n\n{e}")
        return None

    logger.debug(
        f"Found {len(releases)} downloadable versions (prereleases: {with_prereleases})"
    )
    if not releases:
        await window.show_error_message("No pglt releases are available for download.")
        return None

    items = build_version_items(releases, downloaded.version if downloaded else None)
    return await window.show_quick_pick(items, title=VERSION_PICK_TITLE)


async def download_pglt(
    window: Window,
    store: KeyValueStore,
    with_prereleases: bool = False,
) -> Optional[Path]:
    """
    Ask for a version, install it into the download area and remember it.

    Args:
        window: Host window for the pick list and result messages
        store: Host key/value storage holding the downloaded version
        with_prereleases: Offer prereleases in the pick list

    Returns:
        Path to the installed binary, or None if cancelled or failed
    """
    version = await prompt_version_to_download(window, store, with_prereleases)
    if not version:
        logger.debug("No version to download selected, aborting")
        return None

    try:
        bin_path = await download_binary_async(version)
    except FetchError as e:
        logger.error(f"Failed to download pglt {version}: {e}")
        await window.show_error_message(str(e))
        return None

    remember_downloaded_version(store, version)
    await window.show_information_message(f"Downloaded pglt {version} to {bin_path}")
    return bin_path
