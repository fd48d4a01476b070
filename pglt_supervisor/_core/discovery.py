"""
Binary discovery for the pglt worker.

A binary can come from several places. Strategies are tried in a fixed order
and the first one that finds something wins:

1. SettingsStrategy: the `pglt.bin` setting (or PGLT_BIN)
2. NodeModulesStrategy: the @pglt/pglt npm package and its platform package
3. YarnPnpStrategy: the same packages inside a Yarn Plug'n'Play install
4. PathStrategy: a `pglt` executable on PATH
5. DownloadStrategy: a previously downloaded binary, or offer to download one

A strategy that fails, by returning None or by raising, is logged and skipped;
it never stops the chain. Every strategy reads its inputs from an explicit
DiscoveryContext, so none of them touch process-global state.

Usage:
    context = DiscoveryContext.for_host(host, root=project.root_path)
    result = await BinaryFinder().find(context)
    if result:
        print(result.path, result.strategy)
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from pglt_supervisor._core.lifecycle import (
    download_pglt,
    get_downloaded_version,
    get_platform_info,
)
from pglt_supervisor._core.pnp import PnpManifest
from pglt_supervisor._core.probe import file_exists, is_executable
from pglt_supervisor._core.version import (
    NPM_PACKAGE_NAME,
    get_platform_binary_name,
    get_platform_package_name,
)
from pglt_supervisor.config import Settings
from pglt_supervisor.errors import DiscoveryError, StrategyError
from pglt_supervisor.host import DEFAULT_PROMPT_TIMEOUT, Host, ask_user
from pglt_supervisor.types import DiscoveryResult, PromptOutcome

logger = logging.getLogger(__name__)

PACKAGE_MANIFEST = "package.json"

DOWNLOAD_PROMPT = (
    "You've opened a supported file outside of a pglt project, and no installed "
    "pglt binary could be found on your system. Would you like to download and "
    "install pglt?"
)
DOWNLOAD_ACCEPT = "Download and install"
DOWNLOAD_DECLINE = "No"


# =============================================================================
# Context
# =============================================================================


@dataclass
class DiscoveryContext:
    """
    Everything a strategy may look at.

    Attributes:
        root: Project root, or None for project-less sessions
        settings: Effective settings for the root
        environ: Environment mapping (PATH, NODE_PATH, HOME)
        os_name: "darwin", "linux" or "win32"
        arch_name: "x64" or "arm64"
        host: Host collaborators, required by interactive strategies only
        prompt_timeout: Seconds to wait for the user in interactive strategies
    """
    root: Optional[Path]
    settings: Settings = field(default_factory=Settings)
    environ: Mapping[str, str] = field(default_factory=dict)
    os_name: str = "linux"
    arch_name: str = "x64"
    host: Optional[Host] = None
    prompt_timeout: Optional[float] = DEFAULT_PROMPT_TIMEOUT

    @classmethod
    def for_host(
        cls,
        host: Host,
        root: Optional[Path],
        settings: Optional[Settings] = None,
    ) -> "DiscoveryContext":
        """Build a context for the running platform from host collaborators."""
        os_name, arch_name = get_platform_info()
        if settings is None:
            settings = Settings.from_store(host.configuration, scope=root, environ=host.environ)
        return cls(
            root=root,
            settings=settings,
            environ=host.environ,
            os_name=os_name,
            arch_name=arch_name,
            host=host,
        )

    @property
    def platform_identifier(self) -> str:
        return f"{self.os_name}-{self.arch_name}"

    @property
    def binary_name(self) -> str:
        return get_platform_binary_name(self.os_name)

    @property
    def platform_package_name(self) -> str:
        return get_platform_package_name(self.os_name, self.arch_name)


# =============================================================================
# Strategy base classes
# =============================================================================


class BinaryFindStrategy:
    """
    A non-interactive probe for a pglt binary.

    Subclasses implement `find()` and return the binary path, or None when
    their installation mechanism is not in use.
    """

    name = "strategy"

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class InteractiveStrategy(BinaryFindStrategy):
    """
    A strategy that may involve the user.

    Interactive strategies need the host's window and storage; without a host
    they find nothing.
    """

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        if context.host is None:
            logger.debug(f"{self.name}: no host to interact with, skipping")
            return None
        return await self.find_interactively(context, context.host)

    async def find_interactively(self, context: DiscoveryContext, host: Host) -> Optional[Path]:
        raise NotImplementedError


# =============================================================================
# Strategies
# =============================================================================


class SettingsStrategy(BinaryFindStrategy):
    """
    The `pglt.bin` setting.

    Either a path, or a map keyed by platform identifier:

        {"pglt.bin": {"linux-x64": "/opt/pglt", "darwin-arm64": "./bin/pglt"}}

    Relative paths resolve against the project root.
    """

    name = "Settings Strategy"

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        logger.debug("Trying to find pglt binary via settings")

        bin_setting = context.settings.resolve_bin(context.platform_identifier)
        if not bin_setting:
            logger.debug("Binary path not set in settings")
            return None

        path = Path(bin_setting).expanduser()
        if not path.is_absolute():
            if context.root is None:
                logger.debug(f"Relative binary path {bin_setting} needs a project, skipping")
                return None
            path = context.root / path

        logger.debug(f"Looking for binary at {path}")
        if is_executable(path):
            return path

        logger.debug("No pglt binary found via settings")
        return None


def node_module_dirs(start: Path, environ: Mapping[str, str]) -> List[Path]:
    """
    Directories searched when resolving a package from `start`, in order.

    Ancestor node_modules directories come first, then NODE_PATH entries, then
    the legacy global folders in the home directory.
    """
    dirs = []
    for directory in (start, *start.parents):
        if directory.name == "node_modules":
            continue
        dirs.append(directory / "node_modules")

    for entry in environ.get("NODE_PATH", "").split(os.pathsep):
        if entry:
            dirs.append(Path(entry))

    home = environ.get("HOME") or environ.get("USERPROFILE")
    if home:
        dirs.append(Path(home) / ".node_modules")
        dirs.append(Path(home) / ".node_libraries")

    return dirs


def resolve_node_package(name: str, start: Path, environ: Mapping[str, str]) -> Optional[Path]:
    """
    Locate an installed package directory the way Node's `require.resolve` does.

    Args:
        name: Package name, scoped names included (e.g. "@pglt/pglt")
        start: Directory the lookup starts from
        environ: Environment providing NODE_PATH and HOME

    Returns:
        The package directory with symlinks resolved, or None
    """
    for directory in node_module_dirs(start, environ):
        manifest = directory.joinpath(*name.split("/"), PACKAGE_MANIFEST)
        if file_exists(manifest):
            return manifest.parent.resolve()
    return None


class NodeModulesStrategy(BinaryFindStrategy):
    """
    The binary shipped through npm.

    @pglt/pglt depends on one optional package per platform, such as
    @pglt/cli-linux-x64, which carries the executable. The platform package
    is resolved from the main package's own location, matching how the npm
    launcher script finds it.
    """

    name = "Node Modules Strategy"

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        logger.debug("Trying to find pglt binary in node_modules")

        if context.root is None:
            logger.debug("No local path, skipping.")
            return None

        main_package = resolve_node_package(NPM_PACKAGE_NAME, context.root, context.environ)
        if main_package is None:
            logger.debug("User does not use node_modules")
            return None

        logger.debug(f"Resolved {NPM_PACKAGE_NAME} at {main_package}")

        bin_package = resolve_node_package(
            context.platform_package_name, main_package, context.environ
        )
        if bin_package is None:
            logger.debug(
                f"No package for {context.platform_identifier} available in node_modules"
            )
            return None

        binary = bin_package / context.binary_name
        if file_exists(binary):
            return binary

        logger.debug(f"Unable to find pglt in path {binary}")
        return None


class YarnPnpStrategy(BinaryFindStrategy):
    """The npm packages inside a Yarn Plug'n'Play install."""

    name = "Yarn PnP Strategy"

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        logger.debug("Trying to find pglt binary in Yarn Plug'n'Play")

        if context.root is None:
            logger.debug("No local path, skipping.")
            return None

        try:
            manifest = PnpManifest.load(context.root)
        except (OSError, ValueError) as e:
            raise StrategyError(self.name, f"Unreadable Plug'n'Play manifest: {e}") from e
        if manifest is None:
            logger.debug("No Plug'n'Play manifest found")
            return None

        workspace = manifest.root_workspace()
        if workspace is None:
            logger.debug("Plug'n'Play manifest has no root workspace")
            return None

        main_package = manifest.resolve_dependency(workspace, NPM_PACKAGE_NAME)
        if main_package is None:
            logger.debug(f"Unable to find {NPM_PACKAGE_NAME} via Yarn Plug'n'Play")
            return None

        bin_package = manifest.resolve_dependency(main_package, context.platform_package_name)
        if bin_package is None:
            logger.debug(
                f"No package for {context.platform_identifier} available in yarn pnp"
            )
            return None

        if bin_package.in_archive:
            logger.debug(
                f"{bin_package.name} is not unplugged, cannot run it from {bin_package.location}"
            )
            return None

        binary = bin_package.location / context.binary_name
        if file_exists(binary):
            return binary

        logger.debug(f"Unable to find pglt in path {binary}")
        return None


class PathStrategy(BinaryFindStrategy):
    """A pglt executable in one of the PATH directories."""

    name = "PATH Env Var Strategy"

    async def find(self, context: DiscoveryContext) -> Optional[Path]:
        logger.debug("Trying to find pglt binary in PATH env var")

        path_env = context.environ.get("PATH")
        if not path_env:
            logger.debug("PATH env var not found")
            return None

        for directory in path_env.split(os.pathsep):
            if not directory:
                continue
            candidate = Path(directory) / context.binary_name
            logger.debug(f"Checking {candidate}")
            if is_executable(candidate):
                return candidate

        logger.debug("Couldn't find binary in PATH env var")
        return None


class DownloadStrategy(InteractiveStrategy):
    """
    A binary installed from GitHub releases.

    Reuses the remembered download when its file is still there; otherwise
    asks the user whether to download one.
    """

    name = "Download Strategy"

    async def find_interactively(self, context: DiscoveryContext, host: Host) -> Optional[Path]:
        logger.debug("Trying to find downloaded pglt binary")

        downloaded = get_downloaded_version(host.global_state)
        if downloaded:
            logger.info(
                f"Using previously downloaded version {downloaded.version} "
                f"at {downloaded.bin_path}"
            )
            return downloaded.bin_path

        outcome = await ask_user(
            host.window,
            DOWNLOAD_PROMPT,
            DOWNLOAD_ACCEPT,
            DOWNLOAD_DECLINE,
            timeout=context.prompt_timeout,
        )
        if outcome is not PromptOutcome.ACCEPTED:
            logger.debug(f"Decided not to download binary ({outcome.value}), aborting")
            return None

        return await download_pglt(
            host.window,
            host.global_state,
            with_prereleases=context.settings.allow_download_prereleases,
        )


def has_no_package_manifest(context: DiscoveryContext) -> bool:
    """
    True if no package.json exists anywhere under the project root.

    Projects managed through npm are expected to install pglt as a dependency,
    so they never get the download offer. node_modules and hidden directories
    are not searched.
    """
    if context.root is None:
        return True

    for _, dirnames, filenames in os.walk(context.root):
        if PACKAGE_MANIFEST in filenames:
            return False
        dirnames[:] = [d for d in dirnames if d != "node_modules" and not d.startswith(".")]
    return True


# =============================================================================
# Chain
# =============================================================================


@dataclass(frozen=True)
class StrategyEntry:
    """
    A strategy plus an optional guard deciding whether it runs at all.

    Guards may touch the filesystem; they run in the default executor.
    """
    strategy: BinaryFindStrategy
    condition: Optional[Callable[[DiscoveryContext], bool]] = None


def default_strategies() -> List[StrategyEntry]:
    return [
        StrategyEntry(SettingsStrategy()),
        StrategyEntry(NodeModulesStrategy()),
        StrategyEntry(YarnPnpStrategy()),
        StrategyEntry(PathStrategy()),
        StrategyEntry(DownloadStrategy(), condition=has_no_package_manifest),
    ]


class BinaryFinder:
    """
    Runs strategies in order and returns the first hit.

    Strategies run strictly one after another; a later strategy never starts
    before an earlier one has finished.
    """

    def __init__(self, strategies: Optional[Sequence[StrategyEntry]] = None):
        self.strategies = list(strategies) if strategies is not None else default_strategies()

    async def find(self, context: DiscoveryContext) -> Optional[DiscoveryResult]:
        """
        Locate a binary.

        Args:
            context: Inputs shared by all strategies

        Returns:
            DiscoveryResult naming the path and the strategy, or None
        """
        loop = asyncio.get_running_loop()
        for entry in self.strategies:
            name = entry.strategy.name

            if entry.condition is not None:
                try:
                    should_run = await loop.run_in_executor(None, entry.condition, context)
                except Exception as e:
                    logger.warning(f"Could not evaluate condition for {name}: {e}")
                    should_run = False
                if not should_run:
                    logger.debug(f"Skipping {name}, its condition is not met")
                    continue

            try:
                path = await entry.strategy.find(context)
            except Exception as e:
                logger.warning(f"{name} failed: {e}")
                continue

            if path is not None:
                logger.info(f"Found pglt binary at {path} using {name}")
                return DiscoveryResult(path=path, strategy=name)

        logger.debug("No pglt binary found by any strategy")
        return None

    async def require(self, context: DiscoveryContext) -> DiscoveryResult:
        """
        Like find(), but a miss is an error.

        Raises:
            DiscoveryError: If no strategy located a binary
        """
        result = await self.find(context)
        if result is None:
            raise DiscoveryError(
                "No pglt binary found. Set `pglt.bin`, install @pglt/pglt, or put pglt on PATH."
            )
        return result
