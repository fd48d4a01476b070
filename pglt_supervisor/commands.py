"""
Commands exposed to the user (command palette, CLI, RPC, ...).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from pglt_supervisor._core.lifecycle import (
    clear_downloaded_binaries,
    download_pglt,
    get_downloaded_version,
    remember_downloaded_version,
)
from pglt_supervisor.config import Settings
from pglt_supervisor.controller import LifecycleController

logger = logging.getLogger(__name__)

NO_VERSION_INSTALLED_MESSAGE = "No pglt version installed."


class UserFacingCommands:
    """
    The supervisor's user-facing commands.

    Each command is an async method; `registry()` maps the command ids a host
    binds them to (e.g. "pglt.restart").
    """

    def __init__(self, controller: LifecycleController):
        self.controller = controller

    @property
    def host(self):
        return self.controller.host

    async def start(self) -> None:
        await self.controller.start()

    async def stop(self) -> None:
        await self.controller.stop()

    async def restart(self) -> None:
        await self.controller.restart()

    async def download(self) -> None:
        """
        Prompt for a release and install it in the download area.

        A running session keeps using its binary until the next restart.
        """
        settings = Settings.from_store(self.host.configuration, environ=self.host.environ)
        await download_pglt(
            self.host.window,
            self.host.global_state,
            with_prereleases=settings.allow_download_prereleases,
        )

    async def reset(self) -> None:
        """
        Stop, wipe staged and downloaded binaries, forget the downloaded
        version, and start again.
        """
        await self.controller.reset(self._clear_caches)

    async def _clear_caches(self) -> None:
        await self.controller.supervisor.stager.clear()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, clear_downloaded_binaries)
        remember_downloaded_version(self.host.global_state, None)
        logger.info("pglt supervisor was reset")

    async def current_version(self) -> Optional[str]:
        """Show (and return) the downloaded version."""
        downloaded = get_downloaded_version(self.host.global_state)
        if downloaded is None:
            await self.host.window.show_information_message(NO_VERSION_INSTALLED_MESSAGE)
            return None

        await self.host.window.show_information_message(
            f"Currently installed pglt version is {downloaded.version}."
        )
        return downloaded.version

    def registry(self) -> Dict[str, Callable[[], Awaitable[object]]]:
        return {
            "pglt.start": self.start,
            "pglt.stop": self.stop,
            "pglt.restart": self.restart,
            "pglt.download": self.download,
            "pglt.reset": self.reset,
            "pglt.currentVersion": self.current_version,
        }
