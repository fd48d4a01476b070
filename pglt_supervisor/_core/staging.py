"""
Version-keyed staging of discovered binaries.

Running the worker straight from where it was discovered (node_modules, a
system directory) keeps that file busy, and on some platforms locked, for the
whole session, so the user cannot upgrade it in place. The stager copies the
binary into a private cache keyed by the binary's own version and the session
runs the copy instead.

A staged file for a given version is written once and reused afterwards;
entries are only removed by an explicit `clear()`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

from pglt_supervisor._core.lifecycle import (
    clear_directory,
    get_staging_dir,
)
from pglt_supervisor._core.probe import file_exists, make_executable
from pglt_supervisor._core.version import (
    BINARY_NAME,
    get_platform_binary_name,
    parse_version_output,
)
from pglt_supervisor.errors import StagingError
from pglt_supervisor.types import StagedBinary

logger = logging.getLogger(__name__)

DEFAULT_VERSION_TIMEOUT = 10.0


class BinaryStager:
    """
    Copies binaries into the staging cache.

    Staging and clearing share one lock, so the cache is never wiped while a
    copy is being written.
    """

    def __init__(
        self,
        staging_dir: Optional[Path] = None,
        version_timeout: float = DEFAULT_VERSION_TIMEOUT,
    ):
        self._staging_dir = staging_dir
        self.version_timeout = version_timeout
        self._lock = asyncio.Lock()

    @property
    def staging_dir(self) -> Path:
        return self._staging_dir or get_staging_dir()

    def staged_path_for(self, version: str) -> Path:
        """Cache location for a version, e.g. tmp-bin/pglt-0.2.0(.exe)."""
        name = get_platform_binary_name(sys.platform).replace(
            BINARY_NAME, f"{BINARY_NAME}-{version}", 1
        )
        return self.staging_dir / name

    async def query_version(self, binary: Path) -> str:
        """
        Ask a binary for its version.

        Raises:
            StagingError: If the binary cannot be run or its output is unusable
        """
        try:
            process = await asyncio.create_subprocess_exec(
                str(binary),
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StagingError(f"Could not run {binary} --version: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.version_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise StagingError(
                f"{binary} --version did not answer within {self.version_timeout}s"
            ) from e

        return parse_version_output(stdout.decode("utf-8", errors="replace"))

    def _copy(self, binary: Path, location: Path) -> bool:
        if file_exists(location):
            logger.debug(
                f"A pglt binary for the same version already exists at {location}"
            )
            return False

        location.parent.mkdir(parents=True, exist_ok=True)
        partial = location.with_name(f".{location.name}.{os.getpid()}.partial")
        try:
            shutil.copyfile(binary, partial)
            make_executable(partial)
            os.replace(partial, location)
        finally:
            if partial.exists():
                partial.unlink()

        logger.debug(f"Copied pglt binary from {binary} to {location}")
        return True

    async def stage(self, binary: Path) -> Optional[StagedBinary]:
        """
        Stage a binary, reusing an existing copy of the same version.

        Args:
            binary: Discovered binary

        Returns:
            StagedBinary, or None if staging failed and the caller should run
            the original binary instead
        """
        try:
            version = await self.query_version(binary)
            location = self.staged_path_for(version)

            async with self._lock:
                logger.info(f"Staging binary {binary} at {location}")
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._copy, binary, location)
        except (StagingError, OSError) as e:
            logger.warning(f"Error staging binary {binary}: {e}")
            return None

        return StagedBinary(original_path=binary, staged_path=location, version=version)

    async def clear(self) -> bool:
        """
        Delete every staged binary.

        Returns:
            True if the staging directory existed and was removed
        """
        logger.debug("Clearing staged binaries")
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, clear_directory, self.staging_dir)
