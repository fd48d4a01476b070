"""
LSP handshake and version compatibility for the pglt worker.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from pglt_supervisor._core.client import WorkerClient
from pglt_supervisor._core.version import (
    SUPERVISOR_VERSION,
    WORKER_MAX_VERSION,
    WORKER_MIN_VERSION,
    is_worker_compatible,
)
from pglt_supervisor.errors import LaunchError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


@dataclass(frozen=True)
class WorkerInfo:
    """What the worker reported about itself in its initialize result."""
    name: str = ""
    version: Optional[str] = None
    capabilities: Dict[str, Any] = field(default_factory=dict)


def build_initialize_params(root: Optional[Path]) -> Dict[str, Any]:
    """
    Parameters of the `initialize` request.

    Args:
        root: Project root, or None for project-less sessions
    """
    workspace_folders = None
    root_uri = None
    root_path = None
    if root is not None:
        root_path = str(root.resolve())
        root_uri = root.resolve().as_uri()
        workspace_folders = [{"uri": root_uri, "name": root.name}]

    return {
        "processId": os.getpid(),
        "clientInfo": {"name": "pglt-supervisor", "version": SUPERVISOR_VERSION},
        "rootUri": root_uri,
        "rootPath": root_path,
        "workspaceFolders": workspace_folders,
        "initializationOptions": {"rootUri": root_uri, "rootPath": root_path},
        "capabilities": {
            "workspace": {
                "didChangeConfiguration": {"dynamicRegistration": True},
                "didChangeWatchedFiles": {"dynamicRegistration": True},
                "workspaceFolders": True,
            },
            "textDocument": {
                "synchronization": {"didSave": True},
                "completion": {"completionItem": {"snippetSupport": False}},
            },
        },
    }


def check_worker_version(version: Optional[str]) -> bool:
    """
    Check a worker version against the supported range.

    An unsupported version is not fatal; it is reported once as a warning.

    Returns:
        True if the version is inside the supported range
    """
    if version is None:
        logger.warning("pglt worker did not report its version")
        return False

    if not is_worker_compatible(version):
        logger.warning(
            f"pglt worker version {version} is outside the supported range "
            f">= {WORKER_MIN_VERSION}, < {WORKER_MAX_VERSION}. This may cause issues."
        )
        return False

    logger.debug(f"Version check passed: worker={version}")
    return True


async def initialize_worker(
    client: WorkerClient,
    root: Optional[Path],
    timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
) -> WorkerInfo:
    """
    Run the initialize / initialized exchange.

    Args:
        client: Started worker client
        root: Project root, or None
        timeout: Maximum time to wait for the initialize result in seconds

    Returns:
        WorkerInfo taken from the initialize result

    Raises:
        LaunchError: If the worker fails or does not answer in time
    """
    try:
        result = await client.request(
            "initialize", build_initialize_params(root), timeout=timeout
        )
    except TransportError as e:
        raise LaunchError(f"pglt worker failed to initialize: {e}") from e

    result = result or {}
    server_info = result.get("serverInfo") or {}
    info = WorkerInfo(
        name=server_info.get("name", ""),
        version=server_info.get("version"),
        capabilities=result.get("capabilities") or {},
    )
    check_worker_version(info.version)

    try:
        client.notify("initialized", {})
    except TransportError as e:
        raise LaunchError(f"pglt worker failed to initialize: {e}") from e

    logger.info(f"Worker initialized: {info.name} {info.version or '(unknown version)'}")
    return info


async def shutdown_worker(client: WorkerClient, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
    """Ask a running worker to shut down and exit; failures are only logged."""
    if not client.is_running:
        return

    client.expect_exit()
    try:
        await client.request("shutdown", None, timeout=timeout)
        client.notify("exit", None)
    except TransportError as e:
        logger.debug(f"Worker did not shut down cleanly: {e}")
