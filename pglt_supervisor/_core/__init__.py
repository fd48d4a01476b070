"""
Low-level machinery for pglt-supervisor.

This module handles:
- Binary discovery, staging, download and cache management
- The JSON-RPC client attached to the worker's stdio
- The LSP handshake and worker version compatibility
"""

from pglt_supervisor._core.version import (
    SUPERVISOR_VERSION,
    WORKER_MIN_VERSION,
    WORKER_MAX_VERSION,
    is_worker_compatible,
    parse_version_output,
)
from pglt_supervisor._core.lifecycle import (
    download_binary,
    get_all_releases,
    get_downloaded_version,
)
from pglt_supervisor._core.staging import BinaryStager
from pglt_supervisor._core.discovery import (
    BinaryFinder,
    DiscoveryContext,
)
from pglt_supervisor._core.client import WorkerClient
from pglt_supervisor._core.handshake import (
    initialize_worker,
    shutdown_worker,
)

__all__ = [
    # Version
    "SUPERVISOR_VERSION",
    "WORKER_MIN_VERSION",
    "WORKER_MAX_VERSION",
    "is_worker_compatible",
    "parse_version_output",
    # Lifecycle
    "download_binary",
    "get_all_releases",
    "get_downloaded_version",
    # Staging / discovery
    "BinaryStager",
    "BinaryFinder",
    "DiscoveryContext",
    # Client
    "WorkerClient",
    "initialize_worker",
    "shutdown_worker",
]
