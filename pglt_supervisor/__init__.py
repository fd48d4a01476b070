"""
pglt-supervisor: Run and supervise the pglt Postgres language server.

This package provides:
- Binary discovery across settings, npm, Yarn Plug'n'Play, PATH and downloads
- Version-keyed staging so the discovered binary can be upgraded in place
- A session lifecycle (start / stop / restart) that is safe against races
- A typed facade over the worker's workspace API (diagnostics, completions)

Installation:
    pip install pglt-supervisor

Quickstart:
    from pathlib import Path
    from pglt_supervisor import (
        Host, LifecycleController, PgTPath, PullDiagnosticsParams, WorkspaceFolder,
    )

    host = Host(folders=[WorkspaceFolder(name="app", path=Path("/src/app"))])
    controller = LifecycleController(host)
    await controller.activate()

    session = controller.state.active_session
    if session:
        result = await session.workspace.pull_diagnostics(
            PullDiagnosticsParams(path=PgTPath("/src/app/migrations/0001.sql"))
        )

Quickstart (Commands):
    from pglt_supervisor import UserFacingCommands

    commands = UserFacingCommands(controller)
    await commands.registry()["pglt.restart"]()
"""

from pglt_supervisor._core.version import SUPERVISOR_VERSION
from pglt_supervisor.types import (
    DiscoveryResult,
    DocumentFilter,
    LifecycleState,
    OperatingMode,
    Project,
    PromptOutcome,
    StagedBinary,
    WorkspaceFolder,
)
from pglt_supervisor.errors import (
    PgltSupervisorError,
    DiscoveryError,
    StrategyError,
    StagingError,
    LaunchError,
    TransportError,
    WorkerRequestError,
    FetchError,
    ConfigError,
    InvalidTransitionError,
)
from pglt_supervisor.config import (
    ConfigurationChangeEvent,
    MemoryConfiguration,
    Settings,
)
from pglt_supervisor.host import (
    HeadlessWindow,
    Host,
    JsonFileStore,
    MemoryStore,
    QuickPickItem,
)
from pglt_supervisor.state import ExtensionState
from pglt_supervisor.session import Session, SessionSupervisor
from pglt_supervisor.controller import LifecycleController
from pglt_supervisor.commands import UserFacingCommands
from pglt_supervisor.status import StatusIndicator, StatusView, compute_status
from pglt_supervisor.workspace import (
    ChangeFileParams,
    ChangeParams,
    CloseFileParams,
    CompletionResult,
    GetCompletionsParams,
    GetFileContentParams,
    IsPathIgnoredParams,
    OpenFileParams,
    PgTPath,
    PullDiagnosticsParams,
    PullDiagnosticsResult,
    UpdateSettingsParams,
    WorkspaceFacade,
)

__version__ = SUPERVISOR_VERSION

__all__ = [
    # Version
    "__version__",
    # Types
    "DiscoveryResult",
    "DocumentFilter",
    "LifecycleState",
    "OperatingMode",
    "Project",
    "PromptOutcome",
    "StagedBinary",
    "WorkspaceFolder",
    # Errors
    "PgltSupervisorError",
    "DiscoveryError",
    "StrategyError",
    "StagingError",
    "LaunchError",
    "TransportError",
    "WorkerRequestError",
    "FetchError",
    "ConfigError",
    "InvalidTransitionError",
    # Config / host
    "ConfigurationChangeEvent",
    "MemoryConfiguration",
    "Settings",
    "HeadlessWindow",
    "Host",
    "JsonFileStore",
    "MemoryStore",
    "QuickPickItem",
    # Lifecycle
    "ExtensionState",
    "Session",
    "SessionSupervisor",
    "LifecycleController",
    "UserFacingCommands",
    "StatusIndicator",
    "StatusView",
    "compute_status",
    # Workspace
    "ChangeFileParams",
    "ChangeParams",
    "CloseFileParams",
    "CompletionResult",
    "GetCompletionsParams",
    "GetFileContentParams",
    "IsPathIgnoredParams",
    "OpenFileParams",
    "PgTPath",
    "PullDiagnosticsParams",
    "PullDiagnosticsResult",
    "UpdateSettingsParams",
    "WorkspaceFacade",
]
