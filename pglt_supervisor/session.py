"""
Worker sessions.

A session is one running worker: the discovered binary, its staged copy, the
project it serves and the JSON-RPC client attached to it. The supervisor
holds at most one active session at a time.

Creating a session runs discovery, stages the binary and prepares the client;
starting it spawns the worker and performs the initialize handshake.
"""

from __future__ import annotations

import glob
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from pglt_supervisor._core.client import WorkerClient, build_worker_args
from pglt_supervisor._core.discovery import BinaryFinder, DiscoveryContext
from pglt_supervisor._core.handshake import (
    DEFAULT_HANDSHAKE_TIMEOUT,
    WorkerInfo,
    initialize_worker,
)
from pglt_supervisor._core.staging import BinaryStager
from pglt_supervisor.errors import PgltSupervisorError
from pglt_supervisor.host import Host
from pglt_supervisor.project import get_active_project
from pglt_supervisor.state import ExtensionState
from pglt_supervisor.types import (
    DocumentFilter,
    OperatingMode,
    Project,
    StagedBinary,
)
from pglt_supervisor.workspace import WorkspaceFacade

logger = logging.getLogger(__name__)

SQL_LANGUAGE_ID = "sql"
GLOBAL_SCHEMES = ("untitled", "vscode-userdata")

BINARY_NOT_FOUND_MESSAGE = (
    "Unable to find a pglt binary. Set the `pglt.bin` setting, install the "
    "@pglt/pglt npm package, put pglt on your PATH, or download a release."
)

FailureHandler = Callable[["Session", str], None]


@dataclass
class Session:
    """
    One worker process and its transport.

    Attributes:
        binary_path: Binary found by discovery
        client: JSON-RPC client owning the worker process
        project: Project served, or None for a global session
        staged: Staged copy of the binary, if staging succeeded
        document_selector: Documents this session is responsible for
        worker: What the worker reported at initialize time
    """
    binary_path: Path
    client: WorkerClient
    project: Optional[Project] = None
    staged: Optional[StagedBinary] = None
    document_selector: List[DocumentFilter] = field(default_factory=list)
    worker: Optional[WorkerInfo] = None

    def __post_init__(self) -> None:
        self.workspace = WorkspaceFacade(self.client)

    @property
    def staged_path(self) -> Optional[Path]:
        return self.staged.staged_path if self.staged else None

    @property
    def command(self) -> Path:
        """The binary that is actually executed."""
        return self.staged_path or self.binary_path

    @property
    def worker_version(self) -> Optional[str]:
        return self.worker.version if self.worker else None


def create_document_selector(project: Optional[Project]) -> List[DocumentFilter]:
    """
    Documents a session handles.

    With a project, SQL files on disk anywhere under the project root.
    Without one, only documents that are not files in any project (unsaved
    buffers and host-internal documents).
    """
    if project is not None:
        root = glob.escape(project.root_path.as_posix().rstrip("/"))
        return [DocumentFilter(language=SQL_LANGUAGE_ID, scheme="file", pattern=f"{root}/*")]

    return [DocumentFilter(language=SQL_LANGUAGE_ID, scheme=scheme) for scheme in GLOBAL_SCHEMES]


class SessionSupervisor:
    """
    Creates, starts and destroys sessions for one host.

    Args:
        host: Host collaborators
        state: State object receiving the active session
        finder: Discovery chain (default: all strategies)
        stager: Binary stager (default: user cache dir)
        on_worker_failure: Called when a session's worker crashes
        handshake_timeout: Seconds allowed for the initialize handshake
    """

    def __init__(
        self,
        host: Host,
        state: ExtensionState,
        finder: Optional[BinaryFinder] = None,
        stager: Optional[BinaryStager] = None,
        on_worker_failure: Optional[FailureHandler] = None,
        client_factory: Callable[[], WorkerClient] = WorkerClient,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ):
        self.host = host
        self.state = state
        self.finder = finder or BinaryFinder()
        self.stager = stager or BinaryStager()
        self.on_worker_failure = on_worker_failure
        self.client_factory = client_factory
        self.handshake_timeout = handshake_timeout

    async def create_session(self, project: Optional[Project]) -> Optional[Session]:
        """
        Locate and stage a binary and prepare a client for it.

        Args:
            project: Project to serve, or None for a global session

        Returns:
            A session that has not been started, or None if no binary was found
        """
        root = project.root_path if project else None
        context = DiscoveryContext.for_host(self.host, root)

        result = await self.finder.find(context)
        if result is None:
            logger.error("Could not find the pglt binary")
            await self.host.window.show_error_message(BINARY_NOT_FOUND_MESSAGE)
            return None

        logger.info(f"Copying binary to staging area: {result.path}")
        staged = await self.stager.stage(result.path)
        if staged is None:
            logger.warning("Failed to copy binary to staging area. Using original.")

        client = self.client_factory()
        session = Session(
            binary_path=result.path,
            client=client,
            project=project,
            staged=staged,
            document_selector=create_document_selector(project),
        )
        client.on_failure = lambda reason: self._report_failure(session, reason)
        return session

    async def start_session(self, session: Session) -> None:
        """
        Spawn the worker and run the initialize handshake.

        Raises:
            LaunchError: If the worker cannot be spawned or initialized
        """
        project = session.project
        config_path = project.config_path if project else None
        cwd = project.root_path if project else None

        await session.client.start(session.command, build_worker_args(config_path), cwd=cwd)
        session.worker = await initialize_worker(
            session.client, cwd, timeout=self.handshake_timeout
        )

    async def destroy_session(self, session: Session) -> None:
        """Shut the worker down if it is still running. Safe to call twice."""
        await session.workspace.destroy()
        logger.debug("Session destroyed")

    async def create_active_session(self) -> Optional[Session]:
        """
        Create and start the session for the host's current workspace.

        No-op if a session is already active. Without workspace folders a
        global session is created; otherwise the folder must resolve to a
        project.

        Returns:
            The active session, or None if none could be started
        """
        if self.state.active_session is not None:
            return self.state.active_session

        if self.host.operating_mode is OperatingMode.SINGLE_FILE:
            logger.info("No workspace folders, creating a global session")
            project = None
        else:
            project = await get_active_project(self.host)
            if project is None:
                logger.info("No active project found. Aborting.")
                return None

        session = await self.create_session(project)
        if session is None:
            return None

        try:
            await self.start_session(session)
        except PgltSupervisorError as e:
            logger.error(f"Failed to create global LSP session: {e}")
            await self.destroy_session(session)
            return None
        except BaseException:
            await self.destroy_session(session)
            raise

        self.state.set_session(session)
        logger.info("Created a global LSP session")
        return session

    async def destroy_active_session(self) -> None:
        session = self.state.active_session
        if session is None:
            return
        self.state.set_session(None)
        await self.destroy_session(session)

    def _report_failure(self, session: Session, reason: str) -> None:
        if self.on_worker_failure is not None:
            self.on_worker_failure(session, reason)
