"""
Typed facade over the worker's workspace API.

Every capability is one JSON-RPC request under the `pgt/` namespace. Params
are dataclasses serialized with `to_dict()`; structured results are parsed
with `from_dict()`.

Usage:
    path = PgTPath("/project/migrations/0001.sql")
    await session.workspace.open_file(OpenFileParams(path=path, content=sql, version=1))
    result = await session.workspace.pull_diagnostics(
        PullDiagnosticsParams(path=path, categories=[RuleCategory.LINT], max_diagnostics=50)
    )
    for diagnostic in result.diagnostics:
        ...

Errors:
    TransportError: The facade was destroyed or the worker is gone
    WorkerRequestError: The worker answered with a JSON-RPC error
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pglt_supervisor._core.client import WorkerClient
from pglt_supervisor._core.handshake import shutdown_worker
from pglt_supervisor.errors import TransportError

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class FileKind(str, Enum):
    """How the worker should treat a path."""
    CONFIG = "Config"
    IGNORE = "Ignore"
    INSPECTABLE = "Inspectable"
    HANDLEABLE = "Handleable"


class RuleCategory(str, Enum):
    LINT = "Lint"
    ACTION = "Action"
    TRANSFORMATION = "Transformation"


class CompletionItemKind(str, Enum):
    TABLE = "table"
    FUNCTION = "function"
    COLUMN = "column"


# =============================================================================
# Params
# =============================================================================


@dataclass(frozen=True)
class PgTPath:
    """A path as the worker sees it."""
    path: str
    kind: Tuple[FileKind, ...] = ()
    was_written: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": [FileKind(k).value for k in self.kind],
            "was_written": self.was_written,
        }


@dataclass(frozen=True)
class IsPathIgnoredParams:
    pgt_path: PgTPath

    def to_dict(self) -> Dict[str, Any]:
        return {"pgt_path": self.pgt_path.to_dict()}


@dataclass(frozen=True)
class GetFileContentParams:
    path: PgTPath

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path.to_dict()}


@dataclass(frozen=True)
class PullDiagnosticsParams:
    """
    Diagnostics request for one file.

    Attributes:
        path: File to diagnose
        categories: Rule categories to run
        max_diagnostics: Upper bound on returned diagnostics
        only: Rule codes to restrict to
        skip: Rule codes to leave out
    """
    path: PgTPath
    categories: List[RuleCategory] = field(default_factory=lambda: [RuleCategory.LINT])
    max_diagnostics: int = 100
    only: List[str] = field(default_factory=list)
    skip: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path.to_dict(),
            "categories": [RuleCategory(c).value for c in self.categories],
            "max_diagnostics": self.max_diagnostics,
            "only": list(self.only),
            "skip": list(self.skip),
        }


@dataclass(frozen=True)
class GetCompletionsParams:
    path: PgTPath
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path.to_dict(), "position": self.position}


@dataclass(frozen=True)
class UpdateSettingsParams:
    """
    New worker settings.

    `configuration` is the partial pglt configuration (db, files, linter,
    migrations, vcs) as a plain mapping.
    """
    configuration: Dict[str, Any] = field(default_factory=dict)
    gitignore_matches: List[str] = field(default_factory=list)
    skip_db: bool = False
    vcs_base_path: Optional[str] = None
    workspace_directory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "configuration": dict(self.configuration),
            "gitignore_matches": list(self.gitignore_matches),
            "skip_db": self.skip_db,
        }
        if self.vcs_base_path is not None:
            data["vcs_base_path"] = self.vcs_base_path
        if self.workspace_directory is not None:
            data["workspace_directory"] = self.workspace_directory
        return data


@dataclass(frozen=True)
class OpenFileParams:
    path: PgTPath
    content: str
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path.to_dict(), "content": self.content, "version": self.version}


@dataclass(frozen=True)
class ChangeParams:
    """One edit. Without a range the text replaces the whole file."""
    text: str
    range: Optional[Tuple[int, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text}
        if self.range is not None:
            data["range"] = [self.range[0], self.range[1]]
        return data


@dataclass(frozen=True)
class ChangeFileParams:
    """Ordered edits bringing a file to `version`."""
    path: PgTPath
    changes: List[ChangeParams]
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path.to_dict(),
            "changes": [change.to_dict() for change in self.changes],
            "version": self.version,
        }


@dataclass(frozen=True)
class CloseFileParams:
    path: PgTPath

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path.to_dict()}


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class PullDiagnosticsResult:
    """
    Diagnostics for one file.

    Each diagnostic is kept as the worker's plain mapping (category,
    description, location, message, severity, tags, advices).
    """
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)
    errors: int = 0
    skipped_diagnostics: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PullDiagnosticsResult":
        data = data or {}
        return cls(
            diagnostics=list(data.get("diagnostics") or []),
            errors=int(data.get("errors", 0)),
            skipped_diagnostics=int(data.get("skipped_diagnostics", 0)),
        )


@dataclass(frozen=True)
class CompletionItem:
    label: str
    kind: CompletionItemKind
    description: str = ""
    preselected: bool = False
    score: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionItem":
        return cls(
            label=data["label"],
            kind=CompletionItemKind(data["kind"]),
            description=data.get("description", ""),
            preselected=bool(data.get("preselected", False)),
            score=data.get("score", 0),
        )


@dataclass(frozen=True)
class CompletionResult:
    items: List[CompletionItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompletionResult":
        data = data or {}
        return cls(items=[CompletionItem.from_dict(item) for item in data.get("items") or []])


# =============================================================================
# Facade
# =============================================================================


class WorkspaceFacade:
    """
    The worker's workspace capabilities as async methods.

    The facade also keeps track of which files are open and at which
    version. After `destroy()` every call raises TransportError without
    touching the worker.
    """

    def __init__(self, client: WorkerClient):
        self._client = client
        self._destroyed = False
        self._documents: Dict[str, int] = {}

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def open_documents(self) -> Dict[str, int]:
        """Open files mapped to their last known version."""
        return dict(self._documents)

    async def _request(self, method: str, params: Any) -> Any:
        if self._destroyed:
            raise TransportError(f"Cannot send {method}: the workspace has been destroyed")
        return await self._client.request(method, params.to_dict())

    async def is_path_ignored(self, params: IsPathIgnoredParams) -> bool:
        return bool(await self._request("pgt/is_path_ignored", params))

    async def get_file_content(self, params: GetFileContentParams) -> str:
        return await self._request("pgt/get_file_content", params)

    async def pull_diagnostics(self, params: PullDiagnosticsParams) -> PullDiagnosticsResult:
        result = await self._request("pgt/pull_diagnostics", params)
        return PullDiagnosticsResult.from_dict(result)

    async def get_completions(self, params: GetCompletionsParams) -> CompletionResult:
        result = await self._request("pgt/get_completions", params)
        return CompletionResult.from_dict(result)

    async def update_settings(self, params: UpdateSettingsParams) -> None:
        await self._request("pgt/update_settings", params)

    async def open_file(self, params: OpenFileParams) -> None:
        await self._request("pgt/open_file", params)
        self._documents[params.path.path] = params.version

    async def change_file(self, params: ChangeFileParams) -> None:
        await self._request("pgt/change_file", params)
        self._documents[params.path.path] = params.version

    async def close_file(self, params: CloseFileParams) -> None:
        await self._request("pgt/close_file", params)
        self._documents.pop(params.path.path, None)

    async def destroy(self) -> None:
        """Tear down the transport. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        self._documents.clear()

        if self._client.needs_stop:
            await shutdown_worker(self._client)
            await self._client.stop()
        logger.debug("Workspace destroyed")
