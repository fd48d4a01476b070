"""
Host collaborators consumed by the supervisor.

The supervisor runs inside a long-lived host (an editor, a daemon, a test).
It never talks to UI primitives directly; it goes through the small protocols
below so that any host can plug in its own implementation:

- Window: user-visible messages, yes/no prompts and version pickers
- KeyValueStore: persisted scalar state (e.g. the downloaded version)
- Host: bundles the collaborators with the open workspace folders

HeadlessWindow, MemoryStore and JsonFileStore are ready-made implementations
for non-interactive hosts and tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from platformdirs import user_data_dir

from pglt_supervisor.config import ConfigurationStore, MemoryConfiguration
from pglt_supervisor.types import OperatingMode, PromptOutcome, WorkspaceFolder

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_TIMEOUT = 120.0


@dataclass(frozen=True)
class QuickPickItem:
    """One entry of a pick list shown to the user."""
    label: str
    description: str = ""
    detail: str = ""
    always_show: bool = False


class Window(Protocol):
    """User-facing messages and prompts."""

    async def show_error_message(self, message: str) -> None:
        ...

    async def show_information_message(self, message: str, *items: str) -> Optional[str]:
        ...

    async def show_quick_pick(
        self,
        items: Sequence[QuickPickItem],
        title: str = "",
    ) -> Optional[str]:
        ...


class KeyValueStore(Protocol):
    """Small persisted key/value storage provided by the host."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def update(self, key: str, value: Any) -> None:
        ...


class HeadlessWindow:
    """
    Window for hosts without a UI.

    Messages are logged and recorded; prompts are answered from `answers`
    (keyed by message for yes/no prompts, or by title for pick lists) and
    otherwise dismissed.
    """

    def __init__(self, answers: Optional[Mapping[str, str]] = None) -> None:
        self.answers: Dict[str, str] = dict(answers or {})
        self.messages: List[str] = []
        self.errors: List[str] = []

    async def show_error_message(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)

    async def show_information_message(self, message: str, *items: str) -> Optional[str]:
        logger.info(message)
        self.messages.append(message)
        answer = self.answers.get(message)
        return answer if answer in items else None

    async def show_quick_pick(
        self,
        items: Sequence[QuickPickItem],
        title: str = "",
    ) -> Optional[str]:
        answer = self.answers.get(title)
        if answer is not None and any(item.label == answer for item in items):
            return answer
        return None


class MemoryStore:
    """Key/value store that lives as long as the process."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def update(self, key: str, value: Any) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value


class JsonFileStore:
    """
    Key/value store persisted as one JSON object on disk.

    Writes go to a sibling temp file first and are moved into place, so a
    crash mid-write never leaves a truncated file behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def update(self, key: str, value: Any) -> None:
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)


def get_storage_dir() -> Path:
    """Default directory for state that must survive restarts."""
    return Path(user_data_dir("pglt-supervisor", "pglt"))


@dataclass
class Host:
    """
    Everything the supervisor consumes from its host.

    Attributes:
        folders: Workspace folders currently open
        configuration: Namespaced settings store
        window: Messages and prompts
        global_state: Persisted key/value storage
        environ: Environment used for PATH/NODE_PATH lookups
    """
    folders: List[WorkspaceFolder] = field(default_factory=list)
    configuration: ConfigurationStore = field(default_factory=MemoryConfiguration)
    window: Window = field(default_factory=HeadlessWindow)
    global_state: KeyValueStore = field(
        default_factory=lambda: JsonFileStore(get_storage_dir() / "state.json")
    )
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    @property
    def operating_mode(self) -> OperatingMode:
        if not self.folders:
            return OperatingMode.SINGLE_FILE
        if len(self.folders) > 1:
            return OperatingMode.MULTI_ROOT
        return OperatingMode.SINGLE_ROOT


async def ask_user(
    window: Window,
    message: str,
    accept: str,
    decline: str,
    timeout: Optional[float] = DEFAULT_PROMPT_TIMEOUT,
) -> PromptOutcome:
    """
    Ask a yes/no question and classify the answer.

    The prompt is abandoned when `timeout` elapses; closing it without
    picking either choice counts as dismissed.

    Args:
        window: Host window to prompt through
        message: Question shown to the user
        accept: Label of the affirmative choice
        decline: Label of the negative choice
        timeout: Seconds to wait for an answer (None waits forever)

    Returns:
        PromptOutcome describing what the user did
    """
    try:
        choice = await asyncio.wait_for(
            window.show_information_message(message, accept, decline),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.info(f"Prompt timed out after {timeout}s: {message}")
        return PromptOutcome.TIMED_OUT

    if choice == accept:
        return PromptOutcome.ACCEPTED
    if choice == decline:
        return PromptOutcome.DECLINED
    return PromptOutcome.DISMISSED
