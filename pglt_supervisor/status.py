"""
Status indicator data.

Hosts render the supervisor's state somewhere (a status bar, a prompt
segment). This module only computes what to show; rendering is up to the
host.

Usage:
    indicator = StatusIndicator(controller.state, host.configuration, render)
    indicator.attach()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pglt_supervisor.config import ConfigurationStore, is_enabled_for_folder
from pglt_supervisor.state import ExtensionState
from pglt_supervisor.types import LifecycleState

logger = logging.getLogger(__name__)

STATUS_TEXT = "pglt"

_ICONS: Dict[LifecycleState, str] = {
    LifecycleState.INITIALIZING: "$(sync~spin)",
    LifecycleState.STARTING: "$(sync~spin)",
    LifecycleState.RESTARTING: "$(sync~spin)",
    LifecycleState.STARTED: "$(check)",
    LifecycleState.STOPPING: "$(sync~spin)",
    LifecycleState.STOPPED: "$(x)",
    LifecycleState.ERROR: "$(error)",
}

_TOOLTIPS: Dict[LifecycleState, str] = {
    LifecycleState.INITIALIZING: "Initializing",
    LifecycleState.STARTING: "Starting",
    LifecycleState.RESTARTING: "Restarting",
    LifecycleState.STARTED: "Up and running",
    LifecycleState.STOPPING: "Stopping",
    LifecycleState.STOPPED: "Stopped",
    LifecycleState.ERROR: "Error",
}


@dataclass(frozen=True)
class StatusView:
    """What the indicator should show."""
    visible: bool
    icon: str = ""
    text: str = ""
    tooltip: str = ""
    version: str = ""

    @property
    def label(self) -> str:
        return f"{self.icon} {self.text} {self.version}".strip()


def get_state_icon(state: LifecycleState) -> str:
    return _ICONS.get(state, "$(question)")


def get_state_tooltip(state: LifecycleState) -> str:
    return _TOOLTIPS.get(state, "")


def compute_status(state: ExtensionState, configuration: ConfigurationStore) -> StatusView:
    """
    Derive the indicator from the current state.

    The indicator is hidden when there is no project folder, when pglt is
    disabled for it, or when the focused document is not SQL.
    """
    project = state.active_project
    enabled = (
        project is not None
        and project.folder is not None
        and is_enabled_for_folder(configuration, project.folder.path)
    )
    if not enabled or state.hidden:
        return StatusView(visible=False)

    session = state.active_session
    version = (session.worker_version if session else None) or ""
    return StatusView(
        visible=True,
        icon=get_state_icon(state.state),
        text=STATUS_TEXT,
        tooltip=get_state_tooltip(state.state),
        version=version,
    )


class StatusIndicator:
    """Recomputes the status on every state change and hands it to `render`."""

    def __init__(
        self,
        state: ExtensionState,
        configuration: ConfigurationStore,
        render: Callable[[StatusView], None],
    ):
        self.state = state
        self.configuration = configuration
        self.render = render
        self.current: Optional[StatusView] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        self._unsubscribe = self.state.subscribe(lambda _: self.update())
        self.update()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def update(self) -> None:
        view = compute_status(self.state, self.configuration)
        if view != self.current:
            self.current = view
            self.render(view)
