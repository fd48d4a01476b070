"""
Supervisor state.

One ExtensionState is owned by the lifecycle controller. Only the controller
moves the lifecycle state, and only along the transitions listed below;
everyone else reads it or subscribes to changes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional

from pglt_supervisor.errors import InvalidTransitionError
from pglt_supervisor.types import LifecycleState, Project

if TYPE_CHECKING:
    from pglt_supervisor.session import Session

logger = logging.getLogger(__name__)

S = LifecycleState

TRANSITIONS: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    S.INITIALIZING: frozenset({S.STARTING, S.STOPPING}),
    S.STARTING: frozenset({S.STARTED, S.ERROR}),
    S.STARTED: frozenset({S.STOPPING, S.RESTARTING, S.ERROR}),
    S.RESTARTING: frozenset({S.STARTED, S.ERROR}),
    S.STOPPING: frozenset({S.STOPPED}),
    S.STOPPED: frozenset({S.STARTING, S.RESTARTING}),
    S.ERROR: frozenset({S.STARTING, S.RESTARTING, S.STOPPING}),
}

StateListener = Callable[["ExtensionState"], None]


class ExtensionState:
    """
    Lifecycle state plus the session and view flags derived from it.

    Listeners are called synchronously after every change, with the state
    object itself.
    """

    def __init__(self) -> None:
        self._state = LifecycleState.INITIALIZING
        self._hidden = False
        self._active_project: Optional[Project] = None
        self._active_session: Optional["Session"] = None
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def hidden(self) -> bool:
        return self._hidden

    @property
    def active_project(self) -> Optional[Project]:
        return self._active_project

    @property
    def active_session(self) -> Optional["Session"]:
        return self._active_session

    def can_transition(self, target: LifecycleState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: LifecycleState) -> None:
        """
        Move to `target`.

        Raises:
            InvalidTransitionError: If the move is not in the transition table
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state, target)
        logger.debug(f"State {self._state.value} -> {target.value}")
        self._state = target
        self._notify()

    def set_hidden(self, hidden: bool) -> None:
        if hidden != self._hidden:
            self._hidden = hidden
            self._notify()

    def set_session(self, session: Optional["Session"]) -> None:
        self._active_session = session
        self._active_project = session.project if session is not None else None
        self._notify()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning(f"State listener {listener!r} failed: {e}")
