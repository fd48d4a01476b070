"""
Lifecycle controller.

Owns the supervisor state and is the only place that moves it. start, stop
and restart are serialized: the state check happens before the first await,
so a second caller sees the in-flight transition, and the bodies run under
one lock.

Usage:
    controller = LifecycleController(host)
    await controller.activate()       # start + listen for config changes
    ...
    controller.on_active_editor_changed("sql")
    ...
    await controller.deactivate()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pglt_supervisor.config import CONFIG_SECTION, ConfigurationChangeEvent, get_config
from pglt_supervisor.errors import TransportError
from pglt_supervisor.host import Host
from pglt_supervisor.session import SQL_LANGUAGE_ID, Session, SessionSupervisor
from pglt_supervisor.state import ExtensionState
from pglt_supervisor.types import LifecycleState

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_PERIOD = 1.0
DEFAULT_DEBOUNCE_DELAY = 0.3

CONFIG_KEYS = ("bin", "configFile", "enabled", "allowDownloadPrereleases")

IN_FLIGHT_STATES = frozenset(
    {LifecycleState.STARTING, LifecycleState.STOPPING, LifecycleState.RESTARTING}
)

Sleep = Callable[[float], Awaitable[Any]]


class Debouncer:
    """
    Trailing-edge debounce on the running event loop.

    Every call reschedules; only the last call within `delay` seconds runs.
    """

    def __init__(self, callback: Callable[..., Any], delay: float = DEFAULT_DEBOUNCE_DELAY):
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None

    def __call__(self, *args: Any) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, args)

    def _fire(self, args: tuple) -> None:
        self._handle = None
        self.callback(*args)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class LifecycleController:
    """
    Drives sessions through the lifecycle state machine.

    Args:
        host: Host collaborators
        state: State object to own (default: a fresh one)
        supervisor: Session supervisor (default: one for `host`)
        sleep: Awaitable sleep, injectable for tests
        stop_grace_period: Seconds to wait before tearing a session down
        debounce_delay: Seconds configuration changes are debounced for
    """

    def __init__(
        self,
        host: Host,
        state: Optional[ExtensionState] = None,
        supervisor: Optional[SessionSupervisor] = None,
        sleep: Sleep = asyncio.sleep,
        stop_grace_period: float = DEFAULT_STOP_GRACE_PERIOD,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
    ):
        self.host = host
        self.state = state or ExtensionState()
        self.supervisor = supervisor or SessionSupervisor(host, self.state)
        self.supervisor.on_worker_failure = self._on_worker_failure
        self.sleep = sleep
        self.stop_grace_period = stop_grace_period

        self._lock = asyncio.Lock()
        self._restart_task: Optional[asyncio.Future] = None
        self._background: Set[asyncio.Task] = set()
        self._on_configuration_settled = Debouncer(
            self._handle_configuration_change, debounce_delay
        )
        self._unsubscribe_config: Optional[Callable[[], None]] = None

    # =========================================================================
    # Activation
    # =========================================================================

    async def activate(self) -> None:
        """Start the supervisor and begin listening for configuration changes."""
        await self.start()
        self._unsubscribe_config = self.host.configuration.on_did_change(
            self.on_configuration_changed
        )
        logger.info("Started listening for configuration changes")

    async def deactivate(self) -> None:
        """
        Stop listening and stop the supervisor.

        A start or restart that is still running is allowed to finish first,
        so the worker it launches is stopped too.
        """
        if self._unsubscribe_config is not None:
            self._unsubscribe_config()
            self._unsubscribe_config = None
        self._on_configuration_settled.cancel()
        await self.settle()
        await self.stop()
        for task in list(self._background):
            task.cancel()

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start(self) -> None:
        """Start a session. Ignored unless idle, stopped or failed."""
        if not self.state.can_transition(LifecycleState.STARTING):
            logger.debug(f"Ignoring start while {self.state.state.value}")
            return

        self.state.transition(LifecycleState.STARTING)
        async with self._lock:
            await self._do_start()
        if self.state.state is LifecycleState.STARTED:
            logger.info("pglt supervisor started")

    async def stop(self) -> None:
        """Stop the active session after the grace period."""
        if not self.state.can_transition(LifecycleState.STOPPING):
            logger.debug(f"Ignoring stop while {self.state.state.value}")
            return

        self.state.transition(LifecycleState.STOPPING)
        async with self._lock:
            await self._do_stop()
            self.state.transition(LifecycleState.STOPPED)
        logger.info("pglt supervisor stopped")

    async def restart(self) -> None:
        """
        Stop and start again.

        A restart requested while one is in flight waits for that one instead
        of starting a second.
        """
        if self.state.state is LifecycleState.RESTARTING and self._restart_task is not None:
            logger.debug("Restart already in progress, joining it")
            await asyncio.shield(self._restart_task)
            return

        if not self.state.can_transition(LifecycleState.RESTARTING):
            logger.debug(f"Ignoring restart while {self.state.state.value}")
            return

        self.state.transition(LifecycleState.RESTARTING)
        self._restart_task = asyncio.ensure_future(self._run_restart())
        try:
            await asyncio.shield(self._restart_task)
        finally:
            if self._restart_task is not None and self._restart_task.done():
                self._restart_task = None

    async def reset(self, clear_caches: Callable[[], Awaitable[None]]) -> None:
        """
        Stop, run `clear_caches` while stopped, and start again.

        Any in-flight transition finishes first. The caches are cleared under
        the transition lock, so no start can discover or stage a binary
        while they are being wiped.
        """
        await self.settle()
        await self.stop()
        async with self._lock:
            if self.state.state is not LifecycleState.STOPPED:
                logger.warning(f"Not resetting while {self.state.state.value}")
                return
            await clear_caches()
        await self.start()

    async def settle(self) -> None:
        """Wait until no start, stop or restart is in flight."""
        while self.state.state in IN_FLIGHT_STATES:
            task = self._restart_task
            if task is not None and not task.done():
                await asyncio.shield(task)
            elif self._lock.locked():
                async with self._lock:
                    pass
            else:
                break

    async def _run_restart(self) -> None:
        async with self._lock:
            await self._do_stop()
            await self._do_start()
        if self.state.state is LifecycleState.STARTED:
            logger.info("pglt supervisor restarted")

    async def _do_start(self) -> None:
        try:
            session = await self.supervisor.create_active_session()
        except Exception as e:
            logger.error(f"Failed to start pglt: {e}")
            await self.host.window.show_error_message(f"Failed to start pglt: {e}")
            session = None

        if session is None:
            self.state.transition(LifecycleState.ERROR)
        else:
            self.state.transition(LifecycleState.STARTED)

    async def _do_stop(self) -> None:
        # Let in-flight notifications (e.g. a configuration change) reach the
        # worker before it goes away.
        await self.sleep(self.stop_grace_period)
        try:
            await self.supervisor.destroy_active_session()
        except Exception as e:
            logger.warning(f"Error while destroying session: {e}")

    # =========================================================================
    # Events
    # =========================================================================

    def on_configuration_changed(self, event: ConfigurationChangeEvent) -> None:
        """Host configuration listener; debounced."""
        self._on_configuration_settled(event)

    def _handle_configuration_change(self, event: ConfigurationChangeEvent) -> None:
        if not event.affects_configuration(CONFIG_SECTION):
            return

        logger.info("Configuration change detected.")
        if self.state.state in (LifecycleState.RESTARTING, LifecycleState.STOPPING):
            logger.debug(f"Dropping configuration change while {self.state.state.value}")
            return

        self._spawn(self._apply_configuration_change())

    async def _apply_configuration_change(self) -> None:
        session = self.state.active_session
        if session is not None:
            self._forward_configuration(session)
        await self.restart()

    def _forward_configuration(self, session: Session) -> None:
        scope = session.project.root_path if session.project else None
        settings: Dict[str, Any] = {
            key: get_config(self.host.configuration, key, scope) for key in CONFIG_KEYS
        }
        try:
            session.client.notify(
                "workspace/didChangeConfiguration",
                {"settings": {CONFIG_SECTION: settings}},
            )
        except TransportError as e:
            logger.debug(f"Could not forward configuration to the worker: {e}")

    def on_active_editor_changed(self, language_id: Optional[str]) -> None:
        """Hide the status indicator unless the focused document is SQL."""
        self.state.set_hidden(language_id != SQL_LANGUAGE_ID)

    def _on_worker_failure(self, session: Session, reason: str) -> None:
        if self.state.active_session is not session:
            return
        self._spawn(self._handle_worker_failure(session, reason))

    async def _handle_worker_failure(self, session: Session, reason: str) -> None:
        # Only a running session can crash; failures during a transition are
        # handled by that transition.
        if self.state.state is not LifecycleState.STARTED:
            return
        if self.state.active_session is not session:
            return

        logger.error(f"pglt worker failed: {reason}")
        self.state.set_session(None)
        self.state.transition(LifecycleState.ERROR)
        await self.host.window.show_error_message(reason)
        await self.supervisor.destroy_session(session)

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for background work (config restarts, crash handling) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
