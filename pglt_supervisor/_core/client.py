"""
JSON-RPC client for the pglt worker.

The worker speaks Content-Length framed JSON-RPC 2.0 over its stdio. Framing,
request ids and response futures are handled by pygls' JsonRPCClient; this
module adds what a supervisor needs on top:

- spawning the worker with a working directory
- typed errors for error responses and dead transports
- telling an intentional stop apart from a crash
- re-emitting worker log messages on the `pglt_supervisor.worker` logger

Usage:
    client = WorkerClient(on_failure=handle_crash)
    await client.start(binary, ["lsp-proxy", "--config-path", config], cwd=root)
    result = await client.request("pgt/is_path_ignored", params)
    await client.stop()

A failed transport is never reconnected; the owner tears the session down
and starts a new one.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from pygls.client import JsonRPCClient
from pygls.exceptions import JsonRpcException

from pglt_supervisor.errors import LaunchError, TransportError, WorkerRequestError

logger = logging.getLogger(__name__)
worker_logger = logging.getLogger("pglt_supervisor.worker")

# LSP MessageType -> logging level
_MESSAGE_LEVELS = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
}


def to_plain(value: Any) -> Any:
    """
    Convert decoded JSON-RPC payloads to plain dicts and lists.

    Depending on the pygls version, untyped payloads arrive as dicts or as
    namedtuple-like objects.
    """
    if hasattr(value, "_asdict"):
        value = value._asdict()
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


class WorkerClient(JsonRPCClient):
    """
    pygls client bound to one worker process.

    Attributes:
        on_failure: Called once with a reason when the worker exits or the
            transport breaks without stop() having been requested
        returncode: Exit status of the worker once it has exited
    """

    def __init__(self, on_failure: Optional[Callable[[str], None]] = None):
        super().__init__()
        self.on_failure = on_failure
        self.returncode: Optional[int] = None
        self._running = False
        self._stop_requested = False
        self._exit_expected = False
        self._failure_reported = False
        self._exited = asyncio.Event()

        @self.feature("window/logMessage")
        def on_log_message(params):
            params = to_plain(params) or {}
            level = _MESSAGE_LEVELS.get(params.get("type"), logging.INFO)
            worker_logger.log(level, params.get("message", ""))

        @self.feature("window/showMessage")
        def on_show_message(params):
            params = to_plain(params) or {}
            level = _MESSAGE_LEVELS.get(params.get("type"), logging.INFO)
            worker_logger.log(level, params.get("message", ""))

        # The worker registers its watchers dynamically; accept and ignore.
        @self.feature("client/registerCapability")
        def on_register_capability(params):
            return None

        @self.feature("client/unregisterCapability")
        def on_unregister_capability(params):
            return None

    @property
    def is_running(self) -> bool:
        """True while the worker process is alive and not being stopped."""
        return self._running and not self._stop_requested and not self._exited.is_set()

    @property
    def needs_stop(self) -> bool:
        """True if a process was started and stop() has not been requested."""
        return self._running and not self._stop_requested

    async def start(
        self,
        command: Path,
        args: Sequence[str] = (),
        cwd: Optional[Path] = None,
    ) -> None:
        """
        Spawn the worker and attach to its stdio.

        Args:
            command: Worker executable
            args: Command-line arguments
            cwd: Working directory (default: inherit)

        Raises:
            LaunchError: If the process cannot be spawned
        """
        kwargs = {}
        if cwd is not None:
            kwargs["cwd"] = str(cwd)

        logger.info(f"Starting worker: {command} {' '.join(args)}")
        try:
            await self.start_io(str(command), *args, **kwargs)
        except OSError as e:
            raise LaunchError(f"Failed to start pglt worker {command}: {e}") from e

        self._running = True
        logger.debug(f"Worker started: {command}")

    async def request(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """
        Send a request and wait for its result.

        Args:
            method: JSON-RPC method name
            params: JSON-serializable parameters
            timeout: Seconds to wait for the answer (None waits forever)

        Returns:
            The result as plain dicts/lists

        Raises:
            TransportError: If the worker is not running, exits before
                answering, or does not answer within `timeout`
            WorkerRequestError: If the worker answers with an error
        """
        if not self.is_running:
            raise TransportError(f"Cannot send {method}: the worker is not running")

        response = asyncio.ensure_future(self.protocol.send_request_async(method, params))
        exited = asyncio.ensure_future(self._exited.wait())
        try:
            done, _ = await asyncio.wait(
                {response, exited},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            exited.cancel()

        if response not in done:
            response.cancel()
            if exited in done:
                raise TransportError(f"The worker exited before answering {method}")
            raise TransportError(f"The worker did not answer {method} within {timeout}s")

        try:
            return to_plain(response.result())
        except JsonRpcException as e:
            raise WorkerRequestError(
                method,
                code=getattr(e, "code", None),
                message=getattr(e, "message", str(e)),
                data=getattr(e, "data", None),
            ) from e
        except asyncio.CancelledError as e:
            raise TransportError(f"Request {method} was cancelled") from e
        except Exception as e:
            # pygls fails pending requests with plain errors when the process dies
            raise TransportError(f"Request {method} failed: {e}") from e

    def notify(self, method: str, params: Any = None) -> None:
        """
        Send a notification.

        Raises:
            TransportError: If the worker is not running
        """
        if not self.is_running:
            raise TransportError(f"Cannot send {method}: the worker is not running")
        self.protocol.notify(method, params)

    def expect_exit(self) -> None:
        """Announce an orderly shutdown; the coming exit is not a failure."""
        self._exit_expected = True

    async def stop(self) -> None:
        """Terminate the worker. Exits observed afterwards are not failures."""
        self._stop_requested = True
        if not self._running:
            return
        await super().stop()
        self._running = False
        logger.debug("Worker client stopped")

    async def server_exit(self, server: asyncio.subprocess.Process) -> None:
        self.returncode = server.returncode
        self._exited.set()
        if self._stop_requested or self._exit_expected:
            logger.debug(f"Worker exited with code {server.returncode}")
            return
        logger.error(f"Worker exited unexpectedly with code {server.returncode}")
        self._report_failure(f"The pglt worker exited unexpectedly (code {server.returncode})")

    def report_server_error(self, error: Exception, source: Any) -> None:
        if self._stop_requested or self._exit_expected:
            logger.debug(f"Ignoring transport error after stop: {error}")
            return
        logger.error(f"Worker transport error: {error}")
        self._report_failure(f"Communication with the pglt worker failed: {error}")

    def _report_failure(self, reason: str) -> None:
        if self._failure_reported or self.on_failure is None:
            return
        self._failure_reported = True
        self.on_failure(reason)


def build_worker_args(config_path: Optional[Path]) -> List[str]:
    """Command-line arguments for running the worker as a language server."""
    args = ["lsp-proxy"]
    if config_path is not None:
        args += ["--config-path", str(config_path)]
    return args
