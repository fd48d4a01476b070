"""
Pytest configuration for pglt-supervisor tests.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pglt_supervisor._core.discovery import BinaryFinder, BinaryFindStrategy, StrategyEntry
from pglt_supervisor.config import MemoryConfiguration
from pglt_supervisor.errors import TransportError
from pglt_supervisor.host import HeadlessWindow, Host, MemoryStore
from pglt_supervisor.types import WorkspaceFolder

# Note: With pytest-asyncio in auto mode, no event_loop fixture needed

skip_on_windows = pytest.mark.skipif(
    sys.platform == "win32", reason="relies on POSIX permissions and shell scripts"
)


@pytest.fixture(autouse=True)
def cache_dir(tmp_path):
    """Keep staged and downloaded binaries out of the real user cache."""
    directory = tmp_path / "cache"
    directory.mkdir()
    with patch("pglt_supervisor._core.lifecycle.get_cache_dir", return_value=directory):
        yield directory


@pytest.fixture
def project_dir(tmp_path):
    """A project folder with a pglt.toml."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "pglt.toml").write_text("[db]\nhost = \"localhost\"\n")
    return root


@pytest.fixture
def host(project_dir):
    """Single-root host without a UI."""
    return Host(
        folders=[WorkspaceFolder(name="project", path=project_dir)],
        configuration=MemoryConfiguration(),
        window=HeadlessWindow(),
        global_state=MemoryStore(),
        environ={"PATH": ""},
    )


def write_executable(path: Path, script: str = "#!/bin/sh\necho 'Version: 0.2.0'\n") -> Path:
    """Create an executable shell script at `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(script)
    path.chmod(0o755)
    return path


EXITING_WORKER = """\
import sys

length = 0
while True:
    line = sys.stdin.buffer.readline()
    if not line:
        sys.exit(0)
    line = line.strip()
    if not line:
        break
    if line.lower().startswith(b"content-length:"):
        length = int(line.split(b":")[1])
sys.stdin.buffer.read(length)
sys.exit({exit_code})
"""


def write_exiting_worker(path: Path, exit_code: int) -> Path:
    """A stdio worker that reads one JSON-RPC message and exits with `exit_code`."""
    return write_executable(
        path, f"#!{sys.executable}\n" + EXITING_WORKER.format(exit_code=exit_code)
    )


# =============================================================================
# Fake worker client
# =============================================================================


class FakeWorkerClient:
    """
    Stands in for WorkerClient without spawning a process.

    Requests are answered from `results`; everything sent is recorded.
    """

    def __init__(self, results=None, fail_start=None):
        self.on_failure = None
        self.results = {
            "initialize": {"serverInfo": {"name": "pglt_lsp", "version": "0.2.0"}},
        }
        self.results.update(results or {})
        self.fail_start = fail_start
        self.started_with = None
        self.requests = []
        self.notifications = []
        self.stop_count = 0
        self._running = False
        self._stop_requested = False
        self._crashed = False

    @property
    def is_running(self):
        return self._running and not self._stop_requested and not self._crashed

    @property
    def needs_stop(self):
        return self._running and not self._stop_requested

    @property
    def stopped(self):
        return self.stop_count > 0

    async def start(self, command, args=(), cwd=None):
        if self.fail_start is not None:
            raise self.fail_start
        self.started_with = (command, list(args), cwd)
        self._running = True

    async def request(self, method, params=None, timeout=None):
        if not self.is_running:
            raise TransportError(f"Cannot send {method}: the worker is not running")
        self.requests.append((method, params))
        result = self.results.get(method)
        if isinstance(result, Exception):
            raise result
        return result

    def notify(self, method, params=None):
        if not self.is_running:
            raise TransportError(f"Cannot send {method}: the worker is not running")
        self.notifications.append((method, params))

    def expect_exit(self):
        pass

    async def stop(self):
        self._stop_requested = True
        self.stop_count += 1

    def crash(self, reason="The pglt worker exited unexpectedly (code 1)"):
        self._crashed = True
        if self.on_failure is not None:
            self.on_failure(reason)


class FakeClientFactory:
    """Creates FakeWorkerClients and remembers them."""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients = []

    def __call__(self):
        client = FakeWorkerClient(**self.client_kwargs)
        self.clients.append(client)
        return client


@pytest.fixture
def client_factory():
    return FakeClientFactory()


# =============================================================================
# Discovery / staging doubles
# =============================================================================


class StaticStrategy(BinaryFindStrategy):
    """Returns a fixed path (or None) and counts calls."""

    def __init__(self, name, path=None, error=None):
        self.name = name
        self.path = path
        self.error = error
        self.calls = 0

    async def find(self, context):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.path


class GatedStrategy(StaticStrategy):
    """A StaticStrategy that blocks until `release` is set."""

    def __init__(self, name, path=None):
        super().__init__(name, path)
        self.release = asyncio.Event()

    async def find(self, context):
        await self.release.wait()
        return await super().find(context)


@pytest.fixture
def binary_path(tmp_path):
    return write_executable(tmp_path / "bin" / "pglt")


@pytest.fixture
def static_strategy(binary_path):
    return StaticStrategy("Static Strategy", binary_path)


@pytest.fixture
def finder(static_strategy):
    return BinaryFinder([StrategyEntry(static_strategy)])


@pytest.fixture
def stager():
    """Stager that never stages; sessions run the discovered binary."""
    mock = MagicMock()
    mock.stage = AsyncMock(return_value=None)
    mock.clear = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def fake_sleep():
    """Records requested delays instead of sleeping."""
    return AsyncMock(return_value=None)
