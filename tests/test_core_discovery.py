"""Tests for pglt_supervisor._core.discovery module."""

import asyncio
import json
import os
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import StaticStrategy, skip_on_windows, write_executable
from pglt_supervisor._core.discovery import (
    DOWNLOAD_ACCEPT,
    DOWNLOAD_DECLINE,
    DOWNLOAD_PROMPT,
    BinaryFinder,
    DiscoveryContext,
    DownloadStrategy,
    NodeModulesStrategy,
    PathStrategy,
    SettingsStrategy,
    StrategyEntry,
    YarnPnpStrategy,
    default_strategies,
    has_no_package_manifest,
    node_module_dirs,
)
from pglt_supervisor._core.lifecycle import DownloadedVersion
from pglt_supervisor.config import MemoryConfiguration, Settings
from pglt_supervisor.errors import DiscoveryError, StrategyError
from pglt_supervisor.host import HeadlessWindow, Host, MemoryStore


def install_npm_package(node_modules: Path, name: str, files=()) -> Path:
    package_dir = node_modules.joinpath(*name.split("/"))
    package_dir.mkdir(parents=True)
    (package_dir / "package.json").write_text(json.dumps({"name": name}))
    for file_name in files:
        (package_dir / file_name).write_bytes(b"binary")
    return package_dir


def make_host(**kwargs):
    kwargs.setdefault("window", HeadlessWindow())
    kwargs.setdefault("global_state", MemoryStore())
    kwargs.setdefault("configuration", MemoryConfiguration())
    kwargs.setdefault("environ", {})
    return Host(**kwargs)


# =============================================================================
# Chain
# =============================================================================


class TestBinaryFinder:
    """Tests for ordering, short-circuit and isolation of the chain."""

    @pytest.mark.asyncio
    async def test_first_hit_wins(self, tmp_path):
        """Strategies after the first hit never run."""
        first = StaticStrategy("first")
        second = StaticStrategy("second", tmp_path / "pglt")
        third = StaticStrategy("third", tmp_path / "other")
        finder = BinaryFinder([StrategyEntry(s) for s in (first, second, third)])

        result = await finder.find(DiscoveryContext(root=tmp_path))

        assert result.path == tmp_path / "pglt"
        assert result.strategy == "second"
        assert (first.calls, second.calls, third.calls) == (1, 1, 0)

    @pytest.mark.asyncio
    async def test_failing_strategy_is_skipped(self, tmp_path):
        """An exception is logged and treated like a miss."""
        broken = StaticStrategy("broken", error=StrategyError("broken", "kaboom"))
        crashing = StaticStrategy("crashing", error=RuntimeError("unexpected"))
        working = StaticStrategy("working", tmp_path / "pglt")
        finder = BinaryFinder([StrategyEntry(s) for s in (broken, crashing, working)])

        result = await finder.find(DiscoveryContext(root=tmp_path))

        assert result.strategy == "working"

    @pytest.mark.asyncio
    async def test_condition_false_skips_strategy(self, tmp_path):
        guarded = StaticStrategy("guarded", tmp_path / "pglt")
        finder = BinaryFinder([StrategyEntry(guarded, condition=lambda context: False)])

        assert await finder.find(DiscoveryContext(root=tmp_path)) is None
        assert guarded.calls == 0

    @pytest.mark.asyncio
    async def test_raising_condition_skips_strategy(self, tmp_path):
        def condition(context):
            raise OSError("permission denied")

        guarded = StaticStrategy("guarded", tmp_path / "pglt")
        finder = BinaryFinder([StrategyEntry(guarded, condition=condition)])

        assert await finder.find(DiscoveryContext(root=tmp_path)) is None
        assert guarded.calls == 0

    @pytest.mark.asyncio
    async def test_condition_runs_off_the_event_loop(self, tmp_path):
        """Filesystem walks in guards must not block the loop thread."""
        threads = []

        def condition(context):
            threads.append(threading.get_ident())
            return True

        guarded = StaticStrategy("guarded", tmp_path / "pglt")
        finder = BinaryFinder([StrategyEntry(guarded, condition=condition)])

        result = await finder.find(DiscoveryContext(root=tmp_path))

        assert result.strategy == "guarded"
        assert threads and threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_require_raises_on_miss(self, tmp_path):
        finder = BinaryFinder([StrategyEntry(StaticStrategy("empty"))])

        with pytest.raises(DiscoveryError, match="pglt.bin"):
            await finder.require(DiscoveryContext(root=tmp_path))

    def test_default_order(self):
        names = [entry.strategy.name for entry in default_strategies()]
        assert names == [
            "Settings Strategy",
            "Node Modules Strategy",
            "Yarn PnP Strategy",
            "PATH Env Var Strategy",
            "Download Strategy",
        ]
        assert default_strategies()[-1].condition is has_no_package_manifest


@skip_on_windows
class TestDiscoveryScenarios:
    """The default chain against real directories."""

    @pytest.mark.asyncio
    async def test_relative_settings_path(self, tmp_path):
        """A relative pglt.bin resolves against the root and stops the chain."""
        binary = write_executable(tmp_path / "local" / "pglt")
        finder = BinaryFinder()
        context = DiscoveryContext(
            root=tmp_path, settings=Settings(bin="./local/pglt"), host=make_host()
        )

        with patch.object(NodeModulesStrategy, "find", new_callable=AsyncMock) as node_find, \
                patch.object(PathStrategy, "find", new_callable=AsyncMock) as path_find:
            result = await finder.find(context)

        assert result.path == binary
        assert result.strategy == "Settings Strategy"
        node_find.assert_not_awaited()
        path_find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_path_lookup_without_download_prompt(self, tmp_path):
        """PATH succeeds, so the download strategy never prompts."""
        root = tmp_path / "project"
        root.mkdir()
        bin_dir = tmp_path / "usr" / "bin"
        binary = write_executable(bin_dir / "pglt")
        host = make_host(environ={"PATH": os.pathsep.join([str(tmp_path / "empty"), str(bin_dir)])})
        context = DiscoveryContext(root=root, environ=host.environ, host=host)

        result = await BinaryFinder().find(context)

        assert result.path == binary
        assert result.strategy == "PATH Env Var Strategy"
        assert host.window.messages == []

    @pytest.mark.asyncio
    async def test_package_manifest_disables_download(self, tmp_path):
        """With a package.json the download offer is skipped entirely."""
        root = tmp_path / "project"
        root.mkdir()
        (root / "package.json").write_text("{}")
        host = make_host(environ={"PATH": ""})
        context = DiscoveryContext(root=root, environ=host.environ, host=host)

        with patch.object(DownloadStrategy, "find", new_callable=AsyncMock) as download_find:
            result = await BinaryFinder().find(context)

        assert result is None
        download_find.assert_not_awaited()
        assert host.window.messages == []


# =============================================================================
# Strategies
# =============================================================================


@skip_on_windows
class TestSettingsStrategy:
    """Tests for SettingsStrategy."""

    @pytest.mark.asyncio
    async def test_absolute_path(self, tmp_path):
        binary = write_executable(tmp_path / "pglt")
        context = DiscoveryContext(root=None, settings=Settings(bin=str(binary)))

        assert await SettingsStrategy().find(context) == binary

    @pytest.mark.asyncio
    async def test_platform_map(self, tmp_path):
        binary = write_executable(tmp_path / "arm" / "pglt")
        settings = Settings(bin={"linux-x64": "/nope/pglt", "darwin-arm64": str(binary)})
        context = DiscoveryContext(
            root=tmp_path, settings=settings, os_name="darwin", arch_name="arm64"
        )

        assert await SettingsStrategy().find(context) == binary

    @pytest.mark.asyncio
    async def test_platform_map_without_entry(self, tmp_path):
        settings = Settings(bin={"darwin-arm64": "/opt/pglt"})
        context = DiscoveryContext(root=tmp_path, settings=settings)

        assert await SettingsStrategy().find(context) is None

    @pytest.mark.asyncio
    async def test_relative_path_needs_root(self):
        context = DiscoveryContext(root=None, settings=Settings(bin="./pglt"))
        assert await SettingsStrategy().find(context) is None

    @pytest.mark.asyncio
    async def test_not_executable(self, tmp_path):
        binary = tmp_path / "pglt"
        binary.write_text("")
        binary.chmod(0o644)
        context = DiscoveryContext(root=tmp_path, settings=Settings(bin=str(binary)))

        assert await SettingsStrategy().find(context) is None

    @pytest.mark.asyncio
    async def test_unset(self, tmp_path):
        assert await SettingsStrategy().find(DiscoveryContext(root=tmp_path)) is None


class TestNodeModulesStrategy:
    """Tests for NodeModulesStrategy."""

    @pytest.mark.asyncio
    async def test_finds_platform_binary(self, tmp_path):
        node_modules = tmp_path / "node_modules"
        install_npm_package(node_modules, "@pglt/pglt")
        platform_dir = install_npm_package(node_modules, "@pglt/cli-linux-x64", ["pglt"])

        result = await NodeModulesStrategy().find(DiscoveryContext(root=tmp_path))

        assert result == platform_dir.resolve() / "pglt"

    @pytest.mark.asyncio
    async def test_nested_platform_package(self, tmp_path):
        """The platform package is resolved from the main package's location."""
        main_dir = install_npm_package(tmp_path / "node_modules", "@pglt/pglt")
        platform_dir = install_npm_package(
            main_dir / "node_modules", "@pglt/cli-linux-x64", ["pglt"]
        )

        result = await NodeModulesStrategy().find(DiscoveryContext(root=tmp_path))

        assert result == platform_dir.resolve() / "pglt"

    @pytest.mark.asyncio
    async def test_found_from_subdirectory(self, tmp_path):
        node_modules = tmp_path / "node_modules"
        install_npm_package(node_modules, "@pglt/pglt")
        install_npm_package(node_modules, "@pglt/cli-linux-x64", ["pglt"])
        root = tmp_path / "packages" / "db"
        root.mkdir(parents=True)

        assert await NodeModulesStrategy().find(DiscoveryContext(root=root)) is not None

    @pytest.mark.asyncio
    async def test_windows_binary_name(self, tmp_path):
        node_modules = tmp_path / "node_modules"
        install_npm_package(node_modules, "@pglt/pglt")
        platform_dir = install_npm_package(node_modules, "@pglt/cli-win32-x64", ["pglt.exe"])
        context = DiscoveryContext(root=tmp_path, os_name="win32")

        assert await NodeModulesStrategy().find(context) == platform_dir.resolve() / "pglt.exe"

    @pytest.mark.asyncio
    async def test_node_path(self, tmp_path):
        global_modules = tmp_path / "global"
        install_npm_package(global_modules, "@pglt/pglt")
        install_npm_package(global_modules, "@pglt/cli-linux-x64", ["pglt"])
        root = tmp_path / "project"
        root.mkdir()
        context = DiscoveryContext(root=root, environ={"NODE_PATH": str(global_modules)})

        assert await NodeModulesStrategy().find(context) is not None

    @pytest.mark.asyncio
    async def test_main_package_missing(self, tmp_path):
        assert await NodeModulesStrategy().find(DiscoveryContext(root=tmp_path)) is None

    @pytest.mark.asyncio
    async def test_platform_package_missing(self, tmp_path):
        install_npm_package(tmp_path / "node_modules", "@pglt/pglt")
        assert await NodeModulesStrategy().find(DiscoveryContext(root=tmp_path)) is None

    @pytest.mark.asyncio
    async def test_no_root(self):
        assert await NodeModulesStrategy().find(DiscoveryContext(root=None)) is None

    def test_search_dirs_skip_node_modules_ancestors(self, tmp_path):
        start = tmp_path / "node_modules" / "@pglt" / "pglt"
        dirs = node_module_dirs(start, {"HOME": str(tmp_path / "home")})

        assert dirs[0] == start / "node_modules"
        assert tmp_path / "node_modules" / "node_modules" not in dirs
        assert tmp_path / "node_modules" in dirs
        assert dirs[-2:] == [
            tmp_path / "home" / ".node_modules",
            tmp_path / "home" / ".node_libraries",
        ]


class TestYarnPnpStrategy:
    """Tests for YarnPnpStrategy."""

    def write_manifest(self, root, platform_location):
        data = {
            "packageRegistryData": [
                [None, [[None, {
                    "packageLocation": "./",
                    "packageDependencies": [["@pglt/pglt", "npm:0.2.0"]],
                }]]],
                ["@pglt/pglt", [["npm:0.2.0", {
                    "packageLocation": "./.yarn/cache/pglt.zip/node_modules/@pglt/pglt/",
                    "packageDependencies": [["@pglt/cli-linux-x64", "npm:0.2.0"]],
                }]]],
                ["@pglt/cli-linux-x64", [["npm:0.2.0", {
                    "packageLocation": platform_location,
                    "packageDependencies": [],
                }]]],
            ]
        }
        (root / ".pnp.data.json").write_text(json.dumps(data))

    @pytest.mark.asyncio
    async def test_unplugged_binary(self, tmp_path):
        location = ".yarn/unplugged/cli-linux-x64/node_modules/@pglt/cli-linux-x64/"
        self.write_manifest(tmp_path, "./" + location)
        binary = tmp_path / location / "pglt"
        binary.parent.mkdir(parents=True)
        binary.write_bytes(b"binary")

        result = await YarnPnpStrategy().find(DiscoveryContext(root=tmp_path))

        assert result == binary.resolve()

    @pytest.mark.asyncio
    async def test_binary_inside_zip(self, tmp_path):
        """Zipped packages cannot be executed."""
        self.write_manifest(
            tmp_path, "./.yarn/cache/cli.zip/node_modules/@pglt/cli-linux-x64/"
        )

        assert await YarnPnpStrategy().find(DiscoveryContext(root=tmp_path)) is None

    @pytest.mark.asyncio
    async def test_wrong_platform(self, tmp_path):
        self.write_manifest(tmp_path, "./.yarn/unplugged/x/")
        context = DiscoveryContext(root=tmp_path, os_name="darwin", arch_name="arm64")

        assert await YarnPnpStrategy().find(context) is None

    @pytest.mark.asyncio
    async def test_no_manifest(self, tmp_path):
        assert await YarnPnpStrategy().find(DiscoveryContext(root=tmp_path)) is None

    @pytest.mark.asyncio
    async def test_broken_manifest_raises_strategy_error(self, tmp_path):
        (tmp_path / ".pnp.cjs").write_text("module.exports = {};")

        with pytest.raises(StrategyError) as exc_info:
            await YarnPnpStrategy().find(DiscoveryContext(root=tmp_path))

        assert exc_info.value.strategy == "Yarn PnP Strategy"


@skip_on_windows
class TestPathStrategy:
    """Tests for PathStrategy."""

    @pytest.mark.asyncio
    async def test_first_executable_wins(self, tmp_path):
        not_executable = tmp_path / "a" / "pglt"
        not_executable.parent.mkdir()
        not_executable.write_text("")
        not_executable.chmod(0o644)
        binary = write_executable(tmp_path / "b" / "pglt")
        write_executable(tmp_path / "c" / "pglt")
        path_env = os.pathsep.join(str(tmp_path / d) for d in ("a", "b", "c"))

        result = await PathStrategy().find(DiscoveryContext(root=None, environ={"PATH": path_env}))

        assert result == binary

    @pytest.mark.asyncio
    async def test_no_path(self):
        assert await PathStrategy().find(DiscoveryContext(root=None, environ={})) is None


class TestDownloadStrategy:
    """Tests for DownloadStrategy."""

    @pytest.mark.asyncio
    async def test_without_host(self, tmp_path):
        assert await DownloadStrategy().find(DiscoveryContext(root=tmp_path)) is None

    @pytest.mark.asyncio
    @patch("pglt_supervisor._core.discovery.get_downloaded_version")
    async def test_reuses_previous_download(self, mock_downloaded):
        mock_downloaded.return_value = DownloadedVersion("0.2.0", Path("/cache/global-bin/pglt"))
        host = make_host()

        result = await DownloadStrategy().find(DiscoveryContext(root=None, host=host))

        assert result == Path("/cache/global-bin/pglt")
        assert host.window.messages == []

    @pytest.mark.asyncio
    @patch("pglt_supervisor._core.discovery.download_pglt", new_callable=AsyncMock)
    async def test_declined(self, mock_download):
        host = make_host(window=HeadlessWindow(answers={DOWNLOAD_PROMPT: DOWNLOAD_DECLINE}))

        result = await DownloadStrategy().find(DiscoveryContext(root=None, host=host))

        assert result is None
        assert host.window.messages == [DOWNLOAD_PROMPT]
        mock_download.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("pglt_supervisor._core.discovery.download_pglt", new_callable=AsyncMock)
    async def test_accepted(self, mock_download):
        mock_download.return_value = Path("/cache/global-bin/pglt")
        host = make_host(window=HeadlessWindow(answers={DOWNLOAD_PROMPT: DOWNLOAD_ACCEPT}))
        context = DiscoveryContext(
            root=None, settings=Settings(allow_download_prereleases=True), host=host
        )

        result = await DownloadStrategy().find(context)

        assert result == Path("/cache/global-bin/pglt")
        mock_download.assert_awaited_once_with(
            host.window, host.global_state, with_prereleases=True
        )

    @pytest.mark.asyncio
    @patch("pglt_supervisor._core.discovery.download_pglt", new_callable=AsyncMock)
    async def test_prompt_timeout(self, mock_download):
        """An unanswered prompt is abandoned."""
        window = MagicMock()

        async def never_answers(*args):
            await asyncio.sleep(10)

        window.show_information_message = never_answers
        host = make_host(window=window)
        context = DiscoveryContext(root=None, host=host, prompt_timeout=0.05)

        assert await DownloadStrategy().find(context) is None
        mock_download.assert_not_awaited()


class TestHasNoPackageManifest:
    """Tests for the download condition."""

    def test_no_root(self):
        assert has_no_package_manifest(DiscoveryContext(root=None)) is True

    def test_empty_project(self, tmp_path):
        assert has_no_package_manifest(DiscoveryContext(root=tmp_path)) is True

    def test_nested_manifest(self, tmp_path):
        (tmp_path / "web").mkdir()
        (tmp_path / "web" / "package.json").write_text("{}")

        assert has_no_package_manifest(DiscoveryContext(root=tmp_path)) is False

    def test_manifest_inside_node_modules_is_ignored(self, tmp_path):
        install_npm_package(tmp_path / "node_modules", "left-pad")

        assert has_no_package_manifest(DiscoveryContext(root=tmp_path)) is True


class TestDiscoveryContext:
    """Tests for DiscoveryContext."""

    @patch("pglt_supervisor._core.discovery.get_platform_info")
    def test_for_host_reads_settings(self, mock_info, tmp_path):
        mock_info.return_value = ("darwin", "arm64")
        host = make_host(configuration=MemoryConfiguration({"pglt.bin": "./pglt"}))

        context = DiscoveryContext.for_host(host, tmp_path)

        assert context.settings.bin == "./pglt"
        assert context.platform_identifier == "darwin-arm64"
        assert context.platform_package_name == "@pglt/cli-darwin-arm64"
        assert context.host is host
