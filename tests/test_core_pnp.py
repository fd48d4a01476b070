"""Tests for pglt_supervisor._core.pnp module."""

import json

import pytest

from pglt_supervisor._core.pnp import PnpManifest, parse_runtime_state


def registry(root_deps=None, main_deps=None, platform_location="./.yarn/unplugged/cli-linux-x64/node_modules/@pglt/cli-linux-x64/"):
    """A minimal packageRegistryData for a project depending on @pglt/pglt."""
    root_deps = root_deps if root_deps is not None else [["@pglt/pglt", "npm:0.2.0"]]
    main_deps = main_deps if main_deps is not None else [
        ["@pglt/cli-linux-x64", "npm:0.2.0"],
        ["@pglt/cli-darwin-arm64", None],
    ]
    return {
        "packageRegistryData": [
            [None, [[None, {"packageLocation": "./", "packageDependencies": root_deps}]]],
            ["@pglt/pglt", [["npm:0.2.0", {
                "packageLocation": "./.yarn/cache/@pglt-pglt-npm-0.2.0.zip/node_modules/@pglt/pglt/",
                "packageDependencies": main_deps,
            }]]],
            ["@pglt/cli-linux-x64", [["npm:0.2.0", {
                "packageLocation": platform_location,
                "packageDependencies": [],
            }]]],
        ]
    }


def as_runtime_file(data):
    """Embed data the way Yarn writes .pnp.cjs."""
    body = (
        json.dumps(data, indent=2)
        .replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\\n")
    )
    return (
        "#!/usr/bin/env node\n"
        "/* eslint-disable */\n"
        "\"use strict\";\n\n"
        "const RAW_RUNTIME_STATE =\n"
        f"'{body}';\n\n"
        "function $$SETUP_STATE(hydrateRuntimeState, basePath) {\n"
        "  return hydrateRuntimeState(JSON.parse(RAW_RUNTIME_STATE), {basePath: basePath || __dirname});\n"
        "}\n"
    )


class TestParseRuntimeState:
    """Tests for parse_runtime_state function."""

    def test_parses_embedded_state(self):
        data = registry()
        assert parse_runtime_state(as_runtime_file(data)) == data

    def test_unescapes_quotes(self):
        data = {"note": "it's \\ here"}
        assert parse_runtime_state(as_runtime_file(data)) == data

    def test_missing_state(self):
        with pytest.raises(ValueError, match="RAW_RUNTIME_STATE"):
            parse_runtime_state("module.exports = {};")


class TestPnpManifest:
    """Tests for PnpManifest."""

    def test_load_data_file(self, tmp_path):
        (tmp_path / ".pnp.data.json").write_text(json.dumps(registry()))

        manifest = PnpManifest.load(tmp_path)

        assert manifest is not None
        assert manifest.root_workspace().location == tmp_path.resolve()

    def test_load_runtime_file(self, tmp_path):
        (tmp_path / ".pnp.cjs").write_text(as_runtime_file(registry()))

        manifest = PnpManifest.load(tmp_path)

        assert manifest.find_package("@pglt/pglt", "npm:0.2.0") is not None

    def test_not_a_pnp_install(self, tmp_path):
        assert PnpManifest.load(tmp_path) is None

    def test_malformed_data_file(self, tmp_path):
        (tmp_path / ".pnp.data.json").write_text("{not json")

        with pytest.raises(ValueError):
            PnpManifest.load(tmp_path)

    def test_resolve_chain(self, tmp_path):
        """Root workspace -> @pglt/pglt -> platform package."""
        manifest = PnpManifest(tmp_path, registry())

        main = manifest.resolve_dependency(manifest.root_workspace(), "@pglt/pglt")
        platform = manifest.resolve_dependency(main, "@pglt/cli-linux-x64")

        assert main.in_archive is True
        assert platform.in_archive is False
        assert platform.location == (
            tmp_path / ".yarn/unplugged/cli-linux-x64/node_modules/@pglt/cli-linux-x64"
        ).resolve()

    def test_missing_optional_dependency_is_skipped(self, tmp_path):
        manifest = PnpManifest(tmp_path, registry())
        main = manifest.find_package("@pglt/pglt", "npm:0.2.0")

        assert manifest.resolve_dependency(main, "@pglt/cli-darwin-arm64") is None

    def test_aliased_dependency(self, tmp_path):
        manifest = PnpManifest(
            tmp_path,
            registry(root_deps=[["@pglt/pglt", ["@pglt/pglt", "npm:0.2.0"]]]),
        )

        main = manifest.resolve_dependency(manifest.root_workspace(), "@pglt/pglt")

        assert main.reference == "npm:0.2.0"

    def test_root_workspace_by_location(self, tmp_path):
        """Without a (None, None) entry the package at the root is the workspace."""
        data = {
            "packageRegistryData": [
                ["app", [["workspace:.", {"packageLocation": "./", "packageDependencies": []}]]],
            ]
        }
        manifest = PnpManifest(tmp_path, data)

        assert manifest.root_workspace().name == "app"
