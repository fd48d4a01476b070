"""
Reader for Yarn Plug'n'Play resolver manifests.

Yarn PnP installs have no node_modules tree. The package map lives in
`.pnp.data.json`, or is inlined into `.pnp.cjs` / `.pnp.js` as the
RAW_RUNTIME_STATE string literal. Only the part needed to walk from the root
workspace to a dependency's on-disk location is read here.

Registry shape (packageRegistryData):
    [
      [name, [[reference, {"packageLocation": "./...", "packageDependencies": [...]}], ...]],
      ...
    ]
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pglt_supervisor._core.probe import file_exists

logger = logging.getLogger(__name__)

MANIFEST_DATA_FILE = ".pnp.data.json"
MANIFEST_RUNTIME_FILES = (".pnp.cjs", ".pnp.js")

_RUNTIME_STATE_RE = re.compile(
    r"RAW_RUNTIME_STATE\s*=\s*'((?:[^'\\]|\\.)*)'",
    re.DOTALL,
)
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


@dataclass(frozen=True)
class PnpPackage:
    """One (name, reference) entry of the package registry."""
    name: Optional[str]
    reference: Optional[str]
    location: Path
    dependencies: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    @property
    def in_archive(self) -> bool:
        """True if the package is stored inside a zip and not unplugged."""
        return any(part.endswith(".zip") for part in self.location.parts)


def parse_runtime_state(source: str) -> Dict[str, Any]:
    """
    Extract the JSON runtime state inlined in a `.pnp.cjs` file.

    Raises:
        ValueError: If no runtime state is present or it is not valid JSON
    """
    match = _RUNTIME_STATE_RE.search(source)
    if match is None:
        raise ValueError("No RAW_RUNTIME_STATE found in Plug'n'Play file")

    # Line continuations vanish, any other escape yields the escaped char.
    raw = _ESCAPE_RE.sub(
        lambda m: "" if m.group(1) == "\n" else m.group(1),
        match.group(1),
    )
    return json.loads(raw)


class PnpManifest:
    """Package registry of a Plug'n'Play install rooted at `root`."""

    def __init__(self, root: Path, data: Dict[str, Any]):
        self.root = root
        self._packages: Dict[Tuple[Optional[str], Optional[str]], PnpPackage] = {}

        for name, entries in data.get("packageRegistryData", []):
            for reference, info in entries:
                self._packages[(name, reference)] = PnpPackage(
                    name=name,
                    reference=reference,
                    location=self._resolve_location(info.get("packageLocation", "./")),
                    dependencies=self._read_dependencies(info.get("packageDependencies", [])),
                )

    def _resolve_location(self, location: str) -> Path:
        return (self.root / location).resolve()

    @staticmethod
    def _read_dependencies(raw: Any) -> Dict[str, Tuple[str, str]]:
        dependencies = {}
        for name, target in raw:
            if target is None:
                # Missing optional peer
                continue
            if isinstance(target, list):
                # Aliased dependency: [actual name, reference]
                dependencies[name] = (target[0], target[1])
            else:
                dependencies[name] = (name, target)
        return dependencies

    @classmethod
    def load(cls, root: Path) -> Optional["PnpManifest"]:
        """
        Read the manifest of the install rooted at `root`.

        Returns:
            PnpManifest, or None if the directory is not a PnP install

        Raises:
            ValueError: If a manifest exists but cannot be parsed
        """
        data_file = root / MANIFEST_DATA_FILE
        if file_exists(data_file):
            logger.debug(f"Reading Plug'n'Play data from {data_file}")
            return cls(root, json.loads(data_file.read_text(encoding="utf-8")))

        for name in MANIFEST_RUNTIME_FILES:
            runtime_file = root / name
            if not file_exists(runtime_file):
                logger.debug(f"Couldn't find Plug'n'Play file {runtime_file}")
                continue
            logger.debug(f"Reading Plug'n'Play runtime state from {runtime_file}")
            return cls(root, parse_runtime_state(runtime_file.read_text(encoding="utf-8")))

        return None

    def find_package(self, name: Optional[str], reference: Optional[str]) -> Optional[PnpPackage]:
        return self._packages.get((name, reference))

    def root_workspace(self) -> Optional[PnpPackage]:
        """The top-level workspace, i.e. the package located at the root."""
        top_level = self.find_package(None, None)
        if top_level is not None:
            return top_level

        root = self.root.resolve()
        for package in self._packages.values():
            if package.location == root:
                return package
        return None

    def resolve_dependency(self, issuer: PnpPackage, name: str) -> Optional[PnpPackage]:
        """Resolve `name` as seen from `issuer`'s dependency list."""
        target = issuer.dependencies.get(name)
        if target is None:
            return None
        return self.find_package(*target)
