"""
Configuration surface for pglt-supervisor.

Settings live in a namespaced key/value store owned by the host (an editor's
settings, a file, or the in-memory store below). Keys are looked up under the
"pglt" section and may be scoped to a workspace folder.

Recognized keys:
    pglt.bin                       string, or {"linux-x64": "...", ...}
    pglt.configFile                worker config path relative to the folder
    pglt.enabled                   per-folder boolean
    pglt.allowDownloadPrereleases  boolean

Environment Variables:
    PGLT_BIN: Path to a local binary, used when pglt.bin is not set

Usage:
    store = MemoryConfiguration({"pglt.bin": "./bin/pglt"})
    settings = Settings.from_store(store, scope=project_root)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
)

from pglt_supervisor.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_SECTION = "pglt"
BIN_ENV_VAR = "PGLT_BIN"

BinSetting = Union[str, Dict[str, str], None]


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    """
    Notification that one or more fully-qualified keys changed.

    Attributes:
        keys: Changed keys, e.g. {"pglt.bin"}
        scope: Folder the change was scoped to, or None for global
    """
    keys: FrozenSet[str]
    scope: Optional[Path] = None

    def affects_configuration(self, section: str) -> bool:
        """True if any changed key is `section` or lives under it."""
        prefix = f"{section}."
        return any(key == section or key.startswith(prefix) for key in self.keys)


ConfigurationListener = Callable[[ConfigurationChangeEvent], None]


class ConfigurationStore(Protocol):
    """What the supervisor needs from the host's settings storage."""

    def get(self, key: str, scope: Optional[Path] = None) -> Any:
        ...

    def on_did_change(self, listener: ConfigurationListener) -> Callable[[], None]:
        ...


class MemoryConfiguration:
    """
    In-memory configuration store with folder scopes and change events.

    Folder-scoped values shadow global ones for lookups made with that scope.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self._scoped: Dict[Path, Dict[str, Any]] = {}
        self._listeners: List[ConfigurationListener] = []

    def get(self, key: str, scope: Optional[Path] = None) -> Any:
        if scope is not None:
            scoped = self._scoped.get(Path(scope), {})
            if key in scoped:
                return scoped[key]
        return self._values.get(key)

    def update(self, key: str, value: Any, scope: Optional[Path] = None) -> None:
        """Set (or with value=None, remove) a key and notify listeners."""
        target = self._values if scope is None else self._scoped.setdefault(Path(scope), {})
        if value is None:
            target.pop(key, None)
        else:
            target[key] = value

        event = ConfigurationChangeEvent(keys=frozenset({key}), scope=scope)
        for listener in list(self._listeners):
            listener(event)

    def on_did_change(self, listener: ConfigurationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def get_config(
    store: ConfigurationStore,
    key: str,
    scope: Optional[Path] = None,
) -> Any:
    """Look up `key` under the pglt section."""
    return store.get(f"{CONFIG_SECTION}.{key}", scope)


@dataclass
class Settings:
    """
    Effective pglt settings for one scope.

    Attributes:
        bin: Binary override, a path or a map keyed by platform identifier
        config_file: Worker config path, relative to the project root
        enabled: Whether pglt is enabled for the folder
        allow_download_prereleases: Offer prereleases when downloading
    """
    bin: BinSetting = None
    config_file: Optional[str] = None
    enabled: bool = True
    allow_download_prereleases: bool = False

    def __post_init__(self) -> None:
        """Validate configuration on creation."""
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.bin is not None and not isinstance(self.bin, (str, dict)):
            raise ConfigError(
                f"pglt.bin must be a string or a platform map, got {type(self.bin).__name__}"
            )
        if isinstance(self.bin, dict):
            for key, value in self.bin.items():
                if not isinstance(value, str):
                    raise ConfigError(f"pglt.bin[{key!r}] must be a string")
        if self.config_file is not None and not isinstance(self.config_file, str):
            raise ConfigError("pglt.configFile must be a string")
        if not isinstance(self.enabled, bool):
            raise ConfigError("pglt.enabled must be a boolean")
        if not isinstance(self.allow_download_prereleases, bool):
            raise ConfigError("pglt.allowDownloadPrereleases must be a boolean")

    @classmethod
    def from_store(
        cls,
        store: ConfigurationStore,
        scope: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """
        Read settings for a scope.

        Args:
            store: Host configuration store
            scope: Folder to scope the lookup to
            environ: Environment used for overrides (default: os.environ)

        Returns:
            Validated Settings

        Raises:
            ConfigError: If a value has the wrong type
        """
        environ = os.environ if environ is None else environ

        bin_setting = get_config(store, "bin", scope)
        if not bin_setting and environ.get(BIN_ENV_VAR):
            logger.debug(f"Using {BIN_ENV_VAR} from environment: {environ[BIN_ENV_VAR]}")
            bin_setting = environ[BIN_ENV_VAR]

        enabled = get_config(store, "enabled", scope)
        prereleases = get_config(store, "allowDownloadPrereleases", scope)

        return cls(
            bin=bin_setting or None,
            config_file=get_config(store, "configFile", scope) or None,
            enabled=True if enabled is None else enabled,
            allow_download_prereleases=False if prereleases is None else prereleases,
        )

    def resolve_bin(self, platform_identifier: str) -> Optional[str]:
        """
        Pick the binary override for the current platform.

        A plain string applies everywhere; a map contributes only the entry
        keyed by `platform_identifier` (e.g. "linux-x64").
        """
        if isinstance(self.bin, dict):
            return self.bin.get(platform_identifier)
        return self.bin


def is_enabled_for_folder(store: ConfigurationStore, folder: Path) -> bool:
    """Whether pglt is enabled for a workspace folder (default: enabled)."""
    value = get_config(store, "enabled", folder)
    return True if value is None else bool(value)
