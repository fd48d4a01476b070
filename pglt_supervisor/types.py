"""
Type definitions for pglt-supervisor.

Defines enums and dataclasses used across the package for:
- Lifecycle state and operating mode
- Discovery and staging results
- Projects, workspace folders and document selectors
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


# =============================================================================
# Enums
# =============================================================================


class LifecycleState(str, Enum):
    """
    State of the supervisor as a whole.

    - INITIALIZING: Nothing has been started yet
    - STARTING / RESTARTING / STOPPING: A transition is in flight
    - STARTED: A session is running
    - STOPPED: Stopped on request; accepts a later start
    - ERROR: Starting failed or the worker crashed; accepts a later start
    """
    INITIALIZING = "initializing"
    STARTING = "starting"
    STARTED = "started"
    RESTARTING = "restarting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class OperatingMode(str, Enum):
    """How many workspace folders the host has open."""
    SINGLE_FILE = "single_file"
    SINGLE_ROOT = "single_root"
    MULTI_ROOT = "multi_root"


class PromptOutcome(str, Enum):
    """Result of an interactive prompt shown to the user."""
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DISMISSED = "dismissed"
    TIMED_OUT = "timed_out"


# =============================================================================
# Dataclasses
# =============================================================================


@dataclass(frozen=True)
class DiscoveryResult:
    """A binary located by exactly one discovery strategy."""
    path: Path
    strategy: str = ""


@dataclass(frozen=True)
class StagedBinary:
    """
    A discovered binary copied into the version-keyed staging cache.

    The staged copy is what gets executed, so the original can be replaced
    (e.g. by a package manager reinstall) while a session is running.
    """
    original_path: Path
    staged_path: Path
    version: str


@dataclass(frozen=True)
class WorkspaceFolder:
    """A folder opened in the host."""
    name: str
    path: Path


@dataclass(frozen=True)
class Project:
    """
    A pglt project rooted at a workspace folder.

    Resolved once per session creation and never mutated; a restart
    resolves a fresh one.
    """
    root_path: Path
    config_path: Path
    folder: Optional[WorkspaceFolder] = None


@dataclass(frozen=True)
class DocumentFilter:
    """
    Selects the documents a session is responsible for.

    A filter with a `pattern` matches files on disk under that glob; a filter
    without one matches by URI scheme only (untitled buffers and the like).
    """
    language: str
    scheme: str
    pattern: Optional[str] = None

    def matches(self, language: str, scheme: str, path: Optional[str] = None) -> bool:
        """Check whether a document with the given attributes is selected."""
        if language != self.language or scheme != self.scheme:
            return False
        if self.pattern is None:
            return True
        if path is None:
            return False
        return fnmatch.fnmatchcase(path.replace("\\", "/"), self.pattern)
