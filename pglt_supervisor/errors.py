"""
Exception types for pglt-supervisor.

Provides typed exceptions for:
- Binary discovery and staging
- Worker launch and transport failures
- Release fetching
- Configuration and lifecycle misuse
"""

from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from pglt_supervisor.types import LifecycleState


class PgltSupervisorError(Exception):
    """Base exception for all pglt-supervisor errors."""
    pass


# =============================================================================
# Discovery Errors
# =============================================================================


class DiscoveryError(PgltSupervisorError):
    """
    Raised when no strategy could locate a pglt binary.

    The discovery chain itself never raises this; it returns None. Callers that
    require a binary (e.g. scripted usage) raise it to signal the negative
    result.
    """
    pass


class StrategyError(PgltSupervisorError):
    """
    Raised by a discovery strategy that failed while probing.

    The chain catches it, logs it and moves on to the next strategy, exactly
    as if the strategy had found nothing.
    """

    def __init__(self, strategy: str, detail: str):
        self.strategy = strategy
        self.detail = detail
        super().__init__(f"{strategy}: {detail}")


class StagingError(PgltSupervisorError):
    """
    Raised when a binary could not be copied into the staging cache.

    Staging failures are never fatal: the session falls back to running the
    discovered binary in place.
    """
    pass


# =============================================================================
# Session Errors
# =============================================================================


class LaunchError(PgltSupervisorError):
    """
    Raised when the worker process cannot be started.

    This includes:
    - Process spawn failures
    - Initialize handshake failures or timeouts
    """
    pass


class TransportError(PgltSupervisorError):
    """
    Raised when the worker transport is unusable.

    This includes:
    - Requests on a stopped or destroyed client
    - The worker exiting while a request is in flight
    - Protocol errors reported by the JSON-RPC layer
    """
    pass


class WorkerRequestError(TransportError):
    """
    Raised when the worker answers a request with a JSON-RPC error.

    Example:
        try:
            await workspace.pull_diagnostics(params)
        except WorkerRequestError as e:
            logger.warning(f"{e.method} failed: {e.code} {e.message}")
    """

    def __init__(
        self,
        method: str,
        code: Optional[int] = None,
        message: str = "",
        data: Any = None,
    ):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} failed with code {code}: {message}")

    def __repr__(self) -> str:
        return (
            f"WorkerRequestError(method={self.method!r}, code={self.code!r}, "
            f"message={self.message!r})"
        )


# =============================================================================
# Download Errors
# =============================================================================


class FetchError(PgltSupervisorError):
    """
    Raised when a release listing or binary download fails.

    Carries the failing URL and, when the server answered, the HTTP status
    so the user-visible message can name both.
    """

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Configuration / Lifecycle Errors
# =============================================================================


class ConfigError(PgltSupervisorError):
    """
    Raised when a configuration value is invalid.

    This includes:
    - A `bin` setting that is neither a string nor a platform map
    - Non-boolean `enabled` / `allowDownloadPrereleases` values
    """
    pass


class InvalidTransitionError(PgltSupervisorError):
    """Raised when the lifecycle state machine is asked for an illegal transition."""

    def __init__(self, current: "LifecycleState", target: "LifecycleState"):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current.value} to {target.value}")
