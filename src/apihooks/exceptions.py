"""Exception hierarchy for apihooks.

All exceptions inherit from :class:`ApihooksError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`apihooks.exit_codes`.
The CLI entry point in :func:`apihooks.app.main` catches ``ApihooksError``
and exits with the appropriate code.

Load-phase errors (resolution, evaluation, configuration, worker start)
propagate out of :func:`~apihooks.hooks.orchestrator.add_hooks` and abort the
run. Per-transaction failures (a hook raising at runtime, a worker timeout or
crash) are recorded on the transaction instead of being raised.

Subclass hierarchy::

    ApihooksError (exit 1)
    +-- ConfigError                     (exit 2)
    |   +-- UnsupportedConfigurationError
    +-- HookResolutionError             (exit 3)
    +-- HookLoadError                   (exit 4)
    |   +-- SandboxViolationError
    +-- WorkerError                     (exit 5)
        +-- WorkerStartError
        +-- WorkerCrashedError
        +-- WorkerProtocolError
"""

from __future__ import annotations

from apihooks.exit_codes import (
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_HOOK_LOAD_ERROR,
    EXIT_RESOLUTION_ERROR,
    EXIT_WORKER_ERROR,
)


class ApihooksError(Exception):
    """Base exception for all apihooks errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(ApihooksError):
    """Raised for configuration problems (unreadable file, invalid values)."""

    exit_code = EXIT_CONFIG_ERROR


class UnsupportedConfigurationError(ConfigError):
    """Raised when the configuration asks for a combination that is not implemented."""


class HookResolutionError(ApihooksError):
    """Raised when hook file patterns cannot be expanded on the filesystem."""

    exit_code = EXIT_RESOLUTION_ERROR


class HookLoadError(ApihooksError):
    """Raised when a hook source unit fails to parse or raises during evaluation.

    Args:
        message: Human-readable error description.
        source: The file path or virtual filename of the failing unit.
    """

    exit_code = EXIT_HOOK_LOAD_ERROR

    def __init__(self, message: str, source: str = ""):
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")
        self.source = source


class SandboxViolationError(HookLoadError):
    """Raised when sandboxed hook code uses a capability the sandbox does not expose."""


class WorkerError(ApihooksError):
    """Base for errors of the hooks worker process."""

    exit_code = EXIT_WORKER_ERROR


class WorkerStartError(WorkerError):
    """Raised when the worker cannot be launched or does not become ready in time."""


class WorkerCrashedError(WorkerError):
    """Raised for requests outstanding when the worker exits unexpectedly."""


class WorkerProtocolError(WorkerError):
    """Raised when a worker message is unparseable or violates the wire schema."""
