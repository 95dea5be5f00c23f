"""Entry point that loads a run's hooks: :func:`add_hooks`.

:func:`add_hooks` attaches a fresh :class:`~apihooks.hooks.registry.HookRegistry`
to the runner context and fills it according to the run configuration:

* ``language`` other than Python -- a
  :class:`~apihooks.worker.client.HooksWorkerClient` is started and registers
  forwarding hooks; no Python loader runs.
* ``hookfiles`` set -- the patterns are resolved and the files are loaded by
  the :class:`~apihooks.hooks.sandbox.SandboxedEngine` when ``sandbox`` is on,
  or by the :class:`~apihooks.hooks.trusted.TrustedLoader` otherwise.
* no ``hookfiles`` but ``hooks_data`` -- the inline sources are evaluated in
  the sandbox. Loading inline sources without the sandbox is not implemented
  and raises :class:`~apihooks.exceptions.UnsupportedConfigurationError`.

Fatal conditions raise an :class:`~apihooks.exceptions.ApihooksError`
subclass before any transaction runs; returning normally means success.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from apihooks.exceptions import UnsupportedConfigurationError
from apihooks.hooks.registry import HookRegistry
from apihooks.hooks.resolver import is_direct_language, resolve_hookfiles
from apihooks.hooks.sandbox import SandboxedEngine
from apihooks.hooks.trusted import TrustedLoader
from apihooks.models import RunConfiguration, Transaction
from apihooks.worker.client import HooksWorkerClient

logger = logging.getLogger(__name__)


@dataclass
class RunnerContext:
    """The parts of the test runner that hook loading reads and writes.

    Attributes:
        configuration: The run configuration.
        logs: Run log list; handed to the registry by reference.
        hooks: The registry, set by :func:`add_hooks`.
        hooks_worker_client: The worker client when hooks are delegated.
        trusted_loader: Loader used for trusted hook files.
        sandbox: Engine used for sandboxed hook sources.
    """

    configuration: RunConfiguration = field(default_factory=RunConfiguration)
    logs: list[Any] = field(default_factory=list)
    hooks: Optional[HookRegistry] = None
    hooks_worker_client: Optional[HooksWorkerClient] = None
    trusted_loader: TrustedLoader = field(default_factory=TrustedLoader)
    sandbox: SandboxedEngine = field(default_factory=SandboxedEngine)


async def add_hooks(runner: RunnerContext, transactions: Iterable[Transaction]) -> None:
    """Create the run's hook registry and load every configured hook source.

    Args:
        runner: The runner context; ``runner.hooks`` is replaced.
        transactions: The transactions of the run, indexed by name on the
            registry so hooks can look up their siblings.

    Raises:
        HookResolutionError: If hook file patterns cannot be expanded.
        HookLoadError: If a hook source fails to parse or raises.
        UnsupportedConfigurationError: If inline sources are given without
            the sandbox.
        WorkerStartError: If the hooks worker does not start.
    """
    configuration = runner.configuration
    options = configuration.options

    registry = HookRegistry(logs=runner.logs, configuration=configuration)
    registry.transactions = {t.name: t for t in transactions}
    runner.hooks = registry

    if not is_direct_language(options.language):
        hookfiles = resolve_hookfiles(options.hookfiles)
        client = HooksWorkerClient(registry, options, hookfiles=hookfiles)
        runner.hooks_worker_client = client
        await client.start()
        return

    if options.hookfiles:
        hookfiles = resolve_hookfiles(options.hookfiles)
        options.hookfiles = hookfiles
        logger.info("Found %d hook file(s)", len(hookfiles))
        if options.sandbox:
            logger.info("Loading hook files in sandboxed context")
            runner.sandbox.evaluate_files(hookfiles, registry)
        else:
            runner.trusted_loader.load_files(hookfiles, registry)
        return

    if configuration.hooks_data:
        if not options.sandbox:
            raise UnsupportedConfigurationError(
                "Loading hooks from inline source strings outside the sandbox "
                "is not implemented; enable the 'sandbox' option"
            )
        logger.info("Loading inline hook sources in sandboxed context")
        runner.sandbox.evaluate_sources(configuration.hooks_data, registry)
