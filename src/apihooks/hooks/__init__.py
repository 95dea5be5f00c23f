"""Hook loading, registration and dispatch.

Key pieces:

* :func:`add_hooks` -- load every configured hook source for a run.
* :class:`HookRegistry` -- the per-run store of hook callbacks, also the
  registration DSL hook files use.
* :class:`HookRunner` -- runs registered hooks around each transaction.
* :class:`TrustedLoader` / :class:`SandboxedEngine` -- the two in-process
  loaders.
"""

from apihooks.hooks.orchestrator import RunnerContext, add_hooks
from apihooks.hooks.registry import HookRegistry, normalize_transaction_name
from apihooks.hooks.resolver import is_direct_language, resolve_hookfiles
from apihooks.hooks.runner import HookRunner
from apihooks.hooks.sandbox import SandboxedEngine, UnitState
from apihooks.hooks.trusted import TrustedLoader

__all__ = [
    "HookRegistry",
    "HookRunner",
    "RunnerContext",
    "SandboxedEngine",
    "TrustedLoader",
    "UnitState",
    "add_hooks",
    "is_direct_language",
    "normalize_transaction_name",
    "resolve_hookfiles",
]
