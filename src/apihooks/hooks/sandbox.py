"""Sandboxed evaluation of hook source code.

When ``sandbox`` is enabled, hook sources are not imported. Each source unit
(the contents of one hook file, or one inline ``hooks_data`` entry) is
checked statically and then executed in a fresh namespace that exposes only
the registration DSL::

    def fail(transaction):
        transaction.fail = "failed in sandboxed hook"

    after("Machines > Machines collection > Get Machines", fail)

The namespace has no ``import``, no ``open``, no ``eval``/``exec``, and
no access to private attributes or to the attributes that lead to frames,
code objects and module globals (``gi_frame``, ``f_back``, ``f_globals``,
...), so hook code cannot reach the filesystem, network, processes or other
modules.

Each unit goes through ``LOADED -> EVALUATING -> COMMITTED | REJECTED``.
Registrations go to a private buffer registry first and are merged into the
shared registry only when the whole unit evaluated without error, so a broken
hook file never leaves a half-registered state behind.
"""

from __future__ import annotations

import ast
import builtins
import enum
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from apihooks.exceptions import HookLoadError, SandboxViolationError
from apihooks.hooks.registry import HookRegistry

logger = logging.getLogger(__name__)

SAFE_BUILTINS = frozenset(
    {
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
        "float", "format", "frozenset", "int", "isinstance", "issubclass",
        "iter", "len", "list", "map", "max", "min", "next", "range", "repr",
        "reversed", "round", "set", "slice", "sorted", "str", "sum", "tuple",
        "zip", "True", "False", "None",
        "Exception", "ArithmeticError", "AssertionError", "AttributeError",
        "IndexError", "KeyError", "LookupError", "RuntimeError", "StopIteration",
        "TypeError", "ValueError", "ZeroDivisionError",
    }
)
"""Builtins visible to sandboxed code."""

INTROSPECTION_ATTRIBUTES = frozenset(
    {
        "gi_frame", "gi_code", "gi_yieldfrom", "gi_running", "gi_suspended",
        "cr_frame", "cr_code", "cr_await", "cr_origin", "cr_running", "cr_suspended",
        "ag_frame", "ag_code", "ag_await", "ag_running",
        "f_back", "f_globals", "f_locals", "f_builtins", "f_code", "f_trace",
        "f_lineno", "f_lasti",
        "tb_frame", "tb_next", "tb_lineno", "tb_lasti",
        "mro", "format", "format_map",
    }
)
"""Attribute names that lead from ordinary objects to frames, code or globals.

``str.format`` and ``str.format_map`` are included because replacement fields
such as ``{0.gi_frame}`` perform attribute lookups the AST check cannot see;
f-strings remain available.
"""

DSL_FUNCTIONS = (
    "before_all",
    "after_all",
    "before_each",
    "before_each_validation",
    "after_each",
    "before",
    "before_validation",
    "after",
)


class UnitState(str, enum.Enum):
    """Lifecycle of one sandboxed source unit."""

    LOADED = "loaded"
    EVALUATING = "evaluating"
    COMMITTED = "committed"
    REJECTED = "rejected"


def check_source(tree: ast.AST, filename: str) -> None:
    """Reject constructs that would escape the sandbox.

    Raises:
        SandboxViolationError: On ``import`` statements, dunder names,
            private attributes (leading underscore) or attributes that reach
            frames, code objects or globals (see
            :data:`INTROSPECTION_ATTRIBUTES`).
    """
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise SandboxViolationError(
                f"line {node.lineno}: imports are not available in sandboxed hooks",
                source=filename,
            )
        if isinstance(node, ast.Name) and _is_dunder(node.id):
            raise SandboxViolationError(
                f"line {node.lineno}: name '{node.id}' is not available in sandboxed hooks",
                source=filename,
            )
        if isinstance(node, ast.Attribute) and _is_forbidden_attribute(node.attr):
            raise SandboxViolationError(
                f"line {node.lineno}: attribute '{node.attr}' is not available in sandboxed hooks",
                source=filename,
            )


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def _is_forbidden_attribute(name: str) -> bool:
    return (
        name.startswith("_")
        or name.startswith("co_")
        or name in INTROSPECTION_ATTRIBUTES
    )


def _restricted_builtins() -> dict[str, Any]:
    return {name: getattr(builtins, name) for name in SAFE_BUILTINS}


class SandboxedEngine:
    """Evaluates hook sources in isolated namespaces, one unit at a time.

    The last state of every evaluated unit is kept in :attr:`states` keyed by
    filename, which the CLI uses for reporting.
    """

    def __init__(self) -> None:
        self.states: dict[str, UnitState] = {}

    def namespace_for(self, buffer: HookRegistry) -> dict[str, Any]:
        namespace: dict[str, Any] = {"__builtins__": _restricted_builtins()}
        for name in DSL_FUNCTIONS:
            namespace[name] = getattr(buffer, name)
        namespace["log"] = buffer.log
        return namespace

    def evaluate(self, source: str, filename: str, registry: HookRegistry) -> HookRegistry:
        """Evaluate one source unit and commit its registrations to *registry*.

        Args:
            source: Python source text of the unit.
            filename: Real or virtual filename, used in error messages.
            registry: The shared registry receiving the committed callbacks.

        Returns:
            The private buffer that was merged into *registry*.

        Raises:
            SandboxViolationError: If the source uses a forbidden construct.
            HookLoadError: If the source fails to parse or raises.
        """
        self.states[filename] = UnitState.LOADED
        # The buffer shares the run logs so log() calls are never lost.
        buffer = HookRegistry(logs=registry.logs)

        self.states[filename] = UnitState.EVALUATING
        try:
            tree = ast.parse(source, filename=filename)
            check_source(tree, filename)
            code = compile(tree, filename, "exec")
            exec(code, self.namespace_for(buffer))
        except HookLoadError:
            self._reject(filename)
            raise
        except SyntaxError as exc:
            self._reject(filename)
            raise HookLoadError(f"Invalid hook code: {exc.msg} (line {exc.lineno})", source=filename) from exc
        except Exception as exc:
            self._reject(filename)
            raise HookLoadError(f"Hook code raised {type(exc).__name__}: {exc}", source=filename) from exc

        registry.merge(buffer)
        self.states[filename] = UnitState.COMMITTED
        logger.info("Loaded sandboxed hooks from %s", filename)
        return buffer

    def _reject(self, filename: str) -> None:
        self.states[filename] = UnitState.REJECTED
        logger.warning("Rejected sandboxed hooks from %s; nothing was registered", filename)

    def evaluate_files(self, paths: Iterable[str], registry: HookRegistry) -> None:
        """Read and evaluate each hook file in order."""
        for path in paths:
            try:
                source = Path(path).read_text(encoding="utf-8")
            except OSError as exc:
                raise HookLoadError(f"Failed to read hook file: {exc}", source=path) from exc
            self.evaluate(source, path, registry)

    def evaluate_sources(self, sources: Mapping[str, str], registry: HookRegistry) -> None:
        """Evaluate inline hook sources keyed by virtual filename."""
        for filename, source in sources.items():
            self.evaluate(source, filename, registry)
