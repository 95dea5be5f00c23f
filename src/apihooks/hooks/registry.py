"""Hook registry and the registration DSL used by hook files.

A :class:`HookRegistry` is created once per test run by
:func:`~apihooks.hooks.orchestrator.add_hooks` and filled by whichever loader
handles the configured hook files. Its public registration methods double as
the DSL hook authors call::

    def reject_admin(transaction):
        transaction.fail = "admin endpoints are off limits"

    hooks.before("Users > Admin > Delete user", reject_admin)

    @hooks.after_each
    def remember(transaction):
        ...

Transaction names passed to the named phases go through
:func:`normalize_transaction_name` before they are used as keys.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

if TYPE_CHECKING:
    from apihooks.models import RunConfiguration, Transaction

HookCallback = Callable[..., Any]

GROUP_SEPARATOR = " > "


def normalize_transaction_name(name: str) -> str:
    """Strip the leading separator left behind by an empty group name.

    Transaction display names are built as ``"<group> > <resource> > <action>"``.
    When the group is empty the builder still emits the separator, producing
    ``" > Machines collection > Get Machines"``. Such names are registered as
    ``"Machines collection > Get Machines"``; every other name is returned
    unchanged.
    """
    if name.startswith(GROUP_SEPARATOR):
        return name[len(GROUP_SEPARATOR):]
    return name


class HookRegistry:
    """In-memory store of hook callbacks for one test run.

    Run-wide and per-transaction phases are plain lists; named phases map a
    normalized transaction name to the list of callbacks registered for it.
    Callbacks are only ever appended, so several hook files targeting the same
    transaction all run, in registration order.

    Args:
        logs: Caller-supplied list that :meth:`log` appends to. Shared by
            reference with the runner for reporting.
        configuration: The run configuration, readable by trusted hook code.
    """

    def __init__(
        self,
        logs: Optional[list[Any]] = None,
        configuration: Optional[RunConfiguration] = None,
    ) -> None:
        self.logs: list[Any] = logs if logs is not None else []
        self.configuration = configuration
        self.transactions: dict[str, Transaction] = {}

        self.before_all_hooks: list[HookCallback] = []
        self.after_all_hooks: list[HookCallback] = []
        self.before_each_hooks: list[HookCallback] = []
        self.before_each_validation_hooks: list[HookCallback] = []
        self.after_each_hooks: list[HookCallback] = []
        self.before_hooks: dict[str, list[HookCallback]] = {}
        self.before_validation_hooks: dict[str, list[HookCallback]] = {}
        self.after_hooks: dict[str, list[HookCallback]] = {}

    # ------------------------------------------------------------------
    # Registration DSL
    # ------------------------------------------------------------------

    def before_all(self, fn: HookCallback) -> HookCallback:
        self.before_all_hooks.append(fn)
        return fn

    def after_all(self, fn: HookCallback) -> HookCallback:
        self.after_all_hooks.append(fn)
        return fn

    def before_each(self, fn: HookCallback) -> HookCallback:
        self.before_each_hooks.append(fn)
        return fn

    def before_each_validation(self, fn: HookCallback) -> HookCallback:
        self.before_each_validation_hooks.append(fn)
        return fn

    def after_each(self, fn: HookCallback) -> HookCallback:
        self.after_each_hooks.append(fn)
        return fn

    def before(
        self, name: str, fn: Optional[HookCallback] = None
    ) -> Union[HookCallback, Callable[[HookCallback], HookCallback]]:
        """Register *fn* to run before the transaction called *name*.

        When *fn* is omitted a decorator is returned instead.
        """
        return self._add_named(self.before_hooks, name, fn)

    def before_validation(
        self, name: str, fn: Optional[HookCallback] = None
    ) -> Union[HookCallback, Callable[[HookCallback], HookCallback]]:
        """Register *fn* to run between the HTTP call and response validation."""
        return self._add_named(self.before_validation_hooks, name, fn)

    def after(
        self, name: str, fn: Optional[HookCallback] = None
    ) -> Union[HookCallback, Callable[[HookCallback], HookCallback]]:
        """Register *fn* to run after the transaction called *name*."""
        return self._add_named(self.after_hooks, name, fn)

    def log(self, message: Any) -> None:
        """Append *message* to the run logs with a UTC timestamp."""
        self.logs.append(
            {"timestamp": datetime.now(timezone.utc).isoformat(), "content": message}
        )

    @staticmethod
    def _add_named(
        table: dict[str, list[HookCallback]],
        name: str,
        fn: Optional[HookCallback],
    ) -> Union[HookCallback, Callable[[HookCallback], HookCallback]]:
        key = normalize_transaction_name(name)

        def register(callback: HookCallback) -> HookCallback:
            table.setdefault(key, []).append(callback)
            return callback

        if fn is None:
            return register
        return register(fn)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_before(self, name: str) -> list[HookCallback]:
        return self.before_hooks.get(normalize_transaction_name(name), [])

    def get_before_validation(self, name: str) -> list[HookCallback]:
        return self.before_validation_hooks.get(normalize_transaction_name(name), [])

    def get_after(self, name: str) -> list[HookCallback]:
        return self.after_hooks.get(normalize_transaction_name(name), [])

    def is_empty(self) -> bool:
        return not any(
            (
                self.before_all_hooks,
                self.after_all_hooks,
                self.before_each_hooks,
                self.before_each_validation_hooks,
                self.after_each_hooks,
                self.before_hooks,
                self.before_validation_hooks,
                self.after_hooks,
            )
        )

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def merge(self, other: HookRegistry) -> None:
        """Append every callback registered on *other* to this registry.

        Order is preserved within each phase and each transaction name. The
        sandbox uses this to commit a source unit's private buffer only once
        the unit has evaluated successfully.
        """
        self.before_all_hooks.extend(other.before_all_hooks)
        self.after_all_hooks.extend(other.after_all_hooks)
        self.before_each_hooks.extend(other.before_each_hooks)
        self.before_each_validation_hooks.extend(other.before_each_validation_hooks)
        self.after_each_hooks.extend(other.after_each_hooks)
        for mine, theirs in (
            (self.before_hooks, other.before_hooks),
            (self.before_validation_hooks, other.before_validation_hooks),
            (self.after_hooks, other.after_hooks),
        ):
            for name, callbacks in theirs.items():
                mine.setdefault(name, []).extend(callbacks)

    def summary(self) -> list[tuple[str, str, str]]:
        """Return ``(phase, transaction name, callback name)`` rows for reporting."""
        rows: list[tuple[str, str, str]] = []
        for phase, callbacks in (
            ("before_all", self.before_all_hooks),
            ("before_each", self.before_each_hooks),
            ("before_each_validation", self.before_each_validation_hooks),
            ("after_each", self.after_each_hooks),
            ("after_all", self.after_all_hooks),
        ):
            rows.extend((phase, "", _callback_name(fn)) for fn in callbacks)
        for phase, table in (
            ("before", self.before_hooks),
            ("before_validation", self.before_validation_hooks),
            ("after", self.after_hooks),
        ):
            for name, callbacks in table.items():
                rows.extend((phase, name, _callback_name(fn)) for fn in callbacks)
        return rows


def _callback_name(fn: HookCallback) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)
