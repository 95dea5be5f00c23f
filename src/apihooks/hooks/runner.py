"""Runner that dispatches registered hooks around each transaction.

:class:`HookRunner` implements the dispatch contract the test runner relies
on::

    run_before_all(transactions)            once, before the first transaction
    for each transaction:
        run_before(transaction)             before_each, then before[name]
        ... HTTP request ...
        run_before_validation(transaction)  before_each_validation, then
                                            before_validation[name]
        ... response validation ...
        run_after(transaction)              after[name], then after_each
    run_after_all(transactions)             once, after the last transaction

Hooks run strictly one after another. A hook defined with ``async def`` is
awaited before the next hook starts, which is how a hook signals
asynchronous completion. A hook that raises does not abort the run: the
affected transaction is marked failed with a reason naming the phase and the
remaining hooks still run.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from apihooks.hooks.registry import HookCallback, HookRegistry
from apihooks.models import Transaction

logger = logging.getLogger(__name__)


class HookRunner:
    """Executes the callbacks of a :class:`HookRegistry` in dispatch order.

    The runner only reads the registry; it may be shared by any number of
    transactions as long as they are processed one at a time.
    """

    def __init__(self, registry: HookRegistry) -> None:
        """Initialize the hook runner.

        Args:
            registry: The loaded registry, typically ``runner.hooks`` after
                :func:`~apihooks.hooks.orchestrator.add_hooks` returned.
        """
        self._registry = registry

    async def run_before_all(self, transactions: Sequence[Transaction]) -> None:
        await self._run_run_wide("before_all", self._registry.before_all_hooks, transactions)

    async def run_after_all(self, transactions: Sequence[Transaction]) -> None:
        await self._run_run_wide("after_all", self._registry.after_all_hooks, transactions)

    async def run_before(self, transaction: Transaction) -> Transaction:
        """Run ``before_each`` hooks, then the ``before`` hooks for the transaction's name."""
        await self._run("before_each", self._registry.before_each_hooks, transaction)
        await self._run("before", self._registry.get_before(transaction.name), transaction)
        return transaction

    async def run_before_validation(self, transaction: Transaction) -> Transaction:
        await self._run(
            "before_each_validation",
            self._registry.before_each_validation_hooks,
            transaction,
        )
        await self._run(
            "before_validation",
            self._registry.get_before_validation(transaction.name),
            transaction,
        )
        return transaction

    async def run_after(self, transaction: Transaction) -> Transaction:
        """Run the ``after`` hooks for the transaction's name, then ``after_each`` hooks."""
        await self._run("after", self._registry.get_after(transaction.name), transaction)
        await self._run("after_each", self._registry.after_each_hooks, transaction)
        return transaction

    async def _run(
        self, phase: str, callbacks: Iterable[HookCallback], transaction: Transaction
    ) -> None:
        # Copy so a hook registering further hooks cannot change this pass.
        for fn in list(callbacks):
            try:
                await _call(fn, transaction)
            except Exception as exc:
                reason = f"Failed in {phase} hook for '{transaction.name}': {exc}"
                logger.error(reason)
                transaction.mark_failed(reason)

    async def _run_run_wide(
        self, phase: str, callbacks: Iterable[HookCallback], transactions: Sequence[Transaction]
    ) -> None:
        for fn in list(callbacks):
            try:
                await _call(fn, transactions)
            except Exception as exc:
                reason = f"Failed in {phase} hook: {exc}"
                logger.error(reason)
                self._registry.log(reason)
                for transaction in transactions:
                    transaction.mark_failed(reason)


async def _call(fn: HookCallback, argument: Any) -> Any:
    result = fn(argument)
    if inspect.isawaitable(result):
        result = await result
    return result
