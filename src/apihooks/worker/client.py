"""Client for hooks written in languages other than Python.

:class:`HooksWorkerClient` spawns a worker process (by default
``apihooks-<language>``, with the hook file paths as arguments), waits for its
ready handshake, and registers forwarding hooks in the run's registry. Each
forwarding hook sends the current transaction to the worker, waits for the
response carrying the same uuid, and copies the worker's changes back onto
the transaction.

Lifecycle::

    NOT_STARTED -> STARTING -> READY <-> RUNNING -> STOPPING -> STOPPED
                                            |
                                            v
                                         CRASHED -> STARTING (restart)

Failures of single requests never abort the run. A timeout, a malformed
response or a crash marks the affected transaction as failed and the run goes
on. After a crash the next request restarts the worker, at most
``max_restarts`` times; after that every delegated hook fails immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import uuid
from collections.abc import Awaitable, Sequence
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import ValidationError

from apihooks.exceptions import (
    WorkerCrashedError,
    WorkerError,
    WorkerProtocolError,
    WorkerStartError,
)
from apihooks.models import HookOptions, Transaction
from apihooks.worker.protocol import (
    HookEvent,
    WorkerMessage,
    decode_message,
    encode_message,
    peek_uuid,
)

if TYPE_CHECKING:
    from apihooks.hooks.registry import HookRegistry

logger = logging.getLogger(__name__)

SpawnFunction = Callable[..., Awaitable[asyncio.subprocess.Process]]


class WorkerState(str, enum.Enum):
    """States of the worker process as seen by the client."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HooksWorkerClient:
    """Drives one hooks worker process for the duration of a test run.

    Requests are sent one at a time: a request is written only after the
    previous one was answered or gave up, so the worker never sees a
    transaction out of order.

    Args:
        registry: The run's registry; forwarding hooks are registered on it
            by :meth:`start`.
        options: Hook options holding ``language`` and the worker settings.
        hookfiles: Resolved hook file paths passed to the worker.
        spawn: Process factory, :func:`asyncio.create_subprocess_exec` by
            default.
    """

    def __init__(
        self,
        registry: HookRegistry,
        options: HookOptions,
        hookfiles: Optional[Sequence[str]] = None,
        spawn: SpawnFunction = asyncio.create_subprocess_exec,
    ) -> None:
        self._registry = registry
        self._options = options
        self._settings = options.worker
        self._hookfiles = list(hookfiles or [])
        self._spawn = spawn

        self.state = WorkerState.NOT_STARTED
        self.restarts = 0
        self._process: Optional[asyncio.subprocess.Process] = None
        self._pending: dict[str, asyncio.Future[WorkerMessage]] = {}
        self._ready: Optional[asyncio.Future[None]] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()

    @property
    def command(self) -> list[str]:
        """The full argv used to launch the worker."""
        base = self._settings.command or [f"apihooks-{self._options.language}"]
        return [*base, *self._hookfiles]

    @property
    def pending(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch the worker and register the forwarding hooks.

        Raises:
            WorkerStartError: If the worker cannot be launched, exits, or does
                not send its ready handshake within ``startup_timeout``.
        """
        if self.state not in (WorkerState.NOT_STARTED, WorkerState.STOPPED):
            raise WorkerStartError(f"Hooks worker already {self.state.value}")
        try:
            await self._launch()
        except WorkerStartError:
            self.state = WorkerState.STOPPED
            raise
        self._register_hooks()

    async def _launch(self) -> None:
        self.state = WorkerState.STARTING
        self._ready = asyncio.get_running_loop().create_future()
        command = self.command
        logger.info("Starting hooks worker: %s", " ".join(command))
        try:
            process = await self._spawn(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self._settings.max_line_bytes,
            )
        except OSError as exc:
            raise WorkerStartError(f"Could not launch hooks worker '{command[0]}': {exc}") from exc

        self._process = process
        self._reader_task = asyncio.create_task(self._read_messages(process))
        self._stderr_task = asyncio.create_task(self._pump_stderr(process))
        try:
            await asyncio.wait_for(self._ready, timeout=self._settings.startup_timeout)
        except asyncio.TimeoutError:
            await self._discard_process()
            raise WorkerStartError(
                f"Hooks worker did not become ready within {self._settings.startup_timeout}s"
            ) from None
        except WorkerStartError:
            await self._discard_process()
            raise

        self.state = WorkerState.READY
        logger.info("Hooks worker ready (pid %s)", process.pid)

    async def stop(self) -> None:
        """Close the worker's stdin and wait for it to exit, forcing it if needed."""
        if self.state in (WorkerState.NOT_STARTED, WorkerState.STOPPED):
            return
        self.state = WorkerState.STOPPING
        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._settings.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Hooks worker did not exit within %ss, terminating",
                    self._settings.shutdown_timeout,
                )
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._settings.shutdown_timeout)
                except asyncio.TimeoutError:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
        await self._cancel_tasks()
        self._fail_pending(WorkerCrashedError("Hooks worker was stopped"))
        self.state = WorkerState.STOPPED
        logger.info("Hooks worker stopped")

    async def _discard_process(self) -> None:
        # Detach first so the reader does not report this exit as a crash.
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        await self._cancel_tasks()

    async def _cancel_tasks(self) -> None:
        for task in (self._reader_task, self._stderr_task):
            if task is None:
                continue
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._reader_task = None
        self._stderr_task = None

    async def _ensure_running(self) -> None:
        if self.state in (WorkerState.READY, WorkerState.RUNNING):
            return
        if self.state is not WorkerState.CRASHED:
            raise WorkerError(f"Hooks worker is {self.state.value}")
        if self.restarts >= self._settings.max_restarts:
            raise WorkerCrashedError(
                f"Hooks worker crashed; gave up after {self.restarts} restart(s)"
            )
        self.restarts += 1
        logger.warning(
            "Restarting hooks worker (attempt %d of %d)",
            self.restarts,
            self._settings.max_restarts,
        )
        await self._discard_process()
        try:
            await self._launch()
        except WorkerStartError:
            self.state = WorkerState.CRASHED
            raise

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def _read_messages(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is None:
            raise WorkerError("Hooks worker was started without a stdout pipe")
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError as exc:
                logger.error("Protocol error: worker line exceeds %d bytes: %s",
                             self._settings.max_line_bytes, exc)
                continue
            if not line:
                break
            self._handle_line(line)
        await self._on_exit(process)

    def _handle_line(self, line: bytes) -> None:
        if not line.strip():
            return
        try:
            message = decode_message(line)
        except WorkerProtocolError as exc:
            logger.error("Protocol error: %s", exc)
            message_uuid = peek_uuid(line)
            future = self._pending.pop(message_uuid, None) if message_uuid else None
            if future is not None and not future.done():
                future.set_exception(exc)
            return

        if message.event is HookEvent.READY:
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
            else:
                logger.warning("Ignoring unexpected ready message from hooks worker")
            return

        future = self._pending.pop(message.uuid or "", None)
        if future is None:
            logger.error(
                "Protocol error: response with unknown or already answered uuid %s",
                message.uuid,
            )
            return
        if not future.done():
            future.set_result(message)

    async def _on_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if process is not self._process:
            return
        if self.state in (WorkerState.STOPPING, WorkerState.STOPPED):
            return
        reason = f"Hooks worker exited unexpectedly with code {returncode}"
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(WorkerStartError(reason))
            return
        logger.error(reason)
        self.state = WorkerState.CRASHED
        self._fail_pending(WorkerCrashedError(reason))

    def _fail_pending(self, error: WorkerError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _pump_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            logger.info("[hooks worker] %s", line.decode("utf-8", errors="replace").rstrip())

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send(self, event: HookEvent, transaction: Transaction) -> Transaction:
        """Forward one per-transaction event and apply the worker's changes.

        Never raises for worker-side problems; they are recorded on
        *transaction* via :meth:`~apihooks.models.Transaction.mark_failed`.
        A response whose transaction does not validate is handled like any
        other invalid response and changes nothing.
        """
        message = WorkerMessage(
            event=event,
            uuid=str(uuid.uuid4()),
            transaction=transaction.model_dump(mode="json"),
        )
        subject = f"'{transaction.name}'"
        response = await self._request(message, subject, [transaction])
        if response is None:
            return transaction
        if response.transaction is None:
            self._reject_response(event, subject, [transaction], "response has no transaction")
            return transaction
        try:
            transaction.apply_changes(response.transaction)
        except ValidationError as exc:
            self._reject_response(event, subject, [transaction], str(exc))
        return transaction

    async def send_all(
        self, event: HookEvent, transactions: Sequence[Transaction]
    ) -> Sequence[Transaction]:
        """Forward a run-wide event carrying every transaction.

        The response must hold exactly one valid payload per transaction, in
        order; otherwise no change is applied and every transaction is marked
        failed.
        """
        message = WorkerMessage(
            event=event,
            uuid=str(uuid.uuid4()),
            transactions=[t.model_dump(mode="json") for t in transactions],
        )
        subject = "all transactions"
        response = await self._request(message, subject, transactions)
        if response is None:
            return transactions
        payloads = response.transactions or []
        if len(payloads) != len(transactions):
            self._reject_response(
                event,
                subject,
                transactions,
                f"response has {len(payloads)} transaction(s), expected {len(transactions)}",
            )
            return transactions
        try:
            for transaction, payload in zip(transactions, payloads):
                transaction.validate_changes(payload)
        except ValidationError as exc:
            self._reject_response(event, subject, transactions, str(exc))
            return transactions
        for transaction, payload in zip(transactions, payloads):
            transaction.apply_changes(payload)
        return transactions

    async def _request(
        self,
        message: WorkerMessage,
        subject: str,
        affected: Sequence[Transaction],
    ) -> Optional[WorkerMessage]:
        event = message.event.value
        async with self._lock:
            try:
                await self._ensure_running()
                return await self._exchange(message)
            except asyncio.TimeoutError:
                reason = (
                    f"Hooks worker did not answer the {event} hook for {subject} "
                    f"within {self._settings.request_timeout}s"
                )
            except WorkerProtocolError as exc:
                reason = f"Hooks worker sent an invalid {event} response for {subject}: {exc}"
            except WorkerError as exc:
                reason = f"Hooks worker failed in the {event} hook for {subject}: {exc}"
        self._fail_transactions(reason, affected)
        return None

    def _reject_response(
        self,
        event: HookEvent,
        subject: str,
        affected: Sequence[Transaction],
        detail: str,
    ) -> None:
        self._fail_transactions(
            f"Hooks worker sent an invalid {event.value} response for {subject}: {detail}",
            affected,
        )

    @staticmethod
    def _fail_transactions(reason: str, affected: Sequence[Transaction]) -> None:
        logger.error(reason)
        for transaction in affected:
            transaction.mark_failed(reason)

    async def _exchange(self, message: WorkerMessage) -> WorkerMessage:
        process = self._process
        if process is None or process.stdin is None:
            raise WorkerCrashedError("Hooks worker is not running")
        if message.uuid is None:
            raise WorkerProtocolError(f"Refusing to send a {message.event.value} request without uuid")
        future: asyncio.Future[WorkerMessage] = asyncio.get_running_loop().create_future()
        self._pending[message.uuid] = future
        self.state = WorkerState.RUNNING
        try:
            try:
                process.stdin.write(encode_message(message))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                self.state = WorkerState.CRASHED
                raise WorkerCrashedError(f"Could not write to hooks worker: {exc}") from exc
            return await asyncio.wait_for(future, timeout=self._settings.request_timeout)
        finally:
            self._pending.pop(message.uuid, None)
            if future.done() and not future.cancelled():
                # Mark the exception as retrieved when another error won the race.
                future.exception()
            if self.state is WorkerState.RUNNING:
                self.state = WorkerState.READY

    # ------------------------------------------------------------------
    # Registry integration
    # ------------------------------------------------------------------

    def _register_hooks(self) -> None:
        self._registry.before_all(self.forward_before_all)
        self._registry.before_each(self.forward_before_each)
        self._registry.before_each_validation(self.forward_before_each_validation)
        self._registry.after_each(self.forward_after_each)
        self._registry.after_all(self.forward_after_all)

    async def forward_before_all(self, transactions: Sequence[Transaction]) -> Any:
        return await self.send_all(HookEvent.BEFORE_ALL, transactions)

    async def forward_before_each(self, transaction: Transaction) -> Transaction:
        return await self.send(HookEvent.BEFORE_EACH, transaction)

    async def forward_before_each_validation(self, transaction: Transaction) -> Transaction:
        return await self.send(HookEvent.BEFORE_EACH_VALIDATION, transaction)

    async def forward_after_each(self, transaction: Transaction) -> Transaction:
        return await self.send(HookEvent.AFTER_EACH, transaction)

    async def forward_after_all(self, transactions: Sequence[Transaction]) -> Any:
        try:
            return await self.send_all(HookEvent.AFTER_ALL, transactions)
        finally:
            await self.stop()
