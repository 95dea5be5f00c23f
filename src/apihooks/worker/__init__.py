"""Delegation of hooks to a worker process for non-Python hook files."""

from apihooks.worker.client import HooksWorkerClient, WorkerState
from apihooks.worker.protocol import PROTOCOL_VERSION, HookEvent, WorkerMessage

__all__ = [
    "HookEvent",
    "HooksWorkerClient",
    "PROTOCOL_VERSION",
    "WorkerMessage",
    "WorkerState",
]
