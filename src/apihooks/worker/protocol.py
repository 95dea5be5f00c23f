"""Wire format spoken with the hooks worker process.

Messages are UTF-8 JSON objects, one per line, on the worker's stdin (requests)
and stdout (responses). Every message carries the protocol ``version``.

Handshake, sent once by the worker when it has loaded its hook files::

    {"version": 1, "event": "ready"}

Request for a per-transaction event, and the worker's response::

    {"version": 1, "uuid": "5f0c...", "event": "beforeEach", "transaction": {...}}
    {"version": 1, "uuid": "5f0c...", "event": "beforeEach", "transaction": {...}}

Run-wide events (``beforeAll``, ``afterAll``) carry ``transactions`` (a list)
instead of ``transaction``. The response repeats the request's ``uuid`` and
holds the transaction(s) as the worker's hooks left them.

Decoding is strict: invalid JSON, unknown keys, a wrong version or a missing
payload raise :class:`~apihooks.exceptions.WorkerProtocolError`.
"""

from __future__ import annotations

import enum
import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from apihooks.exceptions import WorkerProtocolError

PROTOCOL_VERSION = 1


class HookEvent(str, enum.Enum):
    """Events forwarded to the worker."""

    READY = "ready"
    BEFORE_ALL = "beforeAll"
    BEFORE_EACH = "beforeEach"
    BEFORE_EACH_VALIDATION = "beforeEachValidation"
    AFTER_EACH = "afterEach"
    AFTER_ALL = "afterAll"

    @property
    def is_run_wide(self) -> bool:
        return self in (HookEvent.BEFORE_ALL, HookEvent.AFTER_ALL)


class WorkerMessage(BaseModel):
    """One protocol message in either direction."""

    model_config = ConfigDict(extra="forbid")

    version: int = PROTOCOL_VERSION
    event: HookEvent
    uuid: Optional[str] = None
    transaction: Optional[dict[str, Any]] = None
    transactions: Optional[list[dict[str, Any]]] = None

    @model_validator(mode="after")
    def check_shape(self) -> WorkerMessage:
        if self.version != PROTOCOL_VERSION:
            raise ValueError(
                f"unsupported protocol version {self.version} (expected {PROTOCOL_VERSION})"
            )
        if self.event is HookEvent.READY:
            return self
        if not self.uuid:
            raise ValueError(f"'{self.event.value}' message without uuid")
        if self.event.is_run_wide:
            if self.transactions is None:
                raise ValueError(f"'{self.event.value}' message without transactions")
        elif self.transaction is None:
            raise ValueError(f"'{self.event.value}' message without transaction")
        return self


def encode_message(message: WorkerMessage) -> bytes:
    """Serialize *message* as one newline-terminated JSON line."""
    return message.model_dump_json(exclude_none=True).encode("utf-8") + b"\n"


def decode_message(line: bytes) -> WorkerMessage:
    """Parse one line received from the worker.

    Raises:
        WorkerProtocolError: If the line is not a valid protocol message.
    """
    try:
        return WorkerMessage.model_validate_json(line.strip())
    except ValidationError as exc:
        raise WorkerProtocolError(f"Malformed worker message: {exc}") from exc


def peek_uuid(line: bytes) -> Optional[str]:
    """Best-effort extraction of the uuid of a line that failed to decode."""
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(data, dict) and isinstance(data.get("uuid"), str):
        return data["uuid"]
    return None
