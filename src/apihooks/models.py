"""Canonical Pydantic models shared across all apihooks modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Configuration models** -- read from ``apihooks.yml``/``apihooks.json``,
environment variables and CLI flags:
    :class:`WorkerSettings`, :class:`HookOptions`, and
    :class:`RunConfiguration`.

**Runtime models** -- created by the test runner and handed to hooks:
    :class:`Transaction`.

All models use Pydantic v2. Models that accept runner-defined extensions use
``extra="allow"`` so that unknown keys are preserved in ``model_extra``.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LANGUAGE = "python"
"""The host language; hook files in this language are loaded in-process."""


# --- Configuration ---


class WorkerSettings(BaseModel):
    """Settings for the hooks worker process used by non-Python hooks.

    All timeouts are in seconds. ``command`` defaults to
    ``["apihooks-<language>"]`` when left unset; the resolved hook file paths
    are appended to it as arguments when the worker is spawned.
    """

    command: Optional[list[str]] = Field(
        default=None, description="Worker executable and arguments"
    )
    startup_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for the ready handshake"
    )
    request_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for each hook response"
    )
    shutdown_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a graceful exit"
    )
    max_restarts: int = Field(
        default=2, ge=0, description="Restarts attempted after a worker crash"
    )
    max_line_bytes: int = Field(
        default=16 * 1024 * 1024,
        gt=0,
        description="Largest accepted protocol line from the worker",
    )

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v: Any) -> Any:
        """Accept a single command string as well as an argv list."""
        if isinstance(v, str):
            return v.split()
        return v


class HookOptions(BaseModel):
    """Hook-related run options.

    ``hookfiles`` accepts a single glob pattern or a list of them. After
    :func:`~apihooks.hooks.orchestrator.add_hooks` runs it holds the list of
    resolved absolute paths.
    """

    model_config = ConfigDict(extra="allow")

    hookfiles: Optional[Union[str, list[str]]] = Field(
        default=None, description="Glob pattern(s) of hook files"
    )
    language: str = Field(
        default=DEFAULT_LANGUAGE, description="Language the hook files are written in"
    )
    sandbox: bool = Field(
        default=False, description="Evaluate hook code in a restricted namespace"
    )
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @field_validator("language", mode="before")
    @classmethod
    def normalize_language(cls, v: Any) -> Any:
        if v is None:
            return DEFAULT_LANGUAGE
        if isinstance(v, str):
            return v.strip().lower() or DEFAULT_LANGUAGE
        return v


class RunConfiguration(BaseModel):
    """Configuration snapshot for one test run.

    ``hooks_data`` maps virtual filenames to inline hook source strings and
    is used instead of ``options.hookfiles`` when no pattern is configured.
    It may also be given under its camel-case alias ``hooksData``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    options: HookOptions = Field(default_factory=HookOptions)
    hooks_data: dict[str, str] = Field(default_factory=dict, alias="hooksData")


# --- Runtime ---


class Transaction(BaseModel):
    """One API test case exercised by the test runner.

    The runner owns the HTTP semantics of ``request``, ``expected`` and
    ``real``; hooks receive the instance by reference and may mutate any
    field. ``fail`` is ``False``, ``True`` or a failure message.
    """

    model_config = ConfigDict(extra="allow")

    name: str = ""
    id: Optional[str] = None
    origin: dict[str, Any] = Field(default_factory=dict)
    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    full_path: Optional[str] = None
    request: dict[str, Any] = Field(default_factory=dict)
    expected: dict[str, Any] = Field(default_factory=dict)
    real: Optional[dict[str, Any]] = None
    skip: bool = False
    fail: Union[bool, str] = False
    test: dict[str, Any] = Field(default_factory=dict)
    hook_errors: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.fail is not False and self.fail != ""

    def mark_failed(self, reason: str) -> None:
        """Mark the transaction as failed by a hook and remember why."""
        self.fail = reason
        self.hook_errors.append(reason)

    def validate_changes(self, payload: dict[str, Any]) -> Transaction:
        """Return a validated copy of the transaction with *payload* merged in.

        Raises:
            pydantic.ValidationError: If the merged fields do not fit the model.
        """
        return type(self).model_validate({**self.model_dump(), **payload})

    def apply_changes(self, payload: dict[str, Any]) -> None:
        """Replace fields with the values of a worker response payload.

        The whole payload is validated before anything is assigned, so an
        invalid payload leaves the transaction untouched. Keys the model does
        not declare are stored as extras.

        Args:
            payload: The ``transaction`` object of a worker response.

        Raises:
            pydantic.ValidationError: If the payload does not fit the model.
        """
        updated = self.validate_changes(payload)
        for key in type(self).model_fields:
            if key in payload:
                setattr(self, key, getattr(updated, key))
        for key, value in (updated.model_extra or {}).items():
            if key in payload:
                setattr(self, key, value)
