"""Shared test fixtures for apihooks.

Provides the fixture directory, transaction and runner-context factories,
and the command line for the fake hooks worker used by the worker tests.
These fixtures are automatically discovered by pytest and available to all
test modules without explicit imports.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

from apihooks.hooks import RunnerContext
from apihooks.models import HookOptions, RunConfiguration, Transaction, WorkerSettings
from apihooks.output import reset_output


FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_WORKER = FIXTURES_DIR / "fake_worker.py"

MACHINES_NAME = "Machines > Machines collection > Get Machines"


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. CliRunner swaps those streams per invocation, so a
    cached manager would write to a closed file in the next test.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep APIHOOKS_* variables from the developer's shell out of tests."""
    for name in ("APIHOOKS_HOOKFILES", "APIHOOKS_LANGUAGE", "APIHOOKS_SANDBOX"):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Return a factory building transactions with sensible defaults."""

    def _make(name: str = MACHINES_NAME, **fields: Any) -> Transaction:
        fields.setdefault("request", {"method": "GET", "uri": "/machines", "headers": {}})
        fields.setdefault("expected", {"statusCode": "200"})
        return Transaction(name=name, **fields)

    return _make


@pytest.fixture
def make_runner() -> Callable[..., RunnerContext]:
    """Return a factory building a runner context from option keywords.

    ``hooks_data`` is routed to the run configuration; every other keyword
    becomes a hook option.
    """

    def _make(hooks_data: dict[str, str] | None = None, **options: Any) -> RunnerContext:
        configuration = RunConfiguration(
            options=HookOptions(**options), hooks_data=hooks_data or {}
        )
        return RunnerContext(configuration=configuration)

    return _make


# ---------------------------------------------------------------------------
# Fake hooks worker
# ---------------------------------------------------------------------------


def worker_command(mode: str = "echo") -> list[str]:
    """Command line running the fake worker in *mode*."""
    return [sys.executable, str(FAKE_WORKER), mode]


@pytest.fixture
def worker_settings() -> Callable[..., WorkerSettings]:
    """Return a factory of worker settings with short timeouts, pointing at the fake worker."""

    def _make(mode: str = "echo", **overrides: Any) -> WorkerSettings:
        values: dict[str, Any] = {
            "command": worker_command(mode),
            "startup_timeout": 10.0,
            "request_timeout": 2.0,
            "shutdown_timeout": 2.0,
        }
        values.update(overrides)
        return WorkerSettings(**values)

    return _make
