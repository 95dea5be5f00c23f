"""Tests for apihooks.hooks.orchestrator -- add_hooks routing and side effects."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from apihooks.exceptions import HookLoadError, UnsupportedConfigurationError, WorkerStartError
from apihooks.hooks import resolver
from apihooks.hooks.orchestrator import add_hooks
from apihooks.hooks.registry import HookRegistry
from apihooks.hooks.runner import HookRunner
from apihooks.hooks.trusted import TrustedLoader
from apihooks.worker import WorkerState


NAME = "Machines > Machines collection > Get Machines"

SANDBOXED_SOURCE = (
    "def fail(transaction):\n"
    "    transaction.fail = 'failed in sandboxed hook'\n"
    f"after({NAME!r}, fail)\n"
)


class _SpyEngine:
    """Records which sandbox entry point was used."""

    def __init__(self) -> None:
        self.files: list[str] = []
        self.sources: dict[str, str] = {}

    def evaluate_files(self, paths, registry) -> None:
        self.files.extend(paths)

    def evaluate_sources(self, sources, registry) -> None:
        self.sources.update(sources)


class _SpyLoader(TrustedLoader):
    def __init__(self) -> None:
        super().__init__()
        self.files: list[str] = []

    def load_files(self, paths, registry) -> list[Any]:
        self.files.extend(paths)
        return []


# ---------------------------------------------------------------------------
# Registry setup
# ---------------------------------------------------------------------------


class TestRegistrySetup:
    def test_creates_registry_sharing_logs(self, make_runner) -> None:
        runner = make_runner()
        asyncio.run(add_hooks(runner, []))

        assert isinstance(runner.hooks, HookRegistry)
        assert runner.hooks.logs is runner.logs
        assert runner.hooks.configuration is runner.configuration

    def test_indexes_transactions_by_name(self, make_runner, make_transaction) -> None:
        runner = make_runner()
        first = make_transaction()
        second = make_transaction("Machines > Machine > Delete Machine")

        asyncio.run(add_hooks(runner, [first, second]))

        assert runner.hooks.transactions == {first.name: first, second.name: second}

    def test_replaces_previous_registry(self, make_runner) -> None:
        runner = make_runner()
        asyncio.run(add_hooks(runner, []))
        previous = runner.hooks
        asyncio.run(add_hooks(runner, []))

        assert runner.hooks is not previous

    def test_no_pattern_does_not_glob(
        self, make_runner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def fail(*args, **kwargs):
            raise AssertionError("glob must not be called")

        monkeypatch.setattr(resolver.glob, "glob", fail)
        runner = make_runner()

        asyncio.run(add_hooks(runner, []))

        assert runner.hooks.is_empty()
        assert runner.hooks_worker_client is None


# ---------------------------------------------------------------------------
# Trusted hook files
# ---------------------------------------------------------------------------


class TestTrustedFiles:
    def test_loads_hook_files(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "machines_hooks.py"))

        asyncio.run(add_hooks(runner, []))

        assert len(runner.hooks.get_after(NAME)) == 1

    def test_resolved_paths_stored_on_options(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "multifile" / "**" / "*.py"))

        asyncio.run(add_hooks(runner, []))

        expected = [str((fixtures_dir / "multifile" / "multifile_hooks.py").resolve())]
        assert runner.configuration.options.hookfiles == expected

    def test_multiple_patterns(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(
            hookfiles=[
                str(fixtures_dir / "machines_hooks.py"),
                str(fixtures_dir / "multifile" / "*.py"),
            ]
        )

        asyncio.run(add_hooks(runner, []))

        assert len(runner.hooks.get_after(NAME)) == 1
        assert len(runner.hooks.get_before("Machines > Machine > Delete Machine")) == 1

    def test_uses_runner_loader(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "machines_hooks.py"))
        runner.trusted_loader = _SpyLoader()

        asyncio.run(add_hooks(runner, []))

        assert runner.trusted_loader.files == runner.configuration.options.hookfiles

    def test_groupless_names_stripped(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "groupless_names.py"))

        asyncio.run(add_hooks(runner, []))

        assert list(runner.hooks.before_hooks) == ["Machines collection > Get Machines"]
        assert list(runner.hooks.after_hooks) == ["Machines collection > Get Machines"]

    def test_load_error_propagates(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "broken" / "broken_trusted.py"))

        with pytest.raises(HookLoadError):
            asyncio.run(add_hooks(runner, []))

    def test_hooks_run_end_to_end(
        self, make_runner, make_transaction, fixtures_dir: Path
    ) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "extra_hooks.py"))
        transaction = make_transaction()

        async def scenario() -> None:
            await add_hooks(runner, [transaction])
            hook_runner = HookRunner(runner.hooks)
            await hook_runner.run_before_all([transaction])
            await hook_runner.run_before(transaction)

        asyncio.run(scenario())

        assert transaction.request["headers"]["Authorization"] == "Bearer token"
        assert transaction.request["headers"]["X-Marked"] == "yes"
        assert runner.logs[0]["content"] == "starting 1 transaction(s)"


# ---------------------------------------------------------------------------
# Sandboxed hook files and inline sources
# ---------------------------------------------------------------------------


class TestSandboxed:
    def test_hook_files_go_to_sandbox(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(
            hookfiles=str(fixtures_dir / "sandboxed" / "*.py"), sandbox=True
        )
        runner.sandbox = _SpyEngine()

        asyncio.run(add_hooks(runner, []))

        assert runner.sandbox.files == [
            str((fixtures_dir / "sandboxed" / "sandboxed_hook.py").resolve())
        ]

    def test_hook_files_evaluated(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(
            hookfiles=str(fixtures_dir / "sandboxed" / "*.py"), sandbox=True
        )

        asyncio.run(add_hooks(runner, []))

        assert len(runner.hooks.get_after(NAME)) == 1

    def test_trusted_file_rejected_in_sandbox(self, make_runner, fixtures_dir: Path) -> None:
        runner = make_runner(hookfiles=str(fixtures_dir / "machines_hooks.py"), sandbox=True)

        with pytest.raises(HookLoadError):
            asyncio.run(add_hooks(runner, []))

    def test_inline_sources_registered(self, make_runner) -> None:
        runner = make_runner(hooks_data={"some-filename.py": SANDBOXED_SOURCE}, sandbox=True)

        asyncio.run(add_hooks(runner, []))

        assert list(runner.hooks.after_hooks) == [NAME]

    def test_inline_groupless_name_stripped(self, make_runner) -> None:
        source = "after(' > Machines collection > Get Machines', lambda t: None)\n"
        runner = make_runner(hooks_data={"inline.py": source}, sandbox=True)

        asyncio.run(add_hooks(runner, []))

        assert list(runner.hooks.after_hooks) == ["Machines collection > Get Machines"]

    def test_inline_sources_without_sandbox_not_implemented(self, make_runner) -> None:
        runner = make_runner(hooks_data={"some-filename.py": SANDBOXED_SOURCE})

        with pytest.raises(UnsupportedConfigurationError, match="not implemented"):
            asyncio.run(add_hooks(runner, []))

    def test_hookfiles_take_precedence_over_inline(
        self, make_runner, fixtures_dir: Path
    ) -> None:
        runner = make_runner(
            hooks_data={"inline.py": SANDBOXED_SOURCE},
            hookfiles=str(fixtures_dir / "sandboxed" / "*.py"),
            sandbox=True,
        )
        runner.sandbox = _SpyEngine()

        asyncio.run(add_hooks(runner, []))

        assert runner.sandbox.sources == {}
        assert len(runner.sandbox.files) == 1

    def test_sandboxed_hook_fails_transaction(self, make_runner, make_transaction) -> None:
        runner = make_runner(hooks_data={"inline.py": SANDBOXED_SOURCE}, sandbox=True)
        transaction = make_transaction()

        async def scenario() -> None:
            await add_hooks(runner, [transaction])
            await HookRunner(runner.hooks).run_after(transaction)

        asyncio.run(scenario())

        assert transaction.fail == "failed in sandboxed hook"


# ---------------------------------------------------------------------------
# Delegated languages
# ---------------------------------------------------------------------------


class TestWorkerDelegation:
    def test_non_python_language_starts_worker(
        self, make_runner, worker_settings, fixtures_dir: Path
    ) -> None:
        runner = make_runner(
            language="ruby",
            hookfiles=str(fixtures_dir / "machines_hooks.py"),
            worker=worker_settings(),
        )
        runner.trusted_loader = _SpyLoader()

        async def scenario() -> None:
            await add_hooks(runner, [])
            try:
                client = runner.hooks_worker_client
                assert client is not None
                assert client.state is WorkerState.READY
                assert client.command[-1] == str((fixtures_dir / "machines_hooks.py").resolve())
            finally:
                await runner.hooks_worker_client.stop()

        asyncio.run(scenario())

        assert runner.trusted_loader.files == []
        assert len(runner.hooks.before_each_hooks) == 1
        assert len(runner.hooks.after_all_hooks) == 1

    def test_worker_start_failure_propagates(self, make_runner, worker_settings) -> None:
        runner = make_runner(language="ruby", worker=worker_settings("exit"))

        with pytest.raises(WorkerStartError):
            asyncio.run(add_hooks(runner, []))
