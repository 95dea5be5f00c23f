"""apihooks -- hook orchestration for API-contract test runs.

This package discovers, loads, sandboxes, registers, and dispatches the
user-supplied hook callbacks that run around each HTTP transaction of an
API-contract test run. Hooks written in Python are loaded in-process (trusted
or sandboxed); hooks written in any other language are delegated to a worker
process speaking a newline-delimited JSON protocol.

Typical usage from a test runner::

    from apihooks.hooks import RunnerContext, add_hooks, HookRunner

    runner = RunnerContext(configuration=config)
    await add_hooks(runner, transactions)
    hook_runner = HookRunner(runner.hooks)
    await hook_runner.run_before_all(transactions)

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: Configuration file loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
