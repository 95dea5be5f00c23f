"""Typer application and CLI entry point for apihooks.

The CLI loads a run's hooks exactly the way a test runner would and reports
what got registered, which makes it the quickest way to check a hook setup
before a full contract test run::

    apihooks list --hookfiles './hooks/**/*.py' --sandbox

:func:`main` is the console-script entry point declared in ``pyproject.toml``.
:class:`~apihooks.exceptions.ApihooksError` subclasses exit with their
``exit_code``.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, Optional

import typer

from apihooks import __version__
from apihooks.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="apihooks",
    help="Load and inspect hooks for API-contract test runs.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"apihooks {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Root callback: set up output and logging before every sub-command."""
    from apihooks.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] [%(name)s] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            stream=sys.stderr,
        )


@app.command("list")
def list_command(
    hookfiles: Optional[list[str]] = typer.Option(
        None, "--hookfiles", "-f", help="Hook file glob pattern (repeatable)."
    ),
    language: Optional[str] = typer.Option(
        None, "--language", "-l", help="Language the hook files are written in."
    ),
    sandbox: Optional[bool] = typer.Option(
        None, "--sandbox/--no-sandbox", help="Evaluate hooks in the sandbox."
    ),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path or URL."
    ),
) -> None:
    """Load hooks per the resolved configuration and list what was registered."""
    from apihooks.config import resolve_configuration
    from apihooks.exceptions import ApihooksError
    from apihooks.output import error, info, print_table, success

    try:
        configuration = resolve_configuration(
            config_source=config,
            cli_hookfiles=hookfiles,
            cli_language=language,
            cli_sandbox=sandbox,
        )
        rows = asyncio.run(_load_summary(configuration))
    except ApihooksError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if configuration.options.hookfiles:
        info(f"Hook files: {', '.join(_as_list(configuration.options.hookfiles))}")
    if not rows:
        info("No hooks registered.")
        return
    print_table(
        ["Phase", "Transaction", "Callback"],
        [list(row) for row in rows],
        title="Registered hooks",
    )
    success(f"{len(rows)} hook(s) registered.")


async def _load_summary(configuration: Any) -> list[tuple[str, str, str]]:
    from apihooks.hooks import RunnerContext, add_hooks

    runner = RunnerContext(configuration=configuration)
    try:
        await add_hooks(runner, [])
        return runner.hooks.summary() if runner.hooks is not None else []
    finally:
        if runner.hooks_worker_client is not None:
            await runner.hooks_worker_client.stop()


def _as_list(value: Any) -> list[str]:
    return [value] if isinstance(value, str) else list(value)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``apihooks`` console script.

    Unhandled :class:`~apihooks.exceptions.ApihooksError` instances cause a
    clean exit with the error's ``exit_code``; anything else exits with
    :data:`~apihooks.exit_codes.EXIT_GENERIC_FAILURE`.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from apihooks.exceptions import ApihooksError
        from apihooks.output import error

        if isinstance(exc, ApihooksError):
            error(str(exc))
            sys.exit(exc.exit_code)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
