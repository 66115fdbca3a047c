"""CLI entry point for stepkeeper.

This module provides the Typer-based CLI with commands:
- stepkeeper run: Run the tracker against the configured sources
- stepkeeper validate: Validate configuration
- stepkeeper status: Show the persisted tracking state
- stepkeeper history: List completed sessions
- stepkeeper clear-history: Remove completed sessions (keeps the total)
- stepkeeper clear-total: Zero the lifetime total

Exit codes:
- 0: Success
- 1: Configuration error
- 3: Precondition failure (e.g. clearing history while a session is open)
- 4: Fatal error
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sqlite3
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from stepkeeper import __version__
from stepkeeper.config import load_config
from stepkeeper.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
)
from stepkeeper.logging import configure_logging, get_logger
from stepkeeper.paths import DB_NAME, get_default_state_dir
from stepkeeper.sources import HealthProviderClient, JsonLinesSensor
from stepkeeper.state import SQLiteStateStore, StoreError
from stepkeeper.tracking import PersistenceScheduler, StepTracker

if TYPE_CHECKING:
    import structlog

    from stepkeeper.config.schema import Config
    from stepkeeper.tracking import UpdateSubscription


class ExitCode(IntEnum):
    """CLI exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    PRECONDITION_FAILED = 3
    FATAL_ERROR = 4


app = typer.Typer(
    name="stepkeeper",
    help="stepkeeper - session step tracking that survives restarts.",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"stepkeeper {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """stepkeeper - session step tracking that survives restarts."""


def _error(message: str) -> None:
    typer.echo(typer.style(f"✗ {message}", fg=typer.colors.RED), err=True)


def _resolve_state_dir(state_dir: Path | None, config: Path | None) -> Path:
    """Pick the state directory: --state-dir, then --config's state section, then XDG."""
    if state_dir is not None:
        return state_dir.expanduser()
    if config is not None:
        try:
            return load_config(config).state.get_directory()
        except ConfigError as e:
            _error(f"Configuration error: {e}")
            raise typer.Exit(ExitCode.CONFIG_ERROR) from e
    return get_default_state_dir()


def _open_existing_store(state_dir: Path) -> SQLiteStateStore:
    """Open the state database, exiting cleanly if there is none yet."""
    db_path = state_dir / DB_NAME
    if not db_path.exists():
        typer.echo(
            typer.style(f"No state database found at {db_path}", fg=typer.colors.YELLOW)
        )
        typer.echo("Run 'stepkeeper run' to initialize.")
        raise typer.Exit(ExitCode.SUCCESS)
    try:
        return SQLiteStateStore(db_path)
    except (sqlite3.Error, StoreError) as e:
        _error(f"Cannot open state database: {e}")
        raise typer.Exit(ExitCode.FATAL_ERROR) from e


ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
]

StateDirOption = Annotated[
    Path | None,
    typer.Option(
        "--state-dir",
        help="State directory path.",
    ),
]


@app.command()
def validate(
    config: ConfigOption = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """Validate configuration without running.

    Loads the configuration file, expands environment variables,
    and validates against the schema. Exits with code 0 if valid,
    or code 1 if there are errors.
    """
    configure_logging(verbose=verbose, json_output=False)
    log = get_logger("stepkeeper.cli")

    try:
        cfg = load_config(config)
    except (ConfigNotFoundError, EnvironmentVariableError, ConfigValidationError) as e:
        _error(str(e))
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e
    except ConfigError as e:
        _error(str(e))
        log.exception("Configuration error")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e

    if not cfg.has_sources():
        _error("No counter source configured (add a 'provider' or 'sensor' section)")
        raise typer.Exit(ExitCode.CONFIG_ERROR)

    typer.echo(typer.style("✓ Configuration is valid", fg=typer.colors.GREEN))

    if verbose:
        typer.echo("\nConfiguration summary:")
        typer.echo(f"  Version: {cfg.version}")
        if cfg.provider:
            typer.echo(
                f"  Provider: {cfg.provider.base_url} (every {cfg.provider.poll_interval}s)"
            )
        if cfg.sensor:
            typer.echo(f"  Sensor: {cfg.sensor.get_path()}")
        typer.echo(f"  State directory: {cfg.state.get_directory()}")
        typer.echo(f"  Save interval: {cfg.tracking.save_interval}s")
        typer.echo(f"  Stale session after: {cfg.tracking.staleness_hours}h")
        typer.echo(f"  Notifications: {'enabled' if cfg.notifications.enabled else 'disabled'}")

    raise typer.Exit(ExitCode.SUCCESS)


@app.command("run")
def run_tracker(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
    start: Annotated[
        bool,
        typer.Option(
            "--start",
            help="Start a session if none is open.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
) -> None:
    """Run the tracker until interrupted (Ctrl+C).

    An open session is left open on exit; the next run recovers it and
    attributes the steps taken in between.
    """
    configure_logging(verbose=verbose)
    log = get_logger("stepkeeper.cli")

    try:
        cfg = load_config(config)
    except ConfigError as e:
        _error(f"Configuration error: {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e

    if not cfg.has_sources():
        _error("No counter source configured (add a 'provider' or 'sensor' section)")
        raise typer.Exit(ExitCode.CONFIG_ERROR)

    directory = state_dir.expanduser() if state_dir else cfg.state.get_directory()
    db_path = directory / DB_NAME
    try:
        store = SQLiteStateStore(db_path, timeout=cfg.tracking.io_timeout)
    except (sqlite3.Error, StoreError, OSError) as e:
        _error(f"Cannot open state database: {e}")
        raise typer.Exit(ExitCode.FATAL_ERROR) from e
    log.info("Initialized state store", path=str(db_path))

    try:
        code = asyncio.run(_run_async(cfg, store, start, log))
    finally:
        store.close()

    raise typer.Exit(code)


async def _run_async(
    cfg: Config,
    store: SQLiteStateStore,
    start: bool,
    log: structlog.stdlib.BoundLogger,
) -> ExitCode:
    """Run the tracker until SIGINT/SIGTERM.

    Args:
        cfg: Configuration object
        store: Opened state store
        start: Whether to open a session if none is open
        log: Logger instance

    Returns:
        Process exit code
    """
    provider = HealthProviderClient.from_config(cfg.provider) if cfg.provider else None
    sensor = JsonLinesSensor.from_config(cfg.sensor) if cfg.sensor else None

    tracker = StepTracker(
        store,
        sensor=sensor,
        provider=provider,
        config=cfg.tracking,
        notifications=cfg.notifications,
        poll_interval=cfg.provider.poll_interval if cfg.provider else 30.0,
    )

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(signum: int) -> None:
        typer.echo(f"\n⚡ Received {signal.Signals(signum).name}, shutting down gracefully...")
        shutdown.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, request_shutdown, signum)

    printer: asyncio.Task[None] | None = None
    try:
        await tracker.initialize()
        log.info("Tracker ready", recovery=tracker.recovery_outcome.value)

        if start and not tracker.is_tracking() and not await tracker.start_tracking():
            _error("Could not start tracking: no counter source is available")
            return ExitCode.FATAL_ERROR

        typer.echo(
            typer.style(
                "🚶 Tracking steps" if tracker.is_tracking() else "⏸ Idle (use --start)",
                fg=typer.colors.GREEN,
                bold=True,
            )
        )
        typer.echo("Press Ctrl+C to exit.")

        printer = asyncio.create_task(_print_updates(tracker.subscribe_updates()))
        await shutdown.wait()

    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        await tracker.dispose()
        if printer is not None:
            printer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await printer
        if provider is not None:
            await provider.aclose()

    typer.echo()
    typer.echo(typer.style("Tracker stopped", bold=True))
    typer.echo(f"  Session steps: {tracker.get_session_steps()}")
    typer.echo(f"  Total steps: {tracker.get_total_steps()}")
    if tracker.is_tracking():
        typer.echo("  Session left open; it will be recovered on the next run.")
    return ExitCode.SUCCESS


async def _print_updates(subscription: UpdateSubscription) -> None:
    async for snapshot in subscription:
        typer.echo(
            f"  total={snapshot.total_steps} session={snapshot.session_steps} "
            f"counter={snapshot.system_cumulative} "
            f"tracking={'yes' if snapshot.is_tracking else 'no'}"
        )


@app.command()
def status(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Show the persisted tracking state.

    Reads the state database without running recovery, so an open session
    is shown as it was last flushed.
    """
    directory = _resolve_state_dir(state_dir, config)
    store = _open_existing_store(directory)

    try:
        loaded = PersistenceScheduler(store).load()
    finally:
        store.close()

    state = loaded.state
    ledger = loaded.ledger

    typer.echo(typer.style("stepkeeper Status", bold=True))
    typer.echo("─" * 40)
    typer.echo(f"State directory: {directory}")
    typer.echo()

    typer.echo(typer.style("Session:", bold=True))
    if state.is_tracking and state.session_start_time:
        typer.echo(f"  Tracking since: {state.session_start_time.isoformat()}")
        typer.echo(f"  Session steps: {state.session_steps}")
    else:
        typer.echo("  Not tracking")
    if state.last_checkpoint_time:
        typer.echo(f"  Last reading: {state.last_checkpoint_time.isoformat()}")
    else:
        typer.echo("  Last reading: (none)")
    typer.echo(f"  Counter: {state.system_cumulative}")

    typer.echo()
    typer.echo(typer.style("Totals:", bold=True))
    typer.echo(f"  Total steps: {ledger.total(state.is_tracking, state.session_steps)}")
    typer.echo(f"  Completed sessions: {len(ledger)}")

    if loaded.corrupt_keys or loaded.skipped_sessions:
        typer.echo()
        typer.echo(
            typer.style(
                f"  Discarded records: {', '.join(loaded.corrupt_keys) or 'none'}; "
                f"skipped sessions: {loaded.skipped_sessions}",
                fg=typer.colors.YELLOW,
            )
        )

    raise typer.Exit(ExitCode.SUCCESS)


@app.command()
def history(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum sessions to show (most recent first).",
            min=1,
        ),
    ] = 20,
) -> None:
    """List completed sessions."""
    directory = _resolve_state_dir(state_dir, config)
    store = _open_existing_store(directory)

    try:
        ledger = PersistenceScheduler(store).load().ledger
    finally:
        store.close()

    sessions = list(ledger.history())
    if not sessions:
        typer.echo("No completed sessions.")
        raise typer.Exit(ExitCode.SUCCESS)

    shown = sessions[-limit:][::-1]
    typer.echo(typer.style(f"Sessions ({len(shown)} of {len(sessions)})", bold=True))
    typer.echo("─" * 60)
    for session in shown:
        minutes = session.duration_seconds / 60
        typer.echo(
            f"  {session.start_time.isoformat()}  {minutes:7.1f} min  {session.steps:>7} steps"
        )
    typer.echo()
    typer.echo(f"Total steps: {ledger.lifetime_total}")

    raise typer.Exit(ExitCode.SUCCESS)


@app.command("clear-history")
def clear_history(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Remove all completed sessions. The total step count is kept.

    Refused while a session is open. Do not run while 'stepkeeper run' is
    active on the same state directory.
    """
    _admin_command(state_dir, config, total=False)


@app.command("clear-total")
def clear_total(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Zero the total step count.

    Refused unless the history is empty and no session is open.
    """
    _admin_command(state_dir, config, total=True)


def _admin_command(state_dir: Path | None, config: Path | None, *, total: bool) -> None:
    directory = _resolve_state_dir(state_dir, config)
    store = _open_existing_store(directory)

    try:
        persistence = PersistenceScheduler(store)
        loaded = persistence.load()
        if total:
            failure = loaded.ledger.reset_lifetime_total(loaded.state.is_tracking)
        else:
            failure = loaded.ledger.clear(loaded.state.is_tracking)

        if failure is not None:
            _error(f"Refused: {failure.value.replace('_', ' ')}")
            raise typer.Exit(ExitCode.PRECONDITION_FAILED)

        reason = "clear_total" if total else "clear_history"
        if not persistence.flush(loaded.state, loaded.ledger, reason=reason):
            _error("Could not write the state database")
            raise typer.Exit(ExitCode.FATAL_ERROR)
    finally:
        store.close()

    message = "✓ Total steps cleared" if total else "✓ Session history cleared"
    typer.echo(typer.style(message, fg=typer.colors.GREEN))
    raise typer.Exit(ExitCode.SUCCESS)
