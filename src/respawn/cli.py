# src/respawn/cli.py
"""respawn Command Line Interface.

Entry point for the respawn CLI tool.
"""

from __future__ import annotations

import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

import typer
from pydantic import ValidationError

from respawn import __version__
from respawn.cli_helpers import Runtime, build_runtime
from respawn.contracts import (
    LaunchResult,
    LaunchSummary,
    NotificationKind,
    RespawnError,
    RestartExhaustedError,
    RestartPolicy,
)
from respawn.core.config import RespawnSettings, default_config_path, load_or_create_settings
from respawn.core.logging import configure_logging, get_logger
from respawn.monitor import PauseMarker, StartupManager, SystemMonitor, read_status
from respawn.platform import agent_arguments

__all__ = ["app"]

MAX_LISTED_APPS = 10

app = typer.Typer(
    name="respawn",
    help="respawn: checkpoint your open applications and bring them back after a restart.",
    no_args_is_help=True,
)


@dataclass(frozen=True)
class CliOptions:
    """Global options captured by the callback."""

    config_path: Path | None
    verbose: bool
    json_logs: bool


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"respawn version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to config.yaml (default: ~/.respawn/config.yaml).",
    ),
) -> None:
    """respawn: checkpoint your open applications and bring them back after a restart."""
    # Configure logging before any subcommand runs; refined once settings load
    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")
    ctx.obj = CliOptions(config_path=config, verbose=verbose, json_logs=json_logs)


def _fail(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def _load_settings(ctx: typer.Context, *, log_to_file: bool = False) -> RespawnSettings:
    """Load settings and apply their logging section, honoring CLI overrides."""
    options: CliOptions = ctx.obj
    try:
        settings = load_or_create_settings(options.config_path)
    except ValidationError as e:
        typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None
    except OSError as e:
        raise _fail(f"Could not read configuration: {e}") from None

    level = "DEBUG" if options.verbose else settings.logging.level
    configure_logging(
        json_output=options.json_logs or settings.logging.json_output,
        level=level,
        log_dir=settings.paths.log_dir if log_to_file else None,
    )
    return settings


def _runtime(ctx: typer.Context, *, log_to_file: bool = False) -> Runtime:
    settings = _load_settings(ctx, log_to_file=log_to_file)
    try:
        return build_runtime(settings, config_path=ctx.obj.config_path)
    except OSError as e:
        raise _fail(f"Could not prepare data directory {settings.data_dir}: {e}") from None


def _startup_manager(runtime: Runtime) -> StartupManager:
    return StartupManager(
        runtime.settings,
        runtime.platform.registrar,
        runtime.platform.notifier,
        runtime.platform.probe,
        pid=os.getpid(),
    )


def _status_label(enabled: bool) -> str:
    return "✓ Enabled" if enabled else "✗ Disabled"


# === Auto-start ===


@app.command()
def install(ctx: typer.Context) -> None:
    """Install login auto-start."""
    runtime = _runtime(ctx)
    try:
        installed = _startup_manager(runtime).install()
    except RespawnError as e:
        raise _fail(f"Installation failed: {e}") from None

    if not installed:
        typer.echo("respawn auto-start is already installed.")
        return
    typer.echo("✓ respawn installed successfully")
    typer.echo("✓ Auto-start configured")
    typer.echo("✓ Will start on next login")
    typer.echo("\nRun 'respawn start' to start now, or restart your system.")


@app.command()
def uninstall(ctx: typer.Context) -> None:
    """Remove login auto-start. Checkpoint data is kept."""
    runtime = _runtime(ctx)
    try:
        removed = _startup_manager(runtime).uninstall()
    except RespawnError as e:
        raise _fail(f"Uninstall failed: {e}") from None

    if removed:
        typer.echo("✓ respawn uninstalled successfully")
    else:
        typer.echo("respawn auto-start was not installed.")
    typer.echo(f"Note: checkpoint data preserved in {runtime.settings.data_dir}")


@app.command("enable-autostart")
def enable_autostart(ctx: typer.Context) -> None:
    """Enable auto-start and clear the crash history that disabled it."""
    runtime = _runtime(ctx)
    try:
        _startup_manager(runtime).enable_auto_start()
    except RespawnError as e:
        raise _fail(str(e)) from None
    typer.echo("✓ Auto-start enabled")


@app.command("disable-autostart")
def disable_autostart(ctx: typer.Context) -> None:
    """Disable auto-start without uninstalling it."""
    runtime = _runtime(ctx)
    try:
        _startup_manager(runtime).disable_auto_start()
    except RespawnError as e:
        raise _fail(str(e)) from None
    typer.echo("✓ Auto-start disabled")


# === Daemon ===


@app.command()
def start(ctx: typer.Context) -> None:
    """Run the monitor in the foreground until SIGINT or SIGTERM."""
    runtime = _runtime(ctx, log_to_file=True)
    logger = get_logger(__name__)
    startup = _startup_manager(runtime)

    def initialize() -> SystemMonitor:
        startup.check_permissions(runtime.platform.permissions)
        return SystemMonitor(
            runtime.settings,
            runtime.manager,
            runtime.platform.probe,
            runtime.platform.notifier,
        )

    try:
        monitor = startup.start_with_policy(initialize)
    except RespawnError as e:
        raise _fail(str(e)) from None

    def handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal", signal=signal.Signals(signum).name)
        monitor.request_stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    crashed = False
    try:
        result = monitor.start()
        typer.echo(f"respawn running (PID {os.getpid()}), detected state: {result.state.value}")
        while not monitor.wait(1.0):
            pass
    except Exception as e:
        logger.error("respawn crashed", error=str(e), error_type=type(e).__name__, exc_info=True)
        startup.record_crash()
        crashed = True
    finally:
        monitor.stop()
        startup.release()
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if crashed:
        _respawn_after_crash(runtime, startup)
    typer.echo("respawn stopped")


def _respawn_after_crash(runtime: Runtime, startup: StartupManager) -> None:
    """Start a fresh daemon process with backoff, unless crashes disabled auto-start."""
    if startup.crash_tracker.is_disabled:
        raise _fail("respawn crashed too many times; run 'respawn enable-autostart' to re-enable")

    def spawn() -> None:
        subprocess.Popen(
            agent_arguments(runtime.settings, runtime.config_path),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    try:
        startup.restart_with_backoff(RestartPolicy(), spawn)
    except RestartExhaustedError as e:
        raise _fail(str(e)) from None
    raise _fail("respawn crashed and was restarted in a new process")


@app.command()
def pause(ctx: typer.Context) -> None:
    """Suspend scheduled checkpoints."""
    settings = _load_settings(ctx)
    try:
        PauseMarker(settings.paths).pause()
    except OSError as e:
        raise _fail(f"Failed to create pause marker: {e}") from None
    typer.echo("✓ respawn monitoring paused")
    typer.echo("Run 'respawn resume' to resume monitoring")


@app.command()
def resume(ctx: typer.Context) -> None:
    """Resume scheduled checkpoints."""
    settings = _load_settings(ctx)
    try:
        PauseMarker(settings.paths).resume()
    except OSError as e:
        raise _fail(f"Failed to remove pause marker: {e}") from None
    typer.echo("✓ respawn monitoring resumed")


# === Checkpoints ===


@app.command()
def checkpoint(ctx: typer.Context) -> None:
    """Create a checkpoint now."""
    runtime = _runtime(ctx)
    try:
        created = runtime.manager.create_checkpoint()
    except (RespawnError, OSError) as e:
        raise _fail(f"Checkpoint creation failed: {e}") from None

    typer.echo(f"✓ Checkpoint created: {created.checkpoint_id}")
    typer.echo(f"  Applications saved: {len(created.processes)}")
    typer.echo(f"  Size: {created.file_size:,} bytes")


@app.command()
def restore(
    ctx: typer.Context,
    checkpoint_id: str | None = typer.Option(
        None,
        "--checkpoint",
        "-c",
        help="Checkpoint ID to restore (default: latest).",
    ),
    silent: bool = typer.Option(
        False,
        "--silent",
        "-s",
        help="Restore without per-application output or notifications.",
    ),
) -> None:
    """Relaunch the applications recorded in a checkpoint."""
    runtime = _runtime(ctx)
    try:
        if checkpoint_id is not None:
            results = runtime.manager.restore_from_checkpoint(checkpoint_id)
        else:
            results = runtime.manager.restore_latest_checkpoint()
    except (RespawnError, OSError) as e:
        raise _fail(f"Restoration failed: {e}") from None

    if not silent:
        for result in results:
            _echo_launch_result(result)

    summary = LaunchSummary.from_results(results)
    if not silent and summary.total:
        runtime.platform.notifier.notify(
            "respawn restore complete",
            f"Restored {summary.success_count} of {summary.total} application(s)",
            NotificationKind.WARNING if summary.fail_count else NotificationKind.SUCCESS,
        )

    typer.echo(f"✓ Restored {summary.success_count} application(s)")
    if summary.fail_count:
        typer.echo(f"⚠ {summary.fail_count} application(s) failed to restore: {', '.join(summary.failed_names)}")
    if summary.all_failed:
        raise typer.Exit(1)


def _echo_launch_result(result: LaunchResult) -> None:
    if result.success:
        attempts = f" after {result.retry_count} attempts" if result.retry_count > 1 else ""
        typer.echo(f"  ✓ {result.app_name}{attempts}")
    else:
        typer.echo(f"  ✗ {result.app_name}: {result.error_msg}", err=True)


@app.command("list")
def list_checkpoints(ctx: typer.Context) -> None:
    """List available checkpoints, newest first."""
    from rich.console import Console
    from rich.table import Table

    runtime = _runtime(ctx)
    available = runtime.manager.get_available_checkpoints()
    if not available.checkpoints:
        typer.echo("No checkpoints yet. Run 'respawn checkpoint' to create one.")
        return

    table = Table(title=f"Checkpoints ({available.total_count}, {available.compressed_count} compressed)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created (UTC)")
    table.add_column("Apps", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Applications")

    for cp in available.checkpoints:
        marker = " (last used)" if cp.checkpoint_id == available.last_used else ""
        compressed = " gz" if cp.is_compressed else ""
        table.add_row(
            f"{cp.checkpoint_id}{marker}",
            cp.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(cp.app_names)),
            f"{cp.file_size:,}{compressed}",
            ", ".join(cp.app_names) or "-",
        )
    Console().print(table)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show daemon, auto-start and checkpoint status."""
    runtime = _runtime(ctx)
    settings = runtime.settings
    monitor_status = read_status(settings, runtime.platform.probe)
    available = runtime.manager.get_available_checkpoints()

    typer.echo("\n=== respawn status ===")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Running: {_status_label(monitor_status.running)}")
    typer.echo(f"Auto-start: {_status_label(runtime.platform.registrar.is_enabled())}")
    if monitor_status.paused:
        typer.echo("Status: ⏸ PAUSED")
    elif monitor_status.running:
        typer.echo(f"Status: ✓ ACTIVE - monitoring (PID {monitor_status.pid})")
    else:
        typer.echo("Status: ✗ STOPPED")
    if monitor_status.last_heartbeat is not None:
        typer.echo(f"Last heartbeat: {monitor_status.last_heartbeat:%Y-%m-%d %H:%M:%S %Z}")

    typer.echo("\nCheckpoints:")
    typer.echo(f"  Total: {available.total_count} ({available.compressed_count} compressed)")
    latest = available.latest
    if latest is None:
        typer.echo("  No checkpoints yet")
    else:
        typer.echo(f"  Latest: {latest.display_name}")
        typer.echo(f"  Apps in latest: {len(latest.app_names)}")
        for name in latest.app_names[:MAX_LISTED_APPS]:
            typer.echo(f"    - {name}")
        if len(latest.app_names) > MAX_LISTED_APPS:
            typer.echo(f"    ... and {len(latest.app_names) - MAX_LISTED_APPS} more")

    typer.echo("\nLearning:")
    if monitor_status.learning_complete:
        typer.echo(f"  Complete; top apps: {', '.join(monitor_status.top_apps) or '-'}")
    else:
        typer.echo("  In progress")
    typer.echo(f"  Restore success rate: {monitor_status.restore_success_rate:.0%}")
    if monitor_status.average_checkpoint_seconds is not None:
        typer.echo(f"  Average checkpoint time: {monitor_status.average_checkpoint_seconds:.2f}s")

    typer.echo("\nConfiguration:")
    typer.echo(f"  Config file: {ctx.obj.config_path or default_config_path()}")
    typer.echo(f"  Checkpoint interval: {settings.checkpoint.interval_minutes:g} minutes")
    typer.echo(f"  Data retention: {settings.checkpoint.retention_days} days")


if __name__ == "__main__":
    app()
