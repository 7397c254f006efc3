"""Command-line interface for the activity time tracker.

Each invocation restores state from the local store, so a timer started by
one command keeps running (by its persisted start time) until a later
``stop``.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from .main import build_controller, configure_logging
from .tracker.controllers import CONFIG_DIR, AppController, ConfigManager
from .tracker.errors import TrackerError
from .tracker.formatting import (
    format_date_time,
    format_duration,
    format_minutes_to_hours,
    relative_time,
)
from .tracker.models import SWATCHES

app = typer.Typer(help="Local-first activity time tracker.")
mirror_app = typer.Typer(help="Manage the spreadsheet mirror.", no_args_is_help=True)
app.add_typer(mirror_app, name="mirror")


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    config_dir: Optional[Path] = typer.Option(
        None, "--config-dir", help="Directory holding config.toml and data."
    ),
) -> None:
    config_manager = ConfigManager(config_dir or CONFIG_DIR)
    configure_logging(config_manager.config_dir / "logs", verbose=verbose)
    ctx.obj = config_manager


@contextmanager
def _controller(
    ctx: typer.Context, tick_interval: Optional[float] = None, auto_connect: bool = True
) -> Iterator[AppController]:
    controller: Optional[AppController] = None
    try:
        controller = build_controller(ctx.obj, tick_interval=tick_interval, auto_connect=auto_connect)
        yield controller
    except TrackerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    except FileNotFoundError as exc:
        typer.echo(f"Error: file not found: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        if controller is not None:
            controller.close()


def _resolve_activity(controller: AppController, value: str) -> str:
    """Accept an activity id or a case-insensitive name."""
    key = value.strip().lower()
    for activity in controller.dispatch("list_activities"):
        if activity.id == value or activity.name.lower() == key:
            return activity.id
    return value


@app.command()
def activities(ctx: typer.Context) -> None:
    """List activities with their totals."""
    with _controller(ctx) as controller:
        stats = controller.dispatch("get_stats")
        if not stats.activities:
            typer.echo("No activities yet. Add one to get started!")
            return
        for summary in stats.activities:
            activity = summary.activity
            plural = "" if summary.session_count == 1 else "s"
            last = (
                f"Last: {relative_time(summary.last_session_end)}"
                if summary.last_session_end
                else "No sessions yet"
            )
            typer.echo(
                f"{activity.name:<20} {format_minutes_to_hours(activity.total_minutes):>9}  "
                f"{summary.session_count} session{plural:<2} {last:<22} {activity.color} {activity.id}"
            )


@app.command()
def add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Activity name."),
    color: Optional[str] = typer.Option(
        None, "--color", "-c", help=f"Swatch color: one of {', '.join(SWATCHES)} or any #RRGGBB."
    ),
) -> None:
    """Create a new activity."""
    with _controller(ctx) as controller:
        activity = controller.dispatch("create_activity", name=name, color=color)
        typer.echo(f"Added {activity.name} ({activity.id})")


@app.command()
def delete(
    ctx: typer.Context,
    activity: str = typer.Argument(..., help="Activity id or name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete an activity and all of its sessions."""
    if not yes:
        typer.confirm("Delete this activity? This will also delete all its sessions.", abort=True)
    with _controller(ctx) as controller:
        removed = controller.dispatch("delete_activity", activity_id=_resolve_activity(controller, activity))
        typer.echo(f"Deleted activity and {removed} session(s)")


@app.command()
def start(ctx: typer.Context, activity: str = typer.Argument(..., help="Activity id or name.")) -> None:
    """Start the timer for an activity."""
    with _controller(ctx) as controller:
        session = controller.dispatch("start_timer", activity_id=_resolve_activity(controller, activity))
        typer.echo(f"Started {session.activity_name} at {format_date_time(session.start_time)}")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the running timer and record the session."""
    with _controller(ctx) as controller:
        session = controller.dispatch("stop_timer")
        typer.echo(f"Stopped {session.activity_name} after {format_duration(session.duration)}")


@app.command()
def status(
    ctx: typer.Context,
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep refreshing the elapsed time."),
) -> None:
    """Show the running timer."""
    tick = ctx.obj.config.tick_interval_seconds if watch else None
    with _controller(ctx, tick_interval=tick or None) as controller:
        typer.echo(controller.status_line())
        if not watch or controller.dispatch("current_session") is None:
            return

        def on_event(event: str, payload) -> None:
            if event == "tick":
                typer.echo(f"\r{controller.status_line()}", nl=False)

        controller.subscribe(on_event)
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            typer.echo("")


@app.command()
def sessions(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of sessions to show."),
) -> None:
    """Show the most recent completed sessions."""
    with _controller(ctx) as controller:
        recent = sorted(controller.dispatch("list_sessions"), key=lambda s: s.end_time or 0, reverse=True)
        if not recent:
            typer.echo("No completed sessions yet")
            return
        for session in recent[:limit]:
            typer.echo(
                f"{format_date_time(session.start_time):<20} {session.activity_name:<20} "
                f"{format_duration(session.duration or 0)}"
            )


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show today's and this week's totals."""
    with _controller(ctx) as controller:
        figures = controller.dispatch("get_stats")
        typer.echo(f"Today:     {format_minutes_to_hours(figures.today_minutes)}")
        typer.echo(f"This week: {format_minutes_to_hours(figures.week_minutes)}")
        typer.echo(f"Sessions today: {figures.today_session_count}")


@app.command("export")
def export_data(
    ctx: typer.Context,
    path: Optional[Path] = typer.Argument(None, help="Target JSON file."),
) -> None:
    """Write a JSON backup of all activities and sessions."""
    with _controller(ctx) as controller:
        target = controller.dispatch("export_to_file", path=path)
        typer.echo(f"Exported to {target}")


@app.command("import")
def import_data(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Backup JSON file."),
) -> None:
    """Replace local data with the content of a backup file."""
    with _controller(ctx) as controller:
        count = controller.dispatch("import_snapshot", path=path)
        typer.echo(f"Imported {count} activities")


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete all activities and sessions."""
    if not yes:
        typer.confirm(
            "This will delete all activities and sessions. This cannot be undone! Are you sure?",
            abort=True,
        )
    with _controller(ctx) as controller:
        controller.dispatch("clear_all_data")
        typer.echo("All data has been cleared")


def _report(controller: AppController, future, timeout: float) -> None:
    if future is None:
        typer.echo(f"Mirror status: {controller.sync_status.value if controller.sync_status else 'off'}")
        return
    result = future.result(timeout=timeout)
    if result.error is not None:
        typer.echo(f"Mirror {result.operation} failed: {result.error}", err=True)
    typer.echo(f"Mirror status: {controller.sync_status.value}")


@mirror_app.command("connect")
def mirror_connect(ctx: typer.Context) -> None:
    """Find or create the mirror document and copy all data to it."""
    with _controller(ctx) as controller:
        future = controller.dispatch("connect_mirror")
        _report(controller, future, controller.config.shutdown_timeout_seconds or None)


@mirror_app.command("disconnect")
def mirror_disconnect(ctx: typer.Context) -> None:
    """Stop mirroring. The external document is kept."""
    with _controller(ctx, auto_connect=False) as controller:
        controller.dispatch("disconnect_mirror")
        typer.echo("Mirror disconnected; working locally only")


@mirror_app.command("sync")
def mirror_sync(ctx: typer.Context) -> None:
    """Rewrite the mirror document from local data."""
    with _controller(ctx) as controller:
        future = controller.dispatch("sync_now")
        _report(controller, future, controller.config.shutdown_timeout_seconds or None)
