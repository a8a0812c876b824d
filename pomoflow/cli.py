"""Pomoflow CLI -- a pomodoro timer that keeps time while you're away."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Optional

import typer
from pydantic import ValidationError
from rich.logging import RichHandler

from pomoflow import config as cfg
from pomoflow import display
from pomoflow.coordinator import SessionCoordinator
from pomoflow.engine import CountdownEngine
from pomoflow.errors import PersistenceError
from pomoflow.local_store import LocalStore
from pomoflow.models import AppConfig, SessionKind, Settings, TickSourceKind
from pomoflow.notifier import NotificationDispatcher
from pomoflow.persistence import SessionStore, open_store
from pomoflow.rotation import next_duration, pomodoros_until_long_break
from pomoflow.ticker import PollingTickSource, TickSource, make_tick_source
from pomoflow.visibility import VisibilityReconciler, install_job_control_hooks

log = logging.getLogger(__name__)

app = typer.Typer(
    name="pomoflow",
    help="A pomodoro timer that keeps counting while you're away.",
    no_args_is_help=True,
)

REFRESH_INTERVAL = 0.2  # seconds between progress bar redraws


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=display.console, rich_tracebacks=True)],
        )


def _build(
    config: AppConfig, tick_source: Optional[TickSource] = None
) -> tuple[SessionCoordinator, Optional[SessionStore]]:
    """Wire up the timer for the configured identity and load its settings."""
    identity = cfg.current_identity(config)
    store = open_store(config, identity)
    engine = CountdownEngine(tick_source or make_tick_source(config.tick_source))
    notifier = NotificationDispatcher(
        sound_enabled=config.sound_enabled,
        system_enabled=config.system_notifications,
    )
    coordinator = SessionCoordinator(engine, LocalStore(), store=store, notifier=notifier)
    coordinator.load()
    return coordinator, store


def _require_store() -> SessionStore:
    """Open the store for the signed-in user, or exit with a hint."""
    config = cfg.load_config()
    store = open_store(config, cfg.current_identity(config))
    if store is None:
        display.print_warning("Not signed in. Use `pomoflow config --user ID` first.")
        raise typer.Exit(1)
    return store


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


def _watch(
    coordinator: SessionCoordinator,
    finished: threading.Event,
    reconciler: Optional[VisibilityReconciler] = None,
) -> bool:
    """Draw the countdown until the segment ends. False if interrupted."""
    source = coordinator.engine.tick_source
    snap = coordinator.snapshot()
    total = next_duration(snap.kind, coordinator.settings)
    progress = display.create_timer_progress()
    try:
        with progress:
            task = progress.add_task(
                display.timer_description(snap), total=total, clock=snap.clock
            )
            while not finished.is_set():
                if reconciler is not None:
                    reconciler.reconcile()
                if isinstance(source, PollingTickSource):
                    source.pump()
                snap = coordinator.snapshot()
                progress.update(
                    task,
                    completed=total - snap.seconds_remaining,
                    description=display.timer_description(snap),
                    clock=snap.clock,
                )
                time.sleep(REFRESH_INTERVAL)
    except KeyboardInterrupt:
        return False
    return True


def _run_segment(
    coordinator: SessionCoordinator,
    finished: threading.Event,
    reconciler: Optional[VisibilityReconciler] = None,
) -> bool:
    """Run the primed segment to completion. False if the user quits."""
    finished.clear()
    coordinator.start()
    while not _watch(coordinator, finished, reconciler):
        coordinator.pause()
        if finished.is_set():
            break
        choice = typer.prompt(
            "Paused. [r]esume, re[s]et or [q]uit", default="r", show_default=False
        ).strip().lower()
        if choice.startswith("q"):
            return False
        if choice.startswith("s"):
            coordinator.reset()
            display.print_info("Timer reset.")
            return True
        coordinator.resume()
    return True


def _capture_accomplishment(coordinator: SessionCoordinator) -> None:
    if coordinator.awaiting_accomplishment is None:
        return
    notes = typer.prompt("What did you accomplish?", default="", show_default=False)
    coordinator.submit_accomplishment(notes.strip() or None)
    display.print_success("Session saved.")


@app.command()
def run(
    kind: SessionKind = typer.Option(
        SessionKind.FOCUS, "--kind", "-k", help="Segment to start with"
    ),
    once: bool = typer.Option(False, "--once", help="Stop after one segment"),
) -> None:
    """Run pomodoro segments until you quit."""
    config = cfg.load_config()
    coordinator, store = _build(config)
    if kind != coordinator.kind:
        coordinator.switch_kind(kind)
    if not coordinator.is_authenticated:
        display.print_info("Not signed in: sessions will not be recorded.")

    finished = threading.Event()
    coordinator.engine.on_complete(lambda _kind: finished.set())
    reconciler = VisibilityReconciler(coordinator.engine)
    uninstall = install_job_control_hooks(reconciler)
    try:
        while True:
            snap = coordinator.snapshot()
            if not snap.is_running:
                if snap.kind == SessionKind.FOCUS:
                    previous = coordinator.previous_focus_session()
                    if previous is not None:
                        display.print_previous_session(previous)
                if not typer.confirm(f"Start {snap.kind.label} ({snap.clock})?", default=True):
                    break
            if not _run_segment(coordinator, finished, reconciler):
                break
            _capture_accomplishment(coordinator)
            display.print_progress_line(
                coordinator.pomodoros_completed,
                pomodoros_until_long_break(
                    coordinator.pomodoros_completed, coordinator.settings.long_break_interval
                ),
            )
            if once:
                break
    finally:
        uninstall()
        coordinator.shutdown()
        if store is not None:
            store.close()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@app.command()
def settings(
    focus: Optional[int] = typer.Option(None, "--focus", help="Focus length in minutes"),
    short: Optional[int] = typer.Option(None, "--short", help="Short break in minutes"),
    long: Optional[int] = typer.Option(None, "--long", help="Long break in minutes"),
    interval: Optional[int] = typer.Option(
        None, "--interval", help="Pomodoros between long breaks"
    ),
    auto_breaks: Optional[bool] = typer.Option(
        None, "--auto-breaks/--no-auto-breaks", help="Start breaks automatically"
    ),
    auto_focus: Optional[bool] = typer.Option(
        None, "--auto-focus/--no-auto-focus", help="Start focus automatically after a break"
    ),
) -> None:
    """Show or change timer settings."""
    changes = {
        "focus_duration": focus,
        "short_break_duration": short,
        "long_break_duration": long,
        "long_break_interval": interval,
        "auto_start_breaks": auto_breaks,
        "auto_start_pomodoros": auto_focus,
    }
    changes = {k: v for k, v in changes.items() if v is not None}

    coordinator, store = _build(cfg.load_config(), PollingTickSource())
    try:
        if not changes:
            display.print_settings(coordinator.settings)
            return
        try:
            new = Settings(**{**coordinator.settings.model_dump(), **changes})
        except ValidationError as exc:
            for err in exc.errors():
                field = err["loc"][0] if err["loc"] else "settings"
                display.print_warning(f"{field}: {err['msg']}")
            raise typer.Exit(1)
        try:
            saved = coordinator.save_settings(new)
        except PersistenceError as exc:
            log.debug("Remote settings save failed: %s", exc)
            display.print_warning(
                "Settings saved on this machine, but saving them remotely failed. "
                "Please try again."
            )
            raise typer.Exit(1)
        display.print_success("Settings saved.")
        display.print_settings(saved)
    finally:
        coordinator.shutdown()
        if store is not None:
            store.close()


# ---------------------------------------------------------------------------
# History & stats
# ---------------------------------------------------------------------------


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", min=1, max=365, help="Days to include"),
    on: Optional[datetime] = typer.Option(
        None, "--date", formats=["%Y-%m-%d"], help="Last day to include (default today)"
    ),
) -> None:
    """Daily focus statistics."""
    store = _require_store()
    try:
        report = store.get_daily_stats(days, on.date() if on else None)
    except PersistenceError as exc:
        display.print_warning(f"Could not load statistics: {exc}")
        raise typer.Exit(1)
    finally:
        store.close()
    display.print_stats(report)


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", min=1, max=100, help="Sessions to show"),
    kind: Optional[SessionKind] = typer.Option(None, "--kind", "-k", help="Only this kind"),
    since: Optional[datetime] = typer.Option(
        None, "--since", formats=["%Y-%m-%d"], help="First day to include"
    ),
    until: Optional[datetime] = typer.Option(
        None, "--until", formats=["%Y-%m-%d"], help="Last day to include"
    ),
) -> None:
    """Recent session records."""
    if since and until and since > until:
        display.print_warning("--since must not be after --until.")
        raise typer.Exit(1)
    end = until + timedelta(days=1, microseconds=-1) if until else None
    store = _require_store()
    try:
        page = store.list_sessions(limit=limit, kind=kind, start=since, end=end)
    except PersistenceError as exc:
        display.print_warning(f"Could not load sessions: {exc}")
        raise typer.Exit(1)
    finally:
        store.close()
    display.print_history(page.data, page.total)


@app.command()
def previous() -> None:
    """Show your last completed focus session."""
    store = _require_store()
    try:
        record = store.get_previous_completed_focus_session()
    except PersistenceError as exc:
        display.print_warning(f"Could not load the previous session: {exc}")
        raise typer.Exit(1)
    finally:
        store.close()
    if record is None:
        display.print_info("No completed focus sessions yet.")
        return
    display.print_previous_session(record)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"


@app.command(name="config")
def config_command(
    user: Optional[str] = typer.Option(None, "--user", help="Sign in as this user id"),
    logout: bool = typer.Option(False, "--logout", help="Sign out (stop recording)"),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Use a remote API ('' for the local database)"
    ),
    api_token: Optional[str] = typer.Option(None, "--api-token", help="Bearer token for the API"),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Set a custom database file path"
    ),
    tick_source: Optional[TickSourceKind] = typer.Option(
        None, "--tick-source", help="What drives the countdown"
    ),
    sound: Optional[bool] = typer.Option(
        None, "--sound/--no-sound", help="Ring the terminal bell when a segment ends"
    ),
    system_notify: Optional[bool] = typer.Option(
        None, "--system-notify/--no-system-notify", help="Show desktop notifications"
    ),
    show: bool = typer.Option(False, "--show", help="Show current config"),
) -> None:
    """Configure identity and where sessions are stored."""
    if user and logout:
        display.print_warning("Use either --user or --logout, not both.")
        raise typer.Exit(1)

    changed = False
    if user is not None:
        if not user.strip():
            display.print_warning("User id cannot be empty.")
            raise typer.Exit(1)
        cfg.sign_in(user)
        display.print_success(f"Signed in as {user.strip()}.")
        changed = True
    elif logout:
        cfg.sign_out()
        display.print_success("Signed out. Sessions will no longer be recorded.")
        changed = True

    if api_url is not None or api_token is not None:
        url = api_url if api_url is not None else cfg.load_config().api_url
        result = cfg.set_remote(url, api_token)
        if result.api_url:
            display.print_success(f"Sessions will be stored at {result.api_url}.")
        else:
            display.print_success("Sessions will be stored in the local database.")
        changed = True

    if db_path:
        result = cfg.set_db_path(db_path)
        display.print_success(f"Database path set to: {result.db_path}")
        changed = True

    if tick_source is not None:
        cfg.set_tick_source(tick_source)
        display.print_success(f"Tick source set to {tick_source.value}.")
        changed = True

    if sound is not None or system_notify is not None:
        result = cfg.set_notifications(sound, system_notify)
        display.print_success(
            f"Sound {_on_off(result.sound_enabled)}, "
            f"desktop notifications {_on_off(result.system_notifications)}."
        )
        changed = True

    if show or not changed:
        current = cfg.load_config()
        display.print_info(f"User: {current.user_id or '(anonymous)'}")
        if current.api_url:
            display.print_info(f"Store: {current.api_url}")
        elif current.db_path:
            display.print_info(f"Database: {current.db_path}")
        else:
            display.print_info(f"Database: {cfg.get_db_path()} (default)")
        display.print_info(f"Tick source: {current.tick_source.value}")
        display.print_info(
            f"Sound: {_on_off(current.sound_enabled)}, "
            f"desktop notifications: {_on_off(current.system_notifications)}"
        )
