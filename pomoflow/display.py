"""Rich terminal formatting helpers."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.text import Text

from pomoflow.models import (
    DailyStatsReport,
    RunState,
    SessionKind,
    SessionRecord,
    Settings,
    TimerSnapshot,
)

console = Console()

_KIND_STYLE: dict[SessionKind, str] = {
    SessionKind.FOCUS: "bold red",
    SessionKind.SHORT_BREAK: "bold green",
    SessionKind.LONG_BREAK: "bold cyan",
}

_STATE_ICON: dict[RunState, str] = {
    RunState.IDLE: "[ ]",
    RunState.RUNNING: "[>]",
    RunState.PAUSED: "[=]",
}


def timer_description(snapshot: TimerSnapshot) -> str:
    """Label for the progress bar, e.g. ``[>] Focus``."""
    style = _KIND_STYLE[snapshot.kind]
    return f"{_STATE_ICON[snapshot.run_state]} [{style}]{snapshot.kind.label}[/{style}]"


def create_timer_progress() -> Progress:
    """Create a Rich progress bar for the countdown."""
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(bar_width=40),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("[bold]{task.fields[clock]}"),
        console=console,
        transient=True,
    )


def print_settings(settings: Settings) -> None:
    """Print the timer settings in a panel."""
    lines = [
        f"Focus: {settings.focus_duration} min",
        f"Short break: {settings.short_break_duration} min",
        f"Long break: {settings.long_break_duration} min",
        f"Long break every: {settings.long_break_interval} pomodoros",
        f"Auto-start breaks: {'yes' if settings.auto_start_breaks else 'no'}",
        f"Auto-start focus: {'yes' if settings.auto_start_pomodoros else 'no'}",
    ]
    console.print(Panel("\n".join(lines), title="Settings", border_style="blue"))


def print_progress_line(pomodoros: int, until_long_break: int) -> None:
    console.print(
        f"[dim]Pomodoros completed: {pomodoros} "
        f"(next long break in {until_long_break})[/dim]"
    )


def _duration(seconds: int) -> str:
    mins, secs = divmod(seconds, 60)
    return f"{mins}m {secs:02d}s" if secs else f"{mins}m"


def print_previous_session(record: SessionRecord) -> None:
    """Show what the last completed focus session achieved."""
    ended = record.ended_at.astimezone().strftime("%a %d %b %H:%M") if record.ended_at else "?"
    notes = record.notes.strip() if record.notes else ""
    body = Text()
    length = record.actual_duration_seconds or record.planned_duration_seconds
    body.append(f"Finished {ended}, {_duration(length)}\n")
    body.append(notes or "No notes recorded.", style="italic" if notes else "dim")
    console.print(Panel(body, title="Last focus session", border_style="magenta"))


def print_history(records: list[SessionRecord], total: int) -> None:
    """Print session records in a table."""
    if not records:
        console.print(Panel("No sessions yet.", title="History", border_style="dim"))
        return

    table = Table(box=None, pad_edge=False)
    table.add_column("started")
    table.add_column("kind")
    table.add_column("planned", justify="right")
    table.add_column("actual", justify="right")
    table.add_column("done")
    table.add_column("notes")

    for record in records:
        actual = record.actual_duration_seconds
        if record.completed:
            done = "[green]yes[/green]"
        elif record.is_open:
            done = "[dim]open[/dim]"
        else:
            done = "[yellow]no[/yellow]"
        table.add_row(
            record.started_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            Text(record.kind.label, style=_KIND_STYLE[record.kind]),
            _duration(record.planned_duration_seconds),
            _duration(actual) if actual is not None else "-",
            done,
            record.notes or "",
        )

    console.print(Panel(table, title=f"History ({len(records)} of {total})", border_style="blue"))


def print_stats(report: DailyStatsReport) -> None:
    """Print per-day focus statistics and the summary."""
    table = Table(box=None, pad_edge=False)
    table.add_column("day")
    table.add_column("attempted", justify="right")
    table.add_column("completed", justify="right")
    table.add_column("focus", justify="right")
    table.add_column("rate", justify="right")

    for day in reversed(report.days):
        style = "" if day.attempted else "dim"
        hours, mins = divmod(day.total_focus_minutes, 60)
        table.add_row(
            day.date.strftime("%a %d %b"),
            str(day.attempted),
            str(day.completed),
            f"{hours}h {mins}m",
            f"{day.completion_rate}%",
            style=style,
        )
    console.print(Panel(table, title="Daily focus", border_style="blue"))

    s = report.summary
    hours, mins = divmod(s.total_focus_minutes, 60)
    lines = [
        f"Pomodoros: {s.total_completed} completed of {s.total_attempted} attempted",
        f"Focus time: {hours}h {mins}m",
        f"Average completion rate: {s.average_completion_rate}%",
        f"Active days: {s.active_days} of {len(report.days)}",
    ]
    console.print(Panel("\n".join(lines), title="Summary", border_style="green"))


def print_nudge(message: str) -> None:
    """Print a message in a styled panel."""
    text = Text(message, justify="center")
    console.print(Panel(text, border_style="magenta", padding=(1, 4)))


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[blue]{message}[/blue]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]{message}[/yellow]")
