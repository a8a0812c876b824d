"""Which segment comes next, and how long it lasts."""

from __future__ import annotations

from pomoflow.models import SessionKind, Settings


def next_kind(
    current: SessionKind, pomodoros_completed: int, long_break_interval: int
) -> SessionKind:
    """Pick the kind that follows ``current``.

    ``pomodoros_completed`` already counts the segment that just ended.
    ``long_break_interval`` is assumed to be at least 1.
    """
    if current != SessionKind.FOCUS:
        return SessionKind.FOCUS
    if pomodoros_completed % long_break_interval == 0:
        return SessionKind.LONG_BREAK
    return SessionKind.SHORT_BREAK


def next_duration(kind: SessionKind, settings: Settings) -> int:
    """Configured length of ``kind`` in seconds."""
    minutes = {
        SessionKind.FOCUS: settings.focus_duration,
        SessionKind.SHORT_BREAK: settings.short_break_duration,
        SessionKind.LONG_BREAK: settings.long_break_duration,
    }[kind]
    return minutes * 60


def pomodoros_until_long_break(pomodoros_completed: int, long_break_interval: int) -> int:
    return long_break_interval - (pomodoros_completed % long_break_interval)
