"""SQLite session store. All public functions return Pydantic models.

Every query is scoped to a ``user_id``; a record that belongs to someone else
is indistinguishable from a missing one.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Optional

from pomoflow.config import get_db_path as _config_get_db_path
from pomoflow.errors import NotFoundError
from pomoflow.models import (
    DailyStat,
    DailyStatsReport,
    SessionCreate,
    SessionKind,
    SessionPage,
    SessionRecord,
    SessionUpdate,
    Settings,
    StatsSummary,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id                        TEXT    PRIMARY KEY,
    user_id                   TEXT    NOT NULL,
    kind                      TEXT    NOT NULL,
    planned_duration_seconds  INTEGER NOT NULL,
    actual_duration_seconds   INTEGER,
    completed                 INTEGER NOT NULL DEFAULT 0,
    started_at                TEXT    NOT NULL,
    ended_at                  TEXT,
    tags                      TEXT    NOT NULL DEFAULT '[]',
    notes                     TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_started
    ON sessions (user_id, started_at);

CREATE TABLE IF NOT EXISTS user_settings (
    user_id               TEXT    PRIMARY KEY,
    focus_duration        INTEGER NOT NULL,
    short_break_duration  INTEGER NOT NULL,
    long_break_duration   INTEGER NOT NULL,
    long_break_interval   INTEGER NOT NULL,
    auto_start_breaks     INTEGER NOT NULL DEFAULT 0,
    auto_start_pomodoros  INTEGER NOT NULL DEFAULT 0
);
"""


def _get_db_path() -> Path:
    """Return the database file path from config (or default)."""
    return _config_get_db_path()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open a connection and ensure the schema exists.

    The connection may be shared with the background persistence worker, so
    callers serialise access themselves.
    """
    path = db_path or _get_db_path()
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    return conn


def utc_iso(moment: datetime) -> str:
    """Normalise to a UTC ISO string so text comparison orders correctly."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def _row_to_session(row: sqlite3.Row) -> SessionRecord:
    """Convert a database row to a SessionRecord model."""
    return SessionRecord(
        id=row["id"],
        kind=SessionKind(row["kind"]),
        planned_duration_seconds=row["planned_duration_seconds"],
        actual_duration_seconds=row["actual_duration_seconds"],
        completed=bool(row["completed"]),
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=datetime.fromisoformat(row["ended_at"]) if row["ended_at"] else None,
        tags=json.loads(row["tags"]),
        notes=row["notes"],
    )


def get_session(
    conn: sqlite3.Connection, user_id: str, session_id: str
) -> Optional[SessionRecord]:
    """Fetch a single session owned by ``user_id``."""
    row = conn.execute(
        "SELECT * FROM sessions WHERE id = ? AND user_id = ?", (session_id, user_id)
    ).fetchone()
    return _row_to_session(row) if row else None


def create_session(
    conn: sqlite3.Connection, user_id: str, session_in: SessionCreate
) -> SessionRecord:
    """Open a new session record and return it."""
    session_id = uuid.uuid4().hex
    conn.execute(
        "INSERT INTO sessions (id, user_id, kind, planned_duration_seconds, "
        "started_at, tags, notes) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            session_id,
            user_id,
            session_in.kind.value,
            session_in.planned_duration_seconds,
            utc_iso(session_in.started_at),
            json.dumps(session_in.tags),
            session_in.notes,
        ),
    )
    conn.commit()
    created = get_session(conn, user_id, session_id)
    assert created is not None
    return created


def update_session(
    conn: sqlite3.Connection, user_id: str, session_id: str, update: SessionUpdate
) -> SessionRecord:
    """Apply the fields set on ``update``. Raises NotFoundError if not owned."""
    if get_session(conn, user_id, session_id) is None:
        raise NotFoundError(f"Session {session_id} not found.")

    assignments: list[str] = []
    params: list[object] = []
    fields = update.model_dump(exclude_unset=True)
    for name, value in fields.items():
        if value is None and name != "notes":
            continue
        if name == "ended_at":
            value = utc_iso(value)
        elif name == "completed":
            value = int(value)
        elif name == "tags":
            value = json.dumps(value)
        assignments.append(f"{name} = ?")
        params.append(value)

    if assignments:
        params.extend([session_id, user_id])
        conn.execute(
            f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            params,
        )
        conn.commit()
    updated = get_session(conn, user_id, session_id)
    assert updated is not None
    return updated


def list_sessions(
    conn: sqlite3.Connection,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
    kind: Optional[SessionKind] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> SessionPage:
    """List sessions newest first, with the total for pagination."""
    where = "WHERE user_id = ?"
    params: list[str | int] = [user_id]
    if kind is not None:
        where += " AND kind = ?"
        params.append(kind.value)
    if start is not None:
        where += " AND started_at >= ?"
        params.append(utc_iso(start))
    if end is not None:
        where += " AND started_at <= ?"
        params.append(utc_iso(end))

    total = conn.execute(f"SELECT COUNT(*) AS n FROM sessions {where}", params).fetchone()["n"]
    rows = conn.execute(
        f"SELECT * FROM sessions {where} ORDER BY started_at DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ).fetchall()
    return SessionPage(
        data=[_row_to_session(r) for r in rows], total=total, limit=limit, offset=offset
    )


def get_previous_completed_focus_session(
    conn: sqlite3.Connection, user_id: str
) -> Optional[SessionRecord]:
    """Most recently ended completed focus session, if any."""
    row = conn.execute(
        "SELECT * FROM sessions WHERE user_id = ? AND kind = ? AND completed = 1 "
        "ORDER BY ended_at DESC LIMIT 1",
        (user_id, SessionKind.FOCUS.value),
    ).fetchone()
    return _row_to_session(row) if row else None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def _row_to_settings(row: sqlite3.Row) -> Settings:
    return Settings(
        focus_duration=row["focus_duration"],
        short_break_duration=row["short_break_duration"],
        long_break_duration=row["long_break_duration"],
        long_break_interval=row["long_break_interval"],
        auto_start_breaks=bool(row["auto_start_breaks"]),
        auto_start_pomodoros=bool(row["auto_start_pomodoros"]),
    )


def put_settings(conn: sqlite3.Connection, user_id: str, settings: Settings) -> Settings:
    """Create or replace the user's settings."""
    conn.execute(
        """INSERT INTO user_settings (user_id, focus_duration, short_break_duration,
               long_break_duration, long_break_interval, auto_start_breaks,
               auto_start_pomodoros)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(user_id) DO UPDATE SET
               focus_duration = excluded.focus_duration,
               short_break_duration = excluded.short_break_duration,
               long_break_duration = excluded.long_break_duration,
               long_break_interval = excluded.long_break_interval,
               auto_start_breaks = excluded.auto_start_breaks,
               auto_start_pomodoros = excluded.auto_start_pomodoros""",
        (
            user_id,
            settings.focus_duration,
            settings.short_break_duration,
            settings.long_break_duration,
            settings.long_break_interval,
            int(settings.auto_start_breaks),
            int(settings.auto_start_pomodoros),
        ),
    )
    conn.commit()
    return get_settings(conn, user_id)


def get_settings(conn: sqlite3.Connection, user_id: str) -> Settings:
    """Fetch the user's settings, creating defaults on first read."""
    row = conn.execute(
        "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
    ).fetchone()
    if row is None:
        return put_settings(conn, user_id, Settings())
    return _row_to_settings(row)


# ---------------------------------------------------------------------------
# Daily stats
# ---------------------------------------------------------------------------


def _day_stat(day: date, sessions: list[SessionRecord]) -> DailyStat:
    focus = [s for s in sessions if s.kind == SessionKind.FOCUS]
    completed_focus = [s for s in focus if s.completed]
    focus_minutes = sum(
        (s.actual_duration_seconds or s.planned_duration_seconds) // 60
        for s in completed_focus
    )
    rate = round(len(completed_focus) / len(focus) * 100) if focus else 0
    return DailyStat(
        date=day,
        attempted=len(focus),
        completed=len(completed_focus),
        total_focus_minutes=focus_minutes,
        completion_rate=rate,
        all_sessions=len(sessions),
        completed_sessions=sum(1 for s in sessions if s.completed),
    )


def get_daily_stats(
    conn: sqlite3.Connection,
    user_id: str,
    days: int = 7,
    reference_date: Optional[date] = None,
) -> DailyStatsReport:
    """Per-day focus statistics for ``days`` days ending on ``reference_date``."""
    if days < 1:
        raise ValueError("days must be at least 1")
    end_day = reference_date or date.today()
    start_day = end_day - timedelta(days=days - 1)
    start = datetime.combine(start_day, time.min)
    end = datetime.combine(end_day, time.max)

    rows = conn.execute(
        "SELECT * FROM sessions WHERE user_id = ? AND started_at >= ? AND started_at <= ? "
        "ORDER BY started_at DESC",
        (user_id, utc_iso(start), utc_iso(end)),
    ).fetchall()

    by_day: dict[date, list[SessionRecord]] = {}
    for row in rows:
        record = _row_to_session(row)
        by_day.setdefault(record.started_at.astimezone().date(), []).append(record)

    daily = [
        _day_stat(start_day + timedelta(days=i), by_day.get(start_day + timedelta(days=i), []))
        for i in range(days)
    ]
    summary = StatsSummary(
        total_attempted=sum(d.attempted for d in daily),
        total_completed=sum(d.completed for d in daily),
        total_focus_minutes=sum(d.total_focus_minutes for d in daily),
        average_completion_rate=round(sum(d.completion_rate for d in daily) / len(daily)),
        active_days=sum(1 for d in daily if d.attempted > 0),
    )
    return DailyStatsReport(days=daily, summary=summary)
