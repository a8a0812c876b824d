"""Session stores the coordinator persists through.

``LocalSessionStore`` keeps records in the SQLite database; ``HttpSessionStore``
talks to the pomodoro REST API. Both are bound to one identity and expose the
same methods, so the coordinator never knows which one it has.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import urllib.error
import urllib.parse
import urllib.request
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, Optional, Protocol

from pomoflow import db
from pomoflow.errors import (
    NotFoundError,
    PersistenceError,
    RemoteValidationError,
    UnauthorizedError,
)
from pomoflow.models import (
    AppConfig,
    DailyStat,
    DailyStatsReport,
    Identity,
    SessionCreate,
    SessionKind,
    SessionPage,
    SessionRecord,
    SessionUpdate,
    Settings,
    StatsSummary,
)

log = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Persistence contract for session records and settings."""

    def create_session(self, session_in: SessionCreate) -> SessionRecord: ...

    def update_session(self, session_id: str, update: SessionUpdate) -> SessionRecord: ...

    def list_sessions(
        self,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[SessionKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SessionPage: ...

    def get_previous_completed_focus_session(self) -> Optional[SessionRecord]: ...

    def get_settings(self) -> Settings: ...

    def put_settings(self, settings: Settings) -> Settings: ...

    def get_daily_stats(
        self, days: int = 7, reference_date: Optional[date] = None
    ) -> DailyStatsReport: ...

    def close(self) -> None: ...


class LocalSessionStore:
    """SQLite-backed store for one identity."""

    def __init__(self, conn: sqlite3.Connection, identity: Identity) -> None:
        self.conn = conn
        self.identity = identity
        # The coordinator's worker thread and the UI thread share the connection.
        self._lock = threading.Lock()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                raise PersistenceError(f"Session database error: {exc}") from exc

    def create_session(self, session_in: SessionCreate) -> SessionRecord:
        with self._guard():
            return db.create_session(self.conn, self.identity.id, session_in)

    def update_session(self, session_id: str, update: SessionUpdate) -> SessionRecord:
        with self._guard():
            return db.update_session(self.conn, self.identity.id, session_id, update)

    def list_sessions(
        self,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[SessionKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SessionPage:
        with self._guard():
            return db.list_sessions(
                self.conn, self.identity.id, limit, offset, kind, start, end
            )

    def get_previous_completed_focus_session(self) -> Optional[SessionRecord]:
        with self._guard():
            return db.get_previous_completed_focus_session(self.conn, self.identity.id)

    def get_settings(self) -> Settings:
        with self._guard():
            return db.get_settings(self.conn, self.identity.id)

    def put_settings(self, settings: Settings) -> Settings:
        with self._guard():
            return db.put_settings(self.conn, self.identity.id, settings)

    def get_daily_stats(
        self, days: int = 7, reference_date: Optional[date] = None
    ) -> DailyStatsReport:
        with self._guard():
            return db.get_daily_stats(self.conn, self.identity.id, days, reference_date)

    def close(self) -> None:
        with self._guard():
            self.conn.close()


# ---------------------------------------------------------------------------
# REST API client
# ---------------------------------------------------------------------------

_KIND_TO_WIRE: dict[SessionKind, str] = {
    SessionKind.FOCUS: "POMODORO",
    SessionKind.SHORT_BREAK: "SHORT_BREAK",
    SessionKind.LONG_BREAK: "LONG_BREAK",
}
_KIND_FROM_WIRE = {v: k for k, v in _KIND_TO_WIRE.items()}

_SETTINGS_WIRE = {
    "focus_duration": "pomodoroDuration",
    "short_break_duration": "shortBreakDuration",
    "long_break_duration": "longBreakDuration",
    "long_break_interval": "longBreakInterval",
    "auto_start_breaks": "autoStartBreaks",
    "auto_start_pomodoros": "autoStartPomodoros",
}


def _wire_time(moment: datetime) -> str:
    return db.utc_iso(moment).replace("+00:00", "Z")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _record_from_wire(data: dict[str, Any]) -> SessionRecord:
    return SessionRecord(
        id=str(data["id"]),
        kind=_KIND_FROM_WIRE[data["sessionType"]],
        planned_duration_seconds=data["plannedDuration"],
        actual_duration_seconds=data.get("actualDuration"),
        completed=bool(data.get("completed", False)),
        started_at=_parse_time(data["startTime"]),
        ended_at=_parse_time(data.get("endTime")),
        tags=data.get("tags") or [],
        notes=data.get("notes"),
    )


def _settings_from_wire(data: dict[str, Any]) -> Settings:
    return Settings(
        **{name: data[wire] for name, wire in _SETTINGS_WIRE.items() if wire in data}
    )


class HttpSessionStore:
    """Client for the pomodoro REST API."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 8) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        query: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if query:
            url += "?" + urllib.parse.urlencode(
                {k: v for k, v in query.items() if v is not None}
            )
        headers = {"Accept": "application/json", "User-Agent": "pomoflow/0.1"}
        data = None
        if body is not None:
            data = json.dumps(body).encode()
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                payload = resp.read()
        except urllib.error.HTTPError as exc:
            raise self._error_for(exc) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc
        return json.loads(payload) if payload else None

    @staticmethod
    def _error_for(exc: urllib.error.HTTPError) -> PersistenceError:
        try:
            detail = json.loads(exc.read() or b"{}")
        except (ValueError, OSError):
            detail = {}
        message = detail.get("error") or exc.reason or f"HTTP {exc.code}"
        if exc.code == 400:
            return RemoteValidationError(message, detail.get("details"))
        if exc.code == 401:
            return UnauthorizedError(message)
        if exc.code == 404:
            return NotFoundError(message)
        return PersistenceError(f"HTTP {exc.code}: {message}")

    def create_session(self, session_in: SessionCreate) -> SessionRecord:
        body: dict[str, Any] = {
            "sessionType": _KIND_TO_WIRE[session_in.kind],
            "plannedDuration": session_in.planned_duration_seconds,
            "startTime": _wire_time(session_in.started_at),
            "tags": session_in.tags,
        }
        if session_in.notes is not None:
            body["notes"] = session_in.notes
        return _record_from_wire(self._request("POST", "/api/sessions", body))

    def update_session(self, session_id: str, update: SessionUpdate) -> SessionRecord:
        body: dict[str, Any] = {}
        fields = update.model_dump(exclude_none=True)
        if "completed" in fields:
            body["completed"] = fields["completed"]
        if "ended_at" in fields:
            body["endTime"] = _wire_time(fields["ended_at"])
        if "actual_duration_seconds" in fields:
            body["actualDuration"] = fields["actual_duration_seconds"]
        if "notes" in fields:
            body["notes"] = fields["notes"]
        if "tags" in fields:
            body["tags"] = fields["tags"]
        path = f"/api/sessions/{urllib.parse.quote(session_id)}"
        return _record_from_wire(self._request("PUT", path, body))

    def list_sessions(
        self,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[SessionKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SessionPage:
        query = {
            "limit": limit,
            "offset": offset,
            "type": _KIND_TO_WIRE[kind] if kind else None,
            "startDate": _wire_time(start) if start else None,
            "endDate": _wire_time(end) if end else None,
        }
        payload = self._request("GET", "/api/sessions", query=query)
        pagination = payload.get("pagination", {})
        return SessionPage(
            data=[_record_from_wire(r) for r in payload.get("data", [])],
            total=pagination.get("total", 0),
            limit=pagination.get("limit", limit),
            offset=pagination.get("offset", offset),
        )

    def get_previous_completed_focus_session(self) -> Optional[SessionRecord]:
        try:
            return _record_from_wire(self._request("GET", "/api/sessions/previous"))
        except NotFoundError:
            return None

    def get_settings(self) -> Settings:
        return _settings_from_wire(self._request("GET", "/api/user/settings"))

    def put_settings(self, settings: Settings) -> Settings:
        body = {wire: getattr(settings, name) for name, wire in _SETTINGS_WIRE.items()}
        return _settings_from_wire(self._request("PUT", "/api/user/settings", body))

    def get_daily_stats(
        self, days: int = 7, reference_date: Optional[date] = None
    ) -> DailyStatsReport:
        query = {
            "days": days,
            "date": reference_date.isoformat() if reference_date else None,
        }
        payload = self._request("GET", "/api/stats/daily", query=query)
        daily = [
            DailyStat(
                date=date.fromisoformat(d["date"]),
                attempted=d.get("attempted", 0),
                completed=d.get("completed", 0),
                total_focus_minutes=d.get("totalFocusMinutes", 0),
                completion_rate=d.get("completionRate", 0),
                all_sessions=d.get("allSessions", 0),
                completed_sessions=d.get("completedSessions", 0),
            )
            for d in payload.get("dailyStats", [])
        ]
        summary = payload.get("summary", {})
        return DailyStatsReport(
            days=sorted(daily, key=lambda d: d.date),
            summary=StatsSummary(
                total_attempted=summary.get("totalAttempted", 0),
                total_completed=summary.get("totalCompleted", 0),
                total_focus_minutes=summary.get("totalFocusMinutes", 0),
                average_completion_rate=summary.get("averageCompletionRate", 0),
                active_days=summary.get("activeDays", 0),
            ),
        )

    def close(self) -> None:
        """Nothing to release; each request opens its own connection."""


def open_store(config: AppConfig, identity: Optional[Identity]) -> Optional[SessionStore]:
    """Build the store for ``identity``; anonymous use gets no store at all."""
    if identity is None:
        return None
    if config.api_url:
        log.debug("Using remote session store at %s.", config.api_url)
        return HttpSessionStore(config.api_url, config.api_token)
    return LocalSessionStore(db.get_connection(), identity)
