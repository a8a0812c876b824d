"""Pydantic models — single source of truth for all data types."""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionKind(str, enum.Enum):
    """Category of a timed segment."""

    FOCUS = "focus"
    SHORT_BREAK = "shortBreak"
    LONG_BREAK = "longBreak"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS: dict[SessionKind, str] = {
    SessionKind.FOCUS: "Focus",
    SessionKind.SHORT_BREAK: "Short Break",
    SessionKind.LONG_BREAK: "Long Break",
}


class RunState(str, enum.Enum):
    """Countdown engine run states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class TickSourceKind(str, enum.Enum):
    """Which tick source drives the countdown engine."""

    THREAD = "thread"
    POLL = "poll"


class TimerSnapshot(BaseModel):
    """Read-only view of the countdown engine state."""

    model_config = ConfigDict(frozen=True)

    seconds_remaining: int = Field(ge=0)
    run_state: RunState = RunState.IDLE
    kind: SessionKind = SessionKind.FOCUS

    @property
    def is_running(self) -> bool:
        return self.run_state == RunState.RUNNING

    @property
    def clock(self) -> str:
        mins, secs = divmod(self.seconds_remaining, 60)
        return f"{mins:02d}:{secs:02d}"


class Settings(BaseModel):
    """Per-user timer configuration (minutes)."""

    focus_duration: int = Field(default=25, ge=1, le=60)
    short_break_duration: int = Field(default=5, ge=1, le=30)
    long_break_duration: int = Field(default=15, ge=1, le=60)
    long_break_interval: int = Field(default=4, ge=1, le=10)
    auto_start_breaks: bool = False
    auto_start_pomodoros: bool = False


class SessionRecord(BaseModel):
    """A persisted segment."""

    id: str
    kind: SessionKind
    planned_duration_seconds: int = Field(gt=0)
    actual_duration_seconds: Optional[int] = Field(default=None, ge=0)
    completed: bool = False
    started_at: datetime
    ended_at: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class SessionCreate(BaseModel):
    """Input model for opening a session record."""

    kind: SessionKind
    planned_duration_seconds: int = Field(ge=60, le=3600)
    started_at: datetime
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)


class SessionUpdate(BaseModel):
    """Input model for closing or editing a session record."""

    completed: Optional[bool] = None
    ended_at: Optional[datetime] = None
    actual_duration_seconds: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = None


class SessionPage(BaseModel):
    """One page of session records, newest first."""

    data: list[SessionRecord] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    limit: int = Field(default=50, gt=0, le=100)
    offset: int = Field(default=0, ge=0)

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class DailyStat(BaseModel):
    """Aggregated focus activity for one day."""

    date: date
    attempted: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    total_focus_minutes: int = Field(default=0, ge=0)
    completion_rate: int = Field(default=0, ge=0, le=100)
    all_sessions: int = Field(default=0, ge=0)
    completed_sessions: int = Field(default=0, ge=0)


class StatsSummary(BaseModel):
    """Totals across a range of daily stats."""

    total_attempted: int = Field(default=0, ge=0)
    total_completed: int = Field(default=0, ge=0)
    total_focus_minutes: int = Field(default=0, ge=0)
    average_completion_rate: int = Field(default=0, ge=0, le=100)
    active_days: int = Field(default=0, ge=0)


class DailyStatsReport(BaseModel):
    """Response of the daily statistics query."""

    days: list[DailyStat] = Field(default_factory=list)
    summary: StatsSummary = Field(default_factory=StatsSummary)


class Identity(BaseModel):
    """The authenticated user, as far as the timer cares."""

    id: str = Field(min_length=1)


class AppConfig(BaseModel):
    """Application configuration (persisted to ~/.config/pomoflow/config.json)."""

    user_id: Optional[str] = None  # None = anonymous, nothing is recorded
    api_url: Optional[str] = None  # None = use the local SQLite store
    api_token: Optional[str] = None
    db_path: Optional[str] = None  # None = use default (~/.local/share/pomoflow/)
    tick_source: TickSourceKind = TickSourceKind.THREAD
    sound_enabled: bool = True
    system_notifications: bool = True
