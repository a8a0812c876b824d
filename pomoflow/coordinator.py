"""Session lifecycle coordinator.

Orchestrates:
- the countdown engine (start / pause / resume / reset on user action)
- session records in the store (open on start, close on completion or abandon)
- the completed-pomodoro count and the rotation to the next segment
- the local fallback store for settings and progress

Store calls run on a single background worker, in submission order, so a
record is always opened before it is closed while the countdown never waits on
I/O. Store failures on that worker are logged and dropped: local timing is
authoritative and the persisted history may have gaps.

All state changes happen under the engine lock, including the ones triggered
from the tick thread when a segment completes.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pomoflow.engine import CountdownEngine
from pomoflow.errors import PersistenceError
from pomoflow.local_store import LocalStore
from pomoflow.models import (
    RunState,
    SessionCreate,
    SessionKind,
    SessionRecord,
    SessionUpdate,
    Settings,
    TimerSnapshot,
)
from pomoflow.notifier import NotificationDispatcher
from pomoflow.persistence import SessionStore
from pomoflow.rotation import next_duration, next_kind

log = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Segment:
    kind: SessionKind
    planned_seconds: int
    started_at: datetime
    persisted: bool
    record_id: Optional[str] = None  # filled in by the worker once opened


@dataclass(frozen=True)
class CompletedSegment:
    """A focus segment that ran out and is waiting for its accomplishment."""

    kind: SessionKind
    planned_seconds: int
    started_at: datetime


AccomplishmentCapture = Callable[[CompletedSegment], str]


class SessionCoordinator:
    def __init__(
        self,
        engine: CountdownEngine,
        local_store: LocalStore,
        store: Optional[SessionStore] = None,
        notifier: Optional[NotificationDispatcher] = None,
        accomplishment_capture: Optional[AccomplishmentCapture] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine = engine
        self.local_store = local_store
        self.store = store
        self.notifier = notifier
        self.accomplishment_capture = accomplishment_capture
        self._now = now

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pomoflow-sync")
        self._segment: Optional[_Segment] = None
        self._awaiting: Optional[CompletedSegment] = None
        self._kind = SessionKind.FOCUS
        self._settings = Settings()
        self._pomodoros = 0

        engine.on_complete(self._on_engine_complete)

    # ----- Read side -----
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def kind(self) -> SessionKind:
        return self._kind

    @property
    def pomodoros_completed(self) -> int:
        return self._pomodoros

    @property
    def is_authenticated(self) -> bool:
        return self.store is not None

    @property
    def is_session_open(self) -> bool:
        return self._segment is not None

    @property
    def awaiting_accomplishment(self) -> Optional[CompletedSegment]:
        return self._awaiting

    def snapshot(self) -> TimerSnapshot:
        return self.engine.snapshot()

    # ----- Startup / shutdown -----
    def load(self) -> None:
        """Read settings and progress, then prime the engine for a focus segment."""
        with self.engine.lock:
            self._pomodoros = self.local_store.load_pomodoros()
            settings: Optional[Settings] = None
            if self.store is not None:
                try:
                    settings = self.store.get_settings()
                except PersistenceError:
                    log.warning("Could not load remote settings; using local copy.", exc_info=True)
            if settings is None:
                settings = self.local_store.load_settings()
            self._settings = settings or Settings()
            self._kind = SessionKind.FOCUS
            self.engine.reset(next_duration(self._kind, self._settings), self._kind)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued store call has run."""
        self._executor.submit(lambda: None).result(timeout)

    def shutdown(self) -> None:
        """Abandon whatever is in flight and drain the store worker."""
        with self.engine.lock:
            self._settle_pending()
            self.abandon_segment()
            snap = self.engine.snapshot()
            self.engine.reset(snap.seconds_remaining, snap.kind)
        self._executor.shutdown(wait=True)

    # ----- Segment lifecycle -----
    def begin_segment(self, kind: SessionKind, duration_seconds: int) -> None:
        """Open a segment, closing any previous one first."""
        with self.engine.lock:
            if self._segment is not None:
                self.abandon_segment()
            segment = _Segment(
                kind=kind,
                planned_seconds=duration_seconds,
                started_at=self._now(),
                persisted=self.store is not None,
            )
            self._segment = segment
            if segment.persisted:
                self._submit(self._open_record, segment)

    def abandon_segment(self) -> None:
        with self.engine.lock:
            segment = self._segment
            if segment is None:
                return
            self._segment = None
            snap = self.engine.snapshot()
            remaining = snap.seconds_remaining if snap.kind == segment.kind else 0
            actual = max(0, segment.planned_seconds - remaining)
            log.debug("Abandoning %s segment after %ds.", segment.kind.value, actual)
            self._close(
                segment,
                SessionUpdate(
                    completed=False, ended_at=self._now(), actual_duration_seconds=actual
                ),
            )

    def complete_segment(self, notes: Optional[str] = None) -> None:
        with self.engine.lock:
            segment = self._segment
            if segment is None:
                return
            self._segment = None
            fields: dict[str, object] = {
                "completed": True,
                "ended_at": self._now(),
                "actual_duration_seconds": segment.planned_seconds,
            }
            if notes is not None:
                fields["notes"] = notes[:NOTES_MAX_LENGTH]
            self._close(segment, SessionUpdate(**fields))
            if segment.kind == SessionKind.FOCUS:
                self._pomodoros += 1
                self.local_store.save_pomodoros(self._pomodoros)

    # ----- User actions -----
    def start(self) -> None:
        """Start the primed segment, or resume a paused one."""
        with self.engine.lock:
            self._settle_pending()
            snap = self.engine.snapshot()
            if snap.run_state == RunState.RUNNING:
                return
            if snap.run_state == RunState.PAUSED:
                self.engine.resume()
                return
            seconds = snap.seconds_remaining or next_duration(self._kind, self._settings)
            self.begin_segment(self._kind, seconds)
            self.engine.start(seconds, self._kind)

    def pause(self) -> None:
        self.engine.pause()

    def resume(self) -> None:
        self.engine.resume()

    def toggle(self) -> None:
        with self.engine.lock:
            if self.engine.snapshot().run_state == RunState.RUNNING:
                self.engine.pause()
            else:
                self.start()

    def reset(self) -> None:
        """Abandon the current segment and reload its full duration."""
        with self.engine.lock:
            self._settle_pending()
            self.abandon_segment()
            self.engine.reset(next_duration(self._kind, self._settings), self._kind)

    def switch_kind(self, kind: SessionKind) -> None:
        with self.engine.lock:
            self._settle_pending()
            self.abandon_segment()
            self._kind = kind
            self.engine.reset(next_duration(kind, self._settings), kind)

    def submit_accomplishment(self, notes: Optional[str]) -> None:
        """Close the finished focus segment with ``notes`` and move on."""
        with self.engine.lock:
            pending = self._awaiting
            if pending is None:
                return
            self._awaiting = None
            self._finish(pending.kind, notes)

    def save_settings(self, settings: Settings) -> Settings:
        """Apply and persist settings.

        The local copy is always written. A failed remote write raises
        PersistenceError so the caller can tell the user.
        """
        with self.engine.lock:
            self._settings = settings
            self.local_store.save_settings(settings)
            snap = self.engine.snapshot()
            if snap.run_state == RunState.IDLE and self._awaiting is None:
                self.engine.reset(next_duration(self._kind, settings), self._kind)
        if self.store is not None:
            return self.store.put_settings(settings)
        return settings

    def previous_focus_session(self) -> Optional[SessionRecord]:
        if self.store is None:
            return None
        try:
            return self.store.get_previous_completed_focus_session()
        except PersistenceError:
            log.warning("Could not load the previous session.", exc_info=True)
            return None

    # ----- Completion -----
    def _on_engine_complete(self, kind: SessionKind) -> None:
        if self.notifier is not None:
            self.notifier.notify(kind)
        segment = self._segment
        # Notes only have somewhere to go when a record was opened.
        if kind != SessionKind.FOCUS or segment is None or not segment.persisted:
            self._finish(kind, None)
            return
        self._awaiting = CompletedSegment(
            kind=kind,
            planned_seconds=segment.planned_seconds,
            started_at=segment.started_at,
        )
        if self.accomplishment_capture is not None:
            self.submit_accomplishment(self.accomplishment_capture(self._awaiting))

    def _settle_pending(self) -> None:
        # A new action while the accomplishment prompt is open keeps the
        # completion and drops the notes. The next segment is only primed:
        # the action itself decides what runs next.
        pending = self._awaiting
        if pending is not None:
            self._awaiting = None
            self._finish(pending.kind, None, auto_start=False)

    def _finish(
        self, finished: SessionKind, notes: Optional[str], auto_start: bool = True
    ) -> None:
        self.complete_segment(notes)
        self._kind = next_kind(finished, self._pomodoros, self._settings.long_break_interval)
        self.engine.reset(next_duration(self._kind, self._settings), self._kind)
        if auto_start and self._should_auto_start(self._kind):
            self.start()

    def _should_auto_start(self, kind: SessionKind) -> bool:
        if kind == SessionKind.FOCUS:
            return self._settings.auto_start_pomodoros
        return self._settings.auto_start_breaks

    # ----- Store worker -----
    def _submit(self, fn: Callable[..., None], *args: object) -> None:
        self._executor.submit(self._run_job, fn, *args)

    @staticmethod
    def _run_job(fn: Callable[..., None], *args: object) -> None:
        try:
            fn(*args)
        except Exception:
            log.warning("Session sync failed; continuing offline.", exc_info=True)

    def _close(self, segment: _Segment, update: SessionUpdate) -> None:
        if segment.persisted:
            self._submit(self._close_record, segment, update)

    def _open_record(self, segment: _Segment) -> None:
        assert self.store is not None
        record = self.store.create_session(
            SessionCreate(
                kind=segment.kind,
                planned_duration_seconds=segment.planned_seconds,
                started_at=segment.started_at,
            )
        )
        segment.record_id = record.id
        log.debug("Opened session %s.", record.id)

    def _close_record(self, segment: _Segment, update: SessionUpdate) -> None:
        assert self.store is not None
        if segment.record_id is None:
            log.warning("Never opened a record for this %s segment.", segment.kind.value)
            return
        self.store.update_session(segment.record_id, update)
        log.debug("Closed session %s.", segment.record_id)
