"""Tests for the session coordinator."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest

from pomoflow.coordinator import NOTES_MAX_LENGTH, SessionCoordinator
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
)
from pomoflow.ticker import PollingTickSource

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeStore:
    """In-memory stand-in for a session store that records every call."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings
        self.created: list[SessionCreate] = []
        self.updates: list[tuple[str, SessionUpdate]] = []
        self.fail_create = False
        self.fail_settings = False
        self.previous: Optional[SessionRecord] = None

    def create_session(self, session_in: SessionCreate) -> SessionRecord:
        if self.fail_create:
            raise PersistenceError("store offline")
        self.created.append(session_in)
        return SessionRecord(
            id=f"rec-{len(self.created)}",
            kind=session_in.kind,
            planned_duration_seconds=session_in.planned_duration_seconds,
            started_at=session_in.started_at,
        )

    def update_session(self, session_id: str, update: SessionUpdate) -> SessionRecord:
        self.updates.append((session_id, update))
        return SessionRecord(
            id=session_id, kind=SessionKind.FOCUS, planned_duration_seconds=60, started_at=NOW
        )

    def get_previous_completed_focus_session(self) -> Optional[SessionRecord]:
        if self.fail_settings:
            raise PersistenceError("store offline")
        return self.previous

    def get_settings(self) -> Settings:
        if self.fail_settings:
            raise PersistenceError("store offline")
        return self.settings or Settings()

    def put_settings(self, settings: Settings) -> Settings:
        if self.fail_settings:
            raise PersistenceError("store offline")
        self.settings = settings
        return settings

    def close(self) -> None:
        pass


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def source() -> PollingTickSource:
    return PollingTickSource()


@pytest.fixture()
def engine(source: PollingTickSource, clock: FakeClock) -> CountdownEngine:
    return CountdownEngine(tick_source=source, clock=clock)


@pytest.fixture()
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "local.json")


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


def _coordinator(engine, local_store, store=None, **kwargs) -> SessionCoordinator:
    coordinator = SessionCoordinator(engine, local_store, store=store, now=lambda: NOW, **kwargs)
    coordinator.load()
    return coordinator


def _run_out(coordinator: SessionCoordinator, source: PollingTickSource, clock: FakeClock) -> None:
    clock.now += coordinator.snapshot().seconds_remaining
    source.pump()


class TestLoad:
    def test_defaults_prime_focus(self, engine, local_store) -> None:
        coordinator = _coordinator(engine, local_store)
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.FOCUS
        assert snap.seconds_remaining == 1500
        assert snap.run_state == RunState.IDLE
        assert coordinator.pomodoros_completed == 0
        assert not coordinator.is_authenticated

    def test_local_settings_and_progress(self, engine, local_store) -> None:
        local_store.save_settings(Settings(focus_duration=50))
        local_store.save_pomodoros(3)
        coordinator = _coordinator(engine, local_store)
        assert coordinator.snapshot().seconds_remaining == 3000
        assert coordinator.pomodoros_completed == 3

    def test_store_settings_win(self, engine, local_store) -> None:
        local_store.save_settings(Settings(focus_duration=50))
        coordinator = _coordinator(engine, local_store, FakeStore(Settings(focus_duration=30)))
        assert coordinator.settings.focus_duration == 30

    def test_store_failure_falls_back_to_local(self, engine, local_store, store) -> None:
        local_store.save_settings(Settings(focus_duration=45))
        store.fail_settings = True
        coordinator = _coordinator(engine, local_store, store)
        assert coordinator.settings.focus_duration == 45


class TestSegments:
    def test_start_opens_one_record(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        coordinator.start()
        coordinator.flush()
        assert len(store.created) == 1
        assert store.created[0].kind == SessionKind.FOCUS
        assert store.created[0].planned_duration_seconds == 1500
        assert store.created[0].started_at == NOW
        assert coordinator.is_session_open

    def test_begin_closes_previous_segment(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.begin_segment(SessionKind.FOCUS, 1500)
        coordinator.begin_segment(SessionKind.SHORT_BREAK, 300)
        coordinator.flush()
        assert len(store.created) == 2
        assert store.updates[0][0] == "rec-1"
        assert store.updates[0][1].completed is False

    def test_pause_keeps_record_open(self, engine, local_store, store, clock) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        clock.now += 10
        coordinator.pause()
        coordinator.resume()
        coordinator.flush()
        assert store.updates == []
        assert coordinator.is_session_open

    def test_reset_abandons_with_actual_duration(self, engine, local_store, store, clock, source) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        clock.now += 60
        source.pump()
        coordinator.reset()
        coordinator.flush()
        record_id, update = store.updates[0]
        assert record_id == "rec-1"
        assert update.completed is False
        assert update.actual_duration_seconds == 60
        assert update.ended_at == NOW
        assert coordinator.snapshot().seconds_remaining == 1500
        assert not coordinator.is_session_open

    def test_switch_kind_abandons_and_primes(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        coordinator.switch_kind(SessionKind.LONG_BREAK)
        coordinator.flush()
        assert store.updates[0][1].completed is False
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.LONG_BREAK
        assert snap.seconds_remaining == 900
        assert snap.run_state == RunState.IDLE

    def test_complete_without_segment_is_noop(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.complete_segment("nothing")
        coordinator.flush()
        assert store.updates == []
        assert coordinator.pomodoros_completed == 0

    def test_shutdown_abandons_open_segment(self, engine, local_store, store, source) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        coordinator.shutdown()
        assert store.updates[0][1].completed is False
        assert not source.active


class TestCompletion:
    def test_focus_waits_for_accomplishment(self, engine, local_store, store, source, clock) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        pending = coordinator.awaiting_accomplishment
        assert pending is not None
        assert pending.kind == SessionKind.FOCUS
        assert coordinator.pomodoros_completed == 0

        coordinator.submit_accomplishment("Wrote the tests")
        coordinator.flush()
        _, update = store.updates[0]
        assert update.completed is True
        assert update.notes == "Wrote the tests"
        assert update.actual_duration_seconds == 1500
        assert coordinator.pomodoros_completed == 1
        assert local_store.load_pomodoros() == 1
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.SHORT_BREAK
        assert snap.seconds_remaining == 300
        assert snap.run_state == RunState.IDLE

    def test_notes_are_truncated(self, engine, local_store, store, source, clock) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.submit_accomplishment("x" * 600)
        coordinator.flush()
        assert len(store.updates[0][1].notes) == NOTES_MAX_LENGTH

    def test_capture_callable_closes_immediately(self, engine, local_store, store, source, clock) -> None:
        capture = MagicMock(return_value="Shipped it")
        coordinator = _coordinator(engine, local_store, store, accomplishment_capture=capture)
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.flush()
        capture.assert_called_once()
        assert store.updates[0][1].notes == "Shipped it"
        assert coordinator.awaiting_accomplishment is None

    def test_new_action_settles_pending_without_notes(self, engine, local_store, store, source, clock) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.start()
        coordinator.flush()
        _, update = store.updates[0]
        assert update.completed is True
        assert "notes" not in update.model_dump(exclude_unset=True)
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.SHORT_BREAK
        assert snap.run_state == RunState.RUNNING

    def test_break_completes_without_prompt(self, engine, local_store, store, source, clock) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.switch_kind(SessionKind.SHORT_BREAK)
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.flush()
        assert coordinator.awaiting_accomplishment is None
        assert store.updates[0][1].completed is True
        assert coordinator.pomodoros_completed == 0
        assert coordinator.kind == SessionKind.FOCUS

    def test_fourth_pomodoro_primes_long_break(self, engine, local_store, source, clock) -> None:
        local_store.save_pomodoros(3)
        coordinator = _coordinator(engine, local_store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        assert coordinator.pomodoros_completed == 4
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.LONG_BREAK
        assert snap.seconds_remaining == 900

    def test_notifier_told_about_completion(self, engine, local_store, source, clock) -> None:
        notifier = MagicMock()
        coordinator = _coordinator(engine, local_store, notifier=notifier)
        coordinator.start()
        _run_out(coordinator, source, clock)
        notifier.notify.assert_called_once_with(SessionKind.FOCUS)


class TestAnonymous:
    def test_counts_locally_without_store(self, engine, local_store, source, clock) -> None:
        coordinator = _coordinator(engine, local_store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        assert coordinator.awaiting_accomplishment is None
        assert coordinator.pomodoros_completed == 1
        assert local_store.load_pomodoros() == 1
        assert coordinator.kind == SessionKind.SHORT_BREAK

    def test_previous_session_needs_identity(self, engine, local_store) -> None:
        coordinator = _coordinator(engine, local_store)
        assert coordinator.previous_focus_session() is None


class TestAutoStart:
    def test_break_starts_itself(self, engine, local_store, source, clock) -> None:
        local_store.save_settings(Settings(auto_start_breaks=True))
        coordinator = _coordinator(engine, local_store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.SHORT_BREAK
        assert snap.run_state == RunState.RUNNING
        assert coordinator.is_session_open

    @pytest.mark.parametrize("action", ["reset", "shutdown"])
    def test_settling_pending_completion_does_not_start_break(
        self, engine, local_store, source, clock, action
    ) -> None:
        store = FakeStore(Settings(auto_start_breaks=True))
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        assert coordinator.awaiting_accomplishment is not None

        getattr(coordinator, action)()
        if action == "reset":
            coordinator.flush()

        assert [c.kind for c in store.created] == [SessionKind.FOCUS]
        assert len(store.updates) == 1
        record_id, update = store.updates[0]
        assert record_id == "rec-1"
        assert update.completed is True
        assert update.notes is None
        assert coordinator.pomodoros_completed == 1

    def test_reset_with_pending_completion_primes_idle_break(
        self, engine, local_store, source, clock
    ) -> None:
        coordinator = _coordinator(engine, local_store, FakeStore(Settings(auto_start_breaks=True)))
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.reset()
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.SHORT_BREAK
        assert snap.run_state == RunState.IDLE
        assert snap.seconds_remaining == 300
        assert not coordinator.is_session_open

    def test_start_with_pending_completion_runs_break_once(
        self, engine, local_store, source, clock
    ) -> None:
        store = FakeStore(Settings(auto_start_breaks=True))
        coordinator = _coordinator(engine, local_store, store)
        coordinator.start()
        _run_out(coordinator, source, clock)
        coordinator.start()
        coordinator.flush()
        assert [c.kind for c in store.created] == [SessionKind.FOCUS, SessionKind.SHORT_BREAK]
        assert coordinator.snapshot().run_state == RunState.RUNNING

    def test_focus_waits_unless_enabled(self, engine, local_store, source, clock) -> None:
        local_store.save_settings(Settings(auto_start_breaks=True))
        coordinator = _coordinator(engine, local_store)
        coordinator.switch_kind(SessionKind.SHORT_BREAK)
        coordinator.start()
        _run_out(coordinator, source, clock)
        snap = coordinator.snapshot()
        assert snap.kind == SessionKind.FOCUS
        assert snap.run_state == RunState.IDLE


class TestStoreFailures:
    def test_failed_open_is_logged_and_timer_continues(
        self, engine, local_store, store, source, clock, caplog
    ) -> None:
        store.fail_create = True
        coordinator = _coordinator(engine, local_store, store)
        with caplog.at_level(logging.WARNING, logger="pomoflow.coordinator"):
            coordinator.start()
            coordinator.flush()
            _run_out(coordinator, source, clock)
            coordinator.submit_accomplishment("still counted")
            coordinator.flush()
        assert "Session sync failed" in caplog.text
        assert store.updates == []
        assert coordinator.pomodoros_completed == 1

    def test_previous_session_failure_returns_none(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        store.fail_settings = True
        assert coordinator.previous_focus_session() is None


class TestSaveSettings:
    def test_saves_locally_and_reprimes_idle_engine(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        coordinator.save_settings(Settings(focus_duration=40))
        assert local_store.load_settings().focus_duration == 40
        assert store.settings.focus_duration == 40
        assert coordinator.snapshot().seconds_remaining == 2400

    def test_running_segment_keeps_its_length(self, engine, local_store) -> None:
        coordinator = _coordinator(engine, local_store)
        coordinator.start()
        coordinator.save_settings(Settings(focus_duration=40))
        assert coordinator.snapshot().seconds_remaining == 1500

    def test_remote_failure_raises_after_local_write(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        store.fail_settings = True
        with pytest.raises(PersistenceError):
            coordinator.save_settings(Settings(focus_duration=40))
        assert local_store.load_settings().focus_duration == 40


class TestToggle:
    def test_toggle_starts_pauses_and_resumes(self, engine, local_store) -> None:
        coordinator = _coordinator(engine, local_store)
        coordinator.toggle()
        assert coordinator.snapshot().run_state == RunState.RUNNING
        coordinator.toggle()
        assert coordinator.snapshot().run_state == RunState.PAUSED
        coordinator.toggle()
        assert coordinator.snapshot().run_state == RunState.RUNNING
        assert coordinator.is_session_open


class TestOpenRecordInvariant:
    def test_never_more_than_one_open_record(self, engine, local_store, store) -> None:
        coordinator = _coordinator(engine, local_store, store)
        actions = [
            lambda: coordinator.begin_segment(SessionKind.FOCUS, 1500),
            lambda: coordinator.begin_segment(SessionKind.SHORT_BREAK, 300),
            coordinator.abandon_segment,
            coordinator.complete_segment,
            lambda: coordinator.begin_segment(SessionKind.FOCUS, 1500),
            coordinator.complete_segment,
            coordinator.abandon_segment,
            lambda: coordinator.begin_segment(SessionKind.LONG_BREAK, 900),
        ]
        for action in actions:
            action()
        coordinator.flush()

        closed = {record_id for record_id, _ in store.updates}
        opened = {f"rec-{i}" for i in range(1, len(store.created) + 1)}
        assert len(opened - closed) == 1
        assert len(store.updates) == len(closed)
        # Only the focus segment that was completed counts.
        assert coordinator.pomodoros_completed == 1
